"""Booking model and its DynamoDB item mapping."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import BookingStatus, CancelledBy, PaymentStatus


class Booking(BaseModel):
    """A client's booked session with a builder.

    Amounts are stored in minor currency units (cents).
    The booking is never deleted; cancellation and refund are
    represented in place.
    """

    model_config = ConfigDict(validate_assignment=False)

    booking_id: str = Field(..., description="Internal booking ID")
    correlation_key: str = Field(
        ...,
        description="Opaque booking reference embedded in scheduling links and checkout sessions",
        examples=["bk-1"],
    )
    external_event_id: str = Field(
        ...,
        description="Calendly scheduled event UUID (unique)",
    )
    external_invitee_id: str | None = Field(default=None, description="Calendly invitee UUID")
    event_uri: str | None = None
    invitee_uri: str | None = None

    builder_id: str | None = None
    client_id: str | None = None
    session_type_id: str | None = None

    start_time: datetime | None = None
    end_time: datetime | None = None
    client_timezone: str | None = None
    builder_timezone: str | None = None

    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    amount: int | None = Field(default=None, ge=0, description="Amount in cents")
    currency: str | None = None

    payment_session_id: str | None = Field(
        default=None,
        description="Stripe Checkout Session ID (cs_xxx)",
        examples=["cs_test_abc123def456"],
    )
    payment_intent_id: str | None = Field(
        default=None,
        description="Stripe PaymentIntent ID (pi_xxx)",
    )
    refund_id: str | None = None
    refund_amount: int | None = Field(default=None, ge=0)

    cancellation_reason: str | None = None
    cancelled_by: CancelledBy | None = None
    cancelled_at: datetime | None = None

    version: int = Field(default=1, ge=1, description="Optimistic concurrency version")
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_invariants(self) -> "Booking":
        if (
            self.payment_status == PaymentStatus.REFUNDED
            and self.status != BookingStatus.CANCELLED
        ):
            raise ValueError("a refunded booking must be cancelled")
        if self.status == BookingStatus.CONFIRMED:
            if self.start_time is None or self.end_time is None:
                raise ValueError("a confirmed booking needs start and end times")
            if self.end_time <= self.start_time:
                raise ValueError("end_time must be after start_time")
        return self

    def to_item(self) -> dict[str, Any]:
        """Serialize to a DynamoDB item (ISO timestamps, no null attributes)."""
        data = self.model_dump(mode="json")
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "Booking":
        """Build a Booking from a DynamoDB item.

        DynamoDB returns numbers as Decimal; they are narrowed to int here.
        """
        data = {
            key: int(value) if isinstance(value, Decimal) else value
            for key, value in item.items()
        }
        return cls.model_validate(data)
