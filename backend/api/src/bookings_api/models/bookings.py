"""API models for booking endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from bookings.models.booking import Booking
from bookings.models.enums import BookingStatus, CancelledBy, PaymentStatus


class BookingResponse(BaseModel):
    """Public view of a booking.

    Internal bookkeeping (version, Stripe intent and refund ids, Calendly
    URIs) is not exposed.
    """

    booking_id: str
    correlation_key: str
    builder_id: str | None = None
    client_id: str | None = None
    session_type_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    client_timezone: str | None = None
    builder_timezone: str | None = None
    status: BookingStatus
    payment_status: PaymentStatus
    amount: int | None = Field(default=None, description="Amount in cents")
    currency: str | None = None
    refund_amount: int | None = None
    cancellation_reason: str | None = None
    cancelled_by: CancelledBy | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls.model_validate(booking.model_dump(include=set(cls.model_fields)))


class BookingListResponse(BaseModel):
    """Bookings for a session type, ordered by start time."""

    session_type_id: str
    bookings: list[BookingResponse]
    count: int


class CheckoutRequest(BaseModel):
    """Request to start a Stripe payment for a booking."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "amount_cents": 15000,
                    "currency": "USD",
                    "description": "60 minute AI strategy session",
                    "success_url": "https://example.com/booking/success?session_id={CHECKOUT_SESSION_ID}",
                    "cancel_url": "https://example.com/booking/cancel",
                }
            ]
        },
    )

    amount_cents: int = Field(..., gt=0, description="Session price in cents")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str = Field(..., min_length=1, max_length=500)
    success_url: str = Field(..., min_length=1)
    cancel_url: str = Field(..., min_length=1)
    customer_email: str | None = None


class CheckoutResponse(BaseModel):
    """Created checkout session."""

    booking_id: str
    session_id: str = Field(..., examples=["cs_test_abc123def456"])
    checkout_url: str | None = None
    amount_cents: int
    currency: str


class SchedulingLinkRequest(BaseModel):
    """Request for a Calendly scheduling link tied to a new booking reference."""

    event_type_uuid: str = Field(..., min_length=1, examples=["ET-1"])
    client_id: str | None = None
    builder_id: str | None = None
    correlation_key: str | None = Field(
        default=None,
        min_length=1,
        max_length=64,
        description="Booking reference to embed; generated when omitted",
    )


class SchedulingLinkResponse(BaseModel):
    """Scheduling link whose webhooks will carry correlation_key back."""

    correlation_key: str = Field(..., examples=["bk-4f1c2a9e0b7d6c53"])
    scheduling_url: str
    event_type_name: str | None = None
