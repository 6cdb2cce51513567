"""Webhook delivery record for idempotency and auditing."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from .enums import ProcessingResult, Provider


class WebhookDeliveryRecord(BaseModel):
    """Log of a received webhook delivery.

    Used for:
    - Idempotency: a delivery recorded with a terminal result is never reprocessed
    - Auditing: track all webhook deliveries from both providers
    - Debugging: investigate bookings that were never reconciled
    """

    delivery_id: str = Field(
        ...,
        description="Provider delivery ID (Stripe event ID or Calendly delivery key)",
        examples=["evt_1ABC123DEF456"],
    )
    provider: Provider
    event_type: str = Field(
        ...,
        description="Provider event type",
        examples=["invitee.created", "checkout.session.completed"],
    )
    received_at: datetime
    processing_result: ProcessingResult
    duration_ms: int = Field(default=0, ge=0)
    payload_hash: str | None = Field(
        default=None,
        description="SHA-256 hash of the raw payload",
    )
    booking_id: str | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        """True when a redelivery of this delivery must be a no-op.

        Only failures are retried; every other result (including
        uncorrelated and skipped) was fully handled.
        """
        return self.processing_result != ProcessingResult.FAILURE

    def to_item(self) -> dict[str, Any]:
        """Serialize to a DynamoDB item."""
        data = self.model_dump(mode="json")
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "WebhookDeliveryRecord":
        """Build a record from a DynamoDB item."""
        data = {
            key: int(value) if isinstance(value, Decimal) else value
            for key, value in item.items()
        }
        return cls.model_validate(data)
