"""API models for webhook endpoints."""

from pydantic import BaseModel, Field

from bookings.models.enums import ProcessingResult, Provider
from bookings.services.webhook_handler import WebhookResult


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the provider.

    Any 200 stops provider retries, whatever the processing_result.
    """

    received: bool = True
    provider: Provider
    delivery_id: str = Field(..., examples=["evt_1ABC123DEF456"])
    event_type: str = Field(..., examples=["invitee.created"])
    processing_result: ProcessingResult
    booking_id: str | None = None
    message: str | None = None

    @classmethod
    def from_result(cls, result: WebhookResult) -> "WebhookResponse":
        return cls(
            provider=result.provider,
            delivery_id=result.delivery_id,
            event_type=result.event_type,
            processing_result=result.result,
            booking_id=result.booking_id,
            message=result.message,
        )
