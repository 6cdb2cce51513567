"""Provider webhook payload schemas and the normalized event model.

Calendly and Stripe payloads are validated against the models below
before being mapped onto NormalizedEvent. Unknown fields are allowed
because both providers add fields over time.
"""

from datetime import datetime
from typing import Any, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator

from .enums import CancelledBy, EventKind, Provider


def _uri_tail(uri: str | None) -> str | None:
    """Return the last path segment of an API resource URI."""
    if not uri:
        return None
    tail = uri.rstrip("/").rsplit("/", 1)[-1]
    return tail or None


def _coerce_resource(value: Any) -> Any:
    # Calendly sends either an object or a bare resource URI
    if isinstance(value, str):
        return {"uri": value}
    return value


# === Calendly ===


class CalendlyTracking(BaseModel):
    """UTM tracking parameters captured on the scheduling link."""

    model_config = ConfigDict(extra="allow")

    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_content: str | None = None
    utm_term: str | None = None


class CalendlyScheduledEvent(BaseModel):
    """The scheduled event an invitee booked.

    Session times must carry a UTC offset; refund notice is measured
    against the current UTC time.
    """

    model_config = ConfigDict(extra="allow")

    uuid: str | None = None
    uri: str | None = None
    start_time: AwareDatetime | None = None
    end_time: AwareDatetime | None = None
    status: str | None = None

    @property
    def event_id(self) -> str | None:
        return self.uuid or _uri_tail(self.uri)


class CalendlyInvitee(BaseModel):
    """The person who booked the event."""

    model_config = ConfigDict(extra="allow")

    uuid: str | None = None
    uri: str | None = None
    email: str | None = None
    name: str | None = None
    timezone: str | None = None
    tracking: CalendlyTracking | None = None

    @property
    def invitee_id(self) -> str | None:
        return self.uuid or _uri_tail(self.uri)


class CalendlyEventType(BaseModel):
    model_config = ConfigDict(extra="allow")

    uuid: str | None = None
    uri: str | None = None
    name: str | None = None
    scheduling_url: str | None = None
    active: bool | None = None


class CalendlyCancellation(BaseModel):
    model_config = ConfigDict(extra="allow")

    canceled_by: str | None = None
    reason: str | None = None
    canceler_type: str | None = None


class CalendlyQuestionAnswer(BaseModel):
    model_config = ConfigDict(extra="allow")

    question: str
    answer: str | None = None


class CalendlyPayload(BaseModel):
    """Inner `payload` object of a Calendly webhook."""

    model_config = ConfigDict(extra="allow")

    event_type: CalendlyEventType | None = None
    event: CalendlyScheduledEvent | None = None
    invitee: CalendlyInvitee | None = None
    tracking: CalendlyTracking | None = None
    cancellation: CalendlyCancellation | None = None
    questions_and_answers: list[CalendlyQuestionAnswer] = Field(default_factory=list)

    @field_validator("event_type", "event", "invitee", mode="before")
    @classmethod
    def _resource_or_uri(cls, value: Any) -> Any:
        return _coerce_resource(value)


class CalendlyWebhook(BaseModel):
    """Top-level Calendly webhook body."""

    model_config = ConfigDict(extra="allow")

    event: str
    created_at: datetime | None = None
    payload: CalendlyPayload


# === Stripe ===


class StripeEventObject(BaseModel):
    """`data.object` of a Stripe event (checkout session or payment intent)."""

    model_config = ConfigDict(extra="allow")

    id: str
    object: str | None = None
    client_reference_id: str | None = None
    payment_status: str | None = None
    payment_intent: str | None = None
    amount_total: int | None = None
    amount: int | None = None
    currency: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    last_payment_error: dict[str, Any] | None = None

    @field_validator("payment_intent", mode="before")
    @classmethod
    def _expanded_intent(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("id")
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _null_metadata(cls, value: Any) -> Any:
        return value or {}


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: StripeEventObject


class StripeWebhook(BaseModel):
    """Top-level Stripe event body."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    created: int | None = None
    data: StripeEventData


# === Normalized ===


class SchedulingDetails(BaseModel):
    """Scheduling fields carried by invitee events."""

    invitee_id: str | None = None
    event_uri: str | None = None
    invitee_uri: str | None = None
    start_time: AwareDatetime | None = None
    end_time: AwareDatetime | None = None
    client_timezone: str | None = None
    scheduling_status: str | None = None
    builder_id: str | None = None
    client_id: str | None = None
    session_type_id: str | None = None
    cancellation_reason: str | None = None
    cancelled_by: CancelledBy | None = None


class PaymentDetails(BaseModel):
    """Payment fields carried by payment events."""

    payment_session_id: str | None = None
    payment_intent_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    failure_reason: str | None = None


class NormalizedEvent(BaseModel):
    """Provider-neutral representation of one webhook delivery.

    `external_event_id` is the Calendly scheduled event UUID for invitee
    events and the Stripe object id for payment events.
    `correlation_key` joins the event to a booking before an internal
    booking id is known.
    """

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    provider: Provider
    delivery_id: str
    provider_event_type: str
    external_event_id: str | None = None
    correlation_key: str | None = None
    payload: Union[SchedulingDetails, PaymentDetails, None] = None

    @property
    def is_payment(self) -> bool:
        return self.kind in (EventKind.PAYMENT_COMPLETED, EventKind.PAYMENT_FAILED)

    @property
    def scheduling(self) -> SchedulingDetails:
        if isinstance(self.payload, SchedulingDetails):
            return self.payload
        return SchedulingDetails()

    @property
    def payment(self) -> PaymentDetails:
        if isinstance(self.payload, PaymentDetails):
            return self.payload
        return PaymentDetails()
