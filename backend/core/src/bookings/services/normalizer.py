"""Maps provider webhook payloads onto NormalizedEvent.

Calendly:
- invitee.created / invitee.canceled / invitee.rescheduled
- correlation key from tracking.utm_content, either the raw key or a
  query string carrying booking_ref (plus session_type_id, client_id,
  builder_id); falls back to a questions_and_answers entry whose question
  mentions booking_ref

Stripe:
- checkout.session.completed (only payment_status == "paid")
- checkout.session.async_payment_succeeded / async_payment_failed
- payment_intent.payment_failed
- correlation key from client_reference_id, falling back to
  metadata.booking_ref

Unknown event types normalize to UNHANDLED. A handled event type that is
missing what it needs to be processed raises EventValidationError.
"""

from typing import Any
from urllib.parse import parse_qs

from pydantic import ValidationError

from bookings.models.enums import CancelledBy, EventKind, Provider
from bookings.models.errors import EventValidationError
from bookings.models.events import (
    CalendlyPayload,
    CalendlyWebhook,
    NormalizedEvent,
    PaymentDetails,
    SchedulingDetails,
    StripeEventObject,
    StripeWebhook,
)
from bookings.utils.logging import get_logger

logger = get_logger(__name__)

CALENDLY_EVENT_KINDS: dict[str, EventKind] = {
    "invitee.created": EventKind.INVITEE_CREATED,
    "invitee.canceled": EventKind.INVITEE_CANCELED,
    "invitee.rescheduled": EventKind.INVITEE_RESCHEDULED,
}

STRIPE_EVENT_KINDS: dict[str, EventKind] = {
    "checkout.session.completed": EventKind.PAYMENT_COMPLETED,
    "checkout.session.async_payment_succeeded": EventKind.PAYMENT_COMPLETED,
    "checkout.session.async_payment_failed": EventKind.PAYMENT_FAILED,
    "payment_intent.payment_failed": EventKind.PAYMENT_FAILED,
}

CANCELER_TYPES: dict[str, CancelledBy] = {
    "host": CancelledBy.BUILDER,
    "invitee": CancelledBy.CLIENT,
}

BOOKING_REF_PARAM = "booking_ref"


def _validation_details(error: ValidationError) -> dict[str, Any]:
    return {
        "errors": [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in error.errors()
        ]
    }


def parse_tracking_content(content: str | None) -> dict[str, str]:
    """Parse a utm_content value into its reference fields.

    Accepts either a bare correlation key ("bk-1") or a query string
    ("booking_ref=bk-1&session_type_id=st-1&client_id=c-1").
    """
    if not content:
        return {}
    content = content.strip()
    if "=" not in content:
        return {BOOKING_REF_PARAM: content}
    parsed = parse_qs(content, keep_blank_values=False)
    return {key: values[0] for key, values in parsed.items() if values and values[0]}


def _missing(kind: EventKind, provider_event_type: str, *fields: str) -> EventValidationError:
    return EventValidationError(
        {
            "kind": kind.value,
            "event_type": provider_event_type,
            "missing": list(fields),
        }
    )


class EventNormalizer:
    """Validates provider payloads and produces NormalizedEvent values."""

    def normalize(
        self,
        provider: Provider,
        payload: dict[str, Any],
        delivery_id: str,
    ) -> NormalizedEvent:
        """Normalize a parsed webhook body.

        Args:
            provider: Provider that sent the delivery
            payload: Parsed JSON body
            delivery_id: Provider delivery ID

        Returns:
            NormalizedEvent (kind UNHANDLED for event types we ignore)

        Raises:
            EventValidationError: Handled event type with missing or invalid fields
        """
        if not isinstance(payload, dict):
            raise EventValidationError({"reason": "payload is not a JSON object"})
        if provider == Provider.CALENDLY:
            return self._normalize_calendly(payload, delivery_id)
        return self._normalize_stripe(payload, delivery_id)

    # Calendly

    def _normalize_calendly(self, body: dict[str, Any], delivery_id: str) -> NormalizedEvent:
        event_type = body.get("event")
        if not isinstance(event_type, str) or not event_type:
            raise EventValidationError({"missing": ["event"]})

        kind = CALENDLY_EVENT_KINDS.get(event_type, EventKind.UNHANDLED)
        if kind == EventKind.UNHANDLED:
            return self._unhandled(Provider.CALENDLY, delivery_id, event_type)

        try:
            webhook = CalendlyWebhook.model_validate(body)
        except ValidationError as e:
            raise EventValidationError(
                {"event_type": event_type, **_validation_details(e)}
            ) from e

        inner = webhook.payload
        references = self._calendly_references(inner)
        correlation_key = references.get(BOOKING_REF_PARAM)
        scheduled = inner.event
        invitee = inner.invitee
        external_event_id = scheduled.event_id if scheduled else None

        details = SchedulingDetails(
            invitee_id=invitee.invitee_id if invitee else None,
            event_uri=scheduled.uri if scheduled else None,
            invitee_uri=invitee.uri if invitee else None,
            start_time=scheduled.start_time if scheduled else None,
            end_time=scheduled.end_time if scheduled else None,
            client_timezone=invitee.timezone if invitee else None,
            scheduling_status=scheduled.status if scheduled else None,
            builder_id=references.get("builder_id"),
            client_id=references.get("client_id"),
            session_type_id=references.get("session_type_id"),
        )

        if kind == EventKind.INVITEE_CREATED:
            missing = [
                name
                for name, value in (
                    ("tracking.utm_content", correlation_key),
                    ("event.uuid", external_event_id),
                    ("event.start_time", details.start_time),
                    ("event.end_time", details.end_time),
                )
                if not value
            ]
            if missing:
                raise _missing(kind, event_type, *missing)
        elif kind == EventKind.INVITEE_RESCHEDULED:
            if not (external_event_id or correlation_key):
                raise _missing(kind, event_type, "event.uuid")
            if not (details.start_time and details.end_time):
                raise _missing(kind, event_type, "event.start_time", "event.end_time")
        elif kind == EventKind.INVITEE_CANCELED:
            if not (external_event_id or correlation_key):
                raise _missing(kind, event_type, "event.uuid")
            if inner.cancellation is None:
                raise _missing(kind, event_type, "cancellation")
            cancellation = inner.cancellation
            details = details.model_copy(
                update={
                    "cancellation_reason": cancellation.reason or None,
                    "cancelled_by": CANCELER_TYPES.get(
                        (cancellation.canceler_type or "").lower(), CancelledBy.SYSTEM
                    ),
                }
            )

        if (
            details.start_time
            and details.end_time
            and details.end_time <= details.start_time
        ):
            raise EventValidationError(
                {"event_type": event_type, "reason": "end_time must be after start_time"}
            )

        return NormalizedEvent(
            kind=kind,
            provider=Provider.CALENDLY,
            delivery_id=delivery_id,
            provider_event_type=event_type,
            external_event_id=external_event_id,
            correlation_key=correlation_key,
            payload=details,
        )

    def _calendly_references(self, inner: CalendlyPayload) -> dict[str, str]:
        tracking = inner.tracking or (inner.invitee.tracking if inner.invitee else None)
        references = parse_tracking_content(tracking.utm_content if tracking else None)

        if BOOKING_REF_PARAM not in references:
            for qa in inner.questions_and_answers:
                if BOOKING_REF_PARAM in qa.question and qa.answer:
                    references[BOOKING_REF_PARAM] = qa.answer.strip()
                    break
        return references

    # Stripe

    def _normalize_stripe(self, body: dict[str, Any], delivery_id: str) -> NormalizedEvent:
        event_type = body.get("type")
        if not isinstance(event_type, str) or not event_type:
            raise EventValidationError({"missing": ["type"]})

        kind = STRIPE_EVENT_KINDS.get(event_type, EventKind.UNHANDLED)
        if kind == EventKind.UNHANDLED:
            return self._unhandled(Provider.STRIPE, delivery_id, event_type)

        try:
            webhook = StripeWebhook.model_validate(body)
        except ValidationError as e:
            raise EventValidationError(
                {"event_type": event_type, **_validation_details(e)}
            ) from e

        obj = webhook.data.object
        if event_type == "checkout.session.completed" and obj.payment_status != "paid":
            # Delayed payment methods complete the session before the money arrives
            logger.info(
                "checkout.session.completed with payment_status=%s, not a payment yet",
                obj.payment_status,
            )
            return self._unhandled(Provider.STRIPE, delivery_id, event_type)

        correlation_key = obj.client_reference_id or obj.metadata.get(BOOKING_REF_PARAM)
        details = self._payment_details(obj)

        if not (correlation_key or details.payment_session_id):
            raise _missing(kind, event_type, "client_reference_id", "metadata.booking_ref")

        return NormalizedEvent(
            kind=kind,
            provider=Provider.STRIPE,
            delivery_id=delivery_id,
            provider_event_type=event_type,
            external_event_id=obj.id,
            correlation_key=correlation_key,
            payload=details,
        )

    def _payment_details(self, obj: StripeEventObject) -> PaymentDetails:
        is_session = obj.object == "checkout.session" or obj.id.startswith("cs_")
        is_intent = obj.object == "payment_intent" or obj.id.startswith("pi_")

        failure_reason = None
        if obj.last_payment_error:
            failure_reason = obj.last_payment_error.get("message") or obj.last_payment_error.get(
                "code"
            )

        amount = obj.amount_total if obj.amount_total is not None else obj.amount
        return PaymentDetails(
            payment_session_id=obj.id if is_session else None,
            payment_intent_id=obj.id if is_intent else obj.payment_intent,
            amount=amount,
            currency=obj.currency.upper() if obj.currency else None,
            failure_reason=failure_reason,
        )

    def _unhandled(self, provider: Provider, delivery_id: str, event_type: str) -> NormalizedEvent:
        return NormalizedEvent(
            kind=EventKind.UNHANDLED,
            provider=provider,
            delivery_id=delivery_id,
            provider_event_type=event_type,
        )
