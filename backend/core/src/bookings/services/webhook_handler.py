"""Webhook processing pipeline for Calendly and Stripe deliveries.

Provides the business logic behind both webhook endpoints, separate from
HTTP routing concerns:

    verify signature -> parse -> idempotency check -> normalize
        -> reconcile -> record delivery

Errors propagate as ReconciliationError subclasses; the HTTP layer maps
them to status codes.
"""

import json
import time
from typing import Any

from pydantic import BaseModel

from bookings.config import ReconcilerSettings, get_settings
from bookings.models.enums import EventKind, ProcessingResult, Provider
from bookings.models.errors import EventValidationError, StoreError
from bookings.services.idempotency_ledger import IdempotencyLedger, compute_payload_hash
from bookings.services.normalizer import EventNormalizer
from bookings.services.reconciler import BookingReconciler
from bookings.services.signatures import verify_calendly_signature, verify_stripe_signature
from bookings.services.ssm_service import SSMService, SSMServiceError
from bookings.utils.logging import alert_operator, get_logger, log_webhook_event

logger = get_logger(__name__)

SIGNING_KEY_NAMES: dict[Provider, tuple[str, str]] = {
    Provider.CALENDLY: ("calendly/webhook_signing_key", "calendly/webhook_signing_key_secondary"),
    Provider.STRIPE: ("stripe/webhook_secret", "stripe/webhook_secret_secondary"),
}

SIGNATURE_VERIFIERS = {
    Provider.CALENDLY: verify_calendly_signature,
    Provider.STRIPE: verify_stripe_signature,
}


class WebhookResult(BaseModel):
    """Outcome of one webhook delivery."""

    delivery_id: str
    provider: Provider
    event_type: str
    result: ProcessingResult
    booking_id: str | None = None
    message: str | None = None


def delivery_id_for(provider: Provider, body: dict[str, Any], raw_body: bytes) -> str:
    """Derive the idempotency key of a delivery.

    Stripe events carry a unique id. Calendly deliveries do not, so the
    hash of the signed body stands in for it; retries resend the same body.
    """
    if provider == Provider.STRIPE:
        event_id = body.get("id")
        if not isinstance(event_id, str) or not event_id:
            raise EventValidationError({"missing": ["id"]})
        return event_id
    return f"calendly_{compute_payload_hash(raw_body)}"


class WebhookHandler:
    """Runs a raw webhook delivery through the reconciliation pipeline."""

    def __init__(
        self,
        ledger: IdempotencyLedger,
        normalizer: EventNormalizer,
        reconciler: BookingReconciler,
        ssm: SSMService,
        settings: ReconcilerSettings | None = None,
    ) -> None:
        self._ledger = ledger
        self._normalizer = normalizer
        self._reconciler = reconciler
        self._ssm = ssm
        self._settings = settings or get_settings()

    def signing_secrets(self, provider: Provider) -> list[str | None]:
        """Primary and secondary (rotation) signing keys for a provider.

        Raises:
            StoreError: Parameter Store could not be read
        """
        secrets: list[str | None] = []
        for name in SIGNING_KEY_NAMES[provider]:
            try:
                secrets.append(
                    self._ssm.get_optional_parameter(self._settings.secret_path(name))
                )
            except SSMServiceError as e:
                logger.error("Could not load %s signing key %s: %s", provider.value, name, e)
                raise StoreError(details={"parameter": name}) from e
        return secrets

    def handle(
        self,
        provider: Provider,
        raw_body: bytes,
        signature_header: str | None,
        *,
        now: float | None = None,
    ) -> WebhookResult:
        """Process one delivery end to end.

        Args:
            provider: Provider the endpoint belongs to
            raw_body: Exact request body bytes
            signature_header: Provider signature header value
            now: Current unix time for the freshness check

        Returns:
            WebhookResult describing what happened

        Raises:
            SignatureError: The delivery is not authentic
            EventValidationError: The body is not JSON or a handled event
                lacks required fields
            StoreError: Transient store failure; the provider should retry
        """
        started = time.monotonic()

        SIGNATURE_VERIFIERS[provider](
            raw_body,
            signature_header,
            self.signing_secrets(provider),
            tolerance_seconds=self._settings.webhook_tolerance_seconds,
            now=now,
        )

        try:
            body = json.loads(raw_body)
        except ValueError as e:
            raise EventValidationError({"reason": "body is not valid JSON"}) from e
        if not isinstance(body, dict):
            raise EventValidationError({"reason": "payload is not a JSON object"})

        delivery_id = delivery_id_for(provider, body, raw_body)
        event_type = str(body.get("type" if provider == Provider.STRIPE else "event", "unknown"))
        payload_hash = compute_payload_hash(raw_body)

        log_webhook_event(logger, event_type, delivery_id, provider=provider.value, result="received")

        if self._ledger.has_processed(delivery_id):
            log_webhook_event(
                logger, event_type, delivery_id, provider=provider.value, result="duplicate"
            )
            return WebhookResult(
                delivery_id=delivery_id,
                provider=provider,
                event_type=event_type,
                result=ProcessingResult.DUPLICATE,
                message="Delivery already processed",
            )

        try:
            event = self._normalizer.normalize(provider, body, delivery_id)
        except EventValidationError as e:
            alert_operator(
                "Webhook event failed validation and cannot be reconciled automatically",
                delivery_id=delivery_id,
                provider=provider.value,
                event_type=event_type,
                details=e.details,
            )
            self._ledger.record_processed(
                delivery_id,
                provider,
                event_type,
                ProcessingResult.FAILURE,
                self._elapsed_ms(started),
                payload_hash=payload_hash,
                error_message=e.message,
            )
            raise

        outcome = self._reconciler.reconcile(event)

        record = self._ledger.record_processed(
            delivery_id,
            provider,
            event_type,
            outcome.result,
            self._elapsed_ms(started),
            payload_hash=payload_hash,
            booking_id=outcome.booking_id,
            error_message=outcome.message
            if outcome.result != ProcessingResult.SUCCESS
            else None,
        )

        log_webhook_event(
            logger,
            event_type,
            delivery_id,
            provider=provider.value,
            booking_id=outcome.booking_id,
            result=outcome.result.value,
            kind=event.kind.value,
            duration_ms=record.duration_ms,
        )
        if event.kind == EventKind.UNHANDLED:
            logger.info("Unhandled %s event type %s, skipping", provider.value, event_type)

        return WebhookResult(
            delivery_id=delivery_id,
            provider=provider,
            event_type=event_type,
            result=outcome.result,
            booking_id=outcome.booking_id,
            message=outcome.message,
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
