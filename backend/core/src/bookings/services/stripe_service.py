"""Stripe payment service for checkout sessions and refunds.

Provides integration with Stripe using the v8+ StripeClient pattern.
Retrieves the API key from SSM Parameter Store.
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import stripe
from stripe import StripeClient

from bookings.config import ReconcilerSettings, get_settings

from .ssm_service import SSMServiceError, get_ssm_service

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_TTL_SECONDS = 1800


def checkout_idempotency_key(booking_id: str, booking_version: int, amount_cents: int) -> str:
    """Idempotency key for one checkout attempt on a booking."""
    return f"checkout_{booking_id}_v{booking_version}_{amount_cents}"


class StripeServiceError(Exception):
    """Raised when a Stripe operation fails."""

    def __init__(self, message: str, stripe_error_code: str | None = None) -> None:
        """Initialize with message and optional Stripe error code.

        Args:
            message: Human-readable error message.
            stripe_error_code: Stripe-specific error code if available.
        """
        super().__init__(message)
        self.stripe_error_code = stripe_error_code


def _error_code(error: stripe.StripeError) -> str | None:
    code = getattr(error, "code", None)
    if code:
        return code
    if isinstance(error, stripe.RateLimitError):
        return "rate_limit"
    if isinstance(error, stripe.APIConnectionError):
        return "api_connection_error"
    return None


class StripeService:
    """Service for Stripe payment operations.

    Handles:
    - Checkout session creation for a booking
    - Checkout session lookup
    - Refund processing

    Usage:
        stripe_svc = get_stripe_service()
        session = stripe_svc.create_checkout_session(
            booking_id="BKG-0123456789ABCDEF",
            booking_version=1,
            correlation_key="bk-1",
            amount_cents=15000,
            currency="USD",
            description="AI strategy session",
            success_url="https://example.com/success",
            cancel_url="https://example.com/cancel",
        )
    """

    def __init__(self, settings: ReconcilerSettings | None = None) -> None:
        """Initialize Stripe service; credentials are fetched lazily from SSM.

        Args:
            settings: Process settings. Defaults to get_settings().
        """
        self._settings = settings or get_settings()
        self._ssm = get_ssm_service()
        self._client: StripeClient | None = None

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            StripeServiceError: If credentials cannot be retrieved.
        """
        if self._client is None:
            try:
                secret_key = self._ssm.get_parameter(
                    self._settings.secret_path("stripe/secret_key")
                )
                self._client = StripeClient(secret_key)
                logger.info(
                    "Stripe client initialized for environment: %s",
                    self._settings.environment,
                )
            except SSMServiceError as e:
                raise StripeServiceError(f"Failed to initialize Stripe client: {e}") from e
        return self._client

    def create_checkout_session(
        self,
        *,
        booking_id: str,
        booking_version: int,
        correlation_key: str,
        amount_cents: int,
        currency: str,
        description: str,
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
    ) -> dict[str, Any]:
        """Create a Stripe Checkout session for a booking.

        The correlation key travels as client_reference_id so the payment
        webhook can find the booking.

        Args:
            booking_id: Internal booking ID (used in the idempotency key).
            booking_version: Booking version the checkout starts from; a retry
                after a failed payment gets a new idempotency key.
            correlation_key: Booking correlation key.
            amount_cents: Amount in minor currency units.
            currency: ISO currency code.
            description: Line item description.
            success_url: URL to redirect on success (supports {CHECKOUT_SESSION_ID}).
            cancel_url: URL to redirect on cancel.
            customer_email: Optional customer email for Stripe receipt.

        Returns:
            Dict with session details:
                - session_id: Stripe checkout session ID
                - checkout_url: URL to redirect user
                - expires_at: When session expires

        Raises:
            StripeServiceError: If session creation fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": amount_cents,
                        "product_data": {
                            "name": "Builder session",
                            "description": description,
                        },
                    },
                    "quantity": 1,
                }
            ],
            "client_reference_id": correlation_key,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {"booking_ref": correlation_key, "booking_id": booking_id},
            "payment_intent_data": {
                "metadata": {"booking_ref": correlation_key, "booking_id": booking_id}
            },
            "expires_at": int(datetime.now(timezone.utc).timestamp())
            + CHECKOUT_SESSION_TTL_SECONDS,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            logger.info(
                "Creating Stripe checkout session for booking %s, amount %d",
                booking_id,
                amount_cents,
            )
            session = client.checkout.sessions.create(
                params=params,  # type: ignore[arg-type]
                options={
                    "idempotency_key": checkout_idempotency_key(
                        booking_id, booking_version, amount_cents
                    )
                },
            )
            logger.info(
                "Checkout session created: %s for booking %s", session.id, booking_id
            )
            return {
                "session_id": session.id,
                "checkout_url": session.url,
                "expires_at": datetime.fromtimestamp(session.expires_at, tz=timezone.utc),
            }

        except stripe.StripeError as e:
            error_code = _error_code(e)
            logger.error(
                "Stripe checkout session creation failed: %s (code: %s)", str(e), error_code
            )
            raise StripeServiceError(
                f"Failed to create checkout session: {e}",
                stripe_error_code=error_code,
            ) from e

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        """Retrieve a checkout session.

        Returns:
            Dict with session_id, payment_intent_id, payment_status and
            amount_total.

        Raises:
            StripeServiceError: If the lookup fails.
        """
        client = self._get_client()
        try:
            session = client.checkout.sessions.retrieve(session_id)
        except stripe.StripeError as e:
            error_code = _error_code(e)
            logger.error(
                "Stripe checkout session lookup failed for %s: %s (code: %s)",
                session_id,
                str(e),
                error_code,
            )
            raise StripeServiceError(
                f"Failed to retrieve checkout session: {e}",
                stripe_error_code=error_code,
            ) from e

        payment_intent = session.payment_intent
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = payment_intent.id
        return {
            "session_id": session.id,
            "payment_intent_id": payment_intent,
            "payment_status": session.payment_status,
            "amount_total": session.amount_total,
        }

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount_cents: int | None = None,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Create a refund for a payment.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx).
            amount_cents: Refund amount in cents. If None, full refund.
            reason: Reason for refund (for records).
            idempotency_key: Stripe idempotency key; retries with the same key
                return the original refund.

        Returns:
            Dict with refund details:
                - refund_id: Stripe refund ID
                - amount: Refunded amount in cents
                - status: Refund status

        Raises:
            StripeServiceError: If refund creation fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount_cents is not None:
            params["amount"] = amount_cents
        if reason:
            params["metadata"] = {"reason": reason}

        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        try:
            logger.info(
                "Creating refund for PaymentIntent %s, amount %s cents",
                payment_intent_id,
                amount_cents if amount_cents is not None else "full",
            )
            refund = client.refunds.create(params=params, options=options)  # type: ignore[arg-type]
            logger.info("Refund created: %s for PaymentIntent %s", refund.id, payment_intent_id)
            return {
                "refund_id": refund.id,
                "amount": refund.amount,
                "status": refund.status,
            }

        except stripe.StripeError as e:
            error_code = _error_code(e)
            logger.error("Stripe refund creation failed: %s (code: %s)", str(e), error_code)
            raise StripeServiceError(
                f"Failed to create refund: {e}",
                stripe_error_code=error_code,
            ) from e


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    """Get the shared StripeService instance (singleton pattern)."""
    return StripeService()
