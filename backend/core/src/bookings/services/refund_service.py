"""Refund trigger for cancelled, paid bookings.

The trigger applies the refund policy and calls Stripe. It never writes
the booking; the reconciler records REFUNDED after a successful result.
A failure raises RefundError and the booking stays CANCELLED/PAID until
someone reconciles it by hand.
"""

import datetime as dt

from pydantic import BaseModel, Field

from bookings.models.booking import Booking
from bookings.models.enums import CancelledBy, PaymentStatus, RefundPolicy
from bookings.models.errors import RefundError
from bookings.services.refund_policy_service import RefundPolicyService
from bookings.services.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
)
from bookings.utils.logging import get_logger, log_refund_operation

logger = get_logger(__name__)


class RefundResult(BaseModel):
    """Outcome of a refund attempt."""

    success: bool
    amount: int = Field(default=0, ge=0, description="Refunded amount in cents")
    policy: RefundPolicy
    reason: str
    refund_id: str | None = None


def refund_idempotency_key(booking_id: str) -> str:
    """Stripe idempotency key for a booking's refund."""
    return f"refund_{booking_id}"


class RefundTrigger:
    """Issues the compensating refund for a cancelled booking."""

    def __init__(
        self,
        stripe_service: StripeService | None = None,
        policy_service: RefundPolicyService | None = None,
    ) -> None:
        self._stripe = stripe_service or get_stripe_service()
        self._policy = policy_service or RefundPolicyService()

    def trigger(
        self,
        booking: Booking,
        cancelled_by: CancelledBy,
        reason: str | None = None,
        *,
        now: dt.datetime | None = None,
    ) -> RefundResult:
        """Refund a booking according to the refund policy.

        Args:
            booking: Booking being compensated (expected PAID)
            cancelled_by: Who cancelled
            reason: Cancellation reason, stored on the Stripe refund
            now: Cancellation time used for the notice period

        Returns:
            RefundResult; policy NONE results are successful without a
            Stripe call

        Raises:
            RefundError: Stripe refused the refund or no payment intent
                could be found
        """
        if booking.payment_status == PaymentStatus.REFUNDED:
            log_refund_operation(
                logger,
                "refund_already_issued",
                booking_id=booking.booking_id,
                refund_id=booking.refund_id,
            )
            partial = (
                booking.amount is not None
                and booking.refund_amount is not None
                and booking.refund_amount < booking.amount
            )
            return RefundResult(
                success=True,
                amount=booking.refund_amount or 0,
                policy=RefundPolicy.PARTIAL if partial else RefundPolicy.FULL,
                reason="Refund already issued",
                refund_id=booking.refund_id,
            )

        if booking.payment_status != PaymentStatus.PAID:
            log_refund_operation(
                logger,
                "refund_skipped",
                booking_id=booking.booking_id,
                policy=RefundPolicy.NONE.value,
                payment_status=booking.payment_status.value,
            )
            return RefundResult(
                success=True,
                policy=RefundPolicy.NONE,
                reason="Booking has no captured payment",
            )

        cancelled_at = now or booking.cancelled_at or dt.datetime.now(dt.UTC)
        calculation = self._policy.calculate_refund_amount(
            booking.amount or 0,
            booking.start_time,
            cancelled_at,
            cancelled_by,
        )
        policy = calculation["policy_tier"]

        if booking.amount is not None and calculation["refund_amount"] == 0:
            log_refund_operation(
                logger,
                "refund_not_applicable",
                booking_id=booking.booking_id,
                amount=0,
                policy=policy.value,
            )
            return RefundResult(
                success=True,
                amount=0,
                policy=RefundPolicy.NONE,
                reason=calculation["description"],
            )

        # Unknown captured amount: only a full refund can be expressed
        if booking.amount is None and policy != RefundPolicy.FULL:
            raise RefundError(
                {"booking_id": booking.booking_id, "reason": "captured amount unknown"}
            )
        amount_cents = calculation["refund_amount"] if booking.amount is not None else None

        payment_intent_id = self._resolve_payment_intent(booking)

        try:
            refund = self._stripe.create_refund(
                payment_intent_id=payment_intent_id,
                amount_cents=amount_cents,
                reason=reason,
                idempotency_key=refund_idempotency_key(booking.booking_id),
            )
        except StripeServiceError as e:
            log_refund_operation(
                logger,
                "refund_failed",
                booking_id=booking.booking_id,
                amount=amount_cents,
                policy=policy.value,
                error=str(e),
            )
            raise RefundError(
                {"booking_id": booking.booking_id, "payment_intent_id": payment_intent_id},
                stripe_error_code=e.stripe_error_code,
            ) from e

        refunded = refund.get("amount")
        if refunded is None:
            refunded = amount_cents or 0
        log_refund_operation(
            logger,
            "refund_issued",
            booking_id=booking.booking_id,
            amount=refunded,
            policy=policy.value,
            refund_id=refund["refund_id"],
        )
        return RefundResult(
            success=True,
            amount=refunded,
            policy=policy,
            reason=calculation["description"],
            refund_id=refund["refund_id"],
        )

    def _resolve_payment_intent(self, booking: Booking) -> str:
        if booking.payment_intent_id:
            return booking.payment_intent_id
        if booking.payment_session_id:
            try:
                session = self._stripe.retrieve_checkout_session(booking.payment_session_id)
            except StripeServiceError as e:
                raise RefundError(
                    {
                        "booking_id": booking.booking_id,
                        "payment_session_id": booking.payment_session_id,
                    },
                    stripe_error_code=e.stripe_error_code,
                ) from e
            if session.get("payment_intent_id"):
                return session["payment_intent_id"]
        raise RefundError(
            {"booking_id": booking.booking_id, "reason": "no payment intent on booking"}
        )
