"""Unit tests for RefundTrigger.

Test categories:
- Refund issued through Stripe (full and partial)
- No-op cases (not paid, already refunded, policy grants nothing)
- Payment intent resolution
- Stripe failures
"""

import datetime as dt
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from bookings.config import RefundPolicySettings
from bookings.models.booking import Booking
from bookings.models.enums import BookingStatus, CancelledBy, PaymentStatus, RefundPolicy
from bookings.models.errors import RefundError
from bookings.services.refund_policy_service import RefundPolicyService
from bookings.services.refund_service import RefundTrigger, refund_idempotency_key
from bookings.services.stripe_service import StripeServiceError


@pytest.fixture
def trigger(mock_stripe: MagicMock) -> RefundTrigger:
    return RefundTrigger(
        stripe_service=mock_stripe,
        policy_service=RefundPolicyService(RefundPolicySettings()),
    )


@pytest.fixture
def paid_booking(make_booking: Callable[..., Booking]) -> Booking:
    return make_booking(
        status=BookingStatus.CANCELLED,
        payment_status=PaymentStatus.PAID,
        amount=15000,
        payment_intent_id="pi_test_abc123",
        payment_session_id="cs_test_abc123",
    )


# === Refund Issued ===


class TestRefundIssued:
    def test_full_refund_with_notice(
        self,
        trigger: RefundTrigger,
        mock_stripe: MagicMock,
        paid_booking: Booking,
        session_start: dt.datetime,
    ) -> None:
        result = trigger.trigger(
            paid_booking,
            CancelledBy.CLIENT,
            "Schedule conflict",
            now=session_start - dt.timedelta(hours=30),
        )

        assert result.success is True
        assert result.policy == RefundPolicy.FULL
        assert result.amount == 15000
        assert result.refund_id == "re_test_123"
        mock_stripe.create_refund.assert_called_once_with(
            payment_intent_id="pi_test_abc123",
            amount_cents=15000,
            reason="Schedule conflict",
            idempotency_key=refund_idempotency_key(paid_booking.booking_id),
        )

    def test_partial_refund(
        self,
        trigger: RefundTrigger,
        mock_stripe: MagicMock,
        paid_booking: Booking,
        session_start: dt.datetime,
    ) -> None:
        result = trigger.trigger(
            paid_booking, CancelledBy.CLIENT, now=session_start - dt.timedelta(hours=18)
        )

        assert result.policy == RefundPolicy.PARTIAL
        assert result.amount == 7500
        assert mock_stripe.create_refund.call_args.kwargs["amount_cents"] == 7500

    def test_builder_cancellation_always_full(
        self,
        trigger: RefundTrigger,
        paid_booking: Booking,
        session_start: dt.datetime,
    ) -> None:
        result = trigger.trigger(
            paid_booking, CancelledBy.BUILDER, now=session_start - dt.timedelta(hours=1)
        )

        assert result.policy == RefundPolicy.FULL
        assert result.amount == 15000

    def test_unknown_amount_full_refund(
        self,
        trigger: RefundTrigger,
        mock_stripe: MagicMock,
        make_booking: Callable[..., Booking],
    ) -> None:
        booking = make_booking(payment_status=PaymentStatus.PAID, payment_intent_id="pi_1")

        result = trigger.trigger(booking, CancelledBy.SYSTEM)

        assert result.refund_id == "re_test_123"
        assert mock_stripe.create_refund.call_args.kwargs["amount_cents"] is None


# === No-op Cases ===


class TestNoRefund:
    def test_unpaid_booking_skipped(
        self,
        trigger: RefundTrigger,
        mock_stripe: MagicMock,
        make_booking: Callable[..., Booking],
    ) -> None:
        result = trigger.trigger(make_booking(), CancelledBy.CLIENT)

        assert result.success is True
        assert result.policy == RefundPolicy.NONE
        assert result.refund_id is None
        mock_stripe.create_refund.assert_not_called()

    def test_already_refunded_not_refunded_again(
        self,
        trigger: RefundTrigger,
        mock_stripe: MagicMock,
        make_booking: Callable[..., Booking],
    ) -> None:
        booking = make_booking(
            status=BookingStatus.CANCELLED,
            payment_status=PaymentStatus.REFUNDED,
            amount=15000,
            refund_amount=7500,
            refund_id="re_earlier",
        )

        result = trigger.trigger(booking, CancelledBy.CLIENT)

        assert result.refund_id == "re_earlier"
        assert result.policy == RefundPolicy.PARTIAL
        mock_stripe.create_refund.assert_not_called()

    def test_late_client_cancellation_gets_nothing(
        self,
        trigger: RefundTrigger,
        mock_stripe: MagicMock,
        paid_booking: Booking,
        session_start: dt.datetime,
    ) -> None:
        result = trigger.trigger(
            paid_booking, CancelledBy.CLIENT, now=session_start - dt.timedelta(hours=2)
        )

        assert result.success is True
        assert result.policy == RefundPolicy.NONE
        assert result.amount == 0
        mock_stripe.create_refund.assert_not_called()


# === Payment Intent Resolution ===


class TestPaymentIntentResolution:
    def test_intent_looked_up_from_session(
        self,
        trigger: RefundTrigger,
        mock_stripe: MagicMock,
        make_booking: Callable[..., Booking],
    ) -> None:
        booking = make_booking(
            payment_status=PaymentStatus.PAID,
            amount=15000,
            payment_session_id="cs_test_abc123",
        )

        trigger.trigger(booking, CancelledBy.BUILDER)

        mock_stripe.retrieve_checkout_session.assert_called_once_with("cs_test_abc123")
        assert mock_stripe.create_refund.call_args.kwargs["payment_intent_id"] == "pi_test_abc123"

    def test_no_intent_anywhere_raises(
        self,
        trigger: RefundTrigger,
        make_booking: Callable[..., Booking],
    ) -> None:
        booking = make_booking(payment_status=PaymentStatus.PAID, amount=15000)

        with pytest.raises(RefundError):
            trigger.trigger(booking, CancelledBy.BUILDER)


# === Stripe Failures ===


class TestStripeFailures:
    def test_stripe_error_becomes_refund_error(
        self,
        trigger: RefundTrigger,
        mock_stripe: MagicMock,
        paid_booking: Booking,
    ) -> None:
        mock_stripe.create_refund.side_effect = StripeServiceError(
            "Charge already refunded", stripe_error_code="charge_already_refunded"
        )

        with pytest.raises(RefundError) as exc_info:
            trigger.trigger(paid_booking, CancelledBy.BUILDER)

        assert exc_info.value.stripe_error_code == "charge_already_refunded"

    def test_unknown_amount_with_partial_policy_raises(
        self,
        trigger: RefundTrigger,
        mock_stripe: MagicMock,
        make_booking: Callable[..., Booking],
        session_start: dt.datetime,
    ) -> None:
        booking = make_booking(payment_status=PaymentStatus.PAID, payment_intent_id="pi_1")

        with pytest.raises(RefundError):
            trigger.trigger(booking, CancelledBy.CLIENT, now=session_start - dt.timedelta(hours=18))

        mock_stripe.create_refund.assert_not_called()
