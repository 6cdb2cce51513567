"""Unit tests for CheckoutService."""

from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from bookings.config import ReconcilerSettings
from bookings.models.booking import Booking
from bookings.models.enums import BookingStatus, PaymentStatus
from bookings.models.errors import (
    BookingNotFoundError,
    BookingNotPayableError,
    ErrorCode,
    PaymentProviderError,
    StoreError,
)
from bookings.services.booking_store import BookingStore
from bookings.services.checkout_service import CheckoutService, CheckoutSession
from bookings.services.stripe_service import StripeServiceError

SETTINGS = ReconcilerSettings(environment="test", table_prefix="test-bookings")


@pytest.fixture
def service(store: BookingStore, mock_stripe: MagicMock) -> CheckoutService:
    return CheckoutService(store, mock_stripe, SETTINGS)


def checkout(service: CheckoutService, booking_id: str, **overrides) -> CheckoutSession:
    kwargs = {
        "amount_cents": 15000,
        "description": "AI strategy session",
        "success_url": "https://example.com/success",
        "cancel_url": "https://example.com/cancel",
    }
    kwargs.update(overrides)
    return service.create_checkout(booking_id, **kwargs)


class TestCreateCheckout:
    def test_attaches_session_to_booking(
        self,
        service: CheckoutService,
        store: BookingStore,
        mock_stripe: MagicMock,
        make_booking: Callable[..., Booking],
    ) -> None:
        booking = store.create(make_booking())

        session = checkout(service, booking.booking_id, currency="eur")

        assert session.session_id == "cs_test_abc123"
        assert session.checkout_url.startswith("https://checkout.stripe.com/")
        stored = store.get(booking.booking_id)
        assert stored.payment_session_id == "cs_test_abc123"
        assert stored.amount == 15000
        assert stored.currency == "EUR"
        call_kwargs = mock_stripe.create_checkout_session.call_args.kwargs
        assert call_kwargs["correlation_key"] == booking.correlation_key
        assert call_kwargs["currency"] == "EUR"

    def test_failed_payment_can_be_retried(
        self,
        service: CheckoutService,
        store: BookingStore,
        make_booking: Callable[..., Booking],
    ) -> None:
        booking = store.create(make_booking(payment_status=PaymentStatus.FAILED))

        session = checkout(service, booking.booking_id)

        assert session.booking.payment_status == PaymentStatus.PENDING

    def test_retry_after_failed_payment_is_a_new_attempt(
        self,
        service: CheckoutService,
        store: BookingStore,
        mock_stripe: MagicMock,
        make_booking: Callable[..., Booking],
    ) -> None:
        booking = store.create(make_booking())
        first = checkout(service, booking.booking_id)
        store.update(first.booking, {"payment_status": PaymentStatus.FAILED})

        checkout(service, booking.booking_id)

        versions = [
            call.kwargs["booking_version"]
            for call in mock_stripe.create_checkout_session.call_args_list
        ]
        assert len(versions) == 2
        assert versions[0] < versions[1]

    def test_unknown_booking(self, service: CheckoutService) -> None:
        with pytest.raises(BookingNotFoundError):
            checkout(service, "BKG-MISSING")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"status": BookingStatus.CANCELLED},
            {"payment_status": PaymentStatus.PAID},
        ],
    )
    def test_not_payable(
        self,
        service: CheckoutService,
        store: BookingStore,
        mock_stripe: MagicMock,
        make_booking: Callable[..., Booking],
        overrides: dict,
    ) -> None:
        booking = store.create(make_booking(**overrides))

        with pytest.raises(BookingNotPayableError):
            checkout(service, booking.booking_id)

        mock_stripe.create_checkout_session.assert_not_called()

    def test_stripe_failure(
        self,
        service: CheckoutService,
        store: BookingStore,
        mock_stripe: MagicMock,
        make_booking: Callable[..., Booking],
    ) -> None:
        booking = store.create(make_booking())
        mock_stripe.create_checkout_session.side_effect = StripeServiceError(
            "card_declined", stripe_error_code="card_declined"
        )

        with pytest.raises(PaymentProviderError) as exc_info:
            checkout(service, booking.booking_id)

        assert exc_info.value.stripe_error_code == "card_declined"
        assert store.get(booking.booking_id).payment_session_id is None

    def test_paid_meanwhile_is_not_payable(
        self,
        service: CheckoutService,
        store: BookingStore,
        make_booking: Callable[..., Booking],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        booking = store.create(make_booking())
        real_update = store.update

        def webhook_wins(current: Booking, changes: dict) -> Booking | None:
            real_update(current, {"payment_status": PaymentStatus.PAID})
            monkeypatch.setattr(store, "update", real_update)
            return None

        monkeypatch.setattr(store, "update", webhook_wins)

        with pytest.raises(BookingNotPayableError):
            checkout(service, booking.booking_id)

    def test_retries_exhausted(
        self,
        service: CheckoutService,
        store: BookingStore,
        make_booking: Callable[..., Booking],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        booking = store.create(make_booking())
        monkeypatch.setattr(store, "update", lambda current, changes: None)

        with pytest.raises(StoreError) as exc_info:
            checkout(service, booking.booking_id)

        assert exc_info.value.code == ErrorCode.STORE_CONFLICT
