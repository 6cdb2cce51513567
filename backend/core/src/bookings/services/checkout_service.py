"""Checkout for existing bookings.

Creates a Stripe Checkout session whose client_reference_id is the
booking's correlation key, then stores the session id on the booking so
payment webhooks can be matched by either.
"""

from pydantic import BaseModel

from bookings.config import ReconcilerSettings, get_settings
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
from bookings.services.stripe_service import StripeService, StripeServiceError
from bookings.utils.logging import get_logger

logger = get_logger(__name__)

PAYABLE_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED})


class CheckoutSession(BaseModel):
    session_id: str
    checkout_url: str | None = None
    booking: Booking


def ensure_payable(booking: Booking) -> None:
    """Raise BookingNotPayableError unless the booking can take a payment."""
    if booking.status == BookingStatus.CANCELLED:
        raise BookingNotPayableError(booking.booking_id, {"status": booking.status.value})
    if booking.payment_status not in PAYABLE_STATUSES:
        raise BookingNotPayableError(
            booking.booking_id, {"payment_status": booking.payment_status.value}
        )


class CheckoutService:
    """Starts Stripe payments for bookings."""

    def __init__(
        self,
        store: BookingStore,
        stripe_service: StripeService,
        settings: ReconcilerSettings | None = None,
    ) -> None:
        self._store = store
        self._stripe = stripe_service
        self._settings = settings or get_settings()

    def create_checkout(
        self,
        booking_id: str,
        *,
        amount_cents: int,
        description: str,
        success_url: str,
        cancel_url: str,
        currency: str | None = None,
        customer_email: str | None = None,
    ) -> CheckoutSession:
        """Create a checkout session for a booking and attach it.

        Raises:
            BookingNotFoundError: Unknown booking
            BookingNotPayableError: Booking is cancelled or already paid
            PaymentProviderError: Stripe refused the session
            StoreError: The booking could not be updated
        """
        booking = self._store.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        ensure_payable(booking)

        currency = (currency or booking.currency or self._settings.default_currency).upper()
        try:
            session = self._stripe.create_checkout_session(
                booking_id=booking.booking_id,
                booking_version=booking.version,
                correlation_key=booking.correlation_key,
                amount_cents=amount_cents,
                currency=currency,
                description=description,
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email,
            )
        except StripeServiceError as e:
            raise PaymentProviderError(
                {"booking_id": booking_id}, stripe_error_code=e.stripe_error_code
            ) from e

        changes = {
            "payment_session_id": session["session_id"],
            "amount": amount_cents,
            "currency": currency,
            "payment_status": PaymentStatus.PENDING,
        }
        for _ in range(self._settings.store_max_retries):
            updated = self._store.update(booking, changes)
            if updated is not None:
                logger.info(
                    "Attached checkout session %s to booking %s",
                    session["session_id"],
                    booking_id,
                )
                return CheckoutSession(
                    session_id=session["session_id"],
                    checkout_url=session.get("checkout_url"),
                    booking=updated,
                )
            reread = self._store.get(booking_id)
            if reread is None:
                raise BookingNotFoundError(booking_id)
            # A webhook may have paid or cancelled the booking meanwhile
            ensure_payable(reread)
            booking = reread

        raise StoreError(details={"booking_id": booking_id}, code=ErrorCode.STORE_CONFLICT)
