"""Booking reconciliation state machine.

Applies a NormalizedEvent to the booking it refers to. The booking state
is two independent axes, status (PENDING, CONFIRMED, CANCELLED) and
payment status (PENDING, PAID, REFUNDED, FAILED).

Each delivery is handled as read, decide, write:
1. find the booking by external event id, then by correlation key
   (payment events also by checkout session id)
2. decide() computes the transition from the booking and the event alone
3. the write is a guarded create or a version-checked update; losing a
   race re-reads and decides again

Providers deliver at least once and in any order, so every transition is
an idempotent upsert. A cancelled booking is never brought back by a late
create or reschedule, a refunded payment is never downgraded, and a
refund is triggered only for bookings that are cancelled while PAID.
Refunds run after the booking write commits; a refund failure is alerted
and never reverses the cancellation.
"""

import datetime as dt
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from bookings.config import ReconcilerSettings, get_settings
from bookings.models.booking import Booking
from bookings.models.enums import (
    BookingStatus,
    CancelledBy,
    EventKind,
    PaymentStatus,
    ProcessingResult,
)
from bookings.models.errors import DuplicateBookingError, ErrorCode, RefundError, StoreError
from bookings.models.events import NormalizedEvent
from bookings.services.booking_store import BookingStore, new_booking_id
from bookings.services.refund_service import RefundResult, RefundTrigger
from bookings.utils.logging import alert_operator, get_logger, log_refund_operation

logger = get_logger(__name__)

CALENDLY_ACTIVE_STATUS = "active"

LATE_PAYMENT_REASON = "Payment received for a cancelled booking"


class Action(str, Enum):
    """What the reconciler must do to apply an event."""

    CREATE = "create"
    UPDATE = "update"
    NOOP = "noop"
    UNCORRELATED = "uncorrelated"


class Transition(BaseModel):
    """Result of deciding how an event changes a booking."""

    action: Action
    booking: Booking | None = None
    changes: dict[str, Any] = Field(default_factory=dict)
    result: ProcessingResult = ProcessingResult.SUCCESS
    refund_required: bool = False
    reason: str | None = None


class ReconcileOutcome(BaseModel):
    """What happened to a delivery, for the ledger and the HTTP response."""

    result: ProcessingResult
    booking: Booking | None = None
    message: str | None = None
    refund: RefundResult | None = None

    @property
    def booking_id(self) -> str | None:
        return self.booking.booking_id if self.booking else None


def _noop(result: ProcessingResult, reason: str) -> Transition:
    return Transition(action=Action.NOOP, result=result, reason=reason)


def _changed(booking: Booking, candidates: dict[str, Any]) -> dict[str, Any]:
    """Keep only the fields whose value differs from the booking."""
    return {
        field: value
        for field, value in candidates.items()
        if value is not None and getattr(booking, field) != value
    }


def _new_booking(event: NormalizedEvent, now: dt.datetime, currency: str) -> Booking:
    details = event.scheduling
    status = (
        BookingStatus.CONFIRMED
        if details.scheduling_status == CALENDLY_ACTIVE_STATUS
        else BookingStatus.PENDING
    )
    return Booking(
        booking_id=new_booking_id(),
        correlation_key=event.correlation_key,
        external_event_id=event.external_event_id,
        external_invitee_id=details.invitee_id,
        event_uri=details.event_uri,
        invitee_uri=details.invitee_uri,
        builder_id=details.builder_id,
        client_id=details.client_id,
        session_type_id=details.session_type_id,
        start_time=details.start_time,
        end_time=details.end_time,
        client_timezone=details.client_timezone,
        status=status,
        payment_status=PaymentStatus.PENDING,
        currency=currency,
        created_at=now,
        updated_at=now,
    )


def decide(
    booking: Booking | None,
    event: NormalizedEvent,
    now: dt.datetime,
    *,
    cancelled_before_create: bool = False,
    default_currency: str = "USD",
) -> Transition:
    """Compute the transition for an event against the current booking.

    Pure: reads nothing and writes nothing.

    Args:
        booking: Current booking, None if none was found
        event: Normalized event
        now: Processing time (cancelled_at for cancellations)
        cancelled_before_create: A cancellation for this scheduled event
            was recorded before any booking existed
        default_currency: Currency for new bookings
    """
    kind = event.kind

    if kind == EventKind.UNHANDLED:
        return _noop(ProcessingResult.SKIPPED, f"event type {event.provider_event_type} not handled")

    if kind == EventKind.INVITEE_CREATED:
        if booking is None:
            if cancelled_before_create:
                return _noop(
                    ProcessingResult.SKIPPED,
                    "scheduled event was cancelled before it was created",
                )
            return Transition(
                action=Action.CREATE,
                booking=_new_booking(event, now, default_currency),
            )
        if booking.status == BookingStatus.CANCELLED:
            return _noop(ProcessingResult.SKIPPED, "cancelled booking is not recreated")

        details = event.scheduling
        candidates: dict[str, Any] = {
            "start_time": details.start_time,
            "end_time": details.end_time,
            "event_uri": details.event_uri,
            "invitee_uri": details.invitee_uri,
            "external_invitee_id": details.invitee_id,
            "client_timezone": details.client_timezone,
        }
        for field in ("builder_id", "client_id", "session_type_id"):
            if getattr(booking, field) is None:
                candidates[field] = getattr(details, field)
        if (
            booking.status == BookingStatus.PENDING
            and details.scheduling_status == CALENDLY_ACTIVE_STATUS
        ):
            candidates["status"] = BookingStatus.CONFIRMED
        changes = _changed(booking, candidates)
        if not changes:
            return _noop(ProcessingResult.SUCCESS, "booking already up to date")
        return Transition(action=Action.UPDATE, booking=booking, changes=changes)

    if booking is None:
        return Transition(
            action=Action.UNCORRELATED,
            result=ProcessingResult.UNCORRELATED,
            reason="no booking matches the event",
        )

    if kind == EventKind.INVITEE_RESCHEDULED:
        if booking.status == BookingStatus.CANCELLED:
            return _noop(ProcessingResult.SKIPPED, "cancelled booking is not rescheduled")
        details = event.scheduling
        changes = _changed(
            booking, {"start_time": details.start_time, "end_time": details.end_time}
        )
        if not changes:
            return _noop(ProcessingResult.SUCCESS, "booking already has these times")
        return Transition(action=Action.UPDATE, booking=booking, changes=changes)

    if kind == EventKind.INVITEE_CANCELED:
        if booking.status == BookingStatus.CANCELLED:
            return _noop(ProcessingResult.SUCCESS, "booking already cancelled")
        details = event.scheduling
        changes = {
            "status": BookingStatus.CANCELLED,
            "cancelled_by": details.cancelled_by or CancelledBy.SYSTEM,
            "cancellation_reason": details.cancellation_reason,
            "cancelled_at": now,
        }
        return Transition(
            action=Action.UPDATE,
            booking=booking,
            changes={key: value for key, value in changes.items() if value is not None},
            refund_required=booking.payment_status == PaymentStatus.PAID,
        )

    if kind == EventKind.PAYMENT_COMPLETED:
        if booking.payment_status == PaymentStatus.REFUNDED:
            return _noop(ProcessingResult.SKIPPED, "refunded payment is not downgraded")
        payment = event.payment
        candidates = {
            "payment_status": PaymentStatus.PAID,
            "amount": payment.amount,
            "currency": payment.currency,
            "payment_intent_id": payment.payment_intent_id,
        }
        if booking.payment_session_id is None:
            candidates["payment_session_id"] = payment.payment_session_id
        changes = _changed(booking, candidates)
        if not changes:
            return _noop(ProcessingResult.SUCCESS, "payment already recorded")
        return Transition(
            action=Action.UPDATE,
            booking=booking,
            changes=changes,
            refund_required=booking.status == BookingStatus.CANCELLED,
        )

    # PAYMENT_FAILED
    if booking.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
        return _noop(ProcessingResult.SKIPPED, "captured payment is not downgraded")
    if booking.payment_status == PaymentStatus.FAILED:
        return _noop(ProcessingResult.SUCCESS, "payment failure already recorded")
    changes = {"payment_status": PaymentStatus.FAILED}
    if booking.payment_session_id is None and event.payment.payment_session_id:
        changes["payment_session_id"] = event.payment.payment_session_id
    return Transition(action=Action.UPDATE, booking=booking, changes=changes)


class BookingReconciler:
    """Drives bookings through their lifecycle from normalized events."""

    def __init__(
        self,
        store: BookingStore,
        refund_trigger: RefundTrigger,
        settings: ReconcilerSettings | None = None,
    ) -> None:
        self._store = store
        self._refunds = refund_trigger
        self._settings = settings or get_settings()

    def find_booking(self, event: NormalizedEvent) -> Booking | None:
        """Look up the booking an event refers to."""
        if event.external_event_id and not event.is_payment:
            booking = self._store.find_by_external_event_id(event.external_event_id)
            if booking is not None:
                return booking
        if event.correlation_key:
            booking = self._store.find_by_correlation_key(event.correlation_key)
            if booking is not None:
                return booking
        if event.is_payment and event.payment.payment_session_id:
            return self._store.find_by_payment_session_id(event.payment.payment_session_id)
        return None

    def reconcile(self, event: NormalizedEvent, now: dt.datetime | None = None) -> ReconcileOutcome:
        """Apply an event to its booking.

        Raises:
            StoreError: The store is unavailable or the booking kept changing
                underneath us for every retry
        """
        now = now or dt.datetime.now(dt.UTC)
        if event.kind == EventKind.UNHANDLED:
            return ReconcileOutcome(
                result=ProcessingResult.SKIPPED,
                message=f"Event type '{event.provider_event_type}' not handled",
            )

        for attempt in range(1, self._settings.store_max_retries + 1):
            booking = self.find_booking(event)
            cancelled_before_create = (
                booking is None
                and event.kind == EventKind.INVITEE_CREATED
                and self._store.has_early_cancellation(event.external_event_id)
            )
            transition = decide(
                booking,
                event,
                now,
                cancelled_before_create=cancelled_before_create,
                default_currency=self._settings.default_currency,
            )

            if transition.action == Action.UNCORRELATED:
                if (
                    event.kind == EventKind.INVITEE_CANCELED
                    and event.external_event_id
                    and not self._store.record_early_cancellation(event.external_event_id)
                ):
                    logger.info(
                        "Booking for %s appeared while recording early cancellation (attempt %d)",
                        event.external_event_id,
                        attempt,
                    )
                    continue
                alert_operator(
                    "Webhook event does not match any booking",
                    delivery_id=event.delivery_id,
                    event_type=event.provider_event_type,
                    external_event_id=event.external_event_id,
                    correlation_key=event.correlation_key,
                )
                return ReconcileOutcome(result=transition.result, message=transition.reason)

            if transition.action == Action.NOOP:
                if transition.result == ProcessingResult.SKIPPED:
                    logger.warning(
                        "Ignoring %s for booking %s: %s",
                        event.kind.value,
                        booking.booking_id if booking else event.external_event_id,
                        transition.reason,
                    )
                return ReconcileOutcome(
                    result=transition.result, booking=booking, message=transition.reason
                )

            if transition.action == Action.CREATE:
                try:
                    stored = self._store.create(transition.booking)
                except DuplicateBookingError:
                    logger.info(
                        "Concurrent create for %s, retrying as update (attempt %d)",
                        event.external_event_id,
                        attempt,
                    )
                    continue
            else:
                stored = self._store.update(transition.booking, transition.changes)
                if stored is None:
                    continue

            logger.info(
                "Applied %s to booking %s (status=%s, payment=%s)",
                event.kind.value,
                stored.booking_id,
                stored.status.value,
                stored.payment_status.value,
            )

            refund = None
            if transition.refund_required:
                stored, refund = self._compensate(stored, event, now)
            return ReconcileOutcome(result=ProcessingResult.SUCCESS, booking=stored, refund=refund)

        logger.error(
            "Giving up on %s after %d attempts (delivery %s)",
            event.kind.value,
            self._settings.store_max_retries,
            event.delivery_id,
        )
        raise StoreError(
            details={"delivery_id": event.delivery_id, "attempts": self._settings.store_max_retries},
            code=ErrorCode.STORE_CONFLICT,
        )

    def _compensate(
        self,
        booking: Booking,
        event: NormalizedEvent,
        now: dt.datetime,
    ) -> tuple[Booking, RefundResult | None]:
        """Refund a cancelled, paid booking and record the refund."""
        if event.kind == EventKind.PAYMENT_COMPLETED:
            cancelled_by, reason = CancelledBy.SYSTEM, LATE_PAYMENT_REASON
        else:
            cancelled_by = booking.cancelled_by or CancelledBy.SYSTEM
            reason = booking.cancellation_reason

        try:
            refund = self._refunds.trigger(booking, cancelled_by, reason, now=now)
        except RefundError as e:
            alert_operator(
                "Refund failed; booking stays cancelled and paid until reconciled manually",
                level=logging.ERROR,
                booking_id=booking.booking_id,
                delivery_id=event.delivery_id,
                stripe_error_code=e.stripe_error_code,
            )
            return booking, None
        except Exception as e:
            # The cancellation is already committed; a redelivery would not retry the refund
            logger.exception("Unexpected error refunding booking %s", booking.booking_id)
            alert_operator(
                "Refund failed unexpectedly; booking stays cancelled and paid until "
                "reconciled manually",
                level=logging.ERROR,
                booking_id=booking.booking_id,
                delivery_id=event.delivery_id,
                error=type(e).__name__,
            )
            return booking, None

        if not refund.refund_id:
            # Policy granted nothing back; the payment stays captured
            return booking, refund

        current: Booking | None = booking
        for _ in range(self._settings.store_max_retries):
            if current is None:
                break
            if current.payment_status == PaymentStatus.REFUNDED:
                return current, refund
            updated = self._store.update(
                current,
                {
                    "payment_status": PaymentStatus.REFUNDED,
                    "refund_id": refund.refund_id,
                    "refund_amount": refund.amount,
                },
            )
            if updated is not None:
                log_refund_operation(
                    logger,
                    "refund_recorded",
                    booking_id=updated.booking_id,
                    amount=refund.amount,
                    policy=refund.policy.value,
                    refund_id=refund.refund_id,
                )
                return updated, refund
            current = self._store.get(booking.booking_id)

        alert_operator(
            "Refund issued but not recorded on the booking",
            level=logging.ERROR,
            booking_id=booking.booking_id,
            refund_id=refund.refund_id,
        )
        return booking, refund
