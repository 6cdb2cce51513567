"""Unit tests for BookingStore against moto DynamoDB.

Test categories:
- Create and lookups (id, external event id, correlation key, session id)
- Uniqueness guards
- Version-checked updates
- Early cancellation markers
"""

import datetime as dt
from collections.abc import Callable

import pytest

from bookings.models.booking import Booking
from bookings.models.enums import BookingStatus, CancelledBy, PaymentStatus
from bookings.models.errors import DuplicateBookingError
from bookings.services.booking_store import BookingStore, new_booking_id


# === Create and Lookups ===


class TestCreateAndFind:
    def test_create_then_get(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking())

        loaded = store.get(booking.booking_id)

        assert loaded == booking
        assert loaded.version == 1

    def test_get_unknown_returns_none(self, store: BookingStore) -> None:
        assert store.get("BKG-MISSING") is None

    def test_find_by_external_event_id(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking(external_event_id="EVT-42"))

        found = store.find_by_external_event_id("EVT-42")

        assert found is not None
        assert found.booking_id == booking.booking_id
        assert store.find_by_external_event_id("EVT-43") is None

    def test_find_by_correlation_key(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking(correlation_key="bk-77"))

        found = store.find_by_correlation_key("bk-77")

        assert found is not None
        assert found.booking_id == booking.booking_id

    def test_find_by_payment_session_id(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking(payment_session_id="cs_test_find"))

        found = store.find_by_payment_session_id("cs_test_find")

        assert found is not None
        assert found.booking_id == booking.booking_id
        assert store.find_by_payment_session_id("cs_test_other") is None

    def test_list_for_session_type_sorted_by_start(
        self,
        store: BookingStore,
        make_booking: Callable[..., Booking],
        session_start: dt.datetime,
    ) -> None:
        later = store.create(
            make_booking(
                correlation_key="bk-late",
                start_time=session_start + dt.timedelta(hours=4),
                end_time=session_start + dt.timedelta(hours=5),
            )
        )
        earlier = store.create(make_booking(correlation_key="bk-early"))
        store.create(make_booking(correlation_key="bk-other", session_type_id="st-2"))

        bookings = store.list_for_session_type("st-1")

        assert [b.booking_id for b in bookings] == [earlier.booking_id, later.booking_id]

    def test_new_booking_id_format(self) -> None:
        booking_id = new_booking_id()

        assert booking_id.startswith("BKG-")
        assert len(booking_id) == 20
        assert booking_id != new_booking_id()


# === Uniqueness ===


class TestUniqueness:
    def test_duplicate_external_event_id_rejected(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        store.create(make_booking(external_event_id="EVT-1", correlation_key="bk-a"))

        with pytest.raises(DuplicateBookingError):
            store.create(make_booking(external_event_id="EVT-1", correlation_key="bk-b"))

    def test_duplicate_correlation_key_rejected(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        store.create(make_booking(external_event_id="EVT-1", correlation_key="bk-a"))

        with pytest.raises(DuplicateBookingError):
            store.create(make_booking(external_event_id="EVT-2", correlation_key="bk-a"))

    def test_losing_create_leaves_no_row(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        store.create(make_booking(external_event_id="EVT-1", correlation_key="bk-a"))
        loser = make_booking(external_event_id="EVT-1", correlation_key="bk-b")

        with pytest.raises(DuplicateBookingError):
            store.create(loser)

        assert store.get(loser.booking_id) is None
        assert store.find_by_correlation_key("bk-b") is None


# === Version-checked Updates ===


class TestUpdate:
    def test_update_bumps_version(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking())

        updated = store.update(booking, {"payment_status": PaymentStatus.PAID, "amount": 15000})

        assert updated is not None
        assert updated.version == 2
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.amount == 15000
        assert updated.updated_at >= booking.updated_at
        assert store.get(booking.booking_id) == updated

    def test_stale_version_loses(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking())
        assert store.update(booking, {"status": BookingStatus.CONFIRMED}) is not None

        assert store.update(booking, {"payment_status": PaymentStatus.FAILED}) is None
        assert store.get(booking.booking_id).payment_status == PaymentStatus.PENDING

    def test_none_removes_attribute(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking(client_timezone="Europe/Berlin"))

        updated = store.update(booking, {"client_timezone": None})

        assert updated is not None
        assert updated.client_timezone is None

    def test_cancel_records_actor_and_time(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking())
        cancelled_at = dt.datetime.now(dt.UTC)

        updated = store.update(
            booking,
            {
                "status": BookingStatus.CANCELLED,
                "cancelled_by": CancelledBy.CLIENT,
                "cancelled_at": cancelled_at,
            },
        )

        assert updated.cancelled_by == CancelledBy.CLIENT
        assert updated.cancelled_at == cancelled_at

    def test_immutable_fields_rejected(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking())

        with pytest.raises(ValueError, match="immutable"):
            store.update(booking, {"correlation_key": "bk-other"})

    def test_invalid_state_rejected_before_write(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        booking = store.create(make_booking())

        with pytest.raises(ValueError):
            store.update(booking, {"payment_status": PaymentStatus.REFUNDED})

        assert store.get(booking.booking_id).version == 1


# === Early Cancellation ===


class TestEarlyCancellation:
    def test_marker_blocks_later_create(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        assert store.record_early_cancellation("EVT-9") is True
        assert store.has_early_cancellation("EVT-9") is True

        with pytest.raises(DuplicateBookingError):
            store.create(make_booking(external_event_id="EVT-9"))

    def test_marker_refused_once_booking_exists(
        self, store: BookingStore, make_booking: Callable[..., Booking]
    ) -> None:
        store.create(make_booking(external_event_id="EVT-9"))

        assert store.record_early_cancellation("EVT-9") is False
        assert store.has_early_cancellation("EVT-9") is False

    def test_no_marker_by_default(self, store: BookingStore) -> None:
        assert store.has_early_cancellation("EVT-unknown") is False
