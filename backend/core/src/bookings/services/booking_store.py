"""Booking persistence on DynamoDB.

Tables (names are prefixed with the environment prefix):
- bookings: hash key booking_id, GSIs session_type_id-index and
  payment_session_id-index
- booking-keys: uniqueness guards, hash key guard_key
  ("event#<external_event_id>" and "ref#<correlation_key>"), plus
  "cancelled#<external_event_id>" markers for cancellations that arrived
  before the booking was created

Creation writes the booking and both guard items in one transaction,
so two concurrent creates for the same external event id produce
exactly one row. Updates are compare-and-swap on the version attribute.
"""

import datetime as dt
import uuid
from typing import Any

from bookings.models.booking import Booking
from bookings.models.errors import DuplicateBookingError
from bookings.services.dynamodb import DynamoDBService, get_dynamodb_service
from bookings.utils.logging import get_logger

logger = get_logger(__name__)

BOOKINGS_TABLE = "bookings"
KEYS_TABLE = "booking-keys"
SESSION_TYPE_INDEX = "session_type_id-index"
PAYMENT_SESSION_INDEX = "payment_session_id-index"

# Fields that identify a booking and are never rewritten by update()
IMMUTABLE_FIELDS = frozenset(
    {"booking_id", "correlation_key", "external_event_id", "created_at", "version"}
)


def new_booking_id() -> str:
    """Generate an internal booking ID."""
    return f"BKG-{uuid.uuid4().hex[:16].upper()}"


def _event_guard(external_event_id: str) -> str:
    return f"event#{external_event_id}"


def _reference_guard(correlation_key: str) -> str:
    return f"ref#{correlation_key}"


def _cancelled_guard(external_event_id: str) -> str:
    return f"cancelled#{external_event_id}"


class BookingStore:
    """Repository for Booking records."""

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self._db = db or get_dynamodb_service()

    # Reads

    def get(self, booking_id: str) -> Booking | None:
        """Get a booking by internal ID."""
        item = self._db.get_item(BOOKINGS_TABLE, {"booking_id": booking_id})
        return Booking.from_item(item) if item else None

    def _get_by_guard(self, guard_key: str) -> Booking | None:
        guard = self._db.get_item(KEYS_TABLE, {"guard_key": guard_key})
        if not guard:
            return None
        return self.get(guard["booking_id"])

    def find_by_external_event_id(self, external_event_id: str) -> Booking | None:
        """Find the booking created for a Calendly scheduled event."""
        return self._get_by_guard(_event_guard(external_event_id))

    def find_by_correlation_key(self, correlation_key: str) -> Booking | None:
        """Find the booking carrying a correlation key."""
        return self._get_by_guard(_reference_guard(correlation_key))

    def find_by_payment_session_id(self, payment_session_id: str) -> Booking | None:
        """Find the booking attached to a Stripe checkout session."""
        items = self._db.query_by_gsi(
            BOOKINGS_TABLE,
            PAYMENT_SESSION_INDEX,
            "payment_session_id",
            payment_session_id,
        )
        if not items:
            return None
        # Index reads are eventually consistent; re-read the row itself
        return self.get(items[0]["booking_id"])

    def list_for_session_type(self, session_type_id: str) -> list[Booking]:
        """List bookings for a session type, ordered by start time."""
        items = self._db.query_by_gsi(
            BOOKINGS_TABLE,
            SESSION_TYPE_INDEX,
            "session_type_id",
            session_type_id,
        )
        bookings = [Booking.from_item(item) for item in items]
        far_future = dt.datetime.max.replace(tzinfo=dt.UTC)
        return sorted(bookings, key=lambda b: b.start_time or far_future)

    # Writes

    def create(self, booking: Booking) -> Booking:
        """Insert a new booking with its uniqueness guards.

        Raises:
            DuplicateBookingError: A booking with the same external event id
                or correlation key already exists (or a concurrent create won).
        """
        guard_items = [
            {
                "guard_key": _event_guard(booking.external_event_id),
                "booking_id": booking.booking_id,
            },
            {
                "guard_key": _reference_guard(booking.correlation_key),
                "booking_id": booking.booking_id,
            },
        ]
        operations: list[dict[str, Any]] = [
            {
                "Put": {
                    "TableName": BOOKINGS_TABLE,
                    "Item": booking.to_item(),
                    "ConditionExpression": "attribute_not_exists(booking_id)",
                }
            }
        ]
        operations.extend(
            {
                "Put": {
                    "TableName": KEYS_TABLE,
                    "Item": guard,
                    "ConditionExpression": "attribute_not_exists(guard_key)",
                }
            }
            for guard in guard_items
        )
        operations.append(
            {
                "ConditionCheck": {
                    "TableName": KEYS_TABLE,
                    "Key": {"guard_key": _cancelled_guard(booking.external_event_id)},
                    "ConditionExpression": "attribute_not_exists(guard_key)",
                }
            }
        )

        if not self._db.transact_write(operations):
            logger.info(
                "Booking create lost uniqueness race (event=%s, ref=%s)",
                booking.external_event_id,
                booking.correlation_key,
            )
            raise DuplicateBookingError(
                details={
                    "external_event_id": booking.external_event_id,
                    "correlation_key": booking.correlation_key,
                }
            )

        logger.info(
            "Created booking %s for event %s",
            booking.booking_id,
            booking.external_event_id,
        )
        return booking

    def record_early_cancellation(self, external_event_id: str) -> bool:
        """Remember a cancellation that arrived before its booking existed.

        A later create for the same scheduled event is then refused, so a
        redelivered invitee.created can never bring the booking to life.

        Returns:
            False if the booking was created in the meantime; the caller
            must re-read it and cancel it instead.
        """
        return self._db.transact_write(
            [
                {
                    "ConditionCheck": {
                        "TableName": KEYS_TABLE,
                        "Key": {"guard_key": _event_guard(external_event_id)},
                        "ConditionExpression": "attribute_not_exists(guard_key)",
                    }
                },
                {
                    "Put": {
                        "TableName": KEYS_TABLE,
                        "Item": {
                            "guard_key": _cancelled_guard(external_event_id),
                            "recorded_at": dt.datetime.now(dt.UTC).isoformat(),
                        },
                    }
                },
            ]
        )

    def has_early_cancellation(self, external_event_id: str) -> bool:
        """Check for a cancellation recorded before the booking existed."""
        guard = self._db.get_item(KEYS_TABLE, {"guard_key": _cancelled_guard(external_event_id)})
        return guard is not None

    def update(self, booking: Booking, changes: dict[str, Any]) -> Booking | None:
        """Apply field changes if nobody else wrote the booking meanwhile.

        Args:
            booking: The booking as read by the caller (its version is the
                expected version)
            changes: Field name to new value; None removes the attribute

        Returns:
            The stored booking after the update, or None when the version
            check failed and the caller must re-read and retry.
        """
        illegal = IMMUTABLE_FIELDS.intersection(changes)
        if illegal:
            raise ValueError(f"cannot update immutable fields: {sorted(illegal)}")

        now = dt.datetime.now(dt.UTC)
        candidate = Booking.model_validate(
            {
                **booking.model_dump(),
                **changes,
                "version": booking.version + 1,
                "updated_at": now,
            }
        )
        serialized = candidate.model_dump(mode="json")

        names: dict[str, str] = {"#version": "version", "#updated_at": "updated_at"}
        values: dict[str, Any] = {
            ":expected": booking.version,
            ":next": candidate.version,
            ":updated_at": serialized["updated_at"],
        }
        set_parts = ["#version = :next", "#updated_at = :updated_at"]
        remove_parts: list[str] = []

        for index, field in enumerate(sorted(changes)):
            name = f"#f{index}"
            names[name] = field
            value = serialized[field]
            if value is None:
                remove_parts.append(name)
            else:
                placeholder = f":v{index}"
                values[placeholder] = value
                set_parts.append(f"{name} = {placeholder}")

        expression = "SET " + ", ".join(set_parts)
        if remove_parts:
            expression += " REMOVE " + ", ".join(remove_parts)

        attrs = self._db.update_item(
            BOOKINGS_TABLE,
            {"booking_id": booking.booking_id},
            expression,
            values,
            names,
            condition_expression="#version = :expected",
        )
        if attrs is None:
            logger.info(
                "Version conflict updating booking %s (expected version %d)",
                booking.booking_id,
                booking.version,
            )
            return None
        return Booking.from_item(attrs)
