"""Idempotency ledger for webhook deliveries.

Every delivery from either provider is recorded in the webhook-deliveries
table with its outcome. A delivery already recorded with a terminal
outcome (anything but failure) is a no-op when redelivered.

The ledger check is not atomic with processing. Concurrent duplicate
deliveries can both pass has_processed(); the booking store's uniqueness
guards and version checks keep the second one from duplicating effects.
"""

import datetime as dt
import hashlib

from bookings.models.enums import ProcessingResult, Provider
from bookings.models.webhook_delivery import WebhookDeliveryRecord
from bookings.services.dynamodb import DynamoDBService, get_dynamodb_service
from bookings.utils.logging import get_logger

logger = get_logger(__name__)

DELIVERIES_TABLE = "webhook-deliveries"


def compute_payload_hash(payload: bytes) -> str:
    """Compute SHA-256 hash of a raw webhook payload.

    Args:
        payload: Raw webhook payload bytes.

    Returns:
        Hex-encoded SHA-256 hash.
    """
    return hashlib.sha256(payload).hexdigest()


class IdempotencyLedger:
    """Records processed webhook deliveries."""

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self._db = db or get_dynamodb_service()

    def get(self, delivery_id: str) -> WebhookDeliveryRecord | None:
        """Get the recorded delivery, if any."""
        item = self._db.get_item(DELIVERIES_TABLE, {"delivery_id": delivery_id})
        return WebhookDeliveryRecord.from_item(item) if item else None

    def has_processed(self, delivery_id: str) -> bool:
        """Check if a delivery was already fully processed.

        Args:
            delivery_id: Provider delivery ID

        Returns:
            True if a terminal outcome is recorded for the delivery
        """
        record = self.get(delivery_id)
        return record is not None and record.is_terminal

    def record_processed(
        self,
        delivery_id: str,
        provider: Provider,
        event_type: str,
        result: ProcessingResult,
        duration_ms: int,
        *,
        payload_hash: str | None = None,
        booking_id: str | None = None,
        error_message: str | None = None,
    ) -> WebhookDeliveryRecord:
        """Record the outcome of a delivery for idempotency and audit trail.

        A failure overwrites any earlier failure for the same delivery, and a
        later success overwrites a recorded failure. A terminal record is
        never overwritten.

        Args:
            delivery_id: Provider delivery ID
            provider: Provider that sent the delivery
            event_type: Provider event type (invitee.created, etc.)
            result: Processing result
            duration_ms: Processing time in milliseconds
            payload_hash: SHA-256 hash of the raw payload
            booking_id: Associated booking ID (if any)
            error_message: Error message if processing failed

        Returns:
            The record as written
        """
        record = WebhookDeliveryRecord(
            delivery_id=delivery_id,
            provider=provider,
            event_type=event_type,
            received_at=dt.datetime.now(dt.UTC),
            processing_result=result,
            duration_ms=max(duration_ms, 0),
            payload_hash=payload_hash,
            booking_id=booking_id,
            error_message=error_message,
        )

        written = self._db.put_item(
            DELIVERIES_TABLE,
            record.to_item(),
            condition_expression=(
                "attribute_not_exists(delivery_id) OR processing_result = :failure"
            ),
            expression_attribute_values={":failure": ProcessingResult.FAILURE.value},
        )
        if not written:
            # A concurrent duplicate finished first; its record stands
            logger.info(
                "Delivery %s already recorded, keeping existing record", delivery_id
            )
            existing = self.get(delivery_id)
            if existing is not None:
                return existing
        return record
