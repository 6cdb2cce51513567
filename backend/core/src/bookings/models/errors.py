"""Error taxonomy for booking reconciliation.

Every failure the webhook pipeline can raise is a ReconciliationError
carrying an ErrorCode. The HTTP layer maps codes to status codes; the
pipeline itself only decides which class to raise:

- SignatureError: unauthenticated input, reject and never process
- EventValidationError: malformed handled event, reject with 400 and alert
- CorrelationError: event for an unknown booking, acknowledge and alert
- StoreError: transient infrastructure failure, let the provider retry
- RefundError: compensation failure, log and alert, never undo a cancellation
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes for reconciliation and the booking API."""

    # Signature errors
    SIGNATURE_MISSING = "ERR_SIG_001"
    SIGNATURE_MISMATCH = "ERR_SIG_002"
    SIGNATURE_REPLAYED = "ERR_SIG_003"
    SIGNATURE_MALFORMED = "ERR_SIG_004"
    SIGNATURE_NOT_CONFIGURED = "ERR_SIG_005"

    # Event errors
    INVALID_PAYLOAD = "ERR_EVT_001"
    BOOKING_NOT_CORRELATED = "ERR_EVT_002"

    # Booking errors
    BOOKING_NOT_FOUND = "ERR_BKG_001"
    BOOKING_NOT_PAYABLE = "ERR_BKG_002"

    # Infrastructure errors
    STORE_UNAVAILABLE = "ERR_STORE_001"
    STORE_CONFLICT = "ERR_STORE_002"
    PROCESSING_TIMEOUT = "ERR_STORE_003"

    # Provider errors
    REFUND_FAILED = "ERR_REFUND_001"
    STRIPE_API_ERROR = "ERR_STRIPE_001"
    CALENDLY_API_ERROR = "ERR_CALENDLY_001"


class SignatureFailure(str, Enum):
    """Why a webhook signature check failed."""

    MISSING_HEADER = "missing_header"
    MISMATCH = "mismatch"
    REPLAYED = "replayed"
    MALFORMED = "malformed"
    NOT_CONFIGURED = "not_configured"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.SIGNATURE_MISSING: "Webhook signature header is missing",
    ErrorCode.SIGNATURE_MISMATCH: "Webhook signature does not match payload",
    ErrorCode.SIGNATURE_REPLAYED: "Webhook signature timestamp is outside the freshness window",
    ErrorCode.SIGNATURE_MALFORMED: "Webhook signature header is malformed",
    ErrorCode.SIGNATURE_NOT_CONFIGURED: "Webhook signing key is not configured",
    ErrorCode.INVALID_PAYLOAD: "Webhook payload is missing required fields",
    ErrorCode.BOOKING_NOT_CORRELATED: "Event does not reference a known booking",
    ErrorCode.BOOKING_NOT_FOUND: "Booking not found",
    ErrorCode.BOOKING_NOT_PAYABLE: "Booking is not in a payable state",
    ErrorCode.STORE_UNAVAILABLE: "Booking store is temporarily unavailable",
    ErrorCode.STORE_CONFLICT: "Booking was modified concurrently",
    ErrorCode.PROCESSING_TIMEOUT: "Webhook processing timed out",
    ErrorCode.REFUND_FAILED: "Refund could not be issued",
    ErrorCode.STRIPE_API_ERROR: "Stripe API error occurred",
    ErrorCode.CALENDLY_API_ERROR: "Calendly API error occurred",
}

ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.SIGNATURE_MISSING: "Send the provider signature header",
    ErrorCode.SIGNATURE_MISMATCH: "Verify webhook secret configuration",
    ErrorCode.SIGNATURE_REPLAYED: "Check clock skew between provider and server",
    ErrorCode.SIGNATURE_MALFORMED: "Send the signature as t=<timestamp>,v1=<digest>",
    ErrorCode.SIGNATURE_NOT_CONFIGURED: "Store the signing key in SSM Parameter Store",
    ErrorCode.INVALID_PAYLOAD: "Inspect the delivery and reconcile the booking manually",
    ErrorCode.BOOKING_NOT_CORRELATED: "Check tracking metadata on the scheduling link",
    ErrorCode.BOOKING_NOT_FOUND: "Verify the booking ID",
    ErrorCode.BOOKING_NOT_PAYABLE: "Only pending, unpaid bookings can be paid",
    ErrorCode.STORE_UNAVAILABLE: "Retry the delivery later",
    ErrorCode.STORE_CONFLICT: "Retry the delivery later",
    ErrorCode.PROCESSING_TIMEOUT: "Retry the delivery later",
    ErrorCode.REFUND_FAILED: "Issue the refund manually from the Stripe dashboard",
    ErrorCode.STRIPE_API_ERROR: "Try again or contact support",
    ErrorCode.CALENDLY_API_ERROR: "Check the Calendly API token",
}

_SIGNATURE_CODES: dict[SignatureFailure, ErrorCode] = {
    SignatureFailure.MISSING_HEADER: ErrorCode.SIGNATURE_MISSING,
    SignatureFailure.MISMATCH: ErrorCode.SIGNATURE_MISMATCH,
    SignatureFailure.REPLAYED: ErrorCode.SIGNATURE_REPLAYED,
    SignatureFailure.MALFORMED: ErrorCode.SIGNATURE_MALFORMED,
    SignatureFailure.NOT_CONFIGURED: ErrorCode.SIGNATURE_NOT_CONFIGURED,
}


class ErrorResponse(BaseModel):
    """Standard JSON error body returned by the API."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, Any]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class ReconciliationError(Exception):
    """Base exception for the reconciliation pipeline."""

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse body."""
        return ErrorResponse.from_code(self.code, self.details)


class SignatureError(ReconciliationError):
    """Webhook authenticity could not be established."""

    def __init__(
        self,
        reason: SignatureFailure,
        details: Optional[dict[str, Any]] = None,
    ):
        self.reason = reason
        super().__init__(_SIGNATURE_CODES[reason], details)


class EventValidationError(ReconciliationError):
    """A handled event is missing fields required to process it."""

    def __init__(self, details: Optional[dict[str, Any]] = None):
        super().__init__(ErrorCode.INVALID_PAYLOAD, details)


class CorrelationError(ReconciliationError):
    """An event references a booking that does not exist."""

    def __init__(self, details: Optional[dict[str, Any]] = None):
        super().__init__(ErrorCode.BOOKING_NOT_CORRELATED, details)


class StoreError(ReconciliationError):
    """Transient failure talking to the booking store."""

    def __init__(
        self,
        details: Optional[dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.STORE_UNAVAILABLE,
    ):
        super().__init__(code, details)


class DuplicateBookingError(StoreError):
    """A booking with the same external event id or correlation key exists."""

    def __init__(self, details: Optional[dict[str, Any]] = None):
        super().__init__(details, code=ErrorCode.STORE_CONFLICT)


class ProcessingTimeoutError(StoreError):
    """Webhook processing exceeded its time budget."""

    def __init__(self, details: Optional[dict[str, Any]] = None):
        super().__init__(details, code=ErrorCode.PROCESSING_TIMEOUT)


class RefundError(ReconciliationError):
    """The payment provider refused or failed to issue a refund."""

    def __init__(
        self,
        details: Optional[dict[str, Any]] = None,
        stripe_error_code: Optional[str] = None,
    ):
        self.stripe_error_code = stripe_error_code
        super().__init__(ErrorCode.REFUND_FAILED, details)


class BookingNotFoundError(ReconciliationError):
    """Requested booking does not exist."""

    def __init__(self, booking_id: str):
        super().__init__(ErrorCode.BOOKING_NOT_FOUND, {"booking_id": booking_id})


# Stripe error codes that indicate a retry may succeed
STRIPE_RETRYABLE_ERRORS: set[str] = {
    "processing_error",
    "rate_limit",
    "lock_timeout",
    "api_connection_error",
}


def is_stripe_error_retryable(stripe_error_code: Optional[str]) -> bool:
    """Check if a Stripe error is likely transient and retryable.

    Args:
        stripe_error_code: The Stripe error code.

    Returns:
        True if the error may be resolved by retrying.
    """
    return stripe_error_code in STRIPE_RETRYABLE_ERRORS if stripe_error_code else False


class BookingNotPayableError(ReconciliationError):
    """Checkout requested for a booking that cannot take a payment."""

    def __init__(self, booking_id: str, details: Optional[dict[str, Any]] = None):
        super().__init__(ErrorCode.BOOKING_NOT_PAYABLE, {"booking_id": booking_id, **(details or {})})


class PaymentProviderError(ReconciliationError):
    """Stripe rejected or failed an outbound request."""

    def __init__(
        self,
        details: Optional[dict[str, Any]] = None,
        stripe_error_code: Optional[str] = None,
    ):
        self.stripe_error_code = stripe_error_code
        super().__init__(ErrorCode.STRIPE_API_ERROR, details)
