"""Pydantic models for bookings, webhook deliveries and normalized events."""

from .booking import Booking
from .enums import (
    BookingStatus,
    CancelledBy,
    EventKind,
    PaymentStatus,
    ProcessingResult,
    Provider,
    RefundPolicy,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    BookingNotFoundError,
    BookingNotPayableError,
    CorrelationError,
    DuplicateBookingError,
    ErrorCode,
    ErrorResponse,
    EventValidationError,
    PaymentProviderError,
    ProcessingTimeoutError,
    ReconciliationError,
    RefundError,
    SignatureError,
    SignatureFailure,
    StoreError,
)
from .events import (
    CalendlyWebhook,
    NormalizedEvent,
    PaymentDetails,
    SchedulingDetails,
    StripeWebhook,
)
from .webhook_delivery import WebhookDeliveryRecord

__all__ = [
    # Enums
    "BookingStatus",
    "CancelledBy",
    "EventKind",
    "PaymentStatus",
    "ProcessingResult",
    "Provider",
    "RefundPolicy",
    # Entities
    "Booking",
    "WebhookDeliveryRecord",
    # Events
    "CalendlyWebhook",
    "NormalizedEvent",
    "PaymentDetails",
    "SchedulingDetails",
    "StripeWebhook",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "BookingNotFoundError",
    "BookingNotPayableError",
    "CorrelationError",
    "DuplicateBookingError",
    "ErrorCode",
    "ErrorResponse",
    "EventValidationError",
    "PaymentProviderError",
    "ProcessingTimeoutError",
    "ReconciliationError",
    "RefundError",
    "SignatureError",
    "SignatureFailure",
    "StoreError",
]
