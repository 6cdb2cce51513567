"""Enumeration types for booking and webhook data models."""

from enum import Enum


class BookingStatus(str, Enum):
    """Lifecycle status of a booking (scheduling axis)."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Payment status of a booking (payment axis)."""

    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class CancelledBy(str, Enum):
    """Actor that cancelled a booking."""

    CLIENT = "CLIENT"
    BUILDER = "BUILDER"
    SYSTEM = "SYSTEM"


class Provider(str, Enum):
    """External webhook providers."""

    CALENDLY = "calendly"
    STRIPE = "stripe"


class EventKind(str, Enum):
    """Internal event vocabulary produced by the normalizer."""

    INVITEE_CREATED = "INVITEE_CREATED"
    INVITEE_CANCELED = "INVITEE_CANCELED"
    INVITEE_RESCHEDULED = "INVITEE_RESCHEDULED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    UNHANDLED = "UNHANDLED"


class ProcessingResult(str, Enum):
    """Outcome recorded for a webhook delivery."""

    SUCCESS = "success"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    UNCORRELATED = "uncorrelated"
    FAILURE = "failure"


class RefundPolicy(str, Enum):
    """Refund tier applied to a cancelled, paid booking."""

    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"
