"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for request tracing
- Structured logging formatter for consistent log output
- Helpers for webhook and refund logging
- Operator alerts for conditions that need a human

Usage:
    from bookings.utils.logging import get_logger, set_correlation_id

    # In middleware/request handler:
    set_correlation_id(request.headers.get("X-Correlation-ID"))

    # In service code:
    logger = get_logger(__name__)
    logger.info("Processing delivery", extra={"delivery_id": "evt_123"})
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for correlation ID - thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

ALERT_LOGGER_NAME = "bookings.alerts"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current request context.

    Args:
        correlation_id: Optional existing correlation ID. If None, generates new one.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter for structured log output with correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"

        base = super().format(record)

        # Prefix for easy grep/filtering
        return f"[{record.correlation_id}] {base}"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())

    return logger


def configure_logging(level: int = logging.INFO) -> None:
    """Install the structured formatter on the root logger.

    Safe to call more than once; an existing structured handler is reused.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if isinstance(handler.formatter, StructuredFormatter):
            return

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(
        StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root.addHandler(handler)


def _render(prefix: str, context: dict[str, Any], skip: tuple[str, ...] = ()) -> str:
    parts = [prefix]
    for key, value in context.items():
        if key not in skip:
            parts.append(f"{key}={value}")
    return " | ".join(parts)


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    delivery_id: str,
    *,
    provider: str | None = None,
    booking_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a webhook delivery with structured context.

    Args:
        logger: Logger instance
        event_type: Provider event type (e.g., "invitee.created")
        delivery_id: Provider delivery ID
        provider: "calendly" or "stripe"
        booking_id: Associated booking ID if known
        result: Processing result (success, duplicate, skipped, uncorrelated, failure)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "event_type": event_type,
        "delivery_id": delivery_id,
    }

    if provider:
        context["provider"] = provider
    if booking_id:
        context["booking_id"] = booking_id
    if result:
        context["result"] = result
    if error:
        context["error"] = error

    context.update(extra)

    message = _render(
        f"Webhook event: {event_type} ({delivery_id})",
        context,
        skip=("event_type", "delivery_id"),
    )

    if result == "failure":
        logger.error(message, extra=context)
    elif result in ("duplicate", "skipped", "uncorrelated"):
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_refund_operation(
    logger: logging.Logger,
    operation: str,
    *,
    booking_id: str,
    amount: int | None = None,
    policy: str | None = None,
    refund_id: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a refund operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "refund_issued", "refund_skipped")
        booking_id: Booking being refunded
        amount: Refund amount in cents if relevant
        policy: Refund policy tier applied
        refund_id: Stripe refund ID on success
        error: Error message if the operation failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation, "booking_id": booking_id}

    if amount is not None:
        context["amount"] = amount
    if policy:
        context["policy"] = policy
    if refund_id:
        context["refund_id"] = refund_id
    if error:
        context["error"] = error

    context.update(extra)

    message = _render(f"Refund operation: {operation}", context, skip=("operation",))

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def alert_operator(
    message: str,
    *,
    level: int = logging.WARNING,
    **context: Any,
) -> None:
    """Emit an operator-visible alert on the dedicated alerts logger.

    Log shipping routes the ``bookings.alerts`` logger to the on-call channel.

    Args:
        message: What needs attention
        level: logging level (WARNING or ERROR)
        **context: Identifiers needed to investigate (delivery_id, booking_id, ...)
    """
    logger = get_logger(ALERT_LOGGER_NAME)
    extra = {"operator_alert": True, **context}
    logger.log(level, _render(message, context), extra=extra)
