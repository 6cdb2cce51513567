"""FastAPI exception handlers for converting ReconciliationError to HTTP responses.

The ErrorCode-to-HTTP status mapping decides whether a webhook provider
retries a delivery:
- 400 Bad Request: malformed or incomplete handled event (not retried by us)
- 401 Unauthorized: signature missing, wrong, stale or unverifiable
- 404 Not Found: unknown booking (read API)
- 409 Conflict: booking not payable (checkout)
- 502 Bad Gateway: payment or scheduling provider failure (checkout)
- 503 Service Unavailable: store failure or processing timeout (provider retries)

Usage:
    from bookings_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from bookings.models.errors import ErrorCode, ReconciliationError
from bookings.utils.logging import get_logger

logger = get_logger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Signature errors -> 401 Unauthorized
    ErrorCode.SIGNATURE_MISSING: HTTP_401_UNAUTHORIZED,
    ErrorCode.SIGNATURE_MISMATCH: HTTP_401_UNAUTHORIZED,
    ErrorCode.SIGNATURE_REPLAYED: HTTP_401_UNAUTHORIZED,
    ErrorCode.SIGNATURE_MALFORMED: HTTP_401_UNAUTHORIZED,
    ErrorCode.SIGNATURE_NOT_CONFIGURED: HTTP_401_UNAUTHORIZED,
    # Event validation -> 400 Bad Request
    ErrorCode.INVALID_PAYLOAD: HTTP_400_BAD_REQUEST,
    # Read API
    ErrorCode.BOOKING_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.BOOKING_NOT_PAYABLE: HTTP_409_CONFLICT,
    # Transient infrastructure -> 503 so providers retry
    ErrorCode.STORE_UNAVAILABLE: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.STORE_CONFLICT: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.PROCESSING_TIMEOUT: HTTP_503_SERVICE_UNAVAILABLE,
    # Outbound provider calls
    ErrorCode.STRIPE_API_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.CALENDLY_API_ERROR: HTTP_502_BAD_GATEWAY,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode.

    Codes that should never reach HTTP (correlation, refund) map to 500.
    """
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_500_INTERNAL_SERVER_ERROR)


async def reconciliation_error_handler(
    request: Request, exc: ReconciliationError
) -> JSONResponse:
    """Convert a ReconciliationError into the standard JSON error body."""
    status_code = get_http_status_for_error(exc.code)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "%s %s failed with %s: %s",
            request.method,
            request.url.path,
            exc.code.value,
            exc.details,
        )
    else:
        logger.warning(
            "%s %s rejected with %s", request.method, request.url.path, exc.code.value
        )

    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with a generic 500 response.

    Internal details are logged, never returned to the caller.
    """
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)

    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL",
            "message": "An unexpected error occurred",
            "recovery": "Retry the request later",
            "details": None,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(ReconciliationError, reconciliation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
