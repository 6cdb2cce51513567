"""FastAPI application for the booking reconciliation service.

This package provides REST endpoints for:
- Health checks
- Calendly and Stripe webhooks
- Booking reads and checkout

Deployed behind API Gateway as a Lambda (Mangum) or run locally with uvicorn.
"""

import logging

from fastapi import FastAPI
from mangum import Mangum

from bookings.utils.logging import configure_logging
from bookings_api.exceptions import register_exception_handlers
from bookings_api.middleware.correlation import CorrelationIdMiddleware
from bookings_api.routes import bookings_router, health_router, webhooks_router

configure_logging(logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Booking Reconciliation API",
    description="Reconciles Calendly and Stripe webhooks into booking records",
    version="0.1.0",
)

app.add_middleware(CorrelationIdMiddleware)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

app.include_router(health_router)
app.include_router(webhooks_router)
app.include_router(bookings_router)


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "bookings_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["backend/api/src", "backend/core/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
