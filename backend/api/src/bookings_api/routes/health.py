"""Health check endpoint."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from bookings.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness check")
async def health() -> dict[str, Any]:
    """Report that the process is up. Does not touch DynamoDB or Stripe."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "booking-reconciler",
        "environment": get_settings().environment,
    }
