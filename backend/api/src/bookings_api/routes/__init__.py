"""API routes package.

Routers are organized by concern:

- health: Liveness check
- webhooks: Calendly (scheduling) and Stripe (payment) webhook endpoints
- bookings: Booking read API and checkout

All routers are registered in main.py.
"""

from bookings_api.routes.bookings import router as bookings_router
from bookings_api.routes.health import router as health_router
from bookings_api.routes.webhooks import router as webhooks_router

__all__ = [
    "bookings_router",
    "health_router",
    "webhooks_router",
]
