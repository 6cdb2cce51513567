"""API-specific request/response models.

Domain models (Booking, WebhookDeliveryRecord, ...) are in bookings.models
and are reused here where appropriate.

Modules:
- webhooks: webhook acknowledgement bodies
- bookings: booking read, checkout and scheduling link models
"""

__all__: list[str] = []
