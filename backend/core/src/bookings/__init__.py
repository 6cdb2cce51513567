"""Booking reconciliation core: models, services and logging utilities."""
