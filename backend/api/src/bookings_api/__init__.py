"""HTTP layer for booking reconciliation: webhook endpoints and booking read API."""
