"""FastAPI dependency injection providers for core services.

Services are built lazily and cached with @lru_cache, so one instance of
each lives per process (one per warm Lambda container).

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── BookingStore
        │       ├── BookingReconciler ── RefundTrigger ── StripeService
        │       └── CheckoutService ── StripeService
        └── IdempotencyLedger
    WebhookHandler = IdempotencyLedger + EventNormalizer + BookingReconciler + SSMService
    CalendlyClient (token from SSMService)

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from bookings.config import get_settings
from bookings.services.booking_store import BookingStore
from bookings.services.calendly_client import CalendlyClient
from bookings.services.checkout_service import CheckoutService
from bookings.services.dynamodb import get_dynamodb_service
from bookings.services.idempotency_ledger import IdempotencyLedger
from bookings.services.normalizer import EventNormalizer
from bookings.services.reconciler import BookingReconciler
from bookings.services.refund_policy_service import RefundPolicyService
from bookings.services.refund_service import RefundTrigger
from bookings.services.ssm_service import get_ssm_service
from bookings.services.stripe_service import get_stripe_service
from bookings.services.webhook_handler import WebhookHandler


@lru_cache
def get_booking_store() -> BookingStore:
    """Get cached BookingStore instance."""
    return BookingStore(db=get_dynamodb_service())


@lru_cache
def get_idempotency_ledger() -> IdempotencyLedger:
    """Get cached IdempotencyLedger instance."""
    return IdempotencyLedger(db=get_dynamodb_service())


@lru_cache
def get_refund_trigger() -> RefundTrigger:
    """Get cached RefundTrigger instance."""
    return RefundTrigger(
        stripe_service=get_stripe_service(),
        policy_service=RefundPolicyService(get_settings().refund_policy),
    )


@lru_cache
def get_reconciler() -> BookingReconciler:
    """Get cached BookingReconciler instance."""
    return BookingReconciler(
        store=get_booking_store(),
        refund_trigger=get_refund_trigger(),
        settings=get_settings(),
    )


@lru_cache
def get_webhook_handler() -> WebhookHandler:
    """Get cached WebhookHandler instance."""
    return WebhookHandler(
        ledger=get_idempotency_ledger(),
        normalizer=EventNormalizer(),
        reconciler=get_reconciler(),
        ssm=get_ssm_service(),
        settings=get_settings(),
    )


@lru_cache
def get_checkout_service() -> CheckoutService:
    """Get cached CheckoutService instance."""
    return CheckoutService(
        store=get_booking_store(),
        stripe_service=get_stripe_service(),
        settings=get_settings(),
    )


@lru_cache
def get_calendly_client() -> CalendlyClient:
    """Get cached CalendlyClient instance (token read from SSM)."""
    return CalendlyClient(settings=get_settings())


def reset_services() -> None:
    """Clear all cached service instances.

    Also resets the process-wide settings, DynamoDB, SSM and Stripe
    singletons so tests can rebuild them inside a mock_aws context.
    """
    from bookings.services.dynamodb import reset_dynamodb_service
    from bookings.services.ssm_service import reset_ssm_service

    get_booking_store.cache_clear()
    get_idempotency_ledger.cache_clear()
    get_refund_trigger.cache_clear()
    get_reconciler.cache_clear()
    get_webhook_handler.cache_clear()
    get_checkout_service.cache_clear()
    get_calendly_client.cache_clear()

    get_stripe_service.cache_clear()
    get_settings.cache_clear()
    reset_ssm_service()
    reset_dynamodb_service()
