"""Backend services for booking reconciliation."""

from .booking_store import BookingStore
from .calendly_client import CalendlyAPIError, CalendlyClient
from .checkout_service import CheckoutService
from .dynamodb import DynamoDBService
from .idempotency_ledger import IdempotencyLedger
from .normalizer import EventNormalizer
from .reconciler import BookingReconciler
from .refund_policy_service import RefundPolicyService
from .refund_service import RefundResult, RefundTrigger
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .stripe_service import StripeService, StripeServiceError, get_stripe_service
from .webhook_handler import WebhookHandler, WebhookResult

__all__ = [
    "DynamoDBService",
    "BookingStore",
    "BookingReconciler",
    "CalendlyAPIError",
    "CalendlyClient",
    "CheckoutService",
    "EventNormalizer",
    "IdempotencyLedger",
    "RefundPolicyService",
    "RefundResult",
    "RefundTrigger",
    "SSMService",
    "SSMServiceError",
    "get_ssm_service",
    "StripeService",
    "StripeServiceError",
    "get_stripe_service",
    "WebhookHandler",
    "WebhookResult",
]
