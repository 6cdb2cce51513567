"""Webhook endpoints for the scheduling and payment providers.

Provides endpoints for:
- Calendly invitee events (POST /webhooks/scheduling)
- Stripe checkout and payment intent events (POST /webhooks/payment)

These endpoints do NOT require authentication as they receive signed
payloads; the signature is verified on the raw body before parsing.

Processing runs in the threadpool (boto3 and Stripe are blocking) and is
bounded by WEBHOOK_PROCESSING_TIMEOUT_SECONDS; a timeout answers 503 so the
provider redelivers. The worker thread is not cancelled on timeout and may
still commit the booking change and record the delivery. The redelivery is
then answered from the delivery ledger, or it finds the booking already
changed and its conditional write becomes a no-op.
"""

import asyncio

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from bookings.config import get_settings
from bookings.models.enums import Provider
from bookings.models.errors import ErrorResponse, ProcessingTimeoutError
from bookings.services.signatures import CALENDLY_SIGNATURE_HEADER, STRIPE_SIGNATURE_HEADER
from bookings.services.webhook_handler import WebhookHandler
from bookings.utils.logging import get_logger
from bookings_api.dependencies import get_webhook_handler
from bookings_api.models.webhooks import WebhookResponse

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

WEBHOOK_RESPONSES: dict[int | str, dict] = {
    200: {"description": "Delivery processed or acknowledged", "model": WebhookResponse},
    400: {"description": "Handled event is malformed or incomplete", "model": ErrorResponse},
    401: {"description": "Signature missing, invalid or stale", "model": ErrorResponse},
    503: {"description": "Transient failure or timeout; provider should retry", "model": ErrorResponse},
}


async def _process(
    provider: Provider,
    request: Request,
    signature_header: str,
    handler: WebhookHandler,
) -> WebhookResponse:
    raw_body = await request.body()
    signature = request.headers.get(signature_header)
    timeout = get_settings().processing_timeout_seconds

    try:
        result = await asyncio.wait_for(
            run_in_threadpool(handler.handle, provider, raw_body, signature),
            timeout=timeout,
        )
    except TimeoutError as e:
        logger.error("%s webhook processing exceeded %.1fs", provider.value, timeout)
        raise ProcessingTimeoutError({"timeout_seconds": timeout}) from e

    return WebhookResponse.from_result(result)


@router.post(
    "/webhooks/scheduling",
    summary="Receive Calendly webhook events",
    description="""
Endpoint for Calendly webhook events. Handles:
- invitee.created: creates the booking (idempotent upsert)
- invitee.rescheduled: updates the session times
- invitee.canceled: cancels the booking and refunds a paid booking per policy

**No authentication required** - signature is verified using the
`Calendly-Webhook-Signature` header.

**Idempotent**: redelivered events return 200 with 'duplicate' result.
""",
    response_model=WebhookResponse,
    responses=WEBHOOK_RESPONSES,
)
async def handle_scheduling_webhook(
    request: Request,
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse:
    """Handle incoming Calendly webhook events."""
    return await _process(Provider.CALENDLY, request, CALENDLY_SIGNATURE_HEADER, handler)


@router.post(
    "/webhooks/payment",
    summary="Receive Stripe webhook events",
    description="""
Endpoint for Stripe webhook events. Handles:
- checkout.session.completed (paid) and checkout.session.async_payment_succeeded:
  marks the booking PAID
- checkout.session.async_payment_failed and payment_intent.payment_failed:
  marks the booking's payment FAILED

**No authentication required** - signature is verified using the
`Stripe-Signature` header.

**Idempotent**: duplicate events (same event id) return 200 with 'duplicate' result.
""",
    response_model=WebhookResponse,
    responses=WEBHOOK_RESPONSES,
)
async def handle_payment_webhook(
    request: Request,
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse:
    """Handle incoming Stripe webhook events."""
    return await _process(Provider.STRIPE, request, STRIPE_SIGNATURE_HEADER, handler)
