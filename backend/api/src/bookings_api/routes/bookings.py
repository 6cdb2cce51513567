"""Booking endpoints.

Provides REST endpoints for:
- Retrieving a booking by ID
- Listing bookings for a session type
- Starting a Stripe checkout for an existing booking
- Creating Calendly scheduling links that carry a booking reference
"""

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool
from starlette.status import HTTP_201_CREATED

from bookings.models.errors import BookingNotFoundError, ErrorResponse
from bookings.services.booking_store import BookingStore
from bookings.services.calendly_client import CalendlyClient, new_correlation_key
from bookings.services.checkout_service import CheckoutService
from bookings_api.dependencies import (
    get_booking_store,
    get_calendly_client,
    get_checkout_service,
)
from bookings_api.models.bookings import (
    BookingListResponse,
    BookingResponse,
    CheckoutRequest,
    CheckoutResponse,
    SchedulingLinkRequest,
    SchedulingLinkResponse,
)

router = APIRouter(tags=["bookings"])


@router.get(
    "/bookings/{booking_id}",
    summary="Get booking",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found", "model": ErrorResponse}},
)
async def get_booking(
    booking_id: str,
    store: BookingStore = Depends(get_booking_store),
) -> BookingResponse:
    """Get a booking by its internal ID."""
    booking = await run_in_threadpool(store.get, booking_id)
    if booking is None:
        raise BookingNotFoundError(booking_id)
    return BookingResponse.from_booking(booking)


@router.get(
    "/session-types/{session_type_id}/bookings",
    summary="List bookings for a session type",
    response_model=BookingListResponse,
)
async def list_session_type_bookings(
    session_type_id: str,
    store: BookingStore = Depends(get_booking_store),
) -> BookingListResponse:
    """List bookings of a session type, ordered by start time."""
    bookings = await run_in_threadpool(store.list_for_session_type, session_type_id)
    return BookingListResponse(
        session_type_id=session_type_id,
        bookings=[BookingResponse.from_booking(b) for b in bookings],
        count=len(bookings),
    )


@router.post(
    "/bookings/{booking_id}/checkout",
    summary="Start checkout",
    description="""
Create a Stripe Checkout session for an existing booking.

The session's client_reference_id is the booking's correlation key, so the
payment webhook finds the booking. Only bookings that are not cancelled
and not yet paid can be checked out.
""",
    response_model=CheckoutResponse,
    status_code=HTTP_201_CREATED,
    responses={
        404: {"description": "Booking not found", "model": ErrorResponse},
        409: {"description": "Booking is cancelled or already paid", "model": ErrorResponse},
        502: {"description": "Stripe rejected the request", "model": ErrorResponse},
    },
)
async def create_checkout(
    booking_id: str,
    body: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutResponse:
    """Create a checkout session and attach it to the booking."""
    checkout = await run_in_threadpool(
        lambda: service.create_checkout(
            booking_id,
            amount_cents=body.amount_cents,
            description=body.description,
            success_url=body.success_url,
            cancel_url=body.cancel_url,
            currency=body.currency,
            customer_email=body.customer_email,
        )
    )
    booking = checkout.booking
    return CheckoutResponse(
        booking_id=booking.booking_id,
        session_id=checkout.session_id,
        checkout_url=checkout.checkout_url,
        amount_cents=booking.amount or body.amount_cents,
        currency=booking.currency or "",
    )


@router.post(
    "/session-types/{session_type_id}/scheduling-links",
    summary="Create scheduling link",
    description="""
Build a Calendly scheduling link for a session type.

The link's utm_content carries a booking reference (booking_ref), which the
invitee.created webhook uses to create the booking. No booking exists until
the client actually schedules.
""",
    response_model=SchedulingLinkResponse,
    status_code=HTTP_201_CREATED,
    responses={502: {"description": "Calendly rejected the request", "model": ErrorResponse}},
)
async def create_scheduling_link(
    session_type_id: str,
    body: SchedulingLinkRequest,
    client: CalendlyClient = Depends(get_calendly_client),
) -> SchedulingLinkResponse:
    """Create a tracked scheduling link for a session type."""
    correlation_key = body.correlation_key or new_correlation_key()
    event_type, link = await run_in_threadpool(
        lambda: client.scheduling_link_for_event_type(
            body.event_type_uuid,
            correlation_key,
            session_type_id=session_type_id,
            client_id=body.client_id,
            builder_id=body.builder_id,
        )
    )
    return SchedulingLinkResponse(
        correlation_key=correlation_key,
        scheduling_url=link,
        event_type_name=event_type.name,
    )
