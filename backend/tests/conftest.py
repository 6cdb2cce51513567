"""Pytest configuration and fixtures for the booking reconciliation tests.

This module provides reusable fixtures for testing:
- DynamoDB and SSM mocking with moto
- Booking store, ledger and a mocked Stripe service
- Builders for Calendly and Stripe webhook bodies and signature headers
"""

import datetime as dt
import json
import os
import uuid
from collections.abc import Callable
from typing import Any, Generator
from unittest.mock import MagicMock, patch

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ["ENVIRONMENT"] = "test"
os.environ["DYNAMODB_TABLE_PREFIX"] = "test-bookings"
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from bookings.models.booking import Booking  # noqa: E402
from bookings.models.enums import BookingStatus, PaymentStatus  # noqa: E402
from bookings.services.booking_store import BookingStore, new_booking_id  # noqa: E402
from bookings.services.dynamodb import DynamoDBService  # noqa: E402
from bookings.services.idempotency_ledger import IdempotencyLedger  # noqa: E402
from bookings.services.schema import create_tables  # noqa: E402
from bookings.services.signatures import build_signature_header  # noqa: E402
from bookings.services.stripe_service import StripeService  # noqa: E402

TABLE_PREFIX = "test-bookings"
CALENDLY_SIGNING_KEY = "calendly_signing_key_for_tests"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret_for_testing"

SSM_PARAMETERS = {
    "/bookings/test/calendly/webhook_signing_key": CALENDLY_SIGNING_KEY,
    "/bookings/test/calendly/api_token": "calendly_pat_test",
    "/bookings/test/stripe/webhook_secret": STRIPE_WEBHOOK_SECRET,
    "/bookings/test/stripe/secret_key": "sk_test_abc123xyz",
}


# === Singleton Reset ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached services before and after each test.

    Services built inside one test's mock_aws context must not leak into
    the next test.
    """
    from bookings_api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


# === AWS Fixtures ===


@pytest.fixture
def aws() -> Generator[None, None, None]:
    """Mocked DynamoDB tables and SSM secrets."""
    with mock_aws():
        create_tables(boto3.client("dynamodb"), TABLE_PREFIX)
        ssm = boto3.client("ssm")
        for name, value in SSM_PARAMETERS.items():
            ssm.put_parameter(Name=name, Value=value, Type="SecureString")
        yield


@pytest.fixture
def db(aws: None) -> DynamoDBService:
    return DynamoDBService()


@pytest.fixture
def store(db: DynamoDBService) -> BookingStore:
    return BookingStore(db)


@pytest.fixture
def ledger(db: DynamoDBService) -> IdempotencyLedger:
    return IdempotencyLedger(db)


@pytest.fixture
def mock_stripe() -> MagicMock:
    """StripeService double that issues refunds successfully."""
    service = MagicMock(spec=StripeService)
    service.create_refund.side_effect = lambda **kwargs: {
        "refund_id": "re_test_123",
        "amount": kwargs.get("amount_cents") or 15000,
        "status": "succeeded",
    }
    service.retrieve_checkout_session.return_value = {
        "session_id": "cs_test_abc123",
        "payment_intent_id": "pi_test_abc123",
        "payment_status": "paid",
        "amount_total": 15000,
    }
    service.create_checkout_session.return_value = {
        "session_id": "cs_test_abc123",
        "checkout_url": "https://checkout.stripe.com/c/pay/cs_test_abc123",
        "expires_at": dt.datetime.now(dt.UTC) + dt.timedelta(minutes=30),
    }
    return service


# === Time Helpers ===


@pytest.fixture
def session_start() -> dt.datetime:
    """10:00 UTC three days from now, well beyond every refund notice window."""
    day = dt.datetime.now(dt.UTC) + dt.timedelta(days=3)
    return day.replace(hour=10, minute=0, second=0, microsecond=0)


# === Data Builders ===


@pytest.fixture
def make_booking(session_start: dt.datetime) -> Callable[..., Booking]:
    """Build an unsaved Booking; keyword arguments override defaults."""

    def _make(**overrides: Any) -> Booking:
        now = dt.datetime.now(dt.UTC)
        data: dict[str, Any] = {
            "booking_id": new_booking_id(),
            "correlation_key": "bk-1",
            "external_event_id": f"EVT-{uuid.uuid4().hex[:12]}",
            "builder_id": "builder-1",
            "client_id": "client-1",
            "session_type_id": "st-1",
            "start_time": session_start,
            "end_time": session_start + dt.timedelta(hours=1),
            "status": BookingStatus.PENDING,
            "payment_status": PaymentStatus.PENDING,
            "currency": "USD",
            "created_at": now,
            "updated_at": now,
        }
        data.update(overrides)
        return Booking(**data)

    return _make


@pytest.fixture
def calendly_body(session_start: dt.datetime) -> Callable[..., dict[str, Any]]:
    """Build a Calendly webhook body."""

    def _make(
        event: str = "invitee.created",
        *,
        event_uuid: str = "EVT-bk-1",
        utm_content: str | None = "bk-1",
        start: dt.datetime | None = None,
        end: dt.datetime | None = None,
        status: str = "active",
        canceler_type: str | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        start = start or session_start
        end = end or start + dt.timedelta(hours=1)
        payload: dict[str, Any] = {
            "event_type": {
                "uuid": "ET-1",
                "uri": "https://api.calendly.com/event_types/ET-1",
                "name": "AI strategy session",
            },
            "event": {
                "uuid": event_uuid,
                "uri": f"https://api.calendly.com/scheduled_events/{event_uuid}",
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
                "status": status,
            },
            "invitee": {
                "uuid": "INV-1",
                "uri": f"https://api.calendly.com/scheduled_events/{event_uuid}/invitees/INV-1",
                "email": "client@example.com",
                "name": "Client One",
                "timezone": "Europe/Berlin",
            },
            "tracking": {"utm_source": "buildappswith", "utm_content": utm_content},
            "questions_and_answers": [],
        }
        if event == "invitee.canceled":
            payload["event"]["status"] = "canceled"
            payload["cancellation"] = {
                "canceled_by": "Client One",
                "reason": reason,
                "canceler_type": canceler_type or "invitee",
            }
        return {
            "event": event,
            "created_at": dt.datetime.now(dt.UTC).isoformat(),
            "payload": payload,
        }

    return _make


@pytest.fixture
def stripe_body() -> Callable[..., dict[str, Any]]:
    """Build a Stripe event body."""

    def _make(
        event_type: str = "checkout.session.completed",
        *,
        event_id: str | None = None,
        client_reference_id: str | None = "bk-1",
        session_id: str = "cs_test_abc123",
        payment_status: str = "paid",
        amount_total: int = 15000,
    ) -> dict[str, Any]:
        if event_type == "payment_intent.payment_failed":
            obj: dict[str, Any] = {
                "id": "pi_test_abc123",
                "object": "payment_intent",
                "amount": amount_total,
                "currency": "usd",
                "metadata": {"booking_ref": client_reference_id} if client_reference_id else {},
                "last_payment_error": {"code": "card_declined", "message": "Your card was declined."},
            }
        else:
            obj = {
                "id": session_id,
                "object": "checkout.session",
                "client_reference_id": client_reference_id,
                "payment_status": payment_status,
                "payment_intent": "pi_test_abc123",
                "amount_total": amount_total,
                "currency": "usd",
                "metadata": {},
            }
        return {
            "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "created": int(dt.datetime.now(dt.UTC).timestamp()),
            "data": {"object": obj},
        }

    return _make


def encode(body: dict[str, Any]) -> bytes:
    return json.dumps(body, separators=(",", ":")).encode()


@pytest.fixture
def signed() -> Callable[..., tuple[bytes, str]]:
    """Encode a body and sign it: returns (raw_body, signature_header)."""

    def _sign(body: dict[str, Any], secret: str, timestamp: int | None = None) -> tuple[bytes, str]:
        raw = encode(body)
        return raw, build_signature_header(raw, secret, timestamp)

    return _sign


# === API Client ===


@pytest.fixture
def api_client(aws: None, mock_stripe: MagicMock) -> Generator[TestClient, None, None]:
    """TestClient on mocked AWS with Stripe replaced by mock_stripe."""
    from bookings_api.main import app

    with patch("bookings_api.dependencies.get_stripe_service", return_value=mock_stripe):
        with TestClient(app) as client:
            yield client
    app.dependency_overrides.clear()
