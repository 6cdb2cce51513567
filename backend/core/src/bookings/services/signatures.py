"""Webhook signature verification for Calendly and Stripe.

Both providers sign deliveries with the same scheme: the signature header
is ``t=<unix timestamp>,v1=<hex digest>[,v1=<hex digest>...]`` where the
digest is HMAC-SHA256 over ``"<t>.<raw body>"`` with the endpoint's signing
key. Verification runs on the raw request bytes, before any JSON parsing.

Stripe digests are checked with the Stripe SDK (stripe.WebhookSignature);
Calendly has no SDK, so its digests are checked here with hmac.
"""

import hashlib
import hmac
import time
from collections.abc import Iterable

import stripe

from bookings.models.errors import SignatureError, SignatureFailure
from bookings.utils.logging import get_logger

logger = get_logger(__name__)

CALENDLY_SIGNATURE_HEADER = "Calendly-Webhook-Signature"
STRIPE_SIGNATURE_HEADER = "Stripe-Signature"

SIGNATURE_SCHEME = "v1"


def compute_signature(raw_body: bytes, secret: str, timestamp: int) -> str:
    """Compute the hex signature for a payload at a given timestamp."""
    signed_payload = str(timestamp).encode() + b"." + raw_body
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(raw_body: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a signature header value the way the providers send it.

    Used by tests and by local tooling that replays deliveries.
    """
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},{SIGNATURE_SCHEME}={compute_signature(raw_body, secret, ts)}"


def parse_signature_header(header: str) -> tuple[int, list[str]]:
    """Split a signature header into its timestamp and candidate digests.

    Raises:
        SignatureError: MALFORMED if there is no integer timestamp or no
            v1 digest.
    """
    timestamp: int | None = None
    signatures: list[str] = []

    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as e:
                raise SignatureError(
                    SignatureFailure.MALFORMED, {"reason": "non-integer timestamp"}
                ) from e
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)

    if timestamp is None or not signatures:
        raise SignatureError(
            SignatureFailure.MALFORMED,
            {"reason": "expected t=<timestamp>,v1=<signature>"},
        )
    return timestamp, signatures


def _signing_keys(secrets: Iterable[str | None]) -> list[str]:
    keys = [secret for secret in secrets if secret]
    if not keys:
        logger.error("No webhook signing key configured")
        raise SignatureError(SignatureFailure.NOT_CONFIGURED)
    return keys


def _check_freshness(timestamp: int, tolerance_seconds: int, now: float | None) -> None:
    if tolerance_seconds <= 0:
        return
    current = time.time() if now is None else now
    age = current - timestamp
    if abs(age) > tolerance_seconds:
        logger.warning(
            "Webhook signature outside freshness window (age=%ds, tolerance=%ds)",
            int(age),
            tolerance_seconds,
        )
        raise SignatureError(
            SignatureFailure.REPLAYED,
            {"age_seconds": int(age), "tolerance_seconds": tolerance_seconds},
        )


def verify_calendly_signature(
    raw_body: bytes,
    header: str | None,
    secrets: Iterable[str | None],
    *,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> int:
    """Verify a Calendly signature header against the raw body.

    Args:
        raw_body: Exact request body bytes
        header: Signature header value (None when the header is absent)
        secrets: Signing keys to try, primary first; None entries are ignored
            so an unset rotation key can be passed through
        tolerance_seconds: Freshness window; 0 disables the replay check
        now: Current unix time (defaults to time.time())

    Returns:
        The signed timestamp

    Raises:
        SignatureError: MISSING_HEADER, MALFORMED, NOT_CONFIGURED, REPLAYED
            or MISMATCH
    """
    if not header:
        raise SignatureError(SignatureFailure.MISSING_HEADER)

    keys = _signing_keys(secrets)
    timestamp, candidates = parse_signature_header(header)

    matched = False
    for key in keys:
        expected = compute_signature(raw_body, key, timestamp)
        if any(hmac.compare_digest(expected, candidate) for candidate in candidates):
            matched = True
            break

    if not matched:
        logger.warning("Calendly webhook signature mismatch (t=%d)", timestamp)
        raise SignatureError(SignatureFailure.MISMATCH)

    _check_freshness(timestamp, tolerance_seconds, now)
    return timestamp


def verify_stripe_signature(
    raw_body: bytes,
    header: str | None,
    secrets: Iterable[str | None],
    *,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> int:
    """Verify a Stripe-Signature header with the Stripe SDK.

    Takes the same arguments and raises the same SignatureError reasons as
    verify_calendly_signature. The SDK only rejects old timestamps, so the
    freshness window (both directions) is applied afterwards.
    """
    if not header:
        raise SignatureError(SignatureFailure.MISSING_HEADER)

    keys = _signing_keys(secrets)
    timestamp, _ = parse_signature_header(header)

    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SignatureError(SignatureFailure.MISMATCH, {"reason": "body is not UTF-8"}) from e

    for key in keys:
        try:
            stripe.WebhookSignature.verify_header(payload, header, key)
        except stripe.SignatureVerificationError as e:
            logger.debug("Stripe signature did not match a signing key: %s", e)
            continue
        break
    else:
        logger.warning("Stripe webhook signature mismatch (t=%d)", timestamp)
        raise SignatureError(SignatureFailure.MISMATCH)

    _check_freshness(timestamp, tolerance_seconds, now)
    return timestamp
