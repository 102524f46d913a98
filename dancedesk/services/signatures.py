"""Webhook signatures: verify inbound Stripe / identity events, sign outbound ones."""

import base64
import hashlib
import hmac
import time

from dancedesk.services.errors import SignatureError


def sign_payload(secret: str, body: str) -> str:
    """Hex HMAC-SHA256 used on outbound tenant webhooks."""
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def _check_timestamp(timestamp: int, tolerance: int, now: float | None) -> None:
    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance:
        raise SignatureError("Timestamp outside the tolerance zone")


def verify_stripe_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance: int = 300,
    now: float | None = None,
) -> None:
    """Check a ``Stripe-Signature`` header against the raw request body.

    The header looks like ``t=1700000000,v1=<hex>,v1=<hex>``; any ``v1``
    entry may match (Stripe sends several during secret rotation).
    """
    if not secret:
        raise SignatureError("Webhook secret is not configured")
    if not header:
        raise SignatureError("Missing signature header")

    timestamp: int | None = None
    candidates: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise SignatureError("Malformed timestamp in signature header") from None
        elif key == "v1":
            candidates.append(value)

    if timestamp is None or not candidates:
        raise SignatureError("Signature header has no timestamp or v1 signature")

    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected.encode(), c.encode()) for c in candidates):
        raise SignatureError("No signature matches the payload")
    _check_timestamp(timestamp, tolerance, now)


def verify_svix_signature(
    payload: bytes,
    msg_id: str | None,
    timestamp: str | None,
    header: str | None,
    secret: str,
    tolerance: int = 300,
    now: float | None = None,
) -> None:
    """Check identity-provider (Svix) webhook headers.

    ``svix-signature`` holds space-separated ``v1,<base64>`` entries; the
    secret is ``whsec_<base64 key>``.
    """
    if not secret:
        raise SignatureError("Webhook secret is not configured")
    if not msg_id or not timestamp or not header:
        raise SignatureError("Missing svix headers")
    try:
        ts = int(timestamp)
    except ValueError:
        raise SignatureError("Malformed svix timestamp") from None

    raw_secret = secret.removeprefix("whsec_")
    try:
        key = base64.b64decode(raw_secret)
    except ValueError:
        raise SignatureError("Webhook secret is not valid base64") from None

    signed = f"{msg_id}.{ts}.".encode() + payload
    expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode()

    for entry in header.split():
        version, _, signature = entry.partition(",")
        if version == "v1" and hmac.compare_digest(expected.encode(), signature.encode()):
            _check_timestamp(ts, tolerance, now)
            return
    raise SignatureError("No signature matches the payload")
