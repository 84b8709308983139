# backend/conversly/utils/webhook_signature.py
"""
ElevenLabs Webhook Signature Verification

Post-call webhooks carry a header of the form:

    ElevenLabs-Signature: t=<unix-seconds>,v0=<hex-hmac>

where hex-hmac = HMAC_SHA256(secret, f"{t}.{raw_body}").

The digest must be computed over the raw request bytes, before any JSON parsing.
"""

import hmac
import time
from hashlib import sha256
from typing import Optional, Tuple

from conversly.errors import InvalidSignatureError

SIGNATURE_HEADER = "elevenlabs-signature"

DEFAULT_MAX_AGE_SECONDS = 30 * 60
DEFAULT_MAX_SKEW_SECONDS = 5 * 60


def compute_signature(secret: str, timestamp: int, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of "<timestamp>.<raw_body>"."""
    msg = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), msg=msg, digestmod=sha256).hexdigest()


def build_signature_header(secret: str, raw_body: bytes, timestamp: Optional[int] = None) -> str:
    """Produce a header value the way the provider does (handy for tests and replay tools)."""
    ts = int(time.time()) if timestamp is None else int(timestamp)
    return f"t={ts},v0={compute_signature(secret, ts, raw_body)}"


def parse_signature_header(signature_header: str) -> Tuple[int, str]:
    parts = [p.strip() for p in signature_header.split(",")]
    t_part = next((p for p in parts if p.startswith("t=")), "")
    v0_part = next((p for p in parts if p.startswith("v0=")), "")
    if not t_part or not v0_part:
        raise InvalidSignatureError("malformed header")

    try:
        ts = int(t_part[2:])
    except ValueError:
        raise InvalidSignatureError("malformed timestamp")

    return ts, v0_part[3:]


def verify_webhook_signature(
    *,
    raw_body: bytes,
    signature_header: Optional[str],
    secret: str,
    now: Optional[float] = None,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    max_skew_seconds: int = DEFAULT_MAX_SKEW_SECONDS,
) -> None:
    """
    Raise InvalidSignatureError unless the header is a fresh, matching signature of raw_body.

    Fresh means the timestamp is at most max_age_seconds in the past and at most
    max_skew_seconds in the future.
    """
    if not signature_header:
        raise InvalidSignatureError("missing header")

    ts, provided = parse_signature_header(signature_header)

    current = int(time.time() if now is None else now)
    if ts < current - max_age_seconds:
        raise InvalidSignatureError("timestamp too old")
    if ts > current + max_skew_seconds:
        raise InvalidSignatureError("timestamp in the future")

    expected = compute_signature(secret, ts, raw_body)

    # Constant-time comparison to prevent timing attacks
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise InvalidSignatureError("digest mismatch")


def is_valid_signature(**kwargs) -> bool:
    """Boolean form of verify_webhook_signature."""
    try:
        verify_webhook_signature(**kwargs)
        return True
    except InvalidSignatureError:
        return False
