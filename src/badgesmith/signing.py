"""HMAC-SHA256 signature helpers shared by the server and CI clients."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import UTC, datetime

SIGNATURE_PREFIX = "sha256="

SIGNATURE_HEADER = "x-signature"
TIMESTAMP_HEADER = "x-timestamp"
NONCE_HEADER = "x-nonce"


def compute_digest(body: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()


def compute_signature(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` header value for *body*."""
    return SIGNATURE_PREFIX + compute_digest(body, secret).hex()


def verify_signature(provided: str, body: bytes, secret: str) -> bool:
    """Check a ``sha256=<hex>`` header against *body* in constant time."""
    if provided[: len(SIGNATURE_PREFIX)].lower() != SIGNATURE_PREFIX:
        return False
    try:
        provided_digest = bytes.fromhex(provided[len(SIGNATURE_PREFIX) :])
    except ValueError:
        return False
    return hmac.compare_digest(provided_digest, compute_digest(body, secret))


def sign_request(
    body: bytes,
    secret: str,
    *,
    timestamp: datetime | None = None,
    nonce: str | None = None,
) -> dict[str, str]:
    """Build the auth headers a client sends with a signed request."""
    ts = (timestamp or datetime.now(UTC)).astimezone(UTC)
    return {
        SIGNATURE_HEADER: compute_signature(body, secret),
        TIMESTAMP_HEADER: ts.isoformat().replace("+00:00", "Z"),
        NONCE_HEADER: nonce or secrets.token_hex(16),
    }
