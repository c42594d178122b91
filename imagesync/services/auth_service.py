"""Authentication for the trigger surface: webhook signatures and the sync bearer token."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

WEBHOOK_SIGNATURE_HEADER = "X-Baserow-Signature"

# Some Baserow deployments send only the first 16 bytes of the hex digest.
_TRUNCATED_HEX_LENGTH = 32


def compute_signature(body: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()


def verify_webhook_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check an HMAC-SHA256 webhook signature over the raw request body.

    Accepts the full hex digest, its first 32 hex characters, or the base64
    digest. Dashes in the received value are ignored. An empty secret disables
    verification; that is only reachable in debug mode.
    """
    if not secret:
        logger.warning("WEBHOOK_SECRET not configured, skipping signature verification")
        return True
    if not signature:
        logger.warning("Missing %s header", WEBHOOK_SIGNATURE_HEADER)
        return False

    digest = compute_signature(body, secret)
    expected_hex = digest.hex().encode("ascii")
    received = signature.strip().encode("utf-8")
    normalized = received.replace(b"-", b"").lower()

    if len(normalized) == len(expected_hex) and hmac.compare_digest(normalized, expected_hex):
        return True
    if len(normalized) == _TRUNCATED_HEX_LENGTH and hmac.compare_digest(
        normalized, expected_hex[:_TRUNCATED_HEX_LENGTH]
    ):
        return True
    if hmac.compare_digest(received, base64.b64encode(digest)):
        return True

    logger.warning("Webhook signature mismatch (received %s...)", signature.strip()[:12])
    return False


def parse_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_sync_token(authorization: str | None, secret: str) -> bool:
    """Constant-time check of an ``Authorization: Bearer <secret>`` header."""
    if not secret:
        return False
    token = parse_bearer(authorization)
    if token is None:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))
