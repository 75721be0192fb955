"""HMAC-SHA256 request signing.

Subscribers recompute the signature over the raw request body with their
shared secret and compare it to the X-Worklin-Signature header.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

SIGNATURE_PREFIX = "sha256="


def _as_bytes(body: str | bytes) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def sign(secret: str, body: str | bytes) -> str:
    """Compute the HMAC-SHA256 signature for a webhook body.

    Args:
        secret: Shared secret for HMAC.
        body: Exact request body; strings are UTF-8 encoded.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=_as_bytes(body),
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify(secret: str, body: str | bytes, signature: str) -> bool:
    """Verify an HMAC-SHA256 signature in constant time.

    Args:
        secret: Shared secret for HMAC.
        body: Exact request body that was signed.
        signature: Hex digest to check, optionally prefixed with "sha256=".

    Returns:
        True if the signature matches, False otherwise.
    """
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX) :]
    return hmac.compare_digest(sign(secret, body), signature.lower())


def generate_secret() -> str:
    """Generate a new webhook secret (32 random bytes, hex encoded)."""
    return secrets.token_hex(32)
