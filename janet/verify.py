"""Webhook authenticity checks for the native WhatsApp provider."""

import hashlib
import hmac
from typing import Optional

from janet.errors import AuthenticationError

SIGNATURE_HEADER = "x-hub-signature-256"


def compute_signature(payload: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature Meta sends for ``payload``."""
    digest = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """Constant-time check of an ``X-Hub-Signature-256`` header value."""
    if not signature or not secret:
        return False
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(signature.encode(), expected.encode())


def verify_webhook_token(mode: str, token: str, challenge: str, expected_token: str) -> Optional[str]:
    """Subscription handshake: echo the challenge only for a matching subscribe."""
    if mode == "subscribe" and expected_token and hmac.compare_digest(token.encode(), expected_token.encode()):
        return challenge
    return None


def require_signature(payload: bytes, signature: Optional[str], secret: str) -> None:
    """Raise AuthenticationError unless ``signature`` matches ``payload``."""
    if not signature:
        raise AuthenticationError("Missing signature")
    if not verify_signature(payload, signature, secret):
        raise AuthenticationError("Invalid signature")
