"""
WhatsApp webhook signature verification.

Meta signs every delivery with ``X-Hub-Signature-256: sha256=<hex>``, an
HMAC-SHA256 of the raw body keyed with the app secret.
"""

import hashlib
import hmac
import logging
from typing import Callable, Optional

log = logging.getLogger("security")

SIGNATURE_HEADER = "X-Hub-Signature-256"

# verify(payload, signature) -> bool
Verifier = Callable[[bytes, Optional[str]], bool]


def sign(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class HmacVerifier:
    """Verifier capability backed by a shared app secret.

    With no secret configured nothing verifies: an unsigned deployment must be
    fixed in config, not silently accepted.
    """

    def __init__(self, secret: str) -> None:
        self._secret = secret or ""
        if not self._secret:
            log.warning("WHATSAPP_APP_SECRET not configured: webhook deliveries will be rejected")

    def __call__(self, body: bytes, signature: Optional[str]) -> bool:
        if not self._secret or not signature:
            return False
        expected = sign(body, self._secret)
        # constant-time compare
        return hmac.compare_digest(signature.strip(), expected)


def verify_challenge(mode: Optional[str], token: Optional[str], expected_token: str) -> bool:
    """GET handshake: hub.mode must be 'subscribe' and the token must match."""
    if mode != "subscribe" or not token or not expected_token:
        return False
    return hmac.compare_digest(token, expected_token)
