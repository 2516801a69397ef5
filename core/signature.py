"""
alertbridge Core: Webhook Signature Verification

TradingView-style HMAC-SHA256 over the exact raw request body, hex encoded.
Checking is opt-in: with no shared secret every payload is accepted.
"""

import hashlib
import hmac
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-TV-Signature"


def sign(secret: Union[str, bytes], body: bytes) -> str:
    """Return the lowercase hex HMAC-SHA256 of ``body``."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return hmac.new(secret, body, hashlib.sha256).hexdigest()


class SignatureVerifier:
    """Stateless shared-secret verifier for inbound alert payloads."""

    def __init__(self, secret: Optional[Union[str, bytes]] = None):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        self._secret = secret or b""

    def is_enabled(self) -> bool:
        return bool(self._secret)

    def verify(self, body: bytes, signature: Optional[str]) -> bool:
        """
        Compare ``signature`` to the expected digest in constant time.

        Never raises: a missing, non-hex or non-ASCII signature simply
        compares unequal.
        """
        if not self.is_enabled():
            return True
        if not isinstance(signature, str):
            return False

        expected = sign(self._secret, body).encode("ascii")
        candidate = signature.encode("utf-8", errors="replace")
        valid = hmac.compare_digest(candidate, expected)
        if not valid:
            logger.debug("Signature mismatch (len=%d)", len(signature))
        return valid


__all__ = ["SIGNATURE_HEADER", "SignatureVerifier", "sign"]
