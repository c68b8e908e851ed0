from __future__ import annotations
import hashlib
import hmac

from .errors import CryptoError

class IntegrityStamper:
    """HMAC-SHA256 over the ciphertext segment, hex encoded."""

    def __init__(self, secret: bytes):
        self._secret = secret

    def stamp(self, ciphertext: str) -> str:
        try:
            return hmac.new(self._secret, ciphertext.encode("utf-8", "surrogatepass"), hashlib.sha256).hexdigest()
        except Exception as exc:
            raise CryptoError("failed to compute token MAC") from exc

    def matches(self, ciphertext: str, supplied: str) -> bool:
        expected = self.stamp(ciphertext)
        # bytes so non-ASCII input compares False instead of raising
        return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8", "surrogatepass"))

def fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
