from __future__ import annotations
import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import CryptoError, DecryptionError

NONCE_BYTES = 12
_AAD = b"qr-events/token"
_HKDF_INFO = b"qr-events/cipher-key"

def derive_key(secret: bytes) -> bytes:
    # AES-256 key from arbitrary-length secret material
    return HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=_HKDF_INFO).derive(secret)

class SymmetricCipher:
    """AES-256-GCM over UTF-8 text; ciphertext travels as standard base64."""

    def __init__(self, secret: bytes):
        self._aead = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        try:
            nonce = os.urandom(NONCE_BYTES)
            sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), _AAD)
        except Exception as exc:
            raise CryptoError("failed to encrypt credential") from exc
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            raw = base64.b64decode(ciphertext.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
            raise DecryptionError("failed to decrypt token") from exc
        if len(raw) <= NONCE_BYTES:
            raise DecryptionError("failed to decrypt token")
        try:
            data = self._aead.decrypt(raw[:NONCE_BYTES], raw[NONCE_BYTES:], _AAD)
            text = data.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as exc:
            raise DecryptionError("failed to decrypt token") from exc
        if not text:
            raise DecryptionError("token decrypted to empty data")
        return text
