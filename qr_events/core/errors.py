from __future__ import annotations
from enum import Enum

class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CRYPTO_ERROR = "CRYPTO_ERROR"
    MALFORMED_TOKEN = "MALFORMED_TOKEN"
    MALFORMED_ENVELOPE = "MALFORMED_ENVELOPE"
    INTEGRITY_ERROR = "INTEGRITY_ERROR"
    DECRYPTION_ERROR = "DECRYPTION_ERROR"
    EXPIRED_TOKEN = "EXPIRED_TOKEN"
    EVENT_MISMATCH = "EVENT_MISMATCH"
    GUEST_NOT_FOUND = "GUEST_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    TOKEN_REPLAYED = "TOKEN_REPLAYED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

ERROR_STATUS_MAP: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.CRYPTO_ERROR: 500,
    ErrorCode.MALFORMED_TOKEN: 400,
    ErrorCode.MALFORMED_ENVELOPE: 400,
    ErrorCode.INTEGRITY_ERROR: 400,
    ErrorCode.DECRYPTION_ERROR: 400,
    ErrorCode.EXPIRED_TOKEN: 400,
    ErrorCode.EVENT_MISMATCH: 409,
    ErrorCode.GUEST_NOT_FOUND: 404,
    ErrorCode.EVENT_NOT_FOUND: 404,
    ErrorCode.TOKEN_REPLAYED: 409,
    ErrorCode.INTERNAL_ERROR: 500,
}

class CheckInError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict = details or {}

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_MAP.get(self.code, 500)

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, "details": self.details}

class ValidationError(CheckInError):
    """Bad issuance input (blank ids, non-positive lifetime)."""
    code = ErrorCode.VALIDATION_ERROR

class CryptoError(CheckInError):
    """The cipher or MAC primitive failed while issuing."""
    code = ErrorCode.CRYPTO_ERROR

class TokenError(CheckInError):
    """Base for every reason a presented token is refused."""

class MalformedTokenError(TokenError):
    code = ErrorCode.MALFORMED_TOKEN

class IntegrityError(TokenError):
    code = ErrorCode.INTEGRITY_ERROR

class DecryptionError(TokenError):
    code = ErrorCode.DECRYPTION_ERROR

class ExpiredTokenError(TokenError):
    code = ErrorCode.EXPIRED_TOKEN

class TokenReplayError(TokenError):
    code = ErrorCode.TOKEN_REPLAYED

class MalformedEnvelopeError(CheckInError):
    code = ErrorCode.MALFORMED_ENVELOPE

class EventMismatchError(CheckInError):
    code = ErrorCode.EVENT_MISMATCH

class GuestNotFoundError(CheckInError):
    code = ErrorCode.GUEST_NOT_FOUND

class EventNotFoundError(CheckInError):
    code = ErrorCode.EVENT_NOT_FOUND
