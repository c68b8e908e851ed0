from __future__ import annotations
import json
import logging
import math
import numbers
from typing import Any, Tuple

from .cipher import SymmetricCipher
from .clock import Clock, MILLIS_PER_HOUR, now_millis
from .config import CryptoConfig
from .errors import ExpiredTokenError, IntegrityError, MalformedTokenError, ValidationError
from .payload import CURRENT_SCHEMA_VERSION, CredentialPayload, normalize_id, parse_payload
from .stamper import IntegrityStamper, fingerprint

logger = logging.getLogger(__name__)

TOKEN_SEPARATOR = "."
DEFAULT_LIFETIME_HOURS = 24

class TokenCodec:
    """Issues and verifies the opaque ``<base64-ciphertext>.<hex-hmac>`` credential.

    Verification is a chain of hard gates that short-circuits on the first
    failure: structure, MAC, decryption, JSON, schema, normalisation, expiry.
    The MAC is checked before anything is decrypted.
    """

    def __init__(self, config: CryptoConfig, *, clock: Clock = now_millis):
        self._cipher = SymmetricCipher(config.cipher_secret)
        self._stamper = IntegrityStamper(config.mac_secret)
        self._clock = clock

    def sign(
        self,
        *,
        guest_id: Any,
        event_id: Any,
        lifetime_hours: float = DEFAULT_LIFETIME_HOURS,
        now: int | None = None,
    ) -> Tuple[str, CredentialPayload]:
        gid = normalize_id(guest_id)
        eid = normalize_id(event_id)
        if not gid or not eid:
            raise ValidationError(
                "guestId and eventId are required",
                {"guestId": bool(gid), "eventId": bool(eid)},
            )
        if lifetime_hours is None:
            lifetime_hours = DEFAULT_LIFETIME_HOURS
        if (
            isinstance(lifetime_hours, bool)
            or not isinstance(lifetime_hours, numbers.Real)
            or not math.isfinite(lifetime_hours)
            or lifetime_hours <= 0
        ):
            raise ValidationError("lifetime_hours must be a positive number", {"lifetime_hours": repr(lifetime_hours)})

        issued = self._clock() if now is None else now
        lifetime_ms = int(round(lifetime_hours * MILLIS_PER_HOUR))
        if lifetime_ms <= 0:
            raise ValidationError("lifetime_hours is too small", {"lifetime_hours": repr(lifetime_hours)})
        payload = CredentialPayload(
            guest_id=gid,
            event_id=eid,
            issued_at_millis=issued,
            expires_at_millis=issued + lifetime_ms,
            schema_version=CURRENT_SCHEMA_VERSION,
        )

        ciphertext = self._cipher.encrypt(payload.to_json())
        token = ciphertext + TOKEN_SEPARATOR + self._stamper.stamp(ciphertext)
        logger.debug("issued credential %s for guest=%s event=%s", fingerprint(token)[:12], gid, eid)
        return token, payload

    def issue(self, *, guest_id: Any, event_id: Any, lifetime_hours: float = DEFAULT_LIFETIME_HOURS, now: int | None = None) -> str:
        token, _ = self.sign(guest_id=guest_id, event_id=event_id, lifetime_hours=lifetime_hours, now=now)
        return token

    def verify(self, token: Any, *, now: int | None = None) -> CredentialPayload:
        # 1) structure
        if not isinstance(token, str):
            raise MalformedTokenError("token must be a string")
        parts = token.split(TOKEN_SEPARATOR)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise MalformedTokenError("token must have exactly two non-empty segments", {"segments": len(parts)})
        ciphertext, mac = parts

        # 2) integrity, before any decryption
        if not self._stamper.matches(ciphertext, mac):
            raise IntegrityError("token integrity check failed")

        # 3) decryption
        plaintext = self._cipher.decrypt(ciphertext)

        # 4) deserialisation
        try:
            data = json.loads(plaintext)
        except ValueError as exc:
            raise MalformedTokenError("token payload is not valid JSON") from exc

        # 5-6) schema check, version dispatch, id normalisation
        payload = parse_payload(data)

        # 7) freshness
        current = self._clock() if now is None else now
        if current > payload.expires_at_millis:
            raise ExpiredTokenError(
                "token has expired",
                {"expiresAt": payload.expires_at_millis, "now": current},
            )
        return payload
