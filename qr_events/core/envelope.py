from __future__ import annotations
import json
from io import BytesIO
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from .clock import now_millis
from .errors import MalformedEnvelopeError
from .payload import normalize_id

APP_TAG = "qr-events"
ENVELOPE_VERSION = "1.0"
SUPPORTED_VERSIONS = frozenset({"1.0"})

class QREnvelope(BaseModel):
    """What is rendered into the QR pixels.

    ``event_id``/``guest_id`` are plaintext hints for display and coarse
    filtering only; the decrypted token is authoritative.
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    token: str = Field(min_length=1)
    app: Literal["qr-events"] = APP_TAG
    version: str = ENVELOPE_VERSION
    timestamp: int | None = None
    event_id: str | None = Field(default=None, alias="eventId")
    guest_id: str | None = Field(default=None, alias="guestId")

    @field_validator("event_id", "guest_id", mode="before")
    @classmethod
    def _hint(cls, v: Any) -> str | None:
        if v is None:
            return None
        if isinstance(v, (dict, list)):
            raise ValueError("identifier hint must be a scalar")
        return normalize_id(v)

def pack(token: str, event_id: Any, guest_id: Any, *, now: int | None = None) -> str:
    env = QREnvelope(
        token=token,
        timestamp=now_millis() if now is None else now,
        event_id=event_id,
        guest_id=guest_id,
    )
    return env.model_dump_json(by_alias=True)

def unpack(text: Any) -> QREnvelope:
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEnvelopeError("QR data is not UTF-8") from exc
    if not isinstance(text, str):
        raise MalformedEnvelopeError("QR data must be text")
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise MalformedEnvelopeError("QR data is not JSON") from exc
    if not isinstance(data, dict):
        raise MalformedEnvelopeError("QR data is not a JSON object")
    if not data.get("token"):
        raise MalformedEnvelopeError("QR data has no token")
    if data.get("app") != APP_TAG:
        raise MalformedEnvelopeError("QR code was not issued by qr-events", {"app": data.get("app")})

    version = str(data.get("version", ENVELOPE_VERSION))
    if version not in SUPPORTED_VERSIONS:
        raise MalformedEnvelopeError(f"unsupported envelope version: {version}", {"version": version})
    try:
        return QREnvelope.model_validate({**data, "version": version})
    except PydanticValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise MalformedEnvelopeError("QR data failed validation", {"fields": fields}) from exc

def render_png(envelope_json: str, *, box_size: int = 10, border: int = 4) -> bytes:
    import qrcode
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=box_size, border=border)
    qr.add_data(envelope_json)
    qr.make(fit=True)
    img = qr.make_image()
    b = BytesIO()
    img.save(b, format="PNG")
    return b.getvalue()
