from __future__ import annotations
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from .errors import MalformedTokenError

CURRENT_SCHEMA_VERSION = "1.0"

# wire names that must be present and non-empty before version dispatch
REQUIRED_WIRE_FIELDS = ("guestId", "eventId", "timestamp", "expires")

def normalize_id(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()

class CredentialPayloadV1(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    guest_id: str = Field(alias="guestId")
    event_id: str = Field(alias="eventId")
    issued_at_millis: int = Field(alias="timestamp")
    expires_at_millis: int = Field(alias="expires")
    used: Literal[False] = False
    schema_version: Literal["1.0"] = Field(default="1.0", alias="version")

    @field_validator("guest_id", "event_id", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        if isinstance(v, (dict, list, bool)):
            raise ValueError("identifier must be a string")
        v = normalize_id(v)
        if not v:
            raise ValueError("identifier must not be blank")
        return v

    @model_validator(mode="after")
    def _window(self) -> "CredentialPayloadV1":
        if self.expires_at_millis <= self.issued_at_millis:
            raise ValueError("expires must be after timestamp")
        return self

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

CredentialPayload = CredentialPayloadV1

SCHEMAS: dict[str, type[BaseModel]] = {
    "1.0": CredentialPayloadV1,
}

def parse_payload(data: Any) -> CredentialPayload:
    """Schema check + version dispatch for a decoded payload object."""
    if not isinstance(data, dict):
        raise MalformedTokenError("token payload is not an object")

    missing = [k for k in REQUIRED_WIRE_FIELDS if data.get(k) in (None, "")]
    if missing:
        raise MalformedTokenError(
            "token payload is missing required fields: " + ", ".join(missing),
            {"missing": missing},
        )

    version = normalize_id(data.get("version", CURRENT_SCHEMA_VERSION))
    model = SCHEMAS.get(version)
    if model is None:
        raise MalformedTokenError(f"unsupported token schema version: {version}", {"version": version})

    try:
        return model.model_validate({**data, "version": version})
    except PydanticValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "payload" for err in exc.errors()})
        raise MalformedTokenError("token payload failed schema validation", {"fields": fields}) from exc
