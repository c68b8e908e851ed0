from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime

class EventRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str

class GuestRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    name: str
    email: str | None = None
    checked_in: bool = False
    check_in_time: datetime | None = None
    checked_in_by: str | None = None
    check_in_method: str | None = None
    qr_token_used: str | None = None

class GuestView(BaseModel):
    """Guest as shown to scanning staff; never echoes the consumed token."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    name: str
    email: str | None = None
    checked_in: bool
    check_in_time: datetime | None = None
    checked_in_by: str | None = None

class CredentialCreate(BaseModel):
    lifetime_hours: float | None = Field(default=None, gt=0)

class CredentialRead(BaseModel):
    event_id: str
    guest_id: str
    token: str
    envelope: str  # JSON string to render into the QR image
    issued_at: datetime
    expires_at: datetime

class ScanStepRead(BaseModel):
    name: str
    ok: bool
    detail: str | None = None

class ScanResultRead(BaseModel):
    outcome: str
    reason: str
    code: str | None = None
    details: dict = Field(default_factory=dict)
    event_id: str
    guest_id: str | None = None
    guest: GuestView | None = None
    at: datetime
    steps: list[ScanStepRead] = Field(default_factory=list)

class SessionCreate(BaseModel):
    autostart: bool = True

class SessionRead(BaseModel):
    id: str
    event_id: str
    staff_id: str
    state: str
    processing: bool
    scan_count: int
    resume_at: datetime | None = None
    last_result: ScanResultRead | None = None
    history: list[ScanResultRead] = Field(default_factory=list)

class DecodedText(BaseModel):
    text: str

class DecodedResponse(BaseModel):
    accepted: bool
    result: ScanResultRead | None = None
    session: SessionRead
