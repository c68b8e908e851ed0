from __future__ import annotations
import logging
from fastapi import APIRouter, Depends, Query, Response

from ..deps import require_staff, get_codec, get_guest_store
from ..core.clock import millis_to_datetime
from ..core.codec import TokenCodec
from ..core.config import get_settings
from ..core.envelope import pack, render_png
from ..core.errors import GuestNotFoundError
from ..schemas import CredentialCreate, CredentialRead
from ..services.guests import GuestStore

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkin", tags=["credentials"])

async def _issue(
    codec: TokenCodec, guests: GuestStore, event_id: str, guest_id: str, lifetime_hours: float | None
) -> CredentialRead:
    guest = await guests.get(event_id.strip(), guest_id.strip())
    if guest is None:
        raise GuestNotFoundError("guest not found", {"guestId": guest_id, "eventId": event_id})
    hours = lifetime_hours or settings.qr_default_lifetime_hours
    token, payload = codec.sign(guest_id=guest.id, event_id=guest.event_id, lifetime_hours=hours)
    envelope = pack(token, payload.event_id, payload.guest_id, now=payload.issued_at_millis)
    logger.info("issued credential guest=%s event=%s lifetime_hours=%s", payload.guest_id, payload.event_id, hours)
    return CredentialRead(
        event_id=payload.event_id,
        guest_id=payload.guest_id,
        token=token,
        envelope=envelope,
        issued_at=millis_to_datetime(payload.issued_at_millis),
        expires_at=millis_to_datetime(payload.expires_at_millis),
    )

# --- 1) Organiser/staff issues a credential for one guest
@router.post("/events/{event_id}/guests/{guest_id}/credential", response_model=CredentialRead, status_code=201)
async def issue_credential(
    event_id: str,
    guest_id: str,
    body: CredentialCreate | None = None,
    claims: dict = Depends(require_staff),
    codec: TokenCodec = Depends(get_codec),
    guests: GuestStore = Depends(get_guest_store),
):
    return await _issue(codec, guests, event_id, guest_id, body.lifetime_hours if body else None)

# --- 2) Same credential rendered as a QR PNG
@router.get("/events/{event_id}/guests/{guest_id}/credential.png")
async def credential_png(
    event_id: str,
    guest_id: str,
    lifetime_hours: float | None = Query(default=None, gt=0),
    claims: dict = Depends(require_staff),
    codec: TokenCodec = Depends(get_codec),
    guests: GuestStore = Depends(get_guest_store),
):
    cred = await _issue(codec, guests, event_id, guest_id, lifetime_hours)
    return Response(content=render_png(cred.envelope), media_type="image/png")
