from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..deps import require_staff, get_codec, get_guest_store, get_event_store, get_consumed_tokens, get_registry
from ..core.clock import millis_to_datetime
from ..core.codec import TokenCodec
from ..core.config import get_settings
from ..core.errors import EventNotFoundError
from ..core.redis import allow_request
from ..schemas import (
    DecodedResponse, DecodedText, GuestRecord, GuestView, ScanResultRead, ScanStepRead, SessionCreate, SessionRead,
)
from ..services.coordinator import CheckInCoordinator, ScanResult
from ..services.guests import EventStore, GuestStore
from ..services.replay import ConsumedTokens
from ..services.sessions import SessionRegistry, publish_admit

settings = get_settings()
router = APIRouter(prefix="/checkin", tags=["scanner"])

def _result_read(r: ScanResult) -> ScanResultRead:
    return ScanResultRead(
        outcome=r.outcome.value,
        reason=r.reason,
        code=r.code,
        details=r.details,
        event_id=r.event_id,
        guest_id=r.guest_id,
        guest=GuestView.model_validate(r.guest.model_dump()) if r.guest else None,
        at=millis_to_datetime(r.at_millis),
        steps=[ScanStepRead(name=s.name, ok=s.ok, detail=s.detail) for s in r.steps],
    )

def _session_read(session_id: str, c: CheckInCoordinator) -> SessionRead:
    snap = c.snapshot()
    return SessionRead(
        id=session_id,
        event_id=snap["event_id"],
        staff_id=snap["staff_id"] or "",
        state=snap["state"].value,
        processing=snap["processing"],
        scan_count=snap["scan_count"],
        resume_at=millis_to_datetime(snap["resume_at_millis"]) if snap["resume_at_millis"] is not None else None,
        last_result=_result_read(snap["last_result"]) if snap["last_result"] else None,
        history=[_result_read(r) for r in snap["history"]],
    )

def _owned_session(session_id: str, claims: dict, registry: SessionRegistry) -> CheckInCoordinator:
    c = registry.get(session_id)
    if c is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if c.staff_id != str(claims["sub"]) and claims.get("role") != "organiser":
        raise HTTPException(status_code=403, detail="Session belongs to another staff member")
    return c

# --- 1) Staff opens a scanning session bound to one event
@router.post("/events/{event_id}/sessions", response_model=SessionRead, status_code=201)
async def open_session(
    event_id: str,
    body: SessionCreate | None = None,
    claims: dict = Depends(require_staff),
    codec: TokenCodec = Depends(get_codec),
    guests: GuestStore = Depends(get_guest_store),
    events: EventStore = Depends(get_event_store),
    consumed: ConsumedTokens | None = Depends(get_consumed_tokens),
    registry: SessionRegistry = Depends(get_registry),
):
    event = await events.get(event_id.strip())
    if event is None:
        raise EventNotFoundError("event not found", {"eventId": event_id})
    c = CheckInCoordinator(
        event.id,
        codec=codec,
        guests=guests,
        staff_id=str(claims["sub"]),
        cooldown_ms=settings.scan_cooldown_ms,
        history_size=settings.scan_history_size,
        consumed_tokens=consumed,
        on_admit=publish_admit if settings.nats_enabled else None,
    )
    if body is None or body.autostart:
        c.start()
    sid = registry.open(c)
    return _session_read(sid, c)

@router.get("/sessions/{session_id}", response_model=SessionRead)
async def get_session(session_id: str, claims: dict = Depends(require_staff), registry: SessionRegistry = Depends(get_registry)):
    return _session_read(session_id, _owned_session(session_id, claims, registry))

@router.post("/sessions/{session_id}/start", response_model=SessionRead)
async def start_session(session_id: str, claims: dict = Depends(require_staff), registry: SessionRegistry = Depends(get_registry)):
    c = _owned_session(session_id, claims, registry)
    c.start()
    return _session_read(session_id, c)

@router.post("/sessions/{session_id}/stop", response_model=SessionRead)
async def stop_session(session_id: str, claims: dict = Depends(require_staff), registry: SessionRegistry = Depends(get_registry)):
    c = _owned_session(session_id, claims, registry)
    c.stop()
    return _session_read(session_id, c)

# manual "scan next" skips the cool-down
@router.post("/sessions/{session_id}/next", response_model=SessionRead)
async def next_scan(session_id: str, claims: dict = Depends(require_staff), registry: SessionRegistry = Depends(get_registry)):
    c = _owned_session(session_id, claims, registry)
    c.scan_next()
    return _session_read(session_id, c)

@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str, claims: dict = Depends(require_staff), registry: SessionRegistry = Depends(get_registry)):
    _owned_session(session_id, claims, registry)
    registry.close(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

# --- 2) Decoded QR text from the device camera
@router.post("/sessions/{session_id}/decoded", response_model=DecodedResponse)
async def submit_decoded(
    session_id: str,
    payload: DecodedText,
    request: Request,
    claims: dict = Depends(require_staff),
    registry: SessionRegistry = Depends(get_registry),
):
    ip = request.client.host if request.client else "unknown"
    if not await allow_request(ip, "checkin.decoded"):
        raise HTTPException(status_code=429, detail="Too many requests")
    c = _owned_session(session_id, claims, registry)
    result = await c.on_decoded(payload.text)
    return DecodedResponse(
        accepted=result is not None,
        result=_result_read(result) if result else None,
        session=_session_read(session_id, c),
    )

# --- 3) Roster of admitted guests
@router.get("/events/{event_id}/roster", response_model=list[GuestView])
async def roster(event_id: str, claims: dict = Depends(require_staff), guests: GuestStore = Depends(get_guest_store)):
    rows: list[GuestRecord] = await guests.roster(event_id.strip())
    return [GuestView.model_validate(r.model_dump()) for r in rows]
