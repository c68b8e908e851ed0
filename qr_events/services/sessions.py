from __future__ import annotations
import logging
import uuid

from ..core.clock import Clock, millis_to_datetime, now_millis
from ..core.nats import publish_checkin
from .coordinator import CheckInCoordinator, ScanResult, ScanState

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TTL_MS = 30 * 60 * 1000
DEFAULT_MAX_SESSIONS = 500

class SessionRegistry:
    """Scanning sessions held in process memory, one coordinator each.

    Stopped or never-started sessions untouched for ``idle_ttl_ms`` are
    dropped; past ``max_sessions`` the least recently used one is closed.
    """

    def __init__(self, *, idle_ttl_ms: int = DEFAULT_IDLE_TTL_MS, max_sessions: int = DEFAULT_MAX_SESSIONS, clock: Clock = now_millis):
        self._sessions: dict[str, CheckInCoordinator] = {}
        self._touched: dict[str, int] = {}
        self._idle_ttl_ms = idle_ttl_ms
        self._max_sessions = max_sessions
        self._clock = clock

    def open(self, coordinator: CheckInCoordinator) -> str:
        now = self._clock()
        self.evict_idle(now)
        while len(self._sessions) >= self._max_sessions:
            victim = self._least_recent()
            if victim is None:
                break
            logger.info("session cap reached, closing %s", victim)
            self.close(victim)
        sid = str(uuid.uuid4())
        self._sessions[sid] = coordinator
        self._touched[sid] = now
        logger.info("opened scanning session %s for event=%s staff=%s", sid, coordinator.event_id, coordinator.staff_id)
        return sid

    def get(self, session_id: str) -> CheckInCoordinator | None:
        now = self._clock()
        self.evict_idle(now)
        c = self._sessions.get(session_id)
        if c is not None:
            self._touched[session_id] = now
        return c

    def close(self, session_id: str) -> bool:
        c = self._sessions.pop(session_id, None)
        self._touched.pop(session_id, None)
        if c is None:
            return False
        c.stop()
        logger.info("closed scanning session %s", session_id)
        return True

    def evict_idle(self, now: int | None = None) -> int:
        now = self._clock() if now is None else now
        stale = [
            sid for sid, c in self._sessions.items()
            if c.state in (ScanState.STOPPED, ScanState.IDLE)
            and not c.processing_result
            and now - self._touched[sid] >= self._idle_ttl_ms
        ]
        for sid in stale:
            logger.info("evicting idle scanning session %s", sid)
            self.close(sid)
        return len(stale)

    def _least_recent(self) -> str | None:
        # a session mid-scan is never closed under it
        candidates = [sid for sid, c in self._sessions.items() if not c.processing_result]
        if not candidates:
            return None
        return min(candidates, key=self._touched.__getitem__)

    def __len__(self) -> int:
        return len(self._sessions)

async def publish_admit(result: ScanResult) -> None:
    # e.g. downstream activity feeds; idempotency key lets consumers dedupe
    checked_at = result.guest.check_in_time if result.guest and result.guest.check_in_time else millis_to_datetime(result.at_millis)
    await publish_checkin({
        "event_id": result.event_id,
        "guest_id": result.guest_id,
        "checked_in_by": result.guest.checked_in_by if result.guest else None,
        "checked_at": checked_at.isoformat().replace("+00:00", "Z"),
        "idempotency_key": f"{result.event_id}:{result.guest_id}",
    })
