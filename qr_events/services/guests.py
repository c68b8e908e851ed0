from __future__ import annotations
import asyncio
from datetime import datetime
from typing import Iterable, Protocol, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import Event, Guest
from ..schemas import EventRecord, GuestRecord

CHECK_IN_METHOD = "qr_scanner"

class GuestStore(Protocol):
    async def get(self, event_id: str, guest_id: str) -> GuestRecord | None: ...

    async def admit(
        self,
        event_id: str,
        guest_id: str,
        *,
        at: datetime,
        by: str | None,
        token: str,
        method: str = CHECK_IN_METHOD,
    ) -> Tuple[GuestRecord | None, bool]:
        """Return (record after the call, True if this call flipped checked_in)."""
        ...

    async def roster(self, event_id: str) -> list[GuestRecord]: ...

class EventStore(Protocol):
    async def get(self, event_id: str) -> EventRecord | None: ...

class SqlGuestStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, event_id: str, guest_id: str) -> GuestRecord | None:
        async with self._session_maker() as db:
            row = await db.get(Guest, (event_id, guest_id))
            return GuestRecord.model_validate(row) if row else None

    async def admit(self, event_id, guest_id, *, at, by, token, method=CHECK_IN_METHOD):
        async with self._session_maker() as db:
            res = await db.execute(
                update(Guest)
                .where(Guest.event_id == event_id, Guest.id == guest_id, Guest.checked_in == False)  # noqa: E712
                .values(
                    checked_in=True,
                    check_in_time=at,
                    checked_in_by=by,
                    check_in_method=method,
                    qr_token_used=token,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            admitted = res.rowcount == 1
            row = await db.get(Guest, (event_id, guest_id))
            return (GuestRecord.model_validate(row) if row else None), admitted

    async def roster(self, event_id: str) -> list[GuestRecord]:
        async with self._session_maker() as db:
            rows = (await db.execute(
                select(Guest)
                .where(Guest.event_id == event_id, Guest.checked_in == True)  # noqa: E712
                .order_by(Guest.check_in_time.asc())
            )).scalars().all()
            return [GuestRecord.model_validate(r) for r in rows]

class SqlEventStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, event_id: str) -> EventRecord | None:
        async with self._session_maker() as db:
            row = await db.get(Event, event_id)
            return EventRecord.model_validate(row) if row else None

class InMemoryGuestStore:
    """Process-local store; the lock makes ``admit`` a compare-and-set."""

    def __init__(self, guests: Iterable[GuestRecord] = ()):
        self._guests: dict[Tuple[str, str], GuestRecord] = {}
        self._lock = asyncio.Lock()
        for g in guests:
            self.add(g)

    def add(self, guest: GuestRecord) -> None:
        self._guests[(guest.event_id, guest.id)] = guest

    async def get(self, event_id: str, guest_id: str) -> GuestRecord | None:
        g = self._guests.get((event_id, guest_id))
        return g.model_copy() if g else None

    async def admit(self, event_id, guest_id, *, at, by, token, method=CHECK_IN_METHOD):
        async with self._lock:
            g = self._guests.get((event_id, guest_id))
            if g is None:
                return None, False
            if g.checked_in:
                return g.model_copy(), False
            g = g.model_copy(update={
                "checked_in": True,
                "check_in_time": at,
                "checked_in_by": by,
                "check_in_method": method,
                "qr_token_used": token,
            })
            self._guests[(event_id, guest_id)] = g
            return g.model_copy(), True

    async def roster(self, event_id: str) -> list[GuestRecord]:
        rows = [g for (eid, _), g in self._guests.items() if eid == event_id and g.checked_in]
        return sorted(rows, key=lambda g: g.check_in_time)

class InMemoryEventStore:
    def __init__(self, events: Iterable[EventRecord] = ()):
        self._events = {e.id: e for e in events}

    def add(self, event: EventRecord) -> None:
        self._events[event.id] = event

    async def get(self, event_id: str) -> EventRecord | None:
        return self._events.get(event_id)
