from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterable, Awaitable, Callable

from ..core.clock import Clock, millis_to_datetime, now_millis
from ..core.codec import TokenCodec
from ..core.envelope import unpack
from ..core.errors import (
    CheckInError,
    ErrorCode,
    EventMismatchError,
    GuestNotFoundError,
    MalformedEnvelopeError,
    TokenReplayError,
)
from ..core.stamper import fingerprint
from ..schemas import GuestRecord
from .guests import GuestStore
from .replay import ConsumedTokens

logger = logging.getLogger(__name__)

# IDLE -> SCANNING -> PROCESSING -> RESULT --(cool-down / scan_next)--> SCANNING
# any -> STOPPED (stop); STOPPED/IDLE/RESULT -> SCANNING (start)

DEFAULT_COOLDOWN_MS = 3000
DEFAULT_HISTORY_SIZE = 20

class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    RESULT = "result"
    STOPPED = "stopped"

class Outcome(str, Enum):
    ADMITTED = "admitted"
    ALREADY_ADMITTED = "already_admitted"
    REJECTED = "rejected"

@dataclass(frozen=True)
class ScanStep:
    name: str
    ok: bool
    detail: str | None = None

@dataclass
class ScanResult:
    outcome: Outcome
    reason: str
    event_id: str
    at_millis: int
    guest_id: str | None = None
    guest: GuestRecord | None = None
    code: str | None = None
    details: dict = field(default_factory=dict)
    steps: list[ScanStep] = field(default_factory=list)

    @property
    def admitted(self) -> bool:
        return self.outcome is Outcome.ADMITTED

AdmitHook = Callable[[ScanResult], Awaitable[None]]

class CheckInCoordinator:
    def __init__(
        self,
        event_id: str,
        *,
        codec: TokenCodec,
        guests: GuestStore,
        staff_id: str | None = None,
        clock: Clock = now_millis,
        cooldown_ms: int = DEFAULT_COOLDOWN_MS,
        history_size: int = DEFAULT_HISTORY_SIZE,
        consumed_tokens: ConsumedTokens | None = None,
        on_admit: AdmitHook | None = None,
    ):
        self.event_id = str(event_id).strip()
        self.staff_id = staff_id
        self.cooldown_ms = cooldown_ms
        self._codec = codec
        self._guests = guests
        self._clock = clock
        self._consumed = consumed_tokens
        self._on_admit = on_admit

        self.state = ScanState.IDLE
        self.processing_result = False
        self.last_result: ScanResult | None = None
        self.history: deque[ScanResult] = deque(maxlen=history_size)
        self.scan_count = 0
        self._result_at: int | None = None

    # --- controls -------------------------------------------------------

    def start(self) -> ScanState:
        if self.state in (ScanState.IDLE, ScanState.STOPPED, ScanState.RESULT):
            self.state = ScanState.SCANNING
            self._result_at = None
        return self.state

    def stop(self) -> ScanState:
        # an in-flight PROCESSING step still finishes; it just won't resume scanning
        self.state = ScanState.STOPPED
        self._result_at = None
        return self.state

    def scan_next(self) -> ScanState:
        if self.state is ScanState.RESULT:
            self.state = ScanState.SCANNING
            self._result_at = None
        return self.state

    @property
    def resume_at_millis(self) -> int | None:
        if self.state is ScanState.RESULT and self._result_at is not None:
            return self._result_at + self.cooldown_ms
        return None

    def tick(self, now: int | None = None) -> ScanState:
        resume_at = self.resume_at_millis
        if resume_at is not None:
            current = self._clock() if now is None else now
            if current >= resume_at:
                self.state = ScanState.SCANNING
                self._result_at = None
        return self.state

    def snapshot(self) -> dict:
        self.tick()
        return {
            "event_id": self.event_id,
            "staff_id": self.staff_id,
            "state": self.state,
            "processing": self.processing_result,
            "scan_count": self.scan_count,
            "resume_at_millis": self.resume_at_millis,
            "last_result": self.last_result,
            "history": list(self.history),
        }

    # --- scan input -----------------------------------------------------

    async def on_decoded(self, text: str) -> ScanResult | None:
        """Process one decoded QR string, or return None if it was discarded."""
        self.tick()
        if self.state is not ScanState.SCANNING or self.processing_result:
            logger.debug("discarding decoded text: state=%s busy=%s", self.state.value, self.processing_result)
            return None

        # flag is set before the first await so a burst cannot re-enter
        self.processing_result = True
        self.state = ScanState.PROCESSING
        self.scan_count += 1
        try:
            result = await self._process(text)
        except BaseException:
            self.processing_result = False
            if self.state is ScanState.PROCESSING:
                self.state = ScanState.SCANNING
            raise

        self.last_result = result
        if result.admitted:
            self.history.append(result)
        if self.state is ScanState.PROCESSING:
            self.state = ScanState.RESULT
            self._result_at = self._clock()
        self.processing_result = False

        if result.admitted and self._on_admit is not None:
            try:
                await self._on_admit(result)
            except Exception:
                logger.warning("admit hook failed for guest=%s event=%s", result.guest_id, self.event_id, exc_info=True)
        return result

    async def run(self, source: AsyncIterable[str]) -> None:
        async for text in source:
            await self.on_decoded(text)

    # --- processing -----------------------------------------------------

    async def _process(self, text: str) -> ScanResult:
        steps: list[ScanStep] = []
        now = self._clock()
        guest_id: str | None = None
        step = "unpack"
        try:
            envelope = unpack(text)
            steps.append(ScanStep(step, True))

            step = "verify"
            payload = self._codec.verify(envelope.token, now=now)
            guest_id = payload.guest_id
            steps.append(ScanStep(step, True))

            # only the decrypted event id counts, never the plaintext hint
            step = "event"
            if payload.event_id != self.event_id:
                raise EventMismatchError(
                    "wrong event",
                    {"expectedEventId": self.event_id, "tokenEventId": payload.event_id},
                )
            steps.append(ScanStep(step, True))

            step = "lookup"
            guest = await self._guests.get(self.event_id, payload.guest_id)
            if guest is None:
                raise GuestNotFoundError("guest not found", {"guestId": payload.guest_id, "eventId": self.event_id})
            steps.append(ScanStep(step, True))

            if guest.checked_in:
                steps.append(ScanStep("admit", False, "already checked in"))
                return self._already(guest, steps, now)

            # claim only once the guest is admittable; released again if the write doesn't land
            fp = None
            if self._consumed is not None:
                step = "replay"
                fp = fingerprint(envelope.token)
                if not await self._consumed.claim(fp, payload.expires_at_millis - now):
                    raise TokenReplayError("token already used", {"fingerprint": fp[:12]})
                steps.append(ScanStep(step, True))

            step = "admit"
            try:
                record, admitted = await self._guests.admit(
                    self.event_id,
                    payload.guest_id,
                    at=millis_to_datetime(now),
                    by=self.staff_id,
                    token=envelope.token,
                )
            except BaseException:
                await self._release(fp)
                raise
            if record is None:
                await self._release(fp)
                raise GuestNotFoundError("guest not found", {"guestId": payload.guest_id, "eventId": self.event_id})
            if not admitted:
                # another scanner won the compare-and-set
                await self._release(fp)
                steps.append(ScanStep(step, False, "already checked in"))
                return self._already(record, steps, now)

            steps.append(ScanStep(step, True))
            logger.info("admitted guest=%s event=%s by=%s", record.id, self.event_id, self.staff_id)
            return ScanResult(
                outcome=Outcome.ADMITTED,
                reason=f"{record.name} checked in",
                event_id=self.event_id,
                at_millis=now,
                guest_id=record.id,
                guest=record,
                steps=steps,
            )
        except CheckInError as exc:
            steps.append(ScanStep(step, False, exc.message))
            reason = "malformed QR" if isinstance(exc, MalformedEnvelopeError) else exc.message
            logger.info("scan rejected event=%s step=%s code=%s reason=%s", self.event_id, step, exc.code.value, exc.message)
            return ScanResult(
                outcome=Outcome.REJECTED,
                reason=reason,
                event_id=self.event_id,
                at_millis=now,
                guest_id=guest_id,
                code=exc.code.value,
                details=exc.details,
                steps=steps,
            )
        except Exception as exc:
            logger.exception("unexpected error while processing scan for event=%s", self.event_id)
            steps.append(ScanStep(step, False, type(exc).__name__))
            return ScanResult(
                outcome=Outcome.REJECTED,
                reason="failed to process QR code",
                event_id=self.event_id,
                at_millis=now,
                guest_id=guest_id,
                code=ErrorCode.INTERNAL_ERROR.value,
                steps=steps,
            )

    async def _release(self, fp: str | None) -> None:
        if fp is None or self._consumed is None:
            return
        try:
            await self._consumed.release(fp)
        except Exception:
            logger.warning("could not release token claim fp=%s event=%s", fp[:12], self.event_id, exc_info=True)

    def _already(self, guest: GuestRecord, steps: list[ScanStep], now: int) -> ScanResult:
        logger.info("guest=%s event=%s already checked in", guest.id, self.event_id)
        return ScanResult(
            outcome=Outcome.ALREADY_ADMITTED,
            reason=f"{guest.name} is already checked in",
            event_id=self.event_id,
            at_millis=now,
            guest_id=guest.id,
            guest=guest,
            steps=steps,
        )
