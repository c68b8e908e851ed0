"""Shared pytest fixtures for the qr-events test suite."""

from __future__ import annotations

import os
import tempfile

# Settings are read at import time by the service modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "qr-events-test.db"))
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.test/.well-known/jwks.json")
os.environ.setdefault("QR_CIPHER_SECRET", "test-cipher-secret-0123456789abcdefghij")
os.environ.setdefault("QR_HMAC_SECRET", "test-hmac-secret-9876543210zyxwvutsrqpo")
os.environ.setdefault("RL_ENABLED", "false")
os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("TOKEN_REPLAY_GUARD", "false")

import pytest

from qr_events.core.codec import TokenCodec
from qr_events.core.config import CryptoConfig
from qr_events.schemas import GuestRecord
from qr_events.services.coordinator import CheckInCoordinator
from qr_events.services.guests import InMemoryGuestStore

# 2026-03-01T18:00:00Z
T0 = 1_772_388_000_000
HOUR_MS = 3_600_000


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def crypto_config():
    return CryptoConfig(
        cipher_secret=b"unit-test-cipher-secret-abcdefghijklmnop",
        mac_secret=b"unit-test-hmac-secret-qrstuvwxyz0123456789",
    )


@pytest.fixture
def codec(crypto_config, clock):
    return TokenCodec(crypto_config, clock=clock)


@pytest.fixture
def guest_store():
    return InMemoryGuestStore([
        GuestRecord(id="GST_1", event_id="EVT_1", name="Ada Lovelace", email="ada@example.com"),
        GuestRecord(id="GST_2", event_id="EVT_1", name="Grace Hopper"),
        GuestRecord(id="GST_9", event_id="EVT_2", name="Alan Turing"),
    ])


@pytest.fixture
def make_coordinator(codec, guest_store, clock):
    def _make(event_id: str = "EVT_1", **kwargs) -> CheckInCoordinator:
        kwargs.setdefault("guests", guest_store)
        kwargs.setdefault("staff_id", "staff-1")
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("cooldown_ms", 3000)
        c = CheckInCoordinator(event_id, codec=codec, **kwargs)
        c.start()
        return c
    return _make
