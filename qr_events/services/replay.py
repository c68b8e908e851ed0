from __future__ import annotations
import asyncio
import math
from typing import Protocol

from ..core.clock import Clock, now_millis
from ..core.redis import claim_token_once, get_redis, release_token

class ConsumedTokens(Protocol):
    async def claim(self, fingerprint: str, ttl_ms: int) -> bool:
        """True the first time a fingerprint is claimed within its TTL."""
        ...

    async def release(self, fingerprint: str) -> None:
        """Forget a claim whose admit never landed."""
        ...

class RedisConsumedTokens:
    def __init__(self, client=None):
        self._client = client

    async def claim(self, fingerprint: str, ttl_ms: int) -> bool:
        r = self._client or get_redis()
        return await claim_token_once(r, fingerprint, math.ceil(ttl_ms / 1000))

    async def release(self, fingerprint: str) -> None:
        await release_token(self._client or get_redis(), fingerprint)

class InMemoryConsumedTokens:
    def __init__(self, *, clock: Clock = now_millis):
        self._seen: dict[str, int] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    async def claim(self, fingerprint: str, ttl_ms: int) -> bool:
        async with self._lock:
            now = self._clock()
            # drop expired fingerprints so the set stays bounded by live tokens
            self._seen = {k: exp for k, exp in self._seen.items() if exp > now}
            if fingerprint in self._seen:
                return False
            self._seen[fingerprint] = now + max(ttl_ms, 1)
            return True

    async def release(self, fingerprint: str) -> None:
        async with self._lock:
            self._seen.pop(fingerprint, None)
