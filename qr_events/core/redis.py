from __future__ import annotations
import redis.asyncio as redis
from .config import get_settings

_r: redis.Redis | None = None

def get_redis() -> redis.Redis:
    global _r
    if _r is None:
        _r = redis.from_url(get_settings().redis_url, decode_responses=True)
    return _r

async def ping_redis() -> bool:
    try:
        r = get_redis()
        pong = await r.ping()
        return bool(pong)
    except Exception:
        return False

# ---- Consumed-token set keyed by token fingerprint ----
async def claim_token_once(r: redis.Redis, fingerprint: str, ttl_seconds: int) -> bool:
    """
    Return True if we successfully mark this token as consumed (first time),
    return False if it's already present (replay).
    """
    # SET if Not eXists with EXpire; first caller wins
    ok = await r.set(f"qr:token:{fingerprint}", "1", ex=max(1, ttl_seconds), nx=True)
    return bool(ok)

async def release_token(r: redis.Redis, fingerprint: str) -> None:
    await r.delete(f"qr:token:{fingerprint}")

# ---- Simple fixed-window rate limit per IP/route ----
async def allow_request(ip: str, route_key: str) -> bool:
    """
    Fixed window: increment a counter key; allow if <= max.
    """
    settings = get_settings()
    if not settings.rl_enabled:
        return True
    r = get_redis()
    key = f"rl:{route_key}:{ip}"
    pipe = r.pipeline()
    pipe.incr(key)
    pipe.expire(key, settings.rl_window_seconds)
    count, _ = await pipe.execute()
    return int(count) <= settings.rl_max_reqs
