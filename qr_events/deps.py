from __future__ import annotations
from typing import Any, Dict
from fastapi import Depends, Header, HTTPException, status
import time
import httpx
import jwt

from .db import async_session_maker
from .core.codec import TokenCodec
from .core.config import get_settings
from .services.guests import EventStore, GuestStore, SqlEventStore, SqlGuestStore
from .services.replay import ConsumedTokens, RedisConsumedTokens
from .services.sessions import SessionRegistry

settings = get_settings()

STAFF_ROLES = {"organiser", "staff"}

_JWKS: Dict[str, Any] | None = None
_JWKS_TS: float = 0.0
_JWKS_TTL: int = 3600

async def fetch_jwks() -> Dict[str, Any]:
    global _JWKS, _JWKS_TS
    now = time.time()
    if _JWKS is None or (now - _JWKS_TS) > _JWKS_TTL:
        async with httpx.AsyncClient() as client:
            r = await client.get(settings.auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _JWKS = r.json()
            _JWKS_TS = now
    return _JWKS

async def get_signing_key():
    from jwt.algorithms import RSAAlgorithm
    jwks = await fetch_jwks()
    key = jwks["keys"][0]
    return RSAAlgorithm.from_jwk(key)

async def get_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        key = await get_signing_key()
    except httpx.HTTPError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth keys unavailable")
    try:
        payload = jwt.decode(token, key=key, algorithms=["RS256"], issuer=settings.token_issuer, options={"verify_aud": False})
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if "sub" not in payload or "role" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return payload

async def require_staff(claims: Dict[str, Any] = Depends(get_claims)) -> Dict[str, Any]:
    if claims.get("role") not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff or organiser role required")
    return claims

# --- core collaborators (overridable in tests) ---

_codec: TokenCodec | None = None
_registry = SessionRegistry(
    idle_ttl_ms=settings.session_idle_ttl_seconds * 1000,
    max_sessions=settings.session_max,
)

def get_codec() -> TokenCodec:
    global _codec
    if _codec is None:
        _codec = TokenCodec(settings.crypto)
    return _codec

def get_guest_store() -> GuestStore:
    return SqlGuestStore(async_session_maker)

def get_event_store() -> EventStore:
    return SqlEventStore(async_session_maker)

def get_consumed_tokens() -> ConsumedTokens | None:
    if not settings.token_replay_guard:
        return None
    return RedisConsumedTokens()

def get_registry() -> SessionRegistry:
    return _registry
