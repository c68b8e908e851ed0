from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)
_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in get_settings().nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, allow_reconnect=True, max_reconnect_attempts=3)

async def nats_close():
    try:
        if _nats.is_connected:
            await _nats.drain()
    except Exception:
        logger.warning("NATS drain failed", exc_info=True)

async def publish_checkin(evt: dict):
    """
    evt = {
      "event_id": str,
      "guest_id": str,
      "checked_in_by": str | None,
      "checked_at": iso8601,
      "idempotency_key": "event_id:guest_id"
    }
    """
    settings = get_settings()
    if not settings.nats_enabled:
        return
    await nats_connect()
    await _nats.publish(settings.nats_subject_checkin, json.dumps(evt).encode("utf-8"))
