from __future__ import annotations
import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], int]

MILLIS_PER_HOUR = 3_600_000

def now_millis() -> int:
    return time.time_ns() // 1_000_000

def millis_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
