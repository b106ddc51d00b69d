from __future__ import annotations

import time
from datetime import datetime, timezone

DAY_S = 86_400.0


def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()


def days(n: float) -> float:
    """Days -> seconds."""
    return n * DAY_S


def minutes(n: float) -> float:
    """Minutes -> seconds."""
    return n * 60.0


def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)


def seconds_until(ts_target: float, now: float | None = None) -> float:
    """Non-negative time until target (clamped at 0)."""
    if now is None:
        now = utc_now_s()
    return max(0.0, ts_target - now)
