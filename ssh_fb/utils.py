"""Small helpers shared by the long-running loops."""
from __future__ import annotations

import asyncio
from datetime import datetime

TIME_FMT = "%Y-%m-%d %H:%M:%S"


async def wait_for_stop(stop: asyncio.Event | None, timeout: float) -> bool:
    """Sleep up to timeout seconds. Returns True as soon as stop is set."""
    if stop is None:
        await asyncio.sleep(timeout)
        return False
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout)
    except asyncio.TimeoutError:
        return False
    return True


def fmt_ts(ts: float) -> str:
    """Local time, the way the notifications show it."""
    return datetime.fromtimestamp(ts).strftime(TIME_FMT)


def fmt_hours(seconds: float) -> str:
    hours = seconds / 3600
    if hours == int(hours):
        return str(int(hours))
    return f"{hours:.1f}"
