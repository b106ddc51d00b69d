from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

log = structlog.get_logger("singleflight")


class SingleFlight:
    """
    At most one in-flight producer per key. Concurrent callers for the same key
    get the very same future and therefore the same outcome (value or error).

    The key is unregistered from a done-callback added right after the task is
    created, so it runs before any waiter resumes: a waiter that wakes up and
    asks again starts a fresh flight instead of re-joining a settled one.
    """
    def __init__(self):
        self._inflight: dict[str, asyncio.Future] = {}

    def resolve(self, key: str, producer: Callable[[], Awaitable[Optional[str]]]) -> asyncio.Future:
        fut = self._inflight.get(key)
        if fut is not None:
            return fut
        fut = asyncio.ensure_future(producer())
        self._inflight[key] = fut
        fut.add_done_callback(lambda f, k=key: self._settle(k, f))
        return fut

    def pending(self, key: str) -> bool:
        return key in self._inflight

    def get(self, key: str) -> Optional[asyncio.Future]:
        return self._inflight.get(key)

    def _settle(self, key: str, fut: asyncio.Future) -> None:
        if self._inflight.get(key) is fut:
            del self._inflight[key]
        if not fut.cancelled() and fut.exception() is not None:
            log.debug("flight_failed", key=key, err=str(fut.exception()))

    def __len__(self) -> int:
        return len(self._inflight)
