from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from locator.errors import QueueClosedError, QueueFullError, RateLimited
from locator.utils.backoff import backoff_deadline, exponential_wait
from locator.utils.time import minutes, seconds_until, utc_dt, utc_now_s
from locator.utils.types import LookupResponse, QueueStateName

log = structlog.get_logger("dispatch")

LookupFn = Callable[[str], Awaitable[LookupResponse]]


@dataclass(slots=True)
class DispatchConfig:
    max_queue: int = 50                  # hard cap; extra enqueues are rejected
    max_concurrent: int = 1              # outstanding remote calls
    min_interval_s: float = 3.5          # pacing between dispatches
    cooldown_s: float = 0.2              # pause before re-draining after each answer
    base_backoff_s: float = minutes(5)   # first throttle wait; doubles per consecutive hit
    recheck_cap_s: float = 60.0          # longest sleep between rate-limit re-checks
    request_timeout_s: float = 10.0


@dataclass(slots=True)
class QueueStats:
    enq_ok: int = 0
    enq_full: int = 0
    rejected_rate_limited: int = 0
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    timeouts: int = 0
    throttled: int = 0


@dataclass(slots=True)
class PendingTask:
    key: str
    future: asyncio.Future


class DispatchQueue:
    """
    Bounded FIFO of remote lookups, paced and backed off.

    States (see `state`):
      - idle:         nothing queued or in flight
      - draining:     tasks queued / in flight, dispatching one per min_interval_s
      - rate_limited: remote side throttled us; every queued task is rejected
                      with RateLimited until rate_limit_reset_at passes

    Throttle signals (a throttled response, or signal_rate_limit() called
    out-of-band) push rate_limit_reset_at to
        max(remote-reported reset, now + base_backoff_s * 2**(hits-1))
    and never pull it earlier. The hit counter resets once the window lapses
    or after a clean response.

    Usage:
        q = DispatchQueue(client.request, DispatchConfig())
        resp = await q.enqueue("alice")   # raises QueueFullError right away if full
    """
    def __init__(
        self,
        lookup: LookupFn,
        cfg: Optional[DispatchConfig] = None,
        clock: Callable[[], float] = utc_now_s,
    ):
        self._lookup = lookup
        self.cfg = cfg or DispatchConfig()
        self._clock = clock
        self.stats = QueueStats()

        self._pending: deque[PendingTask] = deque()
        self._active = 0
        self._last_dispatch = 0.0
        self._reset_at = 0.0
        self._hits = 0

        self._drainer: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

    # ---------------------------- public API ---------------------------- #

    def enqueue(self, key: str) -> asyncio.Future:
        if self._closed:
            raise QueueClosedError("dispatch queue is closed")
        if len(self._pending) >= self.cfg.max_queue:
            self.stats.enq_full += 1
            log.warning("queue_full", key=key, size=len(self._pending), max_size=self.cfg.max_queue)
            raise QueueFullError(key, self.cfg.max_queue)
        fut = asyncio.get_running_loop().create_future()
        self._pending.append(PendingTask(key, fut))
        self.stats.enq_ok += 1
        log.debug("enqueued", key=key, size=len(self._pending), active=self._active)
        self._kick()
        return fut

    def signal_rate_limit(self, reset_at: float = 0.0) -> float:
        """
        Register a throttle signal from the remote side. `reset_at` is the
        remote's own reset hint (epoch seconds, 0 if unknown).
        Returns the effective rate_limit_reset_at.
        """
        now = self._clock()
        self._maybe_recover(now)
        self._hits += 1
        wait = exponential_wait(self.cfg.base_backoff_s, self._hits)
        candidate = backoff_deadline(now, self.cfg.base_backoff_s, self._hits, reset_at)
        self._reset_at = max(self._reset_at, candidate)
        log.warning(
            "rate_limit_signal",
            hits=self._hits,
            backoff_s=wait,
            reported_reset_at=reset_at,
            resume_in_s=round(seconds_until(self._reset_at, now), 1),
            resume_at=utc_dt(self._reset_at).isoformat(),
        )
        return self._reset_at

    @property
    def state(self) -> QueueStateName:
        if self._reset_at and self._clock() < self._reset_at:
            return "rate_limited"
        if self._pending or self._active or (self._drainer is not None and not self._drainer.done()):
            return "draining"
        return "idle"

    @property
    def rate_limit_reset_at(self) -> float:
        return self._reset_at

    @property
    def consecutive_rate_limits(self) -> int:
        return self._hits

    @property
    def active(self) -> int:
        return self._active

    def qsize(self) -> int:
        return len(self._pending)

    async def close(self) -> None:
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        tasks = [t for t in (self._drainer, *self._inflight) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        while self._pending:
            task = self._pending.popleft()
            self._settle(task, exc=QueueClosedError(f"dispatch queue closed before {task.key!r} was sent"))

    # --------------------------- core internals ------------------------- #

    def _kick(self) -> None:
        if self._closed or not self._pending:
            return
        if self._drainer is not None and not self._drainer.done():
            return
        self._drainer = asyncio.create_task(self._drain(), name="dispatch-drain")

    async def _drain(self) -> None:
        while self._pending and self._active < self.cfg.max_concurrent:
            now = self._clock()
            if now < self._reset_at:
                self._reject_all(now)
                return
            self._maybe_recover(now)

            wait = self.cfg.min_interval_s - (now - self._last_dispatch)
            if wait > 0:
                await asyncio.sleep(wait)
                # a throttle signal may have landed while we slept
                continue

            task = self._pending.popleft()
            if task.future.done():
                continue
            self._active += 1
            self._last_dispatch = now
            self.stats.dispatched += 1
            log.debug("dispatch", key=task.key, queued=len(self._pending))
            t = asyncio.create_task(self._dispatch(task), name=f"dispatch:{task.key}")
            self._inflight.add(t)
            t.add_done_callback(self._inflight.discard)

    async def _dispatch(self, task: PendingTask) -> None:
        try:
            resp = await asyncio.wait_for(self._lookup(task.key), timeout=self.cfg.request_timeout_s)
        except asyncio.TimeoutError:
            self.stats.timeouts += 1
            log.info("lookup_timeout", key=task.key, timeout_s=self.cfg.request_timeout_s)
            self._settle(task, result=LookupResponse.timeout())
        except asyncio.CancelledError:
            self._settle(task, exc=QueueClosedError(f"lookup for {task.key!r} cancelled"))
            raise
        except Exception as e:
            self.stats.failed += 1
            log.warning("lookup_failed", key=task.key, err=str(e))
            self._settle(task, exc=e)
        else:
            if resp.throttled:
                self.stats.throttled += 1
                self.signal_rate_limit(resp.reset_at)
                self._settle(task, exc=RateLimited(task.key, self._reset_at))
            else:
                if self._hits > 0:
                    log.info("backoff_reset_after_success", hits=self._hits)
                    self._hits = 0
                self.stats.succeeded += 1
                self._settle(task, result=resp)
        finally:
            self._active -= 1
            self._schedule(self.cfg.cooldown_s)

    def _reject_all(self, now: float) -> None:
        rejected = 0
        while self._pending:
            task = self._pending.popleft()
            if not task.future.done():
                task.future.set_exception(RateLimited(task.key, self._reset_at))
                rejected += 1
        self.stats.rejected_rate_limited += rejected
        log.warning(
            "rate_limited_reject",
            rejected=rejected,
            hits=self._hits,
            resume_in_s=round(seconds_until(self._reset_at, now), 1),
        )
        self._schedule(min(seconds_until(self._reset_at, now), self.cfg.recheck_cap_s))

    def _maybe_recover(self, now: float) -> None:
        if self._reset_at > 0 and now >= self._reset_at:
            log.info("rate_limit_cleared", hits=self._hits)
            self._reset_at = 0.0
            self._hits = 0

    def _schedule(self, delay: float) -> None:
        if self._closed:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(max(0.0, delay), self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._maybe_recover(self._clock())
        self._kick()

    @staticmethod
    def _settle(task: PendingTask, result: Optional[LookupResponse] = None, exc: Optional[BaseException] = None) -> None:
        if task.future.done():
            return
        if exc is not None:
            task.future.set_exception(exc)
        else:
            task.future.set_result(result)
