from __future__ import annotations

import asyncio
from typing import Callable, Iterable, Optional

import structlog

from locator.cache.stats import UsageAggregator
from locator.cache.store import TTLCacheStore
from locator.config import ResolverConfig
from locator.display.flags import DisplayLookup, country_flag, location_info
from locator.dispatch.queue import DispatchQueue, LookupFn
from locator.dispatch.singleflight import SingleFlight
from locator.errors import LocatorError, QueueFullError, RateLimited
from locator.storage.gateway import PersistenceGateway, Snapshot
from locator.storage.redis_store import Storage
from locator.utils.time import utc_now_s
from locator.utils.types import LocationInfo, UsageSummary

log = structlog.get_logger("resolver")


class ResolverService:
    """
    Public entry point: key -> LocationInfo.

    resolve(key):
      1) unexpired cache hit -> answer immediately
      2) a flight for key is already running -> wait for it, then re-check cache
      3) otherwise start a flight: enqueue a remote lookup, cache the answer
         (unless it timed out / was throttled / failed), count it, schedule a
         persistence write

    Owns every piece of mutable state (cache, counts, queue, flights, timers);
    collaborators are injected so tests can swap them.

    Usage:
        svc = ResolverService(client.request, RedisStorage.from_url(url))
        await svc.start()
        info = await svc.resolve("alice")     # LocationInfo(value="France", display="🇫🇷")
        await svc.stop()
    """
    def __init__(
        self,
        lookup: LookupFn,
        storage: Storage,
        cfg: Optional[ResolverConfig] = None,
        display_lookup: DisplayLookup = country_flag,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.cfg = cfg or ResolverConfig()
        self._display_lookup = display_lookup
        self.aggregator = UsageAggregator()
        self.cache = TTLCacheStore(self.cfg.cache, aggregator=self.aggregator, clock=clock)
        self.queue = DispatchQueue(lookup, self.cfg.dispatch, clock=clock)
        self.flights = SingleFlight()
        self.gateway = PersistenceGateway(storage, self._snapshot, self.cfg.persist)
        self.enabled: bool = self.cfg.enabled_default
        self._started = False

    # ---------------------------- lifecycle ---------------------------- #

    async def start(self) -> None:
        if self._started:
            return
        self.enabled = await self.gateway.load_enabled(self.cfg.enabled_default)
        cache, counts = await self.gateway.load()
        loaded = self.cache.load_from(cache)
        log.info(
            "cache_loaded",
            entries=loaded,
            negative=self.cache.negative_count(),
            dropped=len(cache) - loaded,
            values=len(self.aggregator),
            persisted_values=len(counts),
            enabled=self.enabled,
        )
        await self.gateway.start()
        self._started = True

    async def stop(self) -> None:
        await self.queue.close()
        await self.gateway.close(final_flush=True)
        self._started = False
        log.info("resolver_stopped", entries=len(self.cache), queue=self.queue.stats)

    # ---------------------------- resolution ---------------------------- #

    async def resolve(self, key: str) -> LocationInfo:
        entry = self.cache.get(key)
        if entry is not None:
            log.debug("cache_hit", key=key, value=entry.value)
            return self._info(entry.value)

        fut = self.flights.get(key)
        if fut is not None:
            value = await asyncio.shield(fut)
            entry = self.cache.get(key)
            return self._info(entry.value if entry is not None else value)

        if not self.enabled:
            log.debug("resolve_skipped_disabled", key=key)
            return LocationInfo()

        fut = self.flights.resolve(key, lambda: self._fetch(key))
        return self._info(await asyncio.shield(fut))

    async def resolve_many(self, keys: Iterable[str]) -> dict[str, LocationInfo]:
        """Resolve a scanned batch; duplicates collapse, order is kept."""
        uniq = list(dict.fromkeys(k for k in keys if k))
        results = await asyncio.gather(*(self.resolve(k) for k in uniq))
        return dict(zip(uniq, results))

    def peek(self, key: str) -> Optional[LocationInfo]:
        """Cache-only answer; never touches the network. None on miss."""
        entry = self.cache.get(key)
        if entry is None:
            return None
        return self._info(entry.value)

    # ---------------------------- control channel ---------------------------- #

    async def set_enabled(self, enabled: bool) -> None:
        self.enabled = bool(enabled)
        log.info("resolver_toggled", enabled=self.enabled)
        await self.gateway.save_enabled(self.enabled)

    def reset_statistics(self) -> None:
        self.aggregator.clear()
        log.info("statistics_reset")
        self.gateway.schedule()

    def statistics(self) -> UsageSummary:
        return self.aggregator.summary()

    # --------------------------- internals ------------------------- #

    async def _fetch(self, key: str) -> Optional[str]:
        try:
            resp = await self.queue.enqueue(key)
        except QueueFullError:
            log.info("resolve_queue_full", key=key, size=self.queue.qsize())
            return None
        except RateLimited as e:
            log.info("resolve_rate_limited", key=key, reset_at=e.reset_at)
            return None
        except LocatorError as e:
            log.info("resolve_failed", key=key, err=str(e))
            return None
        except Exception as e:
            log.warning("resolve_error", key=key, err=str(e))
            return None

        if resp.timed_out:
            # not cached: a later call should try again
            return None
        self.cache.put(key, resp.value)
        self.gateway.schedule()
        log.info("resolved", key=key, value=resp.value)
        return resp.value

    def _info(self, value: Optional[str]) -> LocationInfo:
        return location_info(value, self._display_lookup)

    def _snapshot(self) -> Snapshot:
        self.cache.purge_expired()
        return self.cache.snapshot(), self.aggregator.counts()
