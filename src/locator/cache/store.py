from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import structlog

from locator.cache.stats import UsageAggregator
from locator.utils.time import days, utc_now_s
from locator.utils.types import CacheEntry, CacheRecord

log = structlog.get_logger("cache")


@dataclass(slots=True)
class CacheConfig:
    positive_ttl_s: float = days(30)   # value found
    negative_ttl_s: float = days(1)    # nothing found; revalidate much sooner
    max_entries: int = 100_000         # soft bound; triggers an expired-entry sweep


class TTLCacheStore:
    """
    key -> CacheEntry with differentiated expiry for found / not-found values.
    Expired entries are evicted lazily on read. Never raises.
    """
    def __init__(
        self,
        cfg: Optional[CacheConfig] = None,
        aggregator: Optional[UsageAggregator] = None,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.cfg = cfg or CacheConfig()
        if self.cfg.negative_ttl_s >= self.cfg.positive_ttl_s:
            raise ValueError("negative_ttl_s must be shorter than positive_ttl_s")
        self.aggregator = aggregator
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}

    def get(self, key: str, now: Optional[float] = None) -> Optional[CacheEntry]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if now is None:
            now = self._clock()
        if entry.expired(now):
            self._evict(key, entry)
            log.debug("cache_expired", key=key)
            return None
        return entry

    def put(self, key: str, value: Optional[str], now: Optional[float] = None) -> CacheEntry:
        if now is None:
            now = self._clock()
        if len(self._store) >= self.cfg.max_entries and key not in self._store:
            self.purge_expired(now)
        ttl = self.cfg.negative_ttl_s if value is None else self.cfg.positive_ttl_s
        entry = CacheEntry(value=value, expires_at=now + ttl, cached_at=now)
        prev = self._store.get(key)
        self._store[key] = entry
        if self.aggregator is not None:
            if prev is not None and prev.value != value:
                self.aggregator.discard(key, prev.value)
            self.aggregator.add(key, value)
        return entry

    def load_from(self, snapshot: Mapping[str, CacheRecord], now: Optional[float] = None) -> int:
        """
        Bulk-load persisted records. Anything already expired is dropped here,
        not kept around for later eviction. Returns the number loaded.
        """
        if now is None:
            now = self._clock()
        loaded = 0
        for key, rec in snapshot.items():
            try:
                value = rec.get("value")
                expires_at = float(rec["expires_at"])
                cached_at = float(rec.get("cached_at") or now)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                log.warning("cache_record_malformed", key=key, err=str(e))
                continue
            if not (math.isfinite(expires_at) and math.isfinite(cached_at)):
                log.warning("cache_record_malformed", key=key, err="non-finite timestamp")
                continue
            if expires_at <= now:
                continue
            if value is not None and not isinstance(value, str):
                value = str(value)
            if cached_at >= expires_at:
                cached_at = now
            entry = CacheEntry(value=value, expires_at=expires_at, cached_at=cached_at)
            prev = self._store.get(key)
            self._store[key] = entry
            if self.aggregator is not None:
                if prev is not None:
                    self.aggregator.discard(key, prev.value)
                self.aggregator.add(key, value)
            loaded += 1
        return loaded

    def snapshot(self) -> dict[str, CacheRecord]:
        return {
            key: {"value": e.value, "expires_at": e.expires_at, "cached_at": e.cached_at}
            for key, e in self._store.items()
        }

    def purge_expired(self, now: Optional[float] = None) -> int:
        if now is None:
            now = self._clock()
        dead = [(k, e) for k, e in self._store.items() if e.expired(now)]
        for k, e in dead:
            self._evict(k, e)
        return len(dead)

    def negative_count(self) -> int:
        return sum(1 for e in self._store.values() if e.negative)

    def _evict(self, key: str, entry: CacheEntry) -> None:
        self._store.pop(key, None)
        if self.aggregator is not None:
            self.aggregator.discard(key, entry.value)

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return key in self._store
