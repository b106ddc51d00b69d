from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from locator.errors import StorageUnavailable
from locator.storage.redis_store import Storage
from locator.utils.types import CacheRecord

log = structlog.get_logger("persist")

Snapshot = tuple[dict[str, CacheRecord], dict[str, int]]


@dataclass(slots=True)
class PersistConfig:
    cache_record: str = "location_cache"
    stats_record: str = "location_stats"
    enabled_record: str = "resolver_enabled"
    debounce_s: float = 5.0          # collapse bursts of mutations into one write
    periodic_s: float = 30.0         # forced flush, bounds staleness
    quota_bytes: int = 10 * 1024 * 1024
    flush_threshold: float = 0.9     # skip writes at/above this share of quota


@dataclass(slots=True)
class PersistStats:
    flushes: int = 0
    skipped_quota: int = 0
    skipped_unavailable: int = 0
    failed: int = 0


class PersistenceGateway:
    """
    Mirrors the in-memory cache and usage counts to durable storage.

    - schedule(): debounced write after a mutation (first call arms the timer,
      later calls while armed ride along)
    - periodic loop started by start(): flush every periodic_s regardless
    - flush(): snapshot synchronously, check quota, write both records

    Storage trouble never escapes: unavailable -> quiet skip, anything else
    -> warning. In-memory state stays authoritative and the next cycle retries.
    """
    def __init__(
        self,
        storage: Storage,
        snapshot_fn: Callable[[], Snapshot],
        cfg: Optional[PersistConfig] = None,
    ):
        self._storage = storage
        self._snapshot_fn = snapshot_fn
        self.cfg = cfg or PersistConfig()
        self.stats = PersistStats()
        self._lock = asyncio.Lock()
        self._debounce_task: Optional[asyncio.Task] = None
        self._periodic_task: Optional[asyncio.Task] = None
        self._warned_decile = 0
        self._closed = False
        self._dirty = False

    # ---------------------------- lifecycle ---------------------------- #

    async def start(self) -> None:
        self._closed = False
        if self._periodic_task is None or self._periodic_task.done():
            self._periodic_task = asyncio.create_task(self._periodic_loop(), name="persist-periodic")

    async def close(self, final_flush: bool = True) -> None:
        self._closed = True
        tasks = [t for t in (self._debounce_task, self._periodic_task) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._debounce_task = None
        self._periodic_task = None
        if final_flush:
            await self.flush()

    # ---------------------------- writes ---------------------------- #

    def schedule(self) -> None:
        if self._closed:
            return
        if self._debounce_task is not None and not self._debounce_task.done():
            # armed or mid-flush; a mid-flush mutation needs another pass
            self._dirty = True
            return
        self._debounce_task = asyncio.create_task(self._debounced(), name="persist-debounce")

    @property
    def scheduled(self) -> bool:
        return self._debounce_task is not None and not self._debounce_task.done()

    async def flush(self) -> bool:
        async with self._lock:
            # snapshot before the first await so later mutations can't tear it
            cache, counts = self._snapshot_fn()
            cache_bytes = _dumps(cache)
            counts_bytes = _dumps(counts)
            try:
                used = await self._storage.bytes_used()
                self._sample_usage(used)
                share = used / self.cfg.quota_bytes
                if share >= self.cfg.flush_threshold:
                    self.stats.skipped_quota += 1
                    log.warning(
                        "storage_quota_skip",
                        used_bytes=used,
                        quota_bytes=self.cfg.quota_bytes,
                        pct=round(share * 100.0, 1),
                    )
                    return False
                await self._storage.set(self.cfg.cache_record, cache_bytes)
                await self._storage.set(self.cfg.stats_record, counts_bytes)
            except StorageUnavailable as e:
                self.stats.skipped_unavailable += 1
                log.info("storage_unavailable_skip", err=str(e))
                return False
            except Exception as e:
                self.stats.failed += 1
                log.warning("flush_failed", err=str(e))
                return False
            self.stats.flushes += 1
            log.debug("flushed", entries=len(cache), values=len(counts), bytes=len(cache_bytes) + len(counts_bytes))
            return True

    async def save_enabled(self, enabled: bool) -> None:
        try:
            await self._storage.set(self.cfg.enabled_record, b"1" if enabled else b"0")
        except StorageUnavailable as e:
            log.info("storage_unavailable_skip", record=self.cfg.enabled_record, err=str(e))
        except Exception as e:
            log.warning("save_failed", record=self.cfg.enabled_record, err=str(e))

    # ---------------------------- reads ---------------------------- #

    async def load(self) -> Snapshot:
        cache = await self._read_json(self.cfg.cache_record) or {}
        counts = await self._read_json(self.cfg.stats_record) or {}
        return cache, counts

    async def load_enabled(self, default: bool = True) -> bool:
        try:
            raw = await self._storage.get(self.cfg.enabled_record)
        except StorageUnavailable as e:
            log.info("storage_unavailable_load_skip", record=self.cfg.enabled_record, err=str(e))
            return default
        except Exception as e:
            log.warning("load_failed", record=self.cfg.enabled_record, err=str(e))
            return default
        if raw is None:
            return default
        return raw.strip().lower() in (b"1", b"true", b"yes")

    # --------------------------- internals ------------------------- #

    async def _debounced(self) -> None:
        while True:
            await asyncio.sleep(self.cfg.debounce_s)
            # mutations up to here are covered by the snapshot flush() takes
            self._dirty = False
            await self.flush()
            if not self._dirty or self._closed:
                return

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cfg.periodic_s)
            await self.flush()

    async def _read_json(self, name: str) -> Optional[dict]:
        try:
            raw = await self._storage.get(name)
        except StorageUnavailable as e:
            log.info("storage_unavailable_load_skip", record=name, err=str(e))
            return None
        except Exception as e:
            log.warning("load_failed", record=name, err=str(e))
            return None
        if raw is None:
            return None
        try:
            obj = json.loads(raw)
        except ValueError as e:
            log.warning("record_corrupt", record=name, err=str(e))
            return None
        if not isinstance(obj, dict):
            log.warning("record_corrupt", record=name, err=f"expected object, got {type(obj).__name__}")
            return None
        return obj

    def _sample_usage(self, used: int) -> None:
        # warn once per 10%-of-quota boundary; never twice for the same one
        decile = int(used * 10 // self.cfg.quota_bytes)
        if decile > self._warned_decile:
            self._warned_decile = decile
            log.warning("storage_usage", pct=decile * 10, used_bytes=used, quota_bytes=self.cfg.quota_bytes)


def _dumps(obj) -> bytes:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
