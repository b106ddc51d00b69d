import asyncio
import json

import pytest
from structlog.testing import capture_logs

from locator.storage.gateway import PersistConfig, PersistenceGateway
from tests.helpers.fakes import MemoryStorage


def make_gateway(storage, state=None, **cfg):
    state = state if state is not None else {"cache": {}, "counts": {}}
    snap = lambda: (dict(state["cache"]), dict(state["counts"]))  # noqa: E731
    return PersistenceGateway(storage, snap, PersistConfig(**cfg)), state


@pytest.mark.asyncio
async def test_flush_writes_both_records():
    storage = MemoryStorage()
    gw, state = make_gateway(storage)
    state["cache"]["alice"] = {"value": "France", "expires_at": 2.0, "cached_at": 1.0}
    state["counts"]["France"] = 1

    assert await gw.flush() is True
    assert json.loads(storage.data["location_cache"]) == state["cache"]
    assert json.loads(storage.data["location_stats"]) == {"France": 1}
    assert gw.stats.flushes == 1


@pytest.mark.asyncio
async def test_debounce_collapses_mutations_into_one_write():
    storage = MemoryStorage()
    gw, state = make_gateway(storage, debounce_s=0.05)
    for i in range(10):
        state["cache"][f"k{i}"] = {"value": None, "expires_at": 2.0, "cached_at": 1.0}
        gw.schedule()
    assert gw.scheduled
    await asyncio.sleep(0.15)

    cache_writes = [k for k, _ in storage.writes if k == "location_cache"]
    assert len(cache_writes) == 1
    assert len(json.loads(storage.data["location_cache"])) == 10
    assert not gw.scheduled
    await gw.close(final_flush=False)


@pytest.mark.asyncio
async def test_periodic_flush_runs_without_mutations():
    storage = MemoryStorage()
    gw, _ = make_gateway(storage, periodic_s=0.03)
    await gw.start()
    await asyncio.sleep(0.1)
    await gw.close(final_flush=False)
    assert gw.stats.flushes >= 2


@pytest.mark.asyncio
async def test_quota_guard_skips_flush():
    storage = MemoryStorage()
    storage.used_override = 950
    gw, _ = make_gateway(storage, quota_bytes=1000, flush_threshold=0.9)
    with capture_logs() as logs:
        assert await gw.flush() is False
    assert storage.writes == []
    assert gw.stats.skipped_quota == 1
    assert any(e["event"] == "storage_quota_skip" for e in logs)


@pytest.mark.asyncio
async def test_usage_warning_once_per_decile():
    storage = MemoryStorage()
    gw, _ = make_gateway(storage, quota_bytes=1000, flush_threshold=0.99)
    with capture_logs() as logs:
        for used in (50, 150, 190, 150, 420, 430, 100):
            storage.used_override = used
            await gw.flush()
    pcts = [e["pct"] for e in logs if e["event"] == "storage_usage"]
    assert pcts == [10, 40]


@pytest.mark.asyncio
async def test_unavailable_storage_is_silent_noop():
    storage = MemoryStorage()
    storage.unavailable = True
    gw, _ = make_gateway(storage)
    assert await gw.flush() is False
    assert gw.stats.skipped_unavailable == 1
    assert await gw.load() == ({}, {})
    assert await gw.load_enabled(default=True) is True
    await gw.save_enabled(False)  # no raise

    storage.unavailable = False
    assert await gw.flush() is True


@pytest.mark.asyncio
async def test_unexpected_storage_error_is_contained():
    class Exploding(MemoryStorage):
        async def set(self, key, data):
            raise OSError("disk on fire")

    gw, _ = make_gateway(Exploding())
    assert await gw.flush() is False
    assert gw.stats.failed == 1


@pytest.mark.asyncio
async def test_snapshot_taken_before_io():
    class SlowStorage(MemoryStorage):
        async def bytes_used(self):
            await asyncio.sleep(0.01)
            return await super().bytes_used()

    storage = SlowStorage()
    gw, state = make_gateway(storage)
    state["cache"]["a"] = {"value": "Japan", "expires_at": 2.0, "cached_at": 1.0}
    task = asyncio.create_task(gw.flush())
    await asyncio.sleep(0)   # flush has snapshotted and is now waiting on storage
    state["cache"]["b"] = {"value": "Spain", "expires_at": 2.0, "cached_at": 1.0}
    await task
    assert list(json.loads(storage.data["location_cache"])) == ["a"]


@pytest.mark.asyncio
async def test_load_and_enabled_flag():
    storage = MemoryStorage({
        "location_cache": json.dumps({"alice": {"value": "France", "expires_at": 2.0, "cached_at": 1.0}}).encode(),
        "location_stats": b"[1, 2]",   # wrong shape -> ignored
    })
    gw, _ = make_gateway(storage)
    cache, counts = await gw.load()
    assert cache["alice"]["value"] == "France"
    assert counts == {}

    assert await gw.load_enabled(default=True) is True
    await gw.save_enabled(False)
    assert await gw.load_enabled(default=True) is False


@pytest.mark.asyncio
async def test_close_does_final_flush():
    storage = MemoryStorage()
    gw, state = make_gateway(storage, debounce_s=10.0)
    state["counts"]["Brazil"] = 3
    gw.schedule()
    await gw.close()
    assert json.loads(storage.data["location_stats"]) == {"Brazil": 3}
    gw.schedule()
    assert not gw.scheduled


@pytest.mark.asyncio
async def test_mutation_during_debounced_write_gets_its_own_write():
    class SlowSetStorage(MemoryStorage):
        def __init__(self):
            super().__init__()
            self.writing = asyncio.Event()

        async def set(self, key, data):
            self.writing.set()
            await asyncio.sleep(0.05)
            await super().set(key, data)

    storage = SlowSetStorage()
    gw, state = make_gateway(storage, debounce_s=0.01)
    state["cache"]["a"] = {"value": "France", "expires_at": 2.0, "cached_at": 1.0}
    gw.schedule()
    await asyncio.wait_for(storage.writing.wait(), 1.0)

    # snapshot for "a" is already taken; this one must not be lost
    state["cache"]["b"] = {"value": "Spain", "expires_at": 2.0, "cached_at": 1.0}
    gw.schedule()
    await asyncio.sleep(0.5)

    persisted = json.loads(storage.data["location_cache"])
    assert set(persisted) == {"a", "b"}
    assert not gw.scheduled
    await gw.close(final_flush=False)


@pytest.mark.asyncio
async def test_unexpected_errors_on_enabled_flag_and_load_are_contained():
    class Exploding(MemoryStorage):
        async def get(self, key):
            raise OSError("disk on fire")

        async def set(self, key, data):
            raise OSError("disk on fire")

    gw, _ = make_gateway(Exploding())
    with capture_logs() as logs:
        await gw.save_enabled(False)
        assert await gw.load_enabled(default=True) is True
        assert await gw.load() == ({}, {})
    events = [e["event"] for e in logs]
    assert "save_failed" in events
    assert events.count("load_failed") == 3
