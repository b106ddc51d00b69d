# src/locator/storage/redis_store.py
from __future__ import annotations

from typing import Optional, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from locator.errors import StorageUnavailable

PREFIX = "locator"


class Storage(Protocol):
    """Durable key -> bytes store the persistence gateway writes through."""

    async def get(self, key: str) -> Optional[bytes]: ...

    async def set(self, key: str, data: bytes) -> None: ...

    async def bytes_used(self) -> int: ...


def key(name: str, prefix: str = PREFIX) -> str:
    # {PREFIX}:{RECORD}
    return f"{prefix}:{name}"


class RedisStorage:
    """
    Storage on a plain Redis instance. All records live under one prefix so
    usage can be measured by scanning the namespace.
    Any Redis error surfaces as StorageUnavailable.
    """
    def __init__(self, r: Redis, prefix: str = PREFIX):
        self._r = r
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = PREFIX) -> "RedisStorage":
        return cls(Redis.from_url(url), prefix=prefix)

    async def get(self, name: str) -> Optional[bytes]:
        try:
            raw = await self._r.get(key(name, self.prefix))
        except RedisError as e:
            raise StorageUnavailable(f"redis get failed: {e}") from e
        if raw is None:
            return None
        return raw if isinstance(raw, bytes) else str(raw).encode("utf-8")

    async def set(self, name: str, data: bytes) -> None:
        try:
            await self._r.set(key(name, self.prefix), data)
        except RedisError as e:
            raise StorageUnavailable(f"redis set failed: {e}") from e

    async def bytes_used(self) -> int:
        total = 0
        try:
            async for k in self._r.scan_iter(match=f"{self.prefix}:*"):
                total += int(await self._r.strlen(k))
        except RedisError as e:
            raise StorageUnavailable(f"redis scan failed: {e}") from e
        return total

    async def close(self) -> None:
        await self._r.aclose()
