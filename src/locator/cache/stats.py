from __future__ import annotations

from typing import Optional

from locator.utils.types import UsageSummary


class UsageAggregator:
    """
    Unique keys per value, e.g. how many distinct profiles resolved to "France".
    Only counts leave the process; the key sets stay in memory and are rebuilt
    from the cache on load.
    """
    __slots__ = ("_keys",)

    def __init__(self):
        self._keys: dict[str, set[str]] = {}

    def add(self, key: str, value: Optional[str]) -> bool:
        """Track key under value. Negative results are not counted. True if new."""
        if not value:
            return False
        keys = self._keys.get(value)
        if keys is None:
            keys = set()
            self._keys[value] = keys
        if key in keys:
            return False
        keys.add(key)
        return True

    def discard(self, key: str, value: Optional[str]) -> bool:
        if not value:
            return False
        keys = self._keys.get(value)
        if keys is None or key not in keys:
            return False
        keys.discard(key)
        if not keys:
            del self._keys[value]
        return True

    def count(self, value: str) -> int:
        keys = self._keys.get(value)
        return len(keys) if keys else 0

    def counts(self) -> dict[str, int]:
        return {value: len(keys) for value, keys in self._keys.items()}

    def summary(self) -> UsageSummary:
        counts = sorted(self.counts().items(), key=lambda kv: (-kv[1], kv[0]))
        return UsageSummary(total=sum(c for _, c in counts), counts=counts)

    def clear(self) -> None:
        self._keys.clear()

    def __len__(self) -> int:
        return len(self._keys)
