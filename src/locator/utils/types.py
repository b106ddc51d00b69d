from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, TypedDict

# ---- cache primitives ----

@dataclass(slots=True)
class CacheEntry:
    value: Optional[str]   # None = negative result ("no location")
    expires_at: float      # epoch seconds
    cached_at: float       # epoch seconds

    @property
    def negative(self) -> bool:
        return self.value is None

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheRecord(TypedDict):
    """Persisted shape of one cache entry."""
    value: Optional[str]
    expires_at: float
    cached_at: float


# ---- remote lookup ----

@dataclass(slots=True)
class LookupResponse:
    """
    One answer from the remote lookup collaborator.
    - throttled: remote side reported rate limiting; reset_at is its epoch hint
    - timed_out: no answer within the deadline (set by the dispatch queue)
    """
    value: Optional[str] = None
    throttled: bool = False
    reset_at: float = 0.0
    timed_out: bool = False

    @classmethod
    def timeout(cls) -> "LookupResponse":
        return cls(value=None, timed_out=True)


# ---- facade results ----

@dataclass(slots=True, frozen=True)
class LocationInfo:
    value: Optional[str] = None
    display: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.value is not None


@dataclass(slots=True)
class UsageSummary:
    total: int = 0
    counts: list[tuple[str, int]] = field(default_factory=list)  # sorted by count desc


QueueStateName = Literal["idle", "draining", "rate_limited"]
