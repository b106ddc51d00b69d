from __future__ import annotations


class LocatorError(Exception):
    """Base class for every error raised by the resolver."""


class QueueFullError(LocatorError):
    """Dispatch queue is at capacity; the request was not queued."""

    def __init__(self, key: str, max_size: int):
        super().__init__(f"dispatch queue full ({max_size}), rejected {key!r}")
        self.key = key
        self.max_size = max_size


class QueueClosedError(LocatorError):
    """Dispatch queue was shut down before the request was sent."""


class RateLimited(LocatorError):  # noqa: N818
    """Remote side is throttling us; retry after `reset_at` (epoch seconds)."""

    def __init__(self, key: str, reset_at: float):
        super().__init__(f"rate limited until {reset_at:.0f}, rejected {key!r}")
        self.key = key
        self.reset_at = reset_at


class RemoteLookupError(LocatorError):
    """Remote lookup failed (bad status, network error, malformed body)."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class StorageUnavailable(LocatorError):  # noqa: N818
    """Durable storage unreachable or context invalidated."""
