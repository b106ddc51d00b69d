from __future__ import annotations


def exponential_wait(base: float, hits: int) -> float:
    """
    Wait after the `hits`-th consecutive throttle signal (no jitter):
    base, 2*base, 4*base, ...  hits <= 0 -> 0.
    """
    if hits <= 0:
        return 0.0
    return base * (2.0 ** (hits - 1))


def backoff_deadline(now: float, base: float, hits: int, reported_reset_at: float = 0.0) -> float:
    """
    Earliest instant the remote may be called again.
    Both the remote-reported reset and the local exponential wait are lower
    bounds, so the later one wins.
    """
    return max(float(reported_reset_at or 0.0), now + exponential_wait(base, hits))
