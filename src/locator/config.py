from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from locator.cache.store import CacheConfig
from locator.dispatch.queue import DispatchConfig
from locator.remote.client import HttpLookupConfig
from locator.storage.gateway import PersistConfig
from locator.utils.time import days, minutes


@dataclass(slots=True)
class ResolverConfig:
    cache: CacheConfig = field(default_factory=CacheConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    persist: PersistConfig = field(default_factory=PersistConfig)
    enabled_default: bool = True


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    v = env.get(name)
    if v is None or not v.strip():
        return None
    return v.strip()


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    v = _get(env, name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {v!r}") from e


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    v = _get(env, name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {v!r}") from e


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    v = _get(env, name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


def config_from_env(env: Optional[Mapping[str, str]] = None) -> ResolverConfig:
    """
    Build ResolverConfig from LOCATOR_* environment variables.
    Anything unset keeps the reference default.
    """
    env = os.environ if env is None else env
    d_cache = CacheConfig()
    d_dispatch = DispatchConfig()
    d_persist = PersistConfig()

    cache = CacheConfig(
        positive_ttl_s=days(_float(env, "LOCATOR_POSITIVE_TTL_DAYS", d_cache.positive_ttl_s / days(1))),
        negative_ttl_s=days(_float(env, "LOCATOR_NEGATIVE_TTL_DAYS", d_cache.negative_ttl_s / days(1))),
        max_entries=_int(env, "LOCATOR_MAX_ENTRIES", d_cache.max_entries),
    )
    if cache.negative_ttl_s >= cache.positive_ttl_s:
        raise ValueError("LOCATOR_NEGATIVE_TTL_DAYS must be shorter than LOCATOR_POSITIVE_TTL_DAYS")

    dispatch = DispatchConfig(
        max_queue=_int(env, "LOCATOR_MAX_QUEUE", d_dispatch.max_queue),
        max_concurrent=_int(env, "LOCATOR_MAX_CONCURRENT", d_dispatch.max_concurrent),
        min_interval_s=_float(env, "LOCATOR_MIN_INTERVAL_S", d_dispatch.min_interval_s),
        cooldown_s=_float(env, "LOCATOR_COOLDOWN_S", d_dispatch.cooldown_s),
        base_backoff_s=minutes(_float(env, "LOCATOR_BASE_BACKOFF_MIN", d_dispatch.base_backoff_s / 60.0)),
        recheck_cap_s=_float(env, "LOCATOR_RECHECK_CAP_S", d_dispatch.recheck_cap_s),
        request_timeout_s=_float(env, "LOCATOR_REQUEST_TIMEOUT_S", d_dispatch.request_timeout_s),
    )
    if dispatch.max_queue < 1 or dispatch.max_concurrent < 1:
        raise ValueError("LOCATOR_MAX_QUEUE and LOCATOR_MAX_CONCURRENT must be >= 1")

    persist = PersistConfig(
        debounce_s=_float(env, "LOCATOR_DEBOUNCE_S", d_persist.debounce_s),
        periodic_s=_float(env, "LOCATOR_FLUSH_INTERVAL_S", d_persist.periodic_s),
        quota_bytes=_int(env, "LOCATOR_QUOTA_BYTES", d_persist.quota_bytes),
        flush_threshold=_float(env, "LOCATOR_FLUSH_THRESHOLD", d_persist.flush_threshold),
    )
    if persist.quota_bytes <= 0:
        raise ValueError("LOCATOR_QUOTA_BYTES must be positive")

    return ResolverConfig(
        cache=cache,
        dispatch=dispatch,
        persist=persist,
        enabled_default=_bool(env, "LOCATOR_ENABLED", True),
    )


def lookup_config_from_env(env: Optional[Mapping[str, str]] = None) -> HttpLookupConfig:
    """Raises KeyError if LOCATOR_LOOKUP_URL is missing."""
    env = os.environ if env is None else env
    base_url = _get(env, "LOCATOR_LOOKUP_URL")
    if base_url is None:
        raise KeyError("LOCATOR_LOOKUP_URL")
    d = HttpLookupConfig(base_url=base_url)
    return HttpLookupConfig(
        base_url=base_url,
        bearer_token=_get(env, "LOCATOR_LOOKUP_TOKEN"),
        key_param=_get(env, "LOCATOR_LOOKUP_KEY_PARAM") or d.key_param,
        value_field=_get(env, "LOCATOR_LOOKUP_VALUE_FIELD") or d.value_field,
        timeout_s=_float(env, "LOCATOR_REQUEST_TIMEOUT_S", d.timeout_s),
    )
