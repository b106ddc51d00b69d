import pytest

from locator.config import config_from_env, lookup_config_from_env
from locator.utils.time import days


def test_defaults_match_reference_values():
    cfg = config_from_env({})
    assert cfg.cache.positive_ttl_s == days(30)
    assert cfg.cache.negative_ttl_s == days(1)
    assert cfg.dispatch.max_queue == 50
    assert cfg.dispatch.max_concurrent == 1
    assert cfg.dispatch.min_interval_s == 3.5
    assert cfg.dispatch.base_backoff_s == 300.0
    assert cfg.dispatch.request_timeout_s == 10.0
    assert cfg.persist.debounce_s == 5.0
    assert cfg.persist.periodic_s == 30.0
    assert cfg.persist.quota_bytes == 10 * 1024 * 1024
    assert cfg.persist.flush_threshold == 0.9
    assert cfg.enabled_default is True


def test_overrides():
    cfg = config_from_env({
        "LOCATOR_POSITIVE_TTL_DAYS": "7",
        "LOCATOR_NEGATIVE_TTL_DAYS": "0.5",
        "LOCATOR_MAX_QUEUE": "10",
        "LOCATOR_BASE_BACKOFF_MIN": "2",
        "LOCATOR_COOLDOWN_S": "0",
        "LOCATOR_DEBOUNCE_S": "1.5",
        "LOCATOR_ENABLED": "no",
        "LOCATOR_MIN_INTERVAL_S": "  ",   # blank -> default
    })
    assert cfg.cache.positive_ttl_s == days(7)
    assert cfg.cache.negative_ttl_s == days(0.5)
    assert cfg.dispatch.max_queue == 10
    assert cfg.dispatch.base_backoff_s == 120.0
    assert cfg.dispatch.cooldown_s == 0.0
    assert cfg.dispatch.min_interval_s == 3.5
    assert cfg.persist.debounce_s == 1.5
    assert cfg.enabled_default is False


@pytest.mark.parametrize("env", [
    {"LOCATOR_NEGATIVE_TTL_DAYS": "30"},
    {"LOCATOR_MAX_QUEUE": "0"},
    {"LOCATOR_QUOTA_BYTES": "0"},
    {"LOCATOR_MAX_ENTRIES": "lots"},
])
def test_invalid_values_raise(env):
    with pytest.raises(ValueError):
        config_from_env(env)


def test_lookup_config():
    with pytest.raises(KeyError):
        lookup_config_from_env({})
    cfg = lookup_config_from_env({
        "LOCATOR_LOOKUP_URL": "https://api.example.test/users/show",
        "LOCATOR_LOOKUP_TOKEN": "abc",
    })
    assert cfg.base_url == "https://api.example.test/users/show"
    assert cfg.bearer_token == "abc"
    assert cfg.key_param == "screen_name"
    assert cfg.value_field == "location"
