"""
Tests for configuration loading.
"""

import json

import pydantic
import pytest
import yaml

from studyiq.common.config import AppConfig, CacheConfig, ConfigLoader, LoggingConfig, SelectionConfig


def test_defaults():
    config = ConfigLoader(environ={}).load()

    assert config.adaptive.daily_limit == 10
    assert config.adaptive.cooldown_minutes == 0
    assert config.adaptive.session_expiry_hours == 24
    assert config.selection.weak_ratio == 0.7
    assert config.selection.default_total == 7
    assert config.analytics.min_valid_attempts == 3
    assert config.cache.analytics_ttl_seconds == 1800
    assert config.spaced_repetition.default_max_cards == 20
    assert config.database.url.startswith("sqlite+aiosqlite")
    assert config.is_development


def test_yaml_file_with_env_override(tmp_path):
    path = tmp_path / "studyiq.yaml"
    path.write_text(yaml.safe_dump({
        "adaptive": {"daily_limit": 3, "cooldown_minutes": 15},
        "cache": {"backend": "redis"},
        "environment": {"env": "testing"},
    }))

    config = ConfigLoader(str(path), environ={"STUDYIQ_ADAPTIVE__DAILY_LIMIT": "5"}).load()

    assert config.adaptive.daily_limit == 5
    assert config.adaptive.cooldown_minutes == 15
    assert config.cache.backend == "redis"
    assert config.is_testing


def test_json_file_from_env_path(tmp_path):
    path = tmp_path / "studyiq.json"
    path.write_text(json.dumps({"selection": {"default_total": 10}}))

    config = ConfigLoader(environ={"STUDYIQ_CONFIG_PATH": str(path)}).load()

    assert config.selection.default_total == 10


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = ConfigLoader(str(tmp_path / "absent.yaml"), environ={}).load()
    assert config == AppConfig()


def test_load_is_memoized():
    loader = ConfigLoader(environ={})
    assert loader.load() is loader.load()


def test_validators():
    with pytest.raises(pydantic.ValidationError):
        CacheConfig(backend="memcached")
    with pytest.raises(pydantic.ValidationError):
        SelectionConfig(weak_ratio=1.5)
    with pytest.raises(pydantic.ValidationError):
        ConfigLoader(environ={"STUDYIQ_ADAPTIVE__DAILY_LIMIT": "-1"}).load()

    assert LoggingConfig(level="debug").level == "DEBUG"
    assert CacheConfig(backend="REDIS").backend == "redis"


def test_redis_connection_string():
    config = ConfigLoader(environ={
        "STUDYIQ_REDIS__HOST": "cache.internal",
        "STUDYIQ_REDIS__PASSWORD": "secret",
        "STUDYIQ_REDIS__USE_SSL": "true",
    }).load()

    assert config.redis.connection_string == "rediss://:secret@cache.internal:6379/0"
