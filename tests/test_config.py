"""Tests for configuration module."""

from pathlib import Path

from mnemo.core.config import Settings
from mnemo.core.types import ReinforcementPolicy


def test_default_settings():
    """Settings load with defaults."""
    settings = Settings(
        _env_file=None,  # Don't load .env in tests
    )
    assert settings.data_dir == Path("data")
    assert settings.hot_cache_capacity == 10
    assert settings.hot_cache_max_buckets == 10_000
    assert settings.fact_search_limit == 20
    assert settings.archive_search_limit == 5
    assert settings.pattern_capacity == 100
    assert settings.consolidation_every == 10
    assert settings.archive_backend == "memory"


def test_db_path():
    """Database path combines data_dir and db_name."""
    settings = Settings(
        data_dir=Path("/tmp/test"),
        db_name="test.db",
        _env_file=None,
    )
    assert settings.db_path == Path("/tmp/test/test.db")


def test_env_override(monkeypatch):
    """MNEMO_ prefixed environment variables override defaults."""
    monkeypatch.setenv("MNEMO_HOT_CACHE_CAPACITY", "5")
    monkeypatch.setenv("MNEMO_ARCHIVE_BACKEND", "sqlite")

    settings = Settings(_env_file=None)

    assert settings.hot_cache_capacity == 5
    assert settings.archive_backend == "sqlite"


def test_reinforcement_policy_from_settings():
    """Threshold decay fields are exposed as a ReinforcementPolicy."""
    settings = Settings(
        threshold_decay_after_uses=5,
        threshold_floor=0.5,
        _env_file=None,
    )
    policy = settings.reinforcement_policy

    assert isinstance(policy, ReinforcementPolicy)
    assert policy.decay_after_uses == 5
    assert policy.threshold_floor == 0.5
    assert policy.decay_step == 0.05
