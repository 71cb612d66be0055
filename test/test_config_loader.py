"""Tests for the ini-backed configuration singleton."""

import pytest

from config_loader import Config, get_config
from scheduler_core import RetryPolicy, SchedulerConfigError


def test_defaults_without_file(fresh_config):
    assert fresh_config.period_ms == 10000
    assert fresh_config.duration_ms == 5000
    assert fresh_config.prefetch_ahead == 1
    assert fresh_config.seek_threshold_ms == 1000
    assert fresh_config.retry_policy == "never"
    assert fresh_config.line_height == 36
    assert fresh_config.debug is False


def test_singleton(fresh_config):
    assert get_config() is fresh_config
    assert Config() is fresh_config


def test_file_overrides_defaults(tmp_path):
    path = tmp_path / "custom.ini"
    path.write_text(
        "[Scheduler]\nperiod_ms = 4000\nretry_policy = next_tick\n"
        "[Display]\nline_height = 48\n",
        encoding="utf-8",
    )
    Config._instance = None
    try:
        config = Config(str(path))
        scheduler = config.scheduler_config()
    finally:
        Config._instance = None

    assert scheduler.period_length == 4000
    assert scheduler.duration == 5000
    assert scheduler.line_height == 48
    assert scheduler.retry_policy is RetryPolicy.NEXT_TICK


def test_invalid_scheduler_values_are_rejected(fresh_config):
    fresh_config.period_ms = 0
    with pytest.raises(SchedulerConfigError):
        fresh_config.scheduler_config()

    fresh_config.period_ms = 10000
    fresh_config.retry_policy = "sometimes"
    with pytest.raises(SchedulerConfigError):
        fresh_config.scheduler_config()


def test_save_and_reload(fresh_config):
    fresh_config.seek_threshold_ms = 2500
    fresh_config.last_danmaku_path = "videos/ep1.xml"
    fresh_config.save()

    fresh_config.seek_threshold_ms = 1
    fresh_config.load()

    assert fresh_config.seek_threshold_ms == 2500
    assert fresh_config.last_danmaku_path == "videos/ep1.xml"


def test_restore_defaults(fresh_config):
    fresh_config.prefetch_ahead = 5
    fresh_config.restore_defaults()

    assert fresh_config.prefetch_ahead == 1
    fresh_config.load()
    assert fresh_config.prefetch_ahead == 1
