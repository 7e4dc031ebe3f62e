"""Configuration class tests."""

import importlib
from unittest.mock import patch

import pytest

import config as config_module
import manage
from opswatch.monitoring.thresholds import ThresholdConfig


@pytest.fixture
def reload_config(monkeypatch):
    """Re-read the config classes under the given environment variables."""

    def _reload(**env):
        for key in ('ALERT_DISK_THRESHOLD', 'ALERT_DISK_CRITICAL', 'QUEUE_DRIVER'):
            monkeypatch.delenv(key, raising=False)
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        return importlib.reload(config_module)

    yield _reload
    monkeypatch.undo()
    importlib.reload(config_module)


class TestThresholdSettings:

    def test_disk_threshold_above_default_critical(self, reload_config):
        reloaded = reload_config(ALERT_DISK_THRESHOLD='96')

        with patch('manage.config', reloaded.config):
            thresholds = ThresholdConfig.from_config(manage.load_config('testing'))

        assert thresholds.disk_usage_threshold_pct == 96.0
        assert thresholds.disk_critical_pct == 96.0

    def test_disk_critical_derived_when_unset(self, reload_config):
        reloaded = reload_config()

        assert reloaded.Config.ALERT_DISK_CRITICAL is None
        with patch('manage.config', reloaded.config):
            thresholds = ThresholdConfig.from_config(manage.load_config('testing'))
        assert thresholds.disk_critical_pct == 95.0

    def test_explicit_disk_critical_is_used(self, reload_config):
        reloaded = reload_config(ALERT_DISK_CRITICAL='98')
        assert reloaded.Config.ALERT_DISK_CRITICAL == 98.0


class TestQueueSettings:

    def test_queue_driver_defaults_to_sync(self, reload_config):
        reloaded = reload_config()
        assert reloaded.Config.QUEUE_DRIVER == 'sync'
        assert reloaded.TestingConfig.QUEUE_DRIVER == 'sync'

    def test_queue_driver_from_environment(self, reload_config):
        reloaded = reload_config(QUEUE_DRIVER='redis')
        assert reloaded.Config.QUEUE_DRIVER == 'redis'
