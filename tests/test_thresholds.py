"""Threshold configuration and evaluation tests."""

from datetime import datetime, timezone

import pytest

from conftest import HEALTHY_PROBE_DATA
from opswatch.monitoring.events import AlertSeverity, HealthStatus
from opswatch.monitoring.health_checks import ComponentCheck, HealthReport
from opswatch.monitoring.metrics_collector import SNAPSHOT_FIELDS, MetricsSnapshot
from opswatch.monitoring.probes import ProbeResult
from opswatch.monitoring.thresholds import ThresholdConfig, ThresholdEvaluator
from opswatch.utils.exceptions import ConfigError

TIMESTAMP = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def make_snapshot(**overrides):
    """Healthy snapshot; a dict override merges into a field, a string makes it an error."""
    results = {}
    for name in SNAPSHOT_FIELDS:
        override = overrides.get(name)
        if isinstance(override, str):
            results[name] = ProbeResult.failure(name, override)
        else:
            results[name] = ProbeResult.success(name, dict(HEALTHY_PROBE_DATA[name], **(override or {})))
    return MetricsSnapshot(timestamp=TIMESTAMP, **results)


class TestThresholdConfig:

    def test_defaults(self):
        config = ThresholdConfig()
        assert config.memory_usage_threshold_mb == 500.0
        assert config.disk_usage_threshold_pct == 90.0
        assert config.database_response_threshold_ms == 100.0
        assert config.cache_response_threshold_ms == 50.0
        assert config.error_rate_threshold == 5
        assert config.time_window_minutes == 15
        assert config.max_alerts_per_hour == 10

    def test_derived_critical_limits(self):
        config = ThresholdConfig(memory_usage_threshold_mb=200, disk_usage_threshold_pct=97)
        assert config.memory_critical_mb == 400
        assert config.disk_critical_pct == 97
        assert config.database_critical_ms == 1000
        assert config.cache_critical_ms == 500
        assert config.queue_backlog_critical == 1000
        assert config.error_type_threshold == config.error_rate_threshold

    def test_window_ttl_includes_grace(self):
        config = ThresholdConfig(time_window_minutes=15, window_grace_seconds=300)
        assert config.window_seconds == 900
        assert config.window_ttl_seconds == 1200

    def test_critical_below_warning_is_rejected(self):
        with pytest.raises(ConfigError):
            ThresholdConfig(disk_usage_threshold_pct=90, disk_critical_pct=80)

    def test_invalid_window(self):
        with pytest.raises(ConfigError):
            ThresholdConfig(time_window_minutes=0)
        with pytest.raises(ConfigError):
            ThresholdConfig(window_grace_seconds=-1)

    def test_from_config_reads_and_casts(self):
        config = ThresholdConfig.from_config({
            'ALERT_MEMORY_THRESHOLD': '256',
            'ALERT_DISK_THRESHOLD': 85,
            'ERROR_MONITORING_WINDOW': '5',
            'ALERT_ERROR_RATE_THRESHOLD': '3',
            'ALERT_MAX_PER_HOUR': 2,
            'UNRELATED': 'x'
        })
        assert config.memory_usage_threshold_mb == 256.0
        assert config.disk_usage_threshold_pct == 85.0
        assert config.time_window_minutes == 5
        assert config.error_rate_threshold == 3
        assert config.error_type_threshold == 3
        assert config.max_alerts_per_hour == 2

    def test_from_config_rejects_garbage(self):
        with pytest.raises(ConfigError):
            ThresholdConfig.from_config({'ALERT_DISK_THRESHOLD': 'lots'})

    def test_to_dict_lists_every_limit(self):
        data = ThresholdConfig().to_dict()
        assert data['disk_critical_pct'] == 95.0
        assert 'window_grace_seconds' in data


class TestEvaluateSnapshot:

    def setup_method(self):
        self.evaluator = ThresholdEvaluator(ThresholdConfig())

    def test_healthy_snapshot_has_no_events(self):
        assert self.evaluator.evaluate_snapshot(make_snapshot()) == []

    def test_value_equal_to_threshold_does_not_fire(self):
        snapshot = make_snapshot(
            memory={'current_mb': 500.0},
            disk={'used_percent': 90.0},
            database={'query_time_ms': 100.0},
            cache={'response_time_ms': 50.0}
        )
        assert self.evaluator.evaluate_snapshot(snapshot) == []

    def test_value_just_above_threshold_fires(self):
        snapshot = make_snapshot(
            memory={'current_mb': 500.01},
            disk={'used_percent': 90.01},
            database={'query_time_ms': 100.01},
            cache={'response_time_ms': 50.01}
        )
        types = [event.type for event in self.evaluator.evaluate_snapshot(snapshot)]
        assert types == ['memory_usage', 'disk_usage', 'database_response_time', 'cache_response_time']

    def test_disk_event_carries_value_threshold_and_unit(self):
        events = self.evaluator.evaluate_snapshot(make_snapshot(disk={'used_percent': 92.0}))
        assert len(events) == 1
        event = events[0]
        assert event.type == 'disk_usage'
        assert event.severity == AlertSeverity.WARNING
        assert event.value == 92.0
        assert event.threshold == 90.0
        assert event.unit == '%'
        assert event.timestamp == TIMESTAMP

    def test_disk_above_critical_is_critical(self):
        events = self.evaluator.evaluate_snapshot(make_snapshot(disk={'used_percent': 97.5}))
        assert events[0].severity == AlertSeverity.CRITICAL

    def test_failed_probe_becomes_system_error(self):
        events = self.evaluator.evaluate_snapshot(make_snapshot(database='connection refused'))
        assert [event.type for event in events] == ['system_error_database']
        assert events[0].severity == AlertSeverity.CRITICAL
        assert events[0].context['error'] == 'connection refused'


class TestEvaluateHealthReport:

    def test_one_event_per_degraded_check(self):
        report = HealthReport(
            overall_status=HealthStatus.UNHEALTHY,
            timestamp=TIMESTAMP,
            environment='testing',
            checks={
                'application': ComponentCheck('application', HealthStatus.HEALTHY, 'ok'),
                'database': ComponentCheck('database', HealthStatus.UNHEALTHY, 'down'),
                'cache': ComponentCheck('cache', HealthStatus.WARNING, 'slow'),
            }
        )
        events = ThresholdEvaluator(ThresholdConfig()).evaluate_health_report(report)
        by_type = {event.type: event for event in events}
        assert set(by_type) == {'health_check_database', 'health_check_cache'}
        assert by_type['health_check_database'].severity == AlertSeverity.CRITICAL
        assert by_type['health_check_cache'].severity == AlertSeverity.WARNING


class TestEvaluateErrorCounts:

    def setup_method(self):
        self.evaluator = ThresholdEvaluator(ThresholdConfig(error_rate_threshold=5,
                                                            error_type_threshold=3))

    def test_fires_only_on_the_crossing_increment(self):
        assert self.evaluator.evaluate_error_counts('ServerError', 2, 2) == []
        crossing = self.evaluator.evaluate_error_counts('ServerError', 3, 3)
        assert [event.type for event in crossing] == ['high_error_type_rate:ServerError']
        assert self.evaluator.evaluate_error_counts('ServerError', 4, 4) == []

    def test_overall_rate_is_critical(self):
        events = self.evaluator.evaluate_error_counts('ClientError', 5, 1)
        assert [event.type for event in events] == ['error_rate']
        assert events[0].severity == AlertSeverity.CRITICAL
        assert events[0].value == 5
        assert events[0].context['window_minutes'] == 15

    def test_both_can_cross_together(self):
        evaluator = ThresholdEvaluator(ThresholdConfig(error_rate_threshold=5))
        events = evaluator.evaluate_error_counts('ServerError', 5, 5, timestamp=TIMESTAMP)
        assert {event.type for event in events} == {'error_rate', 'high_error_type_rate:ServerError'}
        assert all(event.timestamp == TIMESTAMP for event in events)
