"""Health checker tests."""

import threading

import pytest

from conftest import StaticProbe, healthy_probes
from opswatch.monitoring.events import HealthStatus
from opswatch.monitoring.health_checks import HealthChecker, HealthReport
from opswatch.monitoring.thresholds import ThresholdConfig
from opswatch.utils.exceptions import ConfigError


class TestAggregation:
    """Overall status is the worst component status."""

    def setup_method(self):
        self.thresholds = ThresholdConfig()

    def checker(self, components=None, **overrides):
        return HealthChecker(healthy_probes(**overrides), self.thresholds,
                             environment='testing', components=components)

    def test_all_healthy(self):
        report = self.checker().check_all()
        assert report.overall_status == HealthStatus.HEALTHY
        assert set(report.checks) == {'application', 'database', 'cache'}
        assert report.summary == "All systems operational"

    def test_unhealthy_component_makes_report_unhealthy(self):
        report = self.checker(cache=RuntimeError('connection refused')).check_all()
        assert report.checks['database'].status == HealthStatus.HEALTHY
        assert report.checks['cache'].status == HealthStatus.UNHEALTHY
        assert report.overall_status == HealthStatus.UNHEALTHY
        assert 'cache' in report.summary

    def test_warning_component_makes_report_warning(self):
        report = self.checker(cache={'response_time_ms': 80.0}).check_all()
        assert report.checks['cache'].status == HealthStatus.WARNING
        assert report.overall_status == HealthStatus.WARNING

    def test_unhealthy_dominates_warning(self):
        report = self.checker(
            cache={'response_time_ms': 80.0},
            database=RuntimeError('down')
        ).check_all()
        assert report.overall_status == HealthStatus.UNHEALTHY

    def test_only_configured_components_run(self):
        probes = healthy_probes()
        checker = HealthChecker(probes, self.thresholds, components=['disk'])
        report = checker.check_all()
        assert list(report.checks) == ['disk']
        calls = {probe.name: probe.calls for probe in probes}
        assert calls['disk'] == 1
        assert calls['database'] == 0

    def test_timed_out_probe_is_unhealthy(self):
        gate = threading.Event()

        class HangingProbe(StaticProbe):
            def measure(self):
                gate.wait(5)
                return {}

        probes = healthy_probes()
        probes = [p for p in probes if p.name != 'database']
        probes.append(HangingProbe('database', timeout=0.05))
        try:
            report = HealthChecker(probes, self.thresholds).check_all()
        finally:
            gate.set()

        check = report.checks['database']
        assert check.status == HealthStatus.UNHEALTHY
        assert check.details['timed_out'] is True
        assert report.checks['cache'].status == HealthStatus.HEALTHY


class TestClassification:

    def setup_method(self):
        self.thresholds = ThresholdConfig()

    def status_of(self, name, **data):
        checker = HealthChecker(healthy_probes(**{name: data}), self.thresholds,
                                components=[name])
        return checker.check_component(name).status

    def test_database_boundaries(self):
        assert self.status_of('database', query_time_ms=100.0) == HealthStatus.HEALTHY
        assert self.status_of('database', query_time_ms=100.5) == HealthStatus.WARNING
        assert self.status_of('database', query_time_ms=1000.0) == HealthStatus.WARNING
        assert self.status_of('database', query_time_ms=1000.5) == HealthStatus.UNHEALTHY

    def test_disk_boundaries(self):
        assert self.status_of('disk', used_percent=90.0) == HealthStatus.HEALTHY
        assert self.status_of('disk', used_percent=92.0) == HealthStatus.WARNING
        assert self.status_of('disk', used_percent=96.0) == HealthStatus.UNHEALTHY

    def test_application_rules(self):
        assert self.status_of('application', secret_key_set=False) == HealthStatus.UNHEALTHY
        assert self.status_of('application', environment='production',
                              debug_mode=True) == HealthStatus.WARNING
        assert self.status_of('application', environment='development',
                              debug_mode=True) == HealthStatus.HEALTHY

    def test_queue_rules(self):
        assert self.status_of('queue', pending=100) == HealthStatus.HEALTHY
        assert self.status_of('queue', pending=101) == HealthStatus.WARNING
        assert self.status_of('queue', pending=1001) == HealthStatus.UNHEALTHY
        assert self.status_of('queue', failed=2) == HealthStatus.WARNING

    def test_memory_rules(self):
        assert self.status_of('memory', current_mb=600.0) == HealthStatus.WARNING
        assert self.status_of('memory', current_mb=1200.0) == HealthStatus.UNHEALTHY


class TestCheckComponent:

    def setup_method(self):
        self.checker = HealthChecker(healthy_probes(), ThresholdConfig())

    def test_runs_only_that_component(self):
        check = self.checker.check_component('disk')
        assert check.name == 'disk'
        assert check.status == HealthStatus.HEALTHY
        assert check.details['used_percent'] == 40.0

    def test_unknown_component_raises(self):
        with pytest.raises(ValueError):
            self.checker.check_component('network')

    def test_available_components(self):
        assert self.checker.available_components() == [
            'application', 'database', 'cache', 'disk', 'queue', 'memory'
        ]


class TestConfiguration:

    def test_unknown_component_is_config_error(self):
        with pytest.raises(ConfigError):
            HealthChecker(healthy_probes(), ThresholdConfig(), components=['application', 'network'])

    def test_component_without_probe_is_config_error(self):
        with pytest.raises(ConfigError):
            HealthChecker([StaticProbe('application')], ThresholdConfig(), components=['database'])


class TestHealthReportSerialization:

    def test_json_round_trip(self):
        report = HealthChecker(healthy_probes(cache={'response_time_ms': 80.0}),
                               ThresholdConfig(), environment='staging').check_all()
        restored = HealthReport.from_json(report.to_json())

        assert restored.overall_status == report.overall_status
        assert restored.timestamp == report.timestamp
        assert restored.environment == 'staging'
        assert restored.checks == report.checks

    def test_dict_shape(self):
        data = HealthChecker(healthy_probes(), ThresholdConfig()).check_all().to_dict()
        assert data['status'] == 'healthy'
        assert set(data) == {'status', 'timestamp', 'environment', 'summary', 'checks'}
        assert data['checks']['database']['status'] == 'healthy'
