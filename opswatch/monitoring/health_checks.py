"""
Health checks for the application and its backing services.

The checker runs a configured subset of probes, maps each result onto the
three-tier ``HealthStatus`` and aggregates to the worst status. Caching a
report is left to the caller.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from opswatch.monitoring.events import HealthStatus
from opswatch.monitoring.probes import MetricSource, ProbeResult, run_probes
from opswatch.monitoring.thresholds import ThresholdConfig
from opswatch.utils.exceptions import ConfigError


logger = logging.getLogger(__name__)

DEFAULT_COMPONENTS = ('application', 'database', 'cache')
KNOWN_COMPONENTS = ('application', 'database', 'cache', 'disk', 'queue', 'memory')


@dataclass(frozen=True)
class ComponentCheck:
    """Result of checking one component."""
    name: str
    status: HealthStatus
    message: str
    response_time_ms: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'status': self.status.value,
            'message': self.message,
            'details': self.details
        }
        if self.response_time_ms is not None:
            data['response_time_ms'] = self.response_time_ms
        return data

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'ComponentCheck':
        return cls(
            name=name,
            status=HealthStatus(data['status']),
            message=data.get('message', ''),
            response_time_ms=data.get('response_time_ms'),
            details=dict(data.get('details') or {})
        )


@dataclass
class HealthReport:
    """Aggregated result of a health check run."""
    overall_status: HealthStatus
    timestamp: datetime
    checks: Dict[str, ComponentCheck]
    environment: str

    @property
    def summary(self) -> str:
        unhealthy = [name for name, check in self.checks.items()
                     if check.status == HealthStatus.UNHEALTHY]
        warnings = [name for name, check in self.checks.items()
                    if check.status == HealthStatus.WARNING]
        if unhealthy:
            return f"{len(unhealthy)} component(s) unhealthy: {', '.join(unhealthy)}"
        if warnings:
            return f"{len(warnings)} component(s) with warnings: {', '.join(warnings)}"
        return "All systems operational"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.overall_status.value,
            'timestamp': self.timestamp.isoformat(),
            'environment': self.environment,
            'summary': self.summary,
            'checks': {name: check.to_dict() for name, check in self.checks.items()}
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealthReport':
        checks = {
            name: ComponentCheck.from_dict(name, check_data)
            for name, check_data in (data.get('checks') or {}).items()
        }
        return cls(
            overall_status=HealthStatus(data['status']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            checks=checks,
            environment=data.get('environment', 'unknown')
        )

    @classmethod
    def from_json(cls, raw: str) -> 'HealthReport':
        return cls.from_dict(json.loads(raw))


Classification = Tuple[HealthStatus, str]


class HealthChecker:
    """Runs component probes and classifies their results."""

    def __init__(self, probes: Sequence[MetricSource], thresholds: ThresholdConfig,
                 environment: str = 'production', components: Optional[Iterable[str]] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize health checker.

        Args:
            probes: Available probes, one per component name
            thresholds: Warning and critical limits
            environment: Environment name reported with every report
            components: Components run by ``check_all``; defaults to
                application, database and cache
            clock: Epoch-seconds clock for report timestamps
        """
        self.probes: Dict[str, MetricSource] = {probe.name: probe for probe in probes}
        self.thresholds = thresholds
        self.environment = environment
        self.clock = clock

        components = list(components or DEFAULT_COMPONENTS)
        unknown = [name for name in components if name not in KNOWN_COMPONENTS]
        if unknown:
            raise ConfigError(f"Unknown health check components: {', '.join(unknown)}",
                              {'components': unknown})
        missing = [name for name in components if name not in self.probes]
        if missing:
            raise ConfigError(f"No probe configured for health check components: {', '.join(missing)}",
                              {'components': missing})
        self.components = components

        self._classifiers: Dict[str, Callable[[ProbeResult], Classification]] = {
            'application': self._classify_application,
            'database': self._classify_database,
            'cache': self._classify_cache,
            'disk': self._classify_disk,
            'queue': self._classify_queue,
            'memory': self._classify_memory,
        }

    def check_all(self) -> HealthReport:
        """Run every configured component concurrently and aggregate."""
        results = run_probes([self.probes[name] for name in self.components])
        checks = {name: self._to_check(results[name]) for name in self.components}
        overall = HealthStatus.worst(check.status for check in checks.values())

        report = HealthReport(
            overall_status=overall,
            timestamp=self._now(),
            checks=checks,
            environment=self.environment
        )
        if overall != HealthStatus.HEALTHY:
            logger.warning(f"Health check {overall.value}: {report.summary}")
        return report

    def check_component(self, name: str) -> ComponentCheck:
        """Run exactly one named component."""
        if name not in self.probes or name not in self._classifiers:
            raise ValueError(f"Unknown health check component: {name}")
        return self._to_check(self.probes[name].run())

    def available_components(self) -> List[str]:
        return [name for name in KNOWN_COMPONENTS if name in self.probes]

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def _to_check(self, result: ProbeResult) -> ComponentCheck:
        status, message = self._classifiers[result.name](result)
        details = result.to_dict()
        if result.timed_out:
            details['timed_out'] = True
        return ComponentCheck(
            name=result.name,
            status=status,
            message=message,
            response_time_ms=result.response_time_ms,
            details=details
        )

    def _classify_application(self, result: ProbeResult) -> Classification:
        if not result.ok:
            return HealthStatus.UNHEALTHY, f"Application check failed: {result.error}"
        if not result.get('secret_key_set'):
            return HealthStatus.UNHEALTHY, "Application secret key not set"
        if result.get('environment') == 'production' and result.get('debug_mode'):
            return HealthStatus.WARNING, "Debug mode is enabled in production"
        return HealthStatus.HEALTHY, "Application is running normally"

    def _classify_database(self, result: ProbeResult) -> Classification:
        t = self.thresholds
        if not result.ok:
            return HealthStatus.UNHEALTHY, f"Database connection failed: {result.error}"
        query_time = result.get('query_time_ms', 0)
        if query_time > t.database_critical_ms:
            return HealthStatus.UNHEALTHY, f"Database response time {query_time}ms exceeds {t.database_critical_ms}ms"
        if query_time > t.database_response_threshold_ms:
            return HealthStatus.WARNING, f"Database response slow: {query_time}ms"
        return HealthStatus.HEALTHY, "Database connection is working"

    def _classify_cache(self, result: ProbeResult) -> Classification:
        t = self.thresholds
        if not result.ok:
            return HealthStatus.UNHEALTHY, f"Cache system failed: {result.error}"
        response_time = result.get('response_time_ms', 0)
        if response_time > t.cache_critical_ms:
            return HealthStatus.UNHEALTHY, f"Cache response time {response_time}ms exceeds {t.cache_critical_ms}ms"
        if response_time > t.cache_response_threshold_ms:
            return HealthStatus.WARNING, f"Cache response slow: {response_time}ms"
        return HealthStatus.HEALTHY, "Cache system is working"

    def _classify_disk(self, result: ProbeResult) -> Classification:
        t = self.thresholds
        if not result.ok:
            return HealthStatus.UNHEALTHY, f"Disk check failed: {result.error}"
        used = result.get('used_percent', 0)
        if used > t.disk_critical_pct:
            return HealthStatus.UNHEALTHY, f"Disk usage critical: {used}%"
        if used > t.disk_usage_threshold_pct:
            return HealthStatus.WARNING, f"Disk usage high: {used}%"
        return HealthStatus.HEALTHY, f"Disk usage normal: {used}%"

    def _classify_queue(self, result: ProbeResult) -> Classification:
        t = self.thresholds
        if not result.ok:
            return HealthStatus.UNHEALTHY, f"Queue system failed: {result.error}"
        pending = result.get('pending', 0)
        failed = result.get('failed', 0)
        if pending > t.queue_backlog_critical:
            return HealthStatus.UNHEALTHY, f"Queue backlog critical: {pending} pending jobs"
        if pending > t.queue_backlog_threshold:
            return HealthStatus.WARNING, f"Queue backlog high: {pending} pending jobs"
        if failed > 0:
            return HealthStatus.WARNING, f"Queue has {failed} failed jobs"
        return HealthStatus.HEALTHY, "Queue system is working"

    def _classify_memory(self, result: ProbeResult) -> Classification:
        t = self.thresholds
        if not result.ok:
            return HealthStatus.UNHEALTHY, f"Memory check failed: {result.error}"
        current = result.get('current_mb', 0)
        if current > t.memory_critical_mb:
            return HealthStatus.UNHEALTHY, f"Memory usage critical: {current}MB"
        if current > t.memory_usage_threshold_mb:
            return HealthStatus.WARNING, f"Memory usage high: {current}MB"
        return HealthStatus.HEALTHY, f"Memory usage normal: {current}MB"
