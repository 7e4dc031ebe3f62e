"""
Threshold configuration and evaluation.

``ThresholdEvaluator`` is pure: it reads a snapshot, a health report or a pair
of error counts and returns the alert events for every violated limit. It does
no I/O and keeps no state.
"""

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from opswatch.monitoring.events import AlertEvent, AlertSeverity, HealthStatus
from opswatch.monitoring.metrics_collector import MetricsSnapshot
from opswatch.utils.exceptions import ConfigError


@dataclass
class ThresholdConfig:
    """Named numeric limits. Built once at startup and passed to consumers."""
    memory_usage_threshold_mb: float = 500.0
    memory_critical_mb: Optional[float] = None
    disk_usage_threshold_pct: float = 90.0
    disk_critical_pct: Optional[float] = None
    database_response_threshold_ms: float = 100.0
    database_critical_ms: Optional[float] = None
    cache_response_threshold_ms: float = 50.0
    cache_critical_ms: Optional[float] = None
    queue_backlog_threshold: int = 100
    queue_backlog_critical: Optional[int] = None
    error_rate_threshold: int = 5
    error_type_threshold: Optional[int] = None
    time_window_minutes: int = 15
    window_grace_seconds: int = 300
    max_alerts_per_hour: int = 10

    def __post_init__(self):
        if self.error_type_threshold is None:
            self.error_type_threshold = self.error_rate_threshold
        if self.memory_critical_mb is None:
            self.memory_critical_mb = self.memory_usage_threshold_mb * 2
        if self.disk_critical_pct is None:
            self.disk_critical_pct = max(95.0, self.disk_usage_threshold_pct)
        if self.database_critical_ms is None:
            self.database_critical_ms = self.database_response_threshold_ms * 10
        if self.cache_critical_ms is None:
            self.cache_critical_ms = self.cache_response_threshold_ms * 10
        if self.queue_backlog_critical is None:
            self.queue_backlog_critical = self.queue_backlog_threshold * 10
        if self.time_window_minutes < 1:
            raise ConfigError("time_window_minutes must be at least 1",
                              {'time_window_minutes': self.time_window_minutes})
        if self.window_grace_seconds < 0:
            raise ConfigError("window_grace_seconds cannot be negative",
                              {'window_grace_seconds': self.window_grace_seconds})

        pairs = (
            ('memory_usage_threshold_mb', 'memory_critical_mb'),
            ('disk_usage_threshold_pct', 'disk_critical_pct'),
            ('database_response_threshold_ms', 'database_critical_ms'),
            ('cache_response_threshold_ms', 'cache_critical_ms'),
            ('queue_backlog_threshold', 'queue_backlog_critical'),
        )
        for warning_name, critical_name in pairs:
            if getattr(self, critical_name) < getattr(self, warning_name):
                raise ConfigError(
                    f"{critical_name} must not be lower than {warning_name}",
                    {warning_name: getattr(self, warning_name),
                     critical_name: getattr(self, critical_name)}
                )

    @property
    def window_seconds(self) -> int:
        return self.time_window_minutes * 60

    @property
    def window_ttl_seconds(self) -> int:
        """Lifetime of every per-window key in the store."""
        return self.window_seconds + self.window_grace_seconds

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'ThresholdConfig':
        """Build from an application config mapping, falling back to defaults."""
        key_map = {
            'memory_usage_threshold_mb': 'ALERT_MEMORY_THRESHOLD',
            'memory_critical_mb': 'ALERT_MEMORY_CRITICAL',
            'disk_usage_threshold_pct': 'ALERT_DISK_THRESHOLD',
            'disk_critical_pct': 'ALERT_DISK_CRITICAL',
            'database_response_threshold_ms': 'ALERT_DB_RESPONSE_THRESHOLD',
            'database_critical_ms': 'ALERT_DB_RESPONSE_CRITICAL',
            'cache_response_threshold_ms': 'ALERT_CACHE_RESPONSE_THRESHOLD',
            'cache_critical_ms': 'ALERT_CACHE_RESPONSE_CRITICAL',
            'queue_backlog_threshold': 'ALERT_QUEUE_BACKLOG_THRESHOLD',
            'queue_backlog_critical': 'ALERT_QUEUE_BACKLOG_CRITICAL',
            'error_rate_threshold': 'ALERT_ERROR_RATE_THRESHOLD',
            'error_type_threshold': 'ALERT_ERROR_TYPE_THRESHOLD',
            'time_window_minutes': 'ERROR_MONITORING_WINDOW',
            'window_grace_seconds': 'ALERT_WINDOW_GRACE_SECONDS',
            'max_alerts_per_hour': 'ALERT_MAX_PER_HOUR',
        }
        types = {f.name: f.type for f in fields(cls)}
        kwargs = {}
        for attr, key in key_map.items():
            value = config.get(key)
            if value is None:
                continue
            try:
                kwargs[attr] = int(value) if types[attr] in (int, Optional[int]) else float(value)
            except (TypeError, ValueError):
                raise ConfigError(f"Invalid value for {key}: {value!r}", {'key': key})
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class ThresholdEvaluator:
    """Compares samples with a ``ThresholdConfig``. Metric limits are strict."""

    def __init__(self, thresholds: ThresholdConfig):
        self.thresholds = thresholds

    def evaluate_snapshot(self, snapshot: MetricsSnapshot) -> List[AlertEvent]:
        t = self.thresholds
        events: List[AlertEvent] = []

        current_mb = snapshot.memory.get('current_mb')
        if current_mb is not None and current_mb > t.memory_usage_threshold_mb:
            events.append(self._metric_event(
                'memory_usage', AlertSeverity.WARNING,
                f"High memory usage: {current_mb}MB (threshold: {t.memory_usage_threshold_mb}MB)",
                current_mb, t.memory_usage_threshold_mb, 'MB', snapshot.timestamp,
                peak_mb=snapshot.memory.get('peak_mb')
            ))

        used_percent = snapshot.disk.get('used_percent')
        if used_percent is not None and used_percent > t.disk_usage_threshold_pct:
            severity = AlertSeverity.CRITICAL if used_percent > t.disk_critical_pct else AlertSeverity.WARNING
            events.append(self._metric_event(
                'disk_usage', severity,
                f"High disk usage: {used_percent}% (threshold: {t.disk_usage_threshold_pct}%)",
                used_percent, t.disk_usage_threshold_pct, '%', snapshot.timestamp,
                free_mb=snapshot.disk.get('free_mb'),
                path=snapshot.disk.get('path')
            ))

        query_time = snapshot.database.get('query_time_ms')
        if query_time is not None and query_time > t.database_response_threshold_ms:
            events.append(self._metric_event(
                'database_response_time', AlertSeverity.WARNING,
                f"Slow database response: {query_time}ms (threshold: {t.database_response_threshold_ms}ms)",
                query_time, t.database_response_threshold_ms, 'ms', snapshot.timestamp,
                connection=snapshot.database.get('connection')
            ))

        cache_time = snapshot.cache.get('response_time_ms')
        if cache_time is not None and cache_time > t.cache_response_threshold_ms:
            events.append(self._metric_event(
                'cache_response_time', AlertSeverity.WARNING,
                f"Slow cache response: {cache_time}ms (threshold: {t.cache_response_threshold_ms}ms)",
                cache_time, t.cache_response_threshold_ms, 'ms', snapshot.timestamp,
                driver=snapshot.cache.get('driver')
            ))

        for name, result in snapshot.results().items():
            if not result.ok:
                events.append(AlertEvent(
                    type=f"system_error_{name}",
                    message=f"{name.capitalize()} probe failed: {result.error}",
                    severity=AlertSeverity.CRITICAL,
                    context={'component': name, 'error': result.error, 'timed_out': result.timed_out},
                    timestamp=snapshot.timestamp
                ))

        return events

    def evaluate_health_report(self, report) -> List[AlertEvent]:
        """One event per non-healthy check of a ``HealthReport``."""
        events: List[AlertEvent] = []
        for name, check in report.checks.items():
            if check.status == HealthStatus.HEALTHY:
                continue
            severity = AlertSeverity.CRITICAL if check.status == HealthStatus.UNHEALTHY else AlertSeverity.WARNING
            events.append(AlertEvent(
                type=f"health_check_{name}",
                message=f"Health check '{name}' is {check.status.value}: {check.message}",
                severity=severity,
                context={
                    'component': name,
                    'status': check.status.value,
                    'response_time_ms': check.response_time_ms,
                    'details': check.details
                },
                timestamp=report.timestamp
            ))
        return events

    def evaluate_error_counts(self, category: str, overall_count: int, category_count: int,
                              timestamp: Optional[datetime] = None) -> List[AlertEvent]:
        """
        Decide whether windowed error counters just crossed their thresholds.

        Counters move in unit steps, so a crossing is the increment that makes
        the count equal to the threshold. Later increments in the same window
        do not fire again.
        """
        t = self.thresholds
        events: List[AlertEvent] = []
        if overall_count == t.error_rate_threshold:
            events.append(self.error_rate_event(overall_count, timestamp))
        if category_count == t.error_type_threshold:
            events.append(self.error_type_event(category, category_count, timestamp))
        return events

    def error_rate_event(self, count: int, timestamp: Optional[datetime] = None) -> AlertEvent:
        """Overall error-rate alert for ``count`` errors in the current window."""
        t = self.thresholds
        extra = {'timestamp': timestamp} if timestamp is not None else {}
        return AlertEvent(
            type='error_rate',
            message=(f"High error rate: {count} errors in "
                     f"{t.time_window_minutes} minutes (threshold: {t.error_rate_threshold})"),
            severity=AlertSeverity.CRITICAL,
            context={
                'value': count,
                'threshold': t.error_rate_threshold,
                'unit': 'errors',
                'window_minutes': t.time_window_minutes
            },
            **extra
        )

    def error_type_event(self, category: str, count: int,
                         timestamp: Optional[datetime] = None) -> AlertEvent:
        t = self.thresholds
        extra = {'timestamp': timestamp} if timestamp is not None else {}
        return AlertEvent(
            type=f"high_error_type_rate:{category}",
            message=(f"High {category} rate: {count} errors in "
                     f"{t.time_window_minutes} minutes (threshold: {t.error_type_threshold})"),
            severity=AlertSeverity.WARNING,
            context={
                'value': count,
                'threshold': t.error_type_threshold,
                'unit': 'errors',
                'error_type': category,
                'window_minutes': t.time_window_minutes
            },
            **extra
        )

    @staticmethod
    def _metric_event(alert_type: str, severity: AlertSeverity, message: str, value: float,
                      threshold: float, unit: str, timestamp: datetime, **context) -> AlertEvent:
        context.update({'value': value, 'threshold': threshold, 'unit': unit})
        return AlertEvent(type=alert_type, message=message, severity=severity,
                          context=context, timestamp=timestamp)
