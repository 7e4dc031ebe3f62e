"""
Monitoring and alerting for the site backend.

This package provides:
- Probes for database, cache, queue, disk, memory and application settings
- Metrics snapshots and three-tier health checks
- Threshold evaluation, windowed alert deduplication and dispatch
- Request error-rate tracking and a continuous monitoring loop
"""

from .events import AlertEvent, AlertSeverity, HealthStatus
from .metrics_collector import MetricsCollector, MetricsSnapshot
from .health_checks import ComponentCheck, HealthChecker, HealthReport
from .thresholds import ThresholdConfig, ThresholdEvaluator
from .alerts import AlertDeduplicator, AlertDispatcher, AlertingPipeline
from .error_tracking import ErrorRateTracker
from .system_monitor import ContinuousMonitor, MonitorState

__all__ = [
    'AlertEvent',
    'AlertSeverity',
    'HealthStatus',
    'MetricsCollector',
    'MetricsSnapshot',
    'ComponentCheck',
    'HealthChecker',
    'HealthReport',
    'ThresholdConfig',
    'ThresholdEvaluator',
    'AlertDeduplicator',
    'AlertDispatcher',
    'AlertingPipeline',
    'ErrorRateTracker',
    'ContinuousMonitor',
    'MonitorState'
]
