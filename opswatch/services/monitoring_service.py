"""Monitoring service: builds every monitoring component once from configuration."""

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

import redis

from opswatch.database.database import DatabaseManager, ensure_database_directory
from opswatch.monitoring.alerts import (
    AlertDeduplicator, AlertDispatcher, AlertHistory, AlertingPipeline,
    NotificationChannel, create_channels
)
from opswatch.monitoring.error_tracking import ErrorRateTracker
from opswatch.monitoring.health_checks import HealthChecker, HealthReport
from opswatch.monitoring.metrics_collector import MetricsCollector
from opswatch.monitoring.performance import (
    MAX_ANALYTICS_HOURS, RequestPerformanceTracker, cache_stats, database_stats
)
from opswatch.monitoring.probes import (
    ApplicationProbe, CacheProbe, DatabaseProbe, DiskProbe, MemoryProbe,
    MetricSource, QueueProbe
)
from opswatch.monitoring.retention import RetentionManager
from opswatch.monitoring.system_monitor import ContinuousMonitor
from opswatch.monitoring.thresholds import ThresholdConfig, ThresholdEvaluator
from opswatch.storage.cache_store import KeyValueStore, RedisStore, create_store
from opswatch.utils.exceptions import MonitoringError, StoreError


logger = logging.getLogger(__name__)

HEALTH_REPORT_CACHE_KEY = 'health_report'


class MonitoringServiceError(MonitoringError):
    """Monitoring service specific error."""
    pass


class MonitoringService:
    """Owns the store, database, probes and alerting pipeline for one process."""

    _instance: Optional['MonitoringService'] = None

    def __init__(self, config: Mapping[str, Any], store: Optional[KeyValueStore] = None,
                 db_manager: Optional[DatabaseManager] = None,
                 channels: Optional[Dict[str, NotificationChannel]] = None,
                 clock: Callable[[], float] = time.time):
        """
        Build all monitoring components.

        Args:
            config: Application config mapping
            store: Keyed store; built from ``CACHE_DRIVER`` when omitted
            db_manager: Database manager; built from ``DATABASE_URL`` when omitted
            channels: Notification channels; built from ``NOTIFICATION_CHANNELS`` when omitted
            clock: Epoch-seconds clock shared by time-windowed components
        """
        self.config = config
        self.environment = config.get('ENVIRONMENT', 'production')
        self.thresholds = ThresholdConfig.from_config(config)
        self.store = store if store is not None else create_store(config)

        if db_manager is None:
            database_url = config.get('DATABASE_URL', 'sqlite:///opswatch.db')
            ensure_database_directory(database_url)
            db_manager = DatabaseManager(
                database_url,
                echo=config.get('DATABASE_ECHO', False),
                connect_timeout=config.get('DATABASE_CONNECT_TIMEOUT', 5)
            )
        self.db_manager = db_manager

        self.probes = self._build_probes()
        self.collector = MetricsCollector(
            self.probes, self.store, clock,
            history_retention_hours=config.get('METRICS_RETENTION_HOURS', 24)
        )
        self.health_checker = HealthChecker(
            self.probes, self.thresholds,
            environment=self.environment,
            components=config.get('HEALTH_CHECK_COMPONENTS') or None,
            clock=clock
        )

        self.dispatcher = AlertDispatcher(channels if channels is not None else create_channels(config))
        self.history = AlertHistory(self.store, config.get('ALERTS_RETENTION_DAYS', 7), clock)
        self.pipeline = AlertingPipeline(
            ThresholdEvaluator(self.thresholds),
            AlertDeduplicator(self.store, self.thresholds, clock),
            self.dispatcher,
            history=self.history,
            notifications_enabled=config.get('MONITORING_NOTIFICATIONS_ENABLED', True)
        )
        self.error_tracker = ErrorRateTracker(
            self.store, self.thresholds, self.pipeline,
            tracked_exceptions=config.get('TRACKED_EXCEPTIONS') or [],
            clock=clock
        )
        self.performance = RequestPerformanceTracker(
            self.store,
            slow_request_ms=config.get('SLOW_REQUEST_THRESHOLD_MS', 1000.0),
            memory_heavy_mb=config.get('MEMORY_HEAVY_REQUEST_MB', 50.0),
            retention_hours=config.get('METRICS_RETENTION_HOURS', 24),
            clock=clock
        )
        self.retention = RetentionManager(self.collector, self.history, dict(config))

    @classmethod
    def initialize(cls, config: Mapping[str, Any], **kwargs) -> 'MonitoringService':
        """Initialize the process-wide service once and return it."""
        if cls._instance is None:
            cls._instance = cls(config, **kwargs)
            logger.info(f"Monitoring service initialized ({cls._instance.store.driver} store)")
        return cls._instance

    @classmethod
    def get_instance(cls) -> 'MonitoringService':
        """Get the singleton instance."""
        if cls._instance is None:
            raise MonitoringServiceError("MonitoringService not initialized")
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton, closing its database connections."""
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None

    def _build_probes(self) -> List[MetricSource]:
        config = self.config
        timeout = config.get('PROBE_TIMEOUT', 2.0)

        queue_driver = config.get('QUEUE_DRIVER', 'sync')
        redis_client = None
        if queue_driver == 'redis':
            if isinstance(self.store, RedisStore):
                redis_client = self.store.client
            else:
                redis_client = redis.Redis.from_url(
                    config.get('REDIS_URL', 'redis://localhost:6379/0'),
                    socket_timeout=timeout,
                    decode_responses=True
                )

        return [
            MemoryProbe(config.get('MEMORY_LIMIT_MB'), timeout=timeout),
            DatabaseProbe(self.db_manager, timeout=timeout),
            CacheProbe(self.store, timeout=timeout),
            QueueProbe(
                driver=queue_driver,
                connection=config.get('QUEUE_CONNECTION', 'default'),
                db_manager=self.db_manager,
                redis_client=redis_client,
                queue_name=config.get('QUEUE_NAME', 'default'),
                timeout=timeout
            ),
            DiskProbe(config.get('DISK_PATH', '/'), timeout=timeout),
            ApplicationProbe(
                environment=self.environment,
                debug=bool(config.get('DEBUG', False)),
                secret_key_set=bool(config.get('SECRET_KEY_SET', config.get('SECRET_KEY'))),
                version=config.get('APP_VERSION', '1.0.0'),
                timeout=timeout
            ),
        ]

    def get_health_report(self, use_cache: bool = True) -> HealthReport:
        """
        Full health report, served from the store for ``HEALTH_REPORT_CACHE_TTL`` seconds.
        """
        ttl = self.config.get('HEALTH_REPORT_CACHE_TTL', 300)

        if use_cache and ttl > 0:
            try:
                cached = self.store.get(HEALTH_REPORT_CACHE_KEY)
                if cached:
                    return HealthReport.from_dict(cached)
            except (StoreError, KeyError, ValueError) as e:
                logger.warning(f"Ignoring cached health report: {e}")

        report = self.health_checker.check_all()

        if ttl > 0:
            try:
                self.store.set(HEALTH_REPORT_CACHE_KEY, report.to_dict(), ttl=ttl)
            except StoreError as e:
                logger.warning(f"Could not cache health report: {e}")
        return report

    def create_monitor(self, **kwargs) -> ContinuousMonitor:
        """Build a continuous monitor on top of this service's components."""
        return ContinuousMonitor(
            self.collector,
            health_checker=self.health_checker,
            pipeline=self.pipeline,
            **kwargs
        )

    def get_dashboard_data(self, refresh: bool = False) -> Dict[str, Any]:
        """Aggregate view for the monitoring dashboard; ``refresh`` bypasses the cached health report."""
        report = self.get_health_report(use_cache=not refresh)
        snapshot = self.collector.collect()
        alerts = self.history.get_history(1)

        severity_counts: Dict[str, int] = {}
        for alert in alerts:
            severity = alert.get('severity', 'info')
            severity_counts[severity] = severity_counts.get(severity, 0) + 1

        return {
            'health': report.to_dict(),
            'metrics': snapshot.to_dict(),
            'errors': self.error_tracker.get_error_stats(),
            'alerts': {
                'last_24h': len(alerts),
                'by_severity': severity_counts,
                'recent': alerts[:10]
            },
            'thresholds': self.thresholds.to_dict(),
            'channels': list(self.dispatcher.channels)
        }

    def get_performance_data(self, hours: int = 24) -> Dict[str, Any]:
        """Request, memory, database, cache and error analytics over the last ``hours``."""
        hours = max(1, min(int(hours), MAX_ANALYTICS_HOURS))
        samples = self.performance.get_samples(hours)
        snapshots = self.collector.get_recent_metrics(hours)

        try:
            backend_info = self.store.info()
        except StoreError as e:
            logger.warning(f"Could not read store statistics: {e}")
            backend_info = {}

        return {
            'hours': hours,
            'response_times': self.performance.response_time_stats(samples),
            'memory_usage': self.performance.memory_stats(samples),
            'database_performance': database_stats(snapshots, self.thresholds.database_response_threshold_ms),
            'cache_performance': cache_stats(snapshots, backend_info),
            'error_rates': self.performance.error_stats(samples, hours)
        }

    def close(self) -> None:
        self.db_manager.close()
