"""
Retention cleanup for history buckets in the keyed store.
"""

import logging
from typing import Any, Dict, Optional

from opswatch.monitoring.alerts import AlertHistory
from opswatch.monitoring.metrics_collector import MetricsCollector


logger = logging.getLogger(__name__)


class RetentionManager:
    """Deletes metrics and alert history buckets older than their retention."""

    def __init__(self, collector: MetricsCollector, history: Optional[AlertHistory] = None,
                 config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.collector = collector
        self.history = history
        self.metrics_retention_hours = self.config.get('METRICS_RETENTION_HOURS', 24)
        self.alerts_retention_days = self.config.get('ALERTS_RETENTION_DAYS', 7)

    def cleanup_old_data(self) -> Dict[str, Any]:
        """
        Clean up old data based on retention policies.

        Returns:
            Dictionary with cleanup statistics
        """
        stats = {
            'metrics_deleted': 0,
            'alerts_deleted': 0,
            'errors': []
        }

        try:
            if self.metrics_retention_hours > 0:
                stats['metrics_deleted'] = self.collector.clear_old_metrics(self.metrics_retention_hours)
            if self.history is not None and self.alerts_retention_days > 0:
                stats['alerts_deleted'] = self.history.clear_old(self.alerts_retention_days)
            logger.info(f"Data cleanup completed: {stats}")
        except Exception as e:
            error_msg = f"Error during data cleanup: {e}"
            logger.error(error_msg)
            stats['errors'].append(error_msg)

        return stats
