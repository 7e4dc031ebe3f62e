"""
Metrics snapshot collection.

The collector runs every configured probe unconditionally and assembles one
flat snapshot. It passes no judgement on the values; thresholds live in
``opswatch.monitoring.thresholds``. Snapshots can be appended to hourly history
buckets in the keyed store for the dashboard.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from opswatch.monitoring.probes import MetricSource, ProbeResult, run_probes
from opswatch.storage.cache_store import KeyValueStore
from opswatch.utils.exceptions import StoreError


logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = ('memory', 'database', 'cache', 'queue', 'disk')

HISTORY_KEY_PREFIX = 'metrics_history'
HISTORY_ITEMS_PER_BUCKET = 100
MAX_HISTORY_HOURS = 168


def hour_bucket(epoch: float) -> str:
    """Render the UTC hour containing ``epoch`` as ``YYYYmmddHH``."""
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime('%Y%m%d%H')


@dataclass
class MetricsSnapshot:
    """One sample of every subsystem. Each field is a success or error result."""
    timestamp: datetime
    memory: ProbeResult
    database: ProbeResult
    cache: ProbeResult
    queue: ProbeResult
    disk: ProbeResult

    def results(self) -> Dict[str, ProbeResult]:
        return {name: getattr(self, name) for name in SNAPSHOT_FIELDS}

    def failed_probes(self) -> List[str]:
        return [name for name, result in self.results().items() if not result.ok]

    def to_dict(self) -> Dict[str, Any]:
        data = {'timestamp': self.timestamp.isoformat()}
        for name, result in self.results().items():
            data[name] = result.to_dict()
        return data


class MetricsCollector:
    """Runs all metric sources and builds snapshots."""

    def __init__(self, probes: Sequence[MetricSource], store: Optional[KeyValueStore] = None,
                 clock: Callable[[], float] = time.time, history_retention_hours: int = 24):
        """
        Initialize metrics collector.

        Args:
            probes: Metric sources keyed by their ``name``; missing snapshot
                fields are reported as errors rather than omitted
            store: Keyed store for snapshot history, optional
            clock: Epoch-seconds clock used for timestamps and history buckets
            history_retention_hours: Extra lifetime of a history bucket
        """
        self.probes = [probe for probe in probes if probe.name in SNAPSHOT_FIELDS]
        self.store = store
        self.clock = clock
        self.history_retention_hours = history_retention_hours

    def collect(self) -> MetricsSnapshot:
        """Run every probe concurrently and return a complete snapshot."""
        results = run_probes(self.probes) if self.probes else {}

        for name in SNAPSHOT_FIELDS:
            if name not in results:
                results[name] = ProbeResult.failure(name, f"No {name} probe configured")

        snapshot = MetricsSnapshot(
            timestamp=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
            **results
        )

        failed = snapshot.failed_probes()
        if failed:
            logger.warning(f"Metrics collected with failed probes: {', '.join(failed)}")
        else:
            logger.debug("Metrics collected")
        return snapshot

    def record_snapshot(self, snapshot: MetricsSnapshot) -> bool:
        """Append a snapshot to the current hour's history bucket."""
        if self.store is None:
            return False

        key = f"{HISTORY_KEY_PREFIX}:{hour_bucket(snapshot.timestamp.timestamp())}"
        ttl = 3600 + self.history_retention_hours * 3600
        try:
            self.store.push_bounded(key, snapshot.to_dict(), HISTORY_ITEMS_PER_BUCKET, ttl)
            return True
        except StoreError as e:
            logger.error(f"Failed to record metrics snapshot: {e}")
            return False

    def get_recent_metrics(self, hours: int = 1) -> List[Dict[str, Any]]:
        """
        Read recorded snapshots for the last ``hours`` hours, oldest first.

        ``hours`` is clamped to 1..168.
        """
        if self.store is None:
            return []

        hours = max(1, min(int(hours), MAX_HISTORY_HOURS))
        now = self.clock()
        metrics: List[Dict[str, Any]] = []
        for offset in range(hours - 1, -1, -1):
            key = f"{HISTORY_KEY_PREFIX}:{hour_bucket(now - offset * 3600)}"
            try:
                metrics.extend(self.store.get_list(key))
            except StoreError as e:
                logger.error(f"Failed to read metrics history {key}: {e}")
        return metrics

    def clear_old_metrics(self, hours_to_keep: int = 24) -> int:
        """
        Delete history buckets older than ``hours_to_keep``.

        Buckets expire on their own; this removes them early. Scans one week
        past the cutoff.
        """
        if self.store is None:
            return 0

        now = self.clock()
        deleted = 0
        for offset in range(hours_to_keep, hours_to_keep + MAX_HISTORY_HOURS):
            key = f"{HISTORY_KEY_PREFIX}:{hour_bucket(now - offset * 3600)}"
            try:
                if self.store.delete(key):
                    deleted += 1
            except StoreError as e:
                logger.error(f"Failed to delete metrics history {key}: {e}")
                break
        if deleted:
            logger.info(f"Deleted {deleted} metrics history buckets older than {hours_to_keep}h")
        return deleted
