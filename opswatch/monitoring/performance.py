"""
Per-request performance samples and the analytics built from them.

Each request adds one sample (timing, memory delta, status) to an hourly
bounded list in the keyed store. Slow and memory-heavy requests are logged
as they happen.
"""

import logging
import math
import statistics
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from opswatch.monitoring.error_tracking import classify_status
from opswatch.monitoring.metrics_collector import hour_bucket
from opswatch.storage.cache_store import KeyValueStore
from opswatch.utils.exceptions import StoreError


logger = logging.getLogger(__name__)

SAMPLES_KEY_PREFIX = 'request_metrics'
MAX_SAMPLES_PER_HOUR = 1000
MAX_ANALYTICS_HOURS = 168


def percentile(values: List[float], pct: float) -> Optional[float]:
    """Nearest-rank percentile of ``values``; None when empty."""
    if not values:
        return None
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


def _average(values: Iterable[float]) -> Optional[float]:
    values = list(values)
    return round(statistics.fmean(values), 2) if values else None


class RequestPerformanceTracker:
    """Records request samples and summarises them over a number of hours."""

    def __init__(self, store: KeyValueStore, slow_request_ms: float = 1000.0,
                 memory_heavy_mb: float = 50.0, retention_hours: int = 24,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.slow_request_ms = slow_request_ms
        self.memory_heavy_mb = memory_heavy_mb
        self.retention_hours = retention_hours
        self.clock = clock

    def record_request(self, method: str, path: str, status: int, response_time_ms: float,
                       memory_delta_mb: float = 0.0, endpoint: Optional[str] = None) -> Dict[str, Any]:
        """
        Store one request sample. Store failures are logged, never raised.

        Returns:
            The recorded sample
        """
        now = self.clock()
        sample = {
            'method': method,
            'path': path,
            'endpoint': endpoint,
            'status': status,
            'response_time_ms': round(response_time_ms, 2),
            'memory_delta_mb': round(memory_delta_mb, 2),
            'timestamp': datetime.fromtimestamp(now, tz=timezone.utc).isoformat()
        }

        if sample['response_time_ms'] > self.slow_request_ms:
            logger.warning(f"Slow request: {method} {path} took {sample['response_time_ms']}ms")
        if sample['memory_delta_mb'] > self.memory_heavy_mb:
            logger.warning(f"Memory-heavy request: {method} {path} grew {sample['memory_delta_mb']}MB")

        key = f"{SAMPLES_KEY_PREFIX}:{hour_bucket(now)}"
        try:
            self.store.push_bounded(key, sample, MAX_SAMPLES_PER_HOUR,
                                    ttl=(self.retention_hours + 1) * 3600)
        except StoreError as e:
            logger.error(f"Failed to record request sample: {e}")
        return sample

    def get_samples(self, hours: int = 1) -> List[Dict[str, Any]]:
        """Samples from the last ``hours`` hours (clamped 1..168), oldest first."""
        hours = max(1, min(int(hours), MAX_ANALYTICS_HOURS))
        now = self.clock()
        samples: List[Dict[str, Any]] = []
        for offset in range(hours - 1, -1, -1):
            key = f"{SAMPLES_KEY_PREFIX}:{hour_bucket(now - offset * 3600)}"
            try:
                samples.extend(self.store.get_list(key))
            except StoreError as e:
                logger.error(f"Failed to read request samples {key}: {e}")
        return samples

    def response_time_stats(self, samples: List[Dict[str, Any]]) -> Dict[str, Any]:
        times = [s['response_time_ms'] for s in samples if s.get('response_time_ms') is not None]
        return {
            'count': len(times),
            'average': _average(times),
            'median': round(statistics.median(times), 2) if times else None,
            'p95': percentile(times, 95),
            'p99': percentile(times, 99),
            'max': max(times) if times else None,
            'slow_requests': sum(1 for t in times if t > self.slow_request_ms)
        }

    def memory_stats(self, samples: List[Dict[str, Any]]) -> Dict[str, Any]:
        deltas = [s['memory_delta_mb'] for s in samples if s.get('memory_delta_mb') is not None]
        return {
            'average_mb': _average(deltas),
            'peak_mb': max(deltas) if deltas else None,
            'heavy_requests': sum(1 for d in deltas if d > self.memory_heavy_mb)
        }

    def error_stats(self, samples: List[Dict[str, Any]], hours: int) -> Dict[str, Any]:
        categories = Counter()
        for sample in samples:
            category = classify_status(int(sample.get('status', 200)))
            if category is not None:
                categories[category] += 1

        total = sum(categories.values())
        return {
            'total_errors': total,
            'error_rate_percent': round(total / len(samples) * 100, 2) if samples else 0.0,
            'error_rate_per_hour': round(total / hours, 2),
            'by_category': dict(categories),
            'most_common_type': categories.most_common(1)[0][0] if categories else None
        }


def database_stats(snapshots: List[Dict[str, Any]], slow_query_ms: float) -> Dict[str, Any]:
    """Query-time summary over recorded metric snapshots."""
    times = []
    failures = 0
    for snapshot in snapshots:
        database = snapshot.get('database') or {}
        if 'error' in database:
            failures += 1
        elif database.get('query_time_ms') is not None:
            times.append(database['query_time_ms'])
    return {
        'samples': len(times),
        'avg_query_time_ms': _average(times),
        'max_query_time_ms': max(times) if times else None,
        'slow_queries_count': sum(1 for t in times if t > slow_query_ms),
        'failed_checks': failures
    }


def cache_stats(snapshots: List[Dict[str, Any]], backend_info: Dict[str, Any]) -> Dict[str, Any]:
    """Cache round-trip summary plus the backend's hit and miss counters."""
    times = [
        snapshot['cache']['response_time_ms'] for snapshot in snapshots
        if (snapshot.get('cache') or {}).get('response_time_ms') is not None
    ]
    hits = int(backend_info.get('keyspace_hits', 0) or 0)
    misses = int(backend_info.get('keyspace_misses', 0) or 0)
    lookups = hits + misses
    return {
        'samples': len(times),
        'avg_response_time_ms': _average(times),
        'hit_rate': round(hits / lookups * 100, 2) if lookups else None,
        'miss_rate': round(misses / lookups * 100, 2) if lookups else None
    }
