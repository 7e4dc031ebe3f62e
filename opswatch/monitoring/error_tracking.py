"""
Windowed error-rate tracking.

Each observed error bumps two counters for the current window (overall and
per category) with an atomic increment-and-read. The returned counts go
through the threshold evaluator; crossings are sent down the alerting
pipeline. Nothing here may change the outcome of the request being observed.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from opswatch.monitoring.alerts import AlertingPipeline, window_bucket
from opswatch.monitoring.events import AlertEvent
from opswatch.monitoring.thresholds import ThresholdConfig, ThresholdEvaluator
from opswatch.storage.cache_store import KeyValueStore
from opswatch.utils.exceptions import StoreError


logger = logging.getLogger(__name__)

MAX_RECENT_ERRORS = 100
MAX_DETAIL_LENGTH = 500


def classify_status(status_code: int) -> Optional[str]:
    """Error category for an HTTP status, None for non-errors."""
    if 400 <= status_code < 500:
        return 'ClientError'
    if status_code >= 500:
        return 'ServerError'
    return None


def _truncate(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_DETAIL_LENGTH:
        return value[:MAX_DETAIL_LENGTH]
    return value


def _pending_key(alert_type: str, bucket: str) -> str:
    return f"alert_pending:{alert_type}:{bucket}"


class ErrorRateTracker:
    """Counts errors per time window and raises alerts on threshold crossings."""

    def __init__(self, store: KeyValueStore, thresholds: ThresholdConfig,
                 pipeline: Optional[AlertingPipeline] = None,
                 tracked_exceptions: Optional[Iterable[str]] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize error tracker.

        Args:
            store: Shared keyed store holding the counters
            thresholds: Error thresholds and window size
            pipeline: Where crossing events are sent; None only evaluates
            tracked_exceptions: Exception class names (short or dotted) that
                count toward error rates; empty tracks every exception
            clock: Epoch-seconds clock
        """
        self.store = store
        self.thresholds = thresholds
        self.pipeline = pipeline
        self.evaluator = pipeline.evaluator if pipeline is not None else ThresholdEvaluator(thresholds)
        self.tracked_exceptions = [name for name in (tracked_exceptions or []) if name]
        self.clock = clock

    def should_track_exception(self, exc: BaseException) -> bool:
        if not self.tracked_exceptions:
            return True
        for cls in type(exc).__mro__:
            if cls.__name__ in self.tracked_exceptions:
                return True
            if f"{cls.__module__}.{cls.__qualname__}" in self.tracked_exceptions:
                return True
        return False

    def record_response(self, status_code: int, details: Optional[Dict[str, Any]] = None) -> List[AlertEvent]:
        """Record an HTTP response; statuses below 400 are ignored."""
        category = classify_status(status_code)
        if category is None:
            return []
        details = dict(details or {})
        details.setdefault('status', status_code)
        details.setdefault('message', f"HTTP {status_code}")
        return self.record_error(category, details)

    def record_exception(self, exc: BaseException, details: Optional[Dict[str, Any]] = None) -> List[AlertEvent]:
        """Record an exception unless the allow-list excludes its type."""
        if not self.should_track_exception(exc):
            return []
        details = dict(details or {})
        details.setdefault('message', str(exc))
        return self.record_error(type(exc).__name__, details)

    def record_error(self, category: str, details: Optional[Dict[str, Any]] = None) -> List[AlertEvent]:
        """
        Count one error and send any threshold crossings.

        Store failures are logged and the error goes uncounted.

        Returns:
            The alert events produced by this error
        """
        now = self.clock()
        bucket = window_bucket(now, self.thresholds.time_window_minutes)
        ttl = self.thresholds.window_ttl_seconds

        entry = {key: _truncate(value) for key, value in (details or {}).items()}
        entry['type'] = category
        entry['timestamp'] = datetime.fromtimestamp(now, tz=timezone.utc).isoformat()

        try:
            overall_count = self.store.incr(f"error_count:{bucket}", ttl)
            category_count = self.store.incr(f"error_count:{category}:{bucket}", ttl)
            self.store.push_bounded(f"recent_errors:{bucket}", entry, MAX_RECENT_ERRORS, ttl)
        except StoreError as e:
            logger.error(f"Failed to record {category} error: {e}")
            return []

        at = datetime.fromtimestamp(now, tz=timezone.utc)
        events = self.evaluator.evaluate_error_counts(category, overall_count, category_count,
                                                      timestamp=at)
        if self.pipeline is not None:
            events.extend(self._pending_retries(category, bucket, overall_count, category_count, at))
            for event in events:
                self._send(event, bucket, ttl)
        return events

    def _pending_retries(self, category: str, bucket: str, overall_count: int,
                         category_count: int, at: datetime) -> List[AlertEvent]:
        """Crossing alerts of this window that no channel has delivered yet."""
        t = self.thresholds
        candidates = []
        if overall_count > t.error_rate_threshold:
            candidates.append(self.evaluator.error_rate_event(overall_count, at))
        if category_count > t.error_type_threshold:
            candidates.append(self.evaluator.error_type_event(category, category_count, at))

        retries = []
        for event in candidates:
            try:
                if self.store.get(_pending_key(event.type, bucket)):
                    retries.append(event)
            except StoreError as e:
                logger.error(f"Failed to read pending alert {event.type}: {e}")
        return retries

    def _send(self, event: AlertEvent, bucket: str, ttl: int) -> None:
        try:
            outcome = self.pipeline.send_alert(event)
        except Exception as e:
            logger.error(f"Failed to send error rate alert {event.type}: {e}")
            return

        pending_key = _pending_key(event.type, bucket)
        try:
            if outcome.delivered:
                self.store.delete(pending_key)
            elif outcome.results and not outcome.suppressed:
                if self.store.add(pending_key, True, ttl):
                    logger.warning(f"Alert {event.type} not delivered, retrying on the next error")
        except StoreError as e:
            logger.error(f"Failed to update pending alert {event.type}: {e}")

    def get_error_stats(self) -> Dict[str, Any]:
        """Counters and recent errors for the current window."""
        bucket = window_bucket(self.clock(), self.thresholds.time_window_minutes)
        try:
            recent = self.store.get_list(f"recent_errors:{bucket}")
            total = self.store.get(f"error_count:{bucket}", 0)
        except StoreError as e:
            logger.error(f"Failed to read error stats: {e}")
            return {'window': bucket, 'error': str(e)}

        by_type: Dict[str, int] = {}
        for item in recent:
            error_type = item.get('type', 'unknown')
            by_type[error_type] = by_type.get(error_type, 0) + 1

        return {
            'window': bucket,
            'window_minutes': self.thresholds.time_window_minutes,
            'total_errors': int(total or 0),
            'recent_by_type': by_type,
            'recent_errors': recent[-10:]
        }

    def observe(self, fn: Callable, *args, **kwargs):
        """Call ``fn``; record any exception it raises and re-raise it unchanged."""
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            try:
                self.record_exception(e)
            except Exception as tracking_error:
                logger.error(f"Error tracking failed: {tracking_error}")
            raise
