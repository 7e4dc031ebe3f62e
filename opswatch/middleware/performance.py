"""Flask hook timing every request into the performance tracker."""

import logging
import time
from typing import Optional

import psutil
from flask import Flask, Response, current_app, g, request

from opswatch.monitoring.performance import RequestPerformanceTracker


logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


class PerformanceMiddleware:
    """
    Measures response time and resident memory growth per request.

    In debug mode the measurements are also returned as ``X-Response-Time``
    and ``X-Memory-Usage`` headers.
    """

    def __init__(self, app: Optional[Flask] = None,
                 tracker: Optional[RequestPerformanceTracker] = None):
        self.app = app
        self.tracker = tracker
        self._process = psutil.Process()

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.before_request(self.before_request)
        app.after_request(self.after_request)

    def _get_tracker(self) -> Optional[RequestPerformanceTracker]:
        if self.tracker is not None:
            return self.tracker
        service = current_app.extensions.get('opswatch')
        return service.performance if service is not None else None

    def _rss_mb(self) -> float:
        return self._process.memory_info().rss / _BYTES_PER_MB

    def before_request(self) -> None:
        g._opswatch_started = time.perf_counter()
        g._opswatch_rss_mb = self._rss_mb()

    def after_request(self, response: Response) -> Response:
        started = g.get('_opswatch_started')
        tracker = self._get_tracker()
        if started is None or tracker is None:
            return response

        try:
            sample = tracker.record_request(
                request.method,
                request.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
                self._rss_mb() - g.get('_opswatch_rss_mb', 0.0),
                endpoint=request.endpoint
            )
        except Exception as e:
            logger.error(f"Performance tracking failed for {request.path}: {e}")
            return response

        if current_app.debug:
            response.headers['X-Response-Time'] = f"{sample['response_time_ms']}ms"
            response.headers['X-Memory-Usage'] = f"{sample['memory_delta_mb']}MB"
        return response
