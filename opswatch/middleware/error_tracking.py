"""Flask hook feeding request outcomes into the error-rate tracker."""

import logging
from typing import Optional

from flask import Flask, Response, current_app, g, got_request_exception, request

from opswatch.monitoring.error_tracking import ErrorRateTracker


logger = logging.getLogger(__name__)

_RECORDED_FLAG = '_opswatch_error_recorded'


class ErrorTrackingMiddleware:
    """
    Records error responses and unhandled exceptions per request.

    The middleware only observes: it returns every response unchanged and
    never handles an exception.
    """

    def __init__(self, app: Optional[Flask] = None, tracker: Optional[ErrorRateTracker] = None):
        """
        Initialize error tracking middleware.

        Args:
            app: Flask application instance
            tracker: Tracker to feed; defaults to the monitoring service's
        """
        self.app = app
        self.tracker = tracker

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """
        Initialize middleware with Flask app.

        Args:
            app: Flask application instance
        """
        app.after_request(self.after_request)
        got_request_exception.connect(self.on_exception, app, weak=False)

    def _get_tracker(self) -> Optional[ErrorRateTracker]:
        if self.tracker is not None:
            return self.tracker
        service = current_app.extensions.get('opswatch')
        return service.error_tracker if service is not None else None

    def _request_details(self) -> dict:
        return {
            'url': request.path,
            'method': request.method,
            'ip': request.headers.get('X-Forwarded-For', request.remote_addr)
        }

    def after_request(self, response: Response) -> Response:
        """Count error responses that were not already counted as exceptions."""
        if response.status_code < 400 or g.get(_RECORDED_FLAG):
            return response

        tracker = self._get_tracker()
        if tracker is None:
            return response

        try:
            tracker.record_response(response.status_code, self._request_details())
        except Exception as e:
            logger.error(f"Error tracking failed for {request.path}: {e}")
        return response

    def on_exception(self, sender: Flask, exception: BaseException, **extra) -> None:
        """Record an unhandled exception; the 500 that follows is not counted again."""
        g.setdefault(_RECORDED_FLAG, True)

        tracker = self._get_tracker()
        if tracker is None:
            return

        try:
            tracker.record_exception(exception, self._request_details())
        except Exception as e:
            logger.error(f"Error tracking failed for {request.path}: {e}")
