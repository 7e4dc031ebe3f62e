"""Shared-secret protection and service lookup for the monitoring endpoints."""

import hmac
from functools import wraps
from typing import Callable, Optional

from flask import current_app, jsonify, request

from opswatch.services.monitoring_service import MonitoringService


def get_monitoring_service() -> MonitoringService:
    """Service registered on the current app, or the process-wide one."""
    service = current_app.extensions.get('opswatch')
    if service is not None:
        return service
    return MonitoringService.get_instance()


def _provided_secret() -> Optional[str]:
    return request.headers.get('X-Monitoring-Secret') or request.args.get('secret')


def _secret_matches(provided: Optional[str], expected: Optional[str]) -> bool:
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def secret_required(production_only: bool = False) -> Callable:
    """
    Decorator requiring ``HEALTH_CHECK_SECRET`` via header or ``?secret=``.

    Args:
        production_only: Only enforce when the app runs in production

    Returns:
        Decorator
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated(*args, **kwargs):
            if production_only and current_app.config.get('ENVIRONMENT') != 'production':
                return f(*args, **kwargs)

            if not _secret_matches(_provided_secret(), current_app.config.get('HEALTH_CHECK_SECRET')):
                return jsonify({
                    'error': 'Unauthorized',
                    'message': 'A valid monitoring secret is required'
                }), 401

            return f(*args, **kwargs)
        return decorated
    return decorator
