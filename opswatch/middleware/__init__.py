"""Middleware module for Opswatch application."""

from .error_tracking import ErrorTrackingMiddleware
from .performance import PerformanceMiddleware

__all__ = [
    'ErrorTrackingMiddleware',
    'PerformanceMiddleware'
]
