"""Exception hierarchy for the monitoring subsystem."""

from typing import Any, Dict, Optional


class MonitoringError(Exception):
    """Base class for all monitoring errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and JSON responses."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'details': self.details
        }


class ConfigError(MonitoringError):
    """Invalid or inconsistent monitoring configuration."""
    pass


class ProbeError(MonitoringError):
    """A probe could not measure its target."""

    def __init__(self, probe_name: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.probe_name = probe_name


class ProbeTimeoutError(ProbeError):
    """A probe did not finish within its timeout."""

    def __init__(self, probe_name: str, timeout: float):
        super().__init__(probe_name, f"Probe '{probe_name}' timed out after {timeout:.1f}s",
                         {'timeout_seconds': timeout})
        self.timeout = timeout


class StoreError(MonitoringError):
    """The shared keyed store is unavailable or returned garbage."""
    pass


class NotificationError(MonitoringError):
    """A notification channel failed to deliver an alert."""

    def __init__(self, channel: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.channel = channel
