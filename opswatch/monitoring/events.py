"""Status and severity enums shared by health checks and alerting, and the alert event."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable


class HealthStatus(Enum):
    """Health check status, ordered from best to worst."""
    HEALTHY = "healthy"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"

    @property
    def rank(self) -> int:
        return _HEALTH_ORDER.index(self.value)

    @classmethod
    def worst(cls, statuses: Iterable['HealthStatus']) -> 'HealthStatus':
        """Most severe status of ``statuses``; healthy when empty."""
        return max(statuses, key=lambda status: status.rank, default=cls.HEALTHY)


_HEALTH_ORDER = ('healthy', 'warning', 'unhealthy')


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def log_level(self) -> int:
        return {
            'info': logging.INFO,
            'warning': logging.WARNING,
            'critical': logging.CRITICAL
        }[self.value]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AlertEvent:
    """A detected condition on its way from evaluation to the channels."""
    type: str
    message: str
    severity: AlertSeverity
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def value(self) -> Any:
        return self.context.get('value')

    @property
    def threshold(self) -> Any:
        return self.context.get('threshold')

    @property
    def unit(self) -> Any:
        return self.context.get('unit')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'message': self.message,
            'severity': self.severity.value,
            'context': self.context,
            'timestamp': self.timestamp.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlertEvent':
        return cls(
            type=data['type'],
            message=data['message'],
            severity=AlertSeverity(data['severity']),
            context=dict(data.get('context') or {}),
            timestamp=datetime.fromisoformat(data['timestamp']) if data.get('timestamp') else _utcnow()
        )
