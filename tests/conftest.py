"""Shared fixtures: fake clock, in-memory store, SQLite database, Flask app."""

import pytest

from opswatch import create_app
from opswatch.database.database import DatabaseManager
from opswatch.monitoring.alerts import NotificationChannel
from opswatch.monitoring.probes import MetricSource
from opswatch.services.monitoring_service import MonitoringService
from opswatch.storage.cache_store import MemoryStore
from opswatch.utils.exceptions import NotificationError

# 2023-11-14 22:13:20 UTC, inside the 22:00-22:15 window
START_EPOCH = 1700000000.0


class FakeClock:
    """Manually advanced clock; ``wait`` advances instead of sleeping."""

    def __init__(self, start=START_EPOCH):
        self.now = start
        self.waits = []

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    def wait(self, seconds):
        self.waits.append(seconds)
        self.advance(seconds)
        return False


class StaticProbe(MetricSource):
    """Probe returning fixed data, or raising a fixed error."""

    def __init__(self, name, data=None, error=None, timeout=1.0):
        super().__init__(timeout)
        self.name = name
        self.data = data or {}
        self.error = error
        self.calls = 0

    def measure(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.data)


class RecordingChannel(NotificationChannel):
    """Channel that records what it was asked to send."""

    def __init__(self, name, fail=False):
        super().__init__(name, {})
        self.fail = fail
        self.sent = []

    def send_notification(self, event):
        if self.fail:
            raise NotificationError(self.name, f"{self.name} is down")
        self.sent.append(event)


HEALTHY_PROBE_DATA = {
    'memory': {'current_mb': 120.0, 'peak_mb': 130.0, 'limit_mb': 2048.0},
    'database': {'connection': 'sqlite', 'query_time_ms': 1.5, 'active_connections': 1,
                 'response_time_ms': 1.5},
    'cache': {'driver': 'memory', 'response_time_ms': 0.4},
    'queue': {'driver': 'database', 'connection': 'default', 'pending': 0, 'failed': 0},
    'disk': {'used_percent': 40.0, 'free_mb': 60000.0, 'total_mb': 100000.0, 'path': '/'},
    'application': {'environment': 'testing', 'debug_mode': False, 'secret_key_set': True,
                    'version': '1.0.0'},
}


def healthy_probes(**overrides):
    """One StaticProbe per component; keyword args replace a probe's data or error."""
    probes = []
    for name, data in HEALTHY_PROBE_DATA.items():
        override = overrides.get(name)
        if isinstance(override, BaseException):
            probes.append(StaticProbe(name, error=override))
        elif override is not None:
            probes.append(StaticProbe(name, dict(data, **override)))
        else:
            probes.append(StaticProbe(name, data))
    return probes


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(prefix='test:', clock=clock)


@pytest.fixture
def db_manager():
    db = DatabaseManager('sqlite:///:memory:')
    db.create_all_tables()
    yield db
    db.close()


@pytest.fixture
def service_config():
    return {
        'ENVIRONMENT': 'testing',
        'SECRET_KEY_SET': True,
        'DEBUG': False,
        'QUEUE_DRIVER': 'database',
        'DISK_PATH': '/',
        'PROBE_TIMEOUT': 2.0,
        'HEALTH_CHECK_COMPONENTS': ['application', 'database', 'cache'],
        'HEALTH_REPORT_CACHE_TTL': 300,
        'NOTIFICATION_CHANNELS': [],
        'MONITORING_NOTIFICATIONS_ENABLED': True,
        'ERROR_MONITORING_WINDOW': 15,
        'ALERT_ERROR_RATE_THRESHOLD': 5,
    }


@pytest.fixture
def service(service_config, store, db_manager, clock):
    return MonitoringService(service_config, store=store, db_manager=db_manager,
                             channels={}, clock=clock)


@pytest.fixture
def app(service):
    app = create_app('testing', service=service)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()
