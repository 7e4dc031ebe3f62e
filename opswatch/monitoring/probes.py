"""
Metric sources (probes) for the subsystems the monitor watches.

Each probe measures exactly one subsystem and reports through a
``ProbeResult``: a success payload or an error string, never an exception.
Probes run on a shared thread pool under their own timeout so a hung backend
degrades only its own result.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import psutil
from sqlalchemy import func

from opswatch.database.database import DatabaseManager
from opswatch.database.models import QueueJob, FailedJob
from opswatch.storage.cache_store import KeyValueStore
from opswatch.utils.exceptions import ProbeError, ProbeTimeoutError


logger = logging.getLogger(__name__)

_probe_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix='opswatch-probe')


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe run: either ``data`` or ``error`` is meaningful."""
    name: str
    ok: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    response_time_ms: Optional[float] = None
    timed_out: bool = False

    @classmethod
    def success(cls, name: str, data: Dict[str, Any],
                response_time_ms: Optional[float] = None) -> 'ProbeResult':
        return cls(name=name, ok=True, data=dict(data), response_time_ms=response_time_ms)

    @classmethod
    def failure(cls, name: str, error: str, response_time_ms: Optional[float] = None,
                timed_out: bool = False) -> 'ProbeResult':
        return cls(name=name, ok=False, error=error, response_time_ms=response_time_ms,
                   timed_out=timed_out)

    def get(self, key: str, default: Any = None) -> Any:
        """Read a field of the success payload; ``default`` for failures."""
        if not self.ok:
            return default
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return dict(self.data)
        return {'error': self.error}


class MetricSource:
    """Base class for probes."""

    name = 'base'

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout
        self._in_flight: Optional[Future] = None
        self._submit_lock = threading.Lock()

    def submit(self) -> Future:
        """
        Start a measurement on the probe pool.

        While an earlier measurement is still running its future is returned
        instead of starting another, so a hung backend holds at most one worker.
        """
        with self._submit_lock:
            if self._in_flight is None or self._in_flight.done():
                self._in_flight = _probe_executor.submit(self.measure)
            return self._in_flight

    def measure(self) -> Dict[str, Any]:
        """Take the measurement. May raise; ``run`` converts failures."""
        raise NotImplementedError("Subclasses must implement measure")

    def run(self) -> ProbeResult:
        """Run this probe alone under its timeout."""
        return run_probes([self])[self.name]


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def run_probes(probes: Sequence[MetricSource]) -> Dict[str, ProbeResult]:
    """
    Run probes concurrently and join them with a bounded wait.

    Every probe is measured against its own timeout counted from its own
    submission, so total latency stays close to the slowest single probe.

    Returns:
        Mapping of probe name to result, one entry per probe.
    """
    submitted = []
    for probe in probes:
        started = time.perf_counter()
        submitted.append((probe, started, probe.submit()))

    results: Dict[str, ProbeResult] = {}
    for probe, started, future in submitted:
        remaining = max(0.0, started + probe.timeout - time.perf_counter())
        try:
            data = future.result(timeout=remaining)
        except FutureTimeoutError:
            error = ProbeTimeoutError(probe.name, probe.timeout)
            logger.warning(str(error))
            results[probe.name] = ProbeResult.failure(
                probe.name,
                str(error),
                _elapsed_ms(started),
                timed_out=True
            )
        except Exception as e:
            logger.warning(f"Probe '{probe.name}' failed: {e}")
            results[probe.name] = ProbeResult.failure(probe.name, str(e) or e.__class__.__name__,
                                                      _elapsed_ms(started))
        else:
            data = data or {}
            response_time = data.get('response_time_ms', _elapsed_ms(started))
            results[probe.name] = ProbeResult.success(probe.name, data, response_time)
    return results


class MemoryProbe(MetricSource):
    """Resident memory of the current process."""

    name = 'memory'

    def __init__(self, memory_limit_mb: Optional[float] = None, timeout: float = 2.0):
        super().__init__(timeout)
        self.memory_limit_mb = memory_limit_mb
        self._process = psutil.Process()
        self._peak_mb = 0.0

    def measure(self) -> Dict[str, Any]:
        memory_info = self._process.memory_info()
        current_mb = round(memory_info.rss / 1024 / 1024, 2)

        # Only Windows reports a true peak; elsewhere track the highest sample.
        peak_bytes = getattr(memory_info, 'peak_wset', None)
        if peak_bytes:
            self._peak_mb = max(self._peak_mb, round(peak_bytes / 1024 / 1024, 2))
        self._peak_mb = max(self._peak_mb, current_mb)

        limit_mb = self.memory_limit_mb
        if limit_mb is None:
            limit_mb = round(psutil.virtual_memory().total / 1024 / 1024, 2)

        return {
            'current_mb': current_mb,
            'peak_mb': self._peak_mb,
            'limit_mb': limit_mb
        }


class DatabaseProbe(MetricSource):
    """Round-trip time of a trivial query."""

    name = 'database'

    def __init__(self, db_manager: DatabaseManager, connection_name: Optional[str] = None,
                 timeout: float = 2.0):
        super().__init__(timeout)
        self.db_manager = db_manager
        self.connection_name = connection_name or db_manager.dialect_name

    def measure(self) -> Dict[str, Any]:
        started = time.perf_counter()
        if not self.db_manager.ping():
            raise ProbeError(self.name, "Database query test failed")
        query_time_ms = _elapsed_ms(started)

        try:
            active_connections = self.db_manager.count_active_connections()
        except Exception as e:
            logger.debug(f"Could not count active connections: {e}")
            active_connections = 0

        return {
            'connection': self.connection_name,
            'query_time_ms': query_time_ms,
            'active_connections': active_connections,
            'response_time_ms': query_time_ms
        }


class CacheProbe(MetricSource):
    """Write/read/delete round trip against the keyed store."""

    name = 'cache'

    def __init__(self, store: KeyValueStore, timeout: float = 2.0):
        super().__init__(timeout)
        self.store = store

    def measure(self) -> Dict[str, Any]:
        test_key = f"probe:{uuid.uuid4().hex}"
        test_value = uuid.uuid4().hex

        started = time.perf_counter()
        self.store.set(test_key, test_value, ttl=60)
        retrieved = self.store.get(test_key)
        self.store.delete(test_key)
        response_time_ms = _elapsed_ms(started)

        if retrieved != test_value:
            raise ProbeError(self.name, "Cache read/write test failed",
                             {'response_time_ms': response_time_ms})

        metrics = {
            'driver': self.store.driver,
            'response_time_ms': response_time_ms
        }

        try:
            backend_stats = self.store.info()
        except Exception as e:
            backend_stats = {'error': str(e)}
        if backend_stats:
            metrics['backend_stats'] = backend_stats

        return metrics


class QueueProbe(MetricSource):
    """Depth of the job queue for the configured driver."""

    name = 'queue'

    def __init__(self, driver: str = 'sync', connection: str = 'default',
                 db_manager: Optional[DatabaseManager] = None, redis_client=None,
                 queue_name: str = 'default', timeout: float = 2.0):
        super().__init__(timeout)
        self.driver = driver
        self.connection = connection
        self.db_manager = db_manager
        self.redis_client = redis_client
        self.queue_name = queue_name

    def measure(self) -> Dict[str, Any]:
        started = time.perf_counter()
        metrics = {
            'driver': self.driver,
            'connection': self.connection
        }

        if self.driver == 'database':
            if self.db_manager is None:
                raise ProbeError(self.name, "Database queue driver configured without a database")
            with self.db_manager.session_scope() as session:
                metrics['pending'] = session.query(func.count(QueueJob.id)).scalar() or 0
                metrics['failed'] = session.query(func.count(FailedJob.id)).scalar() or 0
        elif self.driver == 'redis':
            if self.redis_client is None:
                raise ProbeError(self.name, "Redis queue driver configured without a client")
            metrics['pending'] = int(self.redis_client.llen(f"queues:{self.queue_name}"))

        metrics['response_time_ms'] = _elapsed_ms(started)
        return metrics


class DiskProbe(MetricSource):
    """Usage of the filesystem holding ``path``."""

    name = 'disk'

    def __init__(self, path: str = '/', timeout: float = 2.0):
        super().__init__(timeout)
        self.path = str(path)

    def measure(self) -> Dict[str, Any]:
        usage = psutil.disk_usage(self.path)
        if not usage.total:
            raise ProbeError(self.name, f"Filesystem at {self.path} reports zero size")

        return {
            'used_percent': round((1 - usage.free / usage.total) * 100, 2),
            'free_mb': round(usage.free / 1024 / 1024, 2),
            'total_mb': round(usage.total / 1024 / 1024, 2),
            'path': self.path
        }


class ApplicationProbe(MetricSource):
    """Static application settings that affect health (health checks only)."""

    name = 'application'

    def __init__(self, environment: str, debug: bool, secret_key_set: bool,
                 version: str = '1.0.0', timeout: float = 2.0):
        super().__init__(timeout)
        self.environment = environment
        self.debug = debug
        self.secret_key_set = secret_key_set
        self.version = version

    def measure(self) -> Dict[str, Any]:
        return {
            'environment': self.environment,
            'debug_mode': self.debug,
            'secret_key_set': self.secret_key_set,
            'version': self.version
        }


def probes_by_name(probes: List[MetricSource]) -> Dict[str, MetricSource]:
    return {probe.name: probe for probe in probes}
