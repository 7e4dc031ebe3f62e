"""
Continuous system monitoring loop.

``ContinuousMonitor`` samples metrics (and optionally health) at a fixed
interval for a bounded duration. Iterations are scheduled from the start time,
so time spent working is not added to the interval. ``stop()`` ends the loop
at the next iteration boundary or during the wait.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from opswatch.monitoring.alerts import AlertingPipeline
from opswatch.monitoring.events import AlertEvent, AlertSeverity
from opswatch.monitoring.health_checks import HealthChecker, HealthReport
from opswatch.monitoring.metrics_collector import MetricsCollector, MetricsSnapshot


logger = logging.getLogger(__name__)

OUTPUT_MODES = ('log', 'console', 'both')


class MonitorState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    ABORTED = "aborted"


@dataclass
class MonitorRunSummary:
    iterations: int
    errors: int
    state: MonitorState


def format_snapshot_line(snapshot: MetricsSnapshot) -> str:
    """One console line summarising a snapshot; failed probes show as ERR."""
    def metric(result, key, unit):
        if not result.ok:
            return 'ERR'
        value = result.get(key)
        return f"{value}{unit}" if value is not None else '-'

    return (
        f"[{snapshot.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] "
        f"memory {metric(snapshot.memory, 'current_mb', 'MB')} | "
        f"db {metric(snapshot.database, 'query_time_ms', 'ms')} | "
        f"cache {metric(snapshot.cache, 'response_time_ms', 'ms')} | "
        f"disk {metric(snapshot.disk, 'used_percent', '%')} | "
        f"queue {metric(snapshot.queue, 'pending', '')}"
    )


class ContinuousMonitor:
    """Fixed-interval sampling loop with an external stop signal."""

    def __init__(self, collector: MetricsCollector, health_checker: Optional[HealthChecker] = None,
                 pipeline: Optional[AlertingPipeline] = None, interval: float = 60,
                 duration: float = 3600, include_health_checks: bool = False,
                 alert_on_issues: bool = False, output: str = 'log',
                 clock: Callable[[], float] = time.monotonic,
                 wait: Optional[Callable[[float], bool]] = None,
                 printer: Callable[[str], None] = print):
        """
        Initialize monitor.

        Args:
            collector: Metrics collector sampled every iteration
            health_checker: Used when ``include_health_checks`` is set
            pipeline: Alerting pipeline used when ``alert_on_issues`` is set
            interval: Seconds between iteration starts
            duration: Total run length in seconds
            include_health_checks: Run a health check every iteration
            alert_on_issues: Send threshold violations and loop failures
            output: ``log``, ``console`` or ``both``
            clock: Monotonic clock in seconds
            wait: ``wait(seconds) -> stopped``; defaults to the stop event's wait
            printer: Console sink
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if duration <= 0:
            raise ValueError("duration must be positive")
        if output not in OUTPUT_MODES:
            raise ValueError(f"output must be one of: {', '.join(OUTPUT_MODES)}")
        if include_health_checks and health_checker is None:
            raise ValueError("include_health_checks requires a health checker")

        self.collector = collector
        self.health_checker = health_checker
        self.pipeline = pipeline
        self.interval = interval
        self.duration = duration
        self.include_health_checks = include_health_checks
        self.alert_on_issues = alert_on_issues
        self.output = output
        self.clock = clock
        self.printer = printer

        self._stop_event = threading.Event()
        self._wait = wait or self._stop_event.wait
        self._state = MonitorState.IDLE

    @property
    def state(self) -> MonitorState:
        return self._state

    def stop(self) -> None:
        """Ask the loop to stop; safe to call from another thread."""
        self._stop_event.set()

    def run(self) -> MonitorRunSummary:
        """
        Run until the duration elapses or ``stop()`` is called.

        Exceptions inside an iteration are logged and counted. Anything that
        is not an ``Exception`` (e.g. KeyboardInterrupt) aborts the loop and
        propagates.
        """
        if self._state != MonitorState.IDLE:
            raise RuntimeError(f"Monitor cannot be started from state {self._state.value}")

        self._state = MonitorState.RUNNING
        logger.info(f"Starting system monitoring (interval: {self.interval}s, duration: {self.duration}s)")

        start = self.clock()
        end = start + self.duration
        iterations = 0
        errors = 0

        try:
            while not self._stop_event.is_set() and self.clock() < end:
                iterations += 1
                try:
                    self._run_iteration()
                except Exception as e:
                    errors += 1
                    logger.error(f"Monitoring iteration {iterations} failed: {e}")
                    self._escalate(e, iterations)

                next_start = min(start + iterations * self.interval, end)
                delay = next_start - self.clock()
                if delay > 0 and self._wait(delay):
                    break
        except BaseException:
            self._state = MonitorState.ABORTED
            logger.error(f"System monitoring aborted after {iterations} iterations")
            raise

        self._state = MonitorState.STOPPED
        logger.info(f"System monitoring finished: {iterations} iterations, {errors} errors")
        return MonitorRunSummary(iterations=iterations, errors=errors, state=self._state)

    def _run_iteration(self) -> None:
        snapshot = self.collector.collect()
        self.collector.record_snapshot(snapshot)

        report = None
        if self.include_health_checks:
            report = self.health_checker.check_all()

        self._emit(snapshot, report)

        if self.alert_on_issues and self.pipeline is not None:
            self.pipeline.process_snapshot(snapshot)
            if report is not None:
                self.pipeline.process_health_report(report)

    def _emit(self, snapshot: MetricsSnapshot, report: Optional[HealthReport]) -> None:
        if self.output in ('log', 'both'):
            logger.info(f"System metrics: {json.dumps(snapshot.to_dict(), default=str)}")
            if report is not None:
                logger.info(f"Health status: {report.overall_status.value} ({report.summary})")

        if self.output in ('console', 'both'):
            self.printer(format_snapshot_line(snapshot))
            if report is not None:
                self.printer(f"  health: {report.overall_status.value} ({report.summary})")

    def _escalate(self, error: Exception, iteration: int) -> None:
        if not self.alert_on_issues or self.pipeline is None:
            return
        event = AlertEvent(
            type='monitoring_error',
            message=f"System monitoring iteration failed: {error}",
            severity=AlertSeverity.CRITICAL,
            context={'iteration': iteration, 'error_type': type(error).__name__}
        )
        try:
            self.pipeline.send_alert(event)
        except Exception as e:
            logger.error(f"Failed to send monitoring error alert: {e}")
