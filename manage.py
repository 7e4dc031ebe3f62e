#!/usr/bin/env python3
"""Management script for Opswatch monitoring operations."""

import argparse
import json
import logging
import os
import signal
import sys
from pathlib import Path

# Add current directory to Python path
sys.path.insert(0, str(Path(__file__).parent))

from config import config
from opswatch.monitoring.events import AlertSeverity, HealthStatus
from opswatch.monitoring.system_monitor import OUTPUT_MODES, format_snapshot_line
from opswatch.services.monitoring_service import MonitoringService


logger = logging.getLogger('opswatch.cli')


def configure_cli_logging(verbose: bool = False) -> None:
    """Send log records to stderr; DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        stream=sys.stderr
    )


def load_config(env_name=None) -> dict:
    """Resolve a config class into a plain mapping."""
    config_name = env_name or os.environ.get('FLASK_ENV', 'default')
    app_config = config[config_name]()
    return {key: getattr(app_config, key) for key in dir(app_config) if key.isupper()}


def build_service(args) -> MonitoringService:
    """Build the monitoring service for the selected environment."""
    return MonitoringService(load_config(args.env))


def metrics_collect(args, service: MonitoringService) -> int:
    """Collect one metrics snapshot."""
    snapshot = service.collector.collect()
    service.collector.record_snapshot(snapshot)

    if args.output in ('log', 'both'):
        logger.info(f"System metrics: {json.dumps(snapshot.to_dict(), default=str)}")
    if args.output in ('console', 'both'):
        print(format_snapshot_line(snapshot))
        for name in snapshot.failed_probes():
            print(f"  {name}: {snapshot.results()[name].error}")

    if args.check_thresholds:
        outcomes = service.pipeline.process_snapshot(snapshot)
        sent = [outcome for outcome in outcomes if not outcome.suppressed]
        print(f"Threshold check: {len(outcomes)} violation(s), {len(sent)} alert(s) sent")
        for outcome in outcomes:
            mark = "suppressed" if outcome.suppressed else "sent"
            print(f"  [{outcome.event.severity.value}] {outcome.event.type} ({mark})")

    if args.cleanup:
        stats = service.retention.cleanup_old_data()
        print(f"Cleanup: {stats['metrics_deleted']} metrics bucket(s), "
              f"{stats['alerts_deleted']} alert bucket(s) deleted")

    return 0


def monitor_system(args, service: MonitoringService) -> int:
    """Run the continuous monitor until its duration elapses."""
    if args.interval <= 0 or args.duration <= 0:
        print("Error: --interval and --duration must be positive")
        return 1

    monitor = service.create_monitor(
        interval=args.interval,
        duration=args.duration,
        include_health_checks=args.health_checks,
        alert_on_issues=args.alert_on_issues,
        output=args.output
    )

    def handle_signal(signum, frame):
        print(f"Received signal {signum}, stopping monitor...")
        monitor.stop()

    previous = {sig: signal.signal(sig, handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    print(f"Monitoring system every {args.interval}s for {args.duration}s")
    try:
        summary = monitor.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print(f"Monitoring finished: {summary.iterations} iteration(s), {summary.errors} error(s)")
    return 0


def _metric_line(name: str, data: dict, summary: str) -> str:
    if 'error' in data:
        return f"  {name:<10}error: {data['error']}"
    return f"  {name:<10}{summary.format(**data)}"


METRIC_SUMMARIES = {
    'memory': "{current_mb}MB current, {peak_mb}MB peak",
    'database': "{query_time_ms}ms query time",
    'cache': "{response_time_ms}ms round trip ({driver})",
    'queue': "driver {driver}",
    'disk': "{used_percent}% used, {free_mb}MB free",
}

METRIC_DETAILS = {
    'memory': ('limit_mb',),
    'database': ('connection', 'active_connections'),
    'cache': ('backend_stats',),
    'queue': ('pending', 'failed', 'connection'),
    'disk': ('path', 'total_mb'),
}


def monitor_dashboard(args, service: MonitoringService) -> int:
    """Print health, latest metrics, error rates and recent alerts."""
    data = service.get_dashboard_data(refresh=args.refresh)

    if args.format == 'json':
        print(json.dumps(data, indent=2, default=str))
        return 0

    health = data['health']
    print(f"Opswatch dashboard [{health['environment']}] {health['timestamp']}")
    print()
    print(f"Overall: {health['status']} ({health['summary']})")
    for name, check in health['checks'].items():
        response = f" ({check['response_time_ms']}ms)" if check.get('response_time_ms') is not None else ''
        print(f"  {name:<14}{check['status']}{response}")
        if check['status'] != HealthStatus.HEALTHY.value:
            print(f"    {check['message']}")

    print()
    print("Metrics:")
    metrics = data['metrics']
    for name, summary in METRIC_SUMMARIES.items():
        values = metrics.get(name) or {}
        try:
            print(_metric_line(name, values, summary))
        except KeyError:
            print(f"  {name:<10}{values}")
        if args.detailed and 'error' not in values:
            for key in METRIC_DETAILS[name]:
                if key in values:
                    print(f"    {key}: {values[key]}")

    errors = data['errors']
    print()
    print(f"Errors this window: {errors.get('total_errors', 0)} "
          f"(window {errors.get('window')}, threshold {data['thresholds']['error_rate_threshold']})")
    if args.detailed:
        for error_type, count in errors.get('recent_by_type', {}).items():
            print(f"  {error_type}: {count}")

    alerts = data['alerts']
    print(f"Alerts (24h): {alerts['last_24h']}")
    for severity, count in alerts['by_severity'].items():
        print(f"  {severity}: {count}")
    if args.alerts:
        for alert in alerts['recent']:
            print(f"  [{alert.get('severity')}] {alert.get('timestamp')} {alert.get('type')}: {alert.get('message')}")

    print(f"Channels: {', '.join(data['channels']) or 'none'}")
    return 0


def _print_health_table(checks) -> None:
    print(f"{'Component':<14}{'Status':<12}{'Response':<12}Message")
    for name, check in checks.items():
        response = f"{check.response_time_ms}ms" if check.response_time_ms is not None else '-'
        print(f"{name:<14}{check.status.value:<12}{response:<12}{check.message}")


def health_check(args, service: MonitoringService) -> int:
    """Run health checks and exit non-zero when unhealthy."""
    if args.component:
        try:
            check = service.health_checker.check_component(args.component)
        except ValueError as e:
            print(f"Error: {e}")
            print(f"Available components: {', '.join(service.health_checker.available_components())}")
            return 1
        checks = {check.name: check}
        status = check.status
        if args.format == 'json':
            print(json.dumps({check.name: check.to_dict()}, indent=2, default=str))
        else:
            _print_health_table(checks)
    else:
        report = service.get_health_report(use_cache=False)
        status = report.overall_status
        if args.format == 'json':
            print(json.dumps(report.to_dict(), indent=2, default=str))
        else:
            _print_health_table(report.checks)
            print()
            print(f"Overall: {status.value} ({report.summary})")

    if status == HealthStatus.UNHEALTHY:
        return 1
    if status == HealthStatus.WARNING and args.fail_on_warning:
        return 1
    return 0


def alert_test(args, service: MonitoringService) -> int:
    """Send a test alert directly to the channels."""
    channels = service.dispatcher.channels
    if args.channel and args.channel not in channels:
        print(f"Error: channel '{args.channel}' is not configured")
        print(f"Configured channels: {', '.join(channels) or 'none'}")
        return 1
    if not channels:
        print("Error: no notification channels configured")
        return 1

    outcome = service.pipeline.send_test_alert(
        AlertSeverity(args.severity),
        message=args.message,
        channel=args.channel
    )

    for name, result in outcome.results.items():
        if result.ok:
            print(f"✓ {name}: sent")
        else:
            print(f"✗ {name}: {result.error}")

    return 0 if all(result.ok for result in outcome.results.values()) else 1


COMMANDS = {
    ('metrics', 'collect'): metrics_collect,
    ('monitor', 'system'): monitor_system,
    ('monitor', 'dashboard'): monitor_dashboard,
    ('health', 'check'): health_check,
    ('alert', 'test'): alert_test,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Opswatch Monitoring Management")
    parser.add_argument('--env', choices=['development', 'production', 'testing'],
                        help='Configuration environment')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # metrics collect
    metrics_parser = subparsers.add_parser('metrics', help='Metrics collection')
    metrics_sub = metrics_parser.add_subparsers(dest='action')
    collect_parser = metrics_sub.add_parser('collect', help='Collect one metrics snapshot')
    collect_parser.add_argument('--output', choices=OUTPUT_MODES, default='log',
                                help='Where to write the snapshot')
    collect_parser.add_argument('--cleanup', action='store_true',
                                help='Delete history older than the retention period')
    collect_parser.add_argument('--check-thresholds', action='store_true',
                                help='Evaluate thresholds and send alerts')

    # monitor system
    monitor_parser = subparsers.add_parser('monitor', help='Continuous monitoring')
    monitor_sub = monitor_parser.add_subparsers(dest='action')
    system_parser = monitor_sub.add_parser('system', help='Monitor the system at a fixed interval')
    system_parser.add_argument('--interval', type=int, default=60,
                               help='Seconds between samples')
    system_parser.add_argument('--duration', type=int, default=3600,
                               help='Total run time in seconds')
    system_parser.add_argument('--output', choices=OUTPUT_MODES, default='log',
                               help='Where to write samples')
    system_parser.add_argument('--health-checks', action='store_true',
                               help='Run health checks every iteration')
    system_parser.add_argument('--alert-on-issues', action='store_true',
                               help='Send alerts for threshold violations')
    dashboard_parser = monitor_sub.add_parser('dashboard', help='Show the monitoring dashboard')
    dashboard_parser.add_argument('--refresh', action='store_true',
                                  help='Run health checks instead of using the cached report')
    dashboard_parser.add_argument('--detailed', action='store_true',
                                  help='Show per-metric details and error types')
    dashboard_parser.add_argument('--alerts', action='store_true',
                                  help='List recent alerts')
    dashboard_parser.add_argument('--format', choices=['table', 'json'], default='table',
                                  help='Output format')

    # health check
    health_parser = subparsers.add_parser('health', help='Health checks')
    health_sub = health_parser.add_subparsers(dest='action')
    check_parser = health_sub.add_parser('check', help='Run health checks')
    check_parser.add_argument('--component', help='Check a single component')
    check_parser.add_argument('--format', choices=['table', 'json'], default='table',
                              help='Output format')
    check_parser.add_argument('--fail-on-warning', action='store_true',
                              help='Exit 1 on warning status too')

    # alert test
    alert_parser = subparsers.add_parser('alert', help='Alerting')
    alert_sub = alert_parser.add_subparsers(dest='action')
    test_parser = alert_sub.add_parser('test', help='Send a test alert')
    test_parser.add_argument('severity', choices=[s.value for s in AlertSeverity],
                             help='Alert severity')
    test_parser.add_argument('--message', help='Alert message')
    test_parser.add_argument('--channel', help='Send to one channel only')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return 0 if e.code in (0, None) else 1

    handler = COMMANDS.get((args.command, getattr(args, 'action', None)))
    if handler is None:
        parser.print_help()
        return 1

    configure_cli_logging(args.verbose)

    try:
        service = build_service(args)
        try:
            return handler(args, service)
        finally:
            service.close()

    except Exception as e:
        print(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
