"""
Alert deduplication, notification channels and dispatch.

Events flow evaluator -> deduplicator -> dispatcher. The deduplicator claims a
``(type, window)`` key with an atomic set-if-absent before anything is sent,
so concurrent evaluations of the same condition produce one notification.
Channels are independent: one failing channel never blocks the others.
"""

import logging
import smtplib
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import requests

from opswatch.monitoring.events import AlertEvent, AlertSeverity
from opswatch.monitoring.metrics_collector import MetricsSnapshot, hour_bucket
from opswatch.monitoring.thresholds import ThresholdConfig, ThresholdEvaluator
from opswatch.storage.cache_store import KeyValueStore
from opswatch.utils.exceptions import ConfigError, NotificationError, StoreError


logger = logging.getLogger(__name__)


def window_bucket(epoch: float, window_minutes: int) -> str:
    """Floor ``epoch`` to the window size and render it as ``YYYYmmddHHMM`` (UTC)."""
    window_seconds = window_minutes * 60
    floored = int(epoch // window_seconds) * window_seconds
    return datetime.fromtimestamp(floored, tz=timezone.utc).strftime('%Y%m%d%H%M')


def day_bucket(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime('%Y%m%d')


@dataclass(frozen=True)
class AlertWindowKey:
    """Deduplication key: one dispatch per alert type per window."""
    alert_type: str
    bucket: str

    @classmethod
    def for_type(cls, alert_type: str, epoch: float, window_minutes: int) -> 'AlertWindowKey':
        return cls(alert_type=alert_type, bucket=window_bucket(epoch, window_minutes))

    @property
    def store_key(self) -> str:
        return f"alert_sent:{self.alert_type}:{self.bucket}"


@dataclass(frozen=True)
class DedupDecision:
    key: str
    suppressed: bool
    reason: str = 'claimed'


class AlertDeduplicator:
    """Time-windowed "already notified" set on top of the keyed store."""

    def __init__(self, store: KeyValueStore, thresholds: ThresholdConfig,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.thresholds = thresholds
        self.clock = clock

    def claim(self, event: AlertEvent) -> DedupDecision:
        """
        Claim the event's window key.

        The claim is a single set-if-absent call. If the store is down the
        event is let through: a duplicate is better than a missed incident.
        """
        now = self.clock()
        key = AlertWindowKey.for_type(event.type, now, self.thresholds.time_window_minutes).store_key

        try:
            claimed = self.store.add(
                key,
                {'claimed_at': now, 'severity': event.severity.value},
                ttl=self.thresholds.window_ttl_seconds
            )
        except StoreError as e:
            logger.error(f"Alert dedup store unavailable, sending '{event.type}' anyway: {e}")
            return DedupDecision(key=key, suppressed=False, reason='store_unavailable')

        if not claimed:
            logger.info(f"Alert suppressed (already sent this window): {event.type}")
            return DedupDecision(key=key, suppressed=True, reason='duplicate')

        limit = self.thresholds.max_alerts_per_hour
        if limit > 0:
            try:
                sent_this_hour = self.store.incr(
                    f"alert_rate:{hour_bucket(now)}",
                    ttl=3600 + self.thresholds.window_grace_seconds
                )
            except StoreError as e:
                logger.error(f"Alert rate counter unavailable: {e}")
                sent_this_hour = 0
            if sent_this_hour > limit:
                logger.warning(f"Alert rate limit reached ({limit}/hour), suppressing: {event.type}")
                return DedupDecision(key=key, suppressed=True, reason='rate_limited')

        return DedupDecision(key=key, suppressed=False)

    def release(self, key: str) -> None:
        """Drop a claim so the condition can be retried within the same window."""
        try:
            self.store.delete(key)
        except StoreError as e:
            logger.error(f"Failed to release alert claim {key}: {e}")


def format_alert_text(event: AlertEvent) -> str:
    """Plain-text rendering shared by channels that send free text."""
    lines = [
        f"Alert: {event.type}",
        f"Severity: {event.severity.value.upper()}",
        f"Time: {event.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        "",
        event.message,
    ]
    if event.context:
        lines.append("")
        lines.append("Context:")
        for key, value in event.context.items():
            lines.append(f"  {key}: {value}")
    return "\n".join(lines)


class NotificationChannel:
    """Base class for notification channels."""

    required_settings: tuple = ()

    def __init__(self, name: str, config: Dict[str, Any]):
        self.name = name
        self.config = config

    @property
    def enabled(self) -> bool:
        return all(self.config.get(setting) for setting in self.required_settings)

    def send_notification(self, event: AlertEvent) -> None:
        """Deliver one event. Raises ``NotificationError`` on failure."""
        raise NotImplementedError("Subclasses must implement send_notification")

    def _post_json(self, url: str, payload: Dict[str, Any]) -> None:
        try:
            response = requests.post(url, json=payload, timeout=self.config.get('timeout', 10))
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(self.name, f"{self.name} request failed: {e}") from e


class EmailNotificationChannel(NotificationChannel):
    """Email notification channel."""

    required_settings = ('to_addresses',)

    def send_notification(self, event: AlertEvent) -> None:
        smtp_server = self.config.get('smtp_server', 'localhost')
        smtp_port = self.config.get('smtp_port', 587)
        username = self.config.get('username')
        password = self.config.get('password')
        from_address = self.config.get('from_address', 'alerts@opswatch.local')
        to_addresses = self.config.get('to_addresses', [])
        app_name = self.config.get('app_name', 'Opswatch')

        if not to_addresses:
            raise NotificationError(self.name, "No email recipients configured")

        msg = MIMEMultipart()
        msg['From'] = from_address
        msg['To'] = ', '.join(to_addresses)
        msg['Subject'] = f"[{app_name}] {event.severity.value.upper()}: {event.type}"
        msg.attach(MIMEText(format_alert_text(event), 'plain'))

        try:
            server = smtplib.SMTP(smtp_server, smtp_port, timeout=self.config.get('timeout', 10))
            try:
                if self.config.get('use_tls', True) and username and password:
                    server.starttls()
                    server.login(username, password)
                server.send_message(msg)
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(self.name, f"SMTP delivery failed: {e}") from e

        logger.info(f"Sent email notification for alert {event.type}")


class SlackNotificationChannel(NotificationChannel):
    """Slack notification channel using incoming webhooks."""

    required_settings = ('webhook_url',)

    color_map = {
        AlertSeverity.CRITICAL: '#FF0000',
        AlertSeverity.WARNING: '#FFA500',
        AlertSeverity.INFO: '#36A64F'
    }

    def build_payload(self, event: AlertEvent) -> Dict[str, Any]:
        fields = [
            {'title': 'Severity', 'value': event.severity.value.upper(), 'short': True},
            {'title': 'Time', 'value': event.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC'), 'short': True}
        ]
        if event.value is not None:
            fields.append({'title': 'Current Value', 'value': f"{event.value}{event.unit or ''}", 'short': True})
        if event.threshold is not None:
            fields.append({'title': 'Threshold', 'value': f"{event.threshold}{event.unit or ''}", 'short': True})

        payload = {
            'attachments': [
                {
                    'color': self.color_map.get(event.severity, '#808080'),
                    'title': f"{event.severity.value.upper()}: {event.type}",
                    'text': event.message,
                    'fields': fields,
                    'footer': self.config.get('app_name', 'Opswatch'),
                    'ts': int(event.timestamp.timestamp())
                }
            ]
        }
        if self.config.get('channel'):
            payload['channel'] = self.config['channel']
        return payload

    def send_notification(self, event: AlertEvent) -> None:
        webhook_url = self.config.get('webhook_url')
        if not webhook_url:
            raise NotificationError(self.name, "No Slack webhook URL configured")
        self._post_json(webhook_url, self.build_payload(event))
        logger.info(f"Sent Slack notification for alert {event.type}")


class DiscordNotificationChannel(NotificationChannel):
    """Discord notification channel using webhook embeds."""

    required_settings = ('webhook_url',)

    color_map = {
        AlertSeverity.CRITICAL: 0xFF0000,
        AlertSeverity.WARNING: 0xFFA500,
        AlertSeverity.INFO: 0x36A64F
    }

    def build_payload(self, event: AlertEvent) -> Dict[str, Any]:
        fields = [{'name': 'Severity', 'value': event.severity.value.upper(), 'inline': True}]
        if event.value is not None:
            fields.append({'name': 'Current Value', 'value': f"{event.value}{event.unit or ''}", 'inline': True})
        if event.threshold is not None:
            fields.append({'name': 'Threshold', 'value': f"{event.threshold}{event.unit or ''}", 'inline': True})

        return {
            'username': self.config.get('app_name', 'Opswatch'),
            'embeds': [
                {
                    'title': f"{event.severity.value.upper()}: {event.type}",
                    'description': event.message,
                    'color': self.color_map.get(event.severity, 0x808080),
                    'fields': fields,
                    'timestamp': event.timestamp.isoformat()
                }
            ]
        }

    def send_notification(self, event: AlertEvent) -> None:
        webhook_url = self.config.get('webhook_url')
        if not webhook_url:
            raise NotificationError(self.name, "No Discord webhook URL configured")
        self._post_json(webhook_url, self.build_payload(event))
        logger.info(f"Sent Discord notification for alert {event.type}")


class WebhookNotificationChannel(NotificationChannel):
    """Generic JSON webhook channel."""

    required_settings = ('url',)

    def send_notification(self, event: AlertEvent) -> None:
        url = self.config.get('url')
        method = self.config.get('method', 'POST').upper()
        headers = dict(self.config.get('headers') or {})
        timeout = self.config.get('timeout', 10)

        if not url:
            raise NotificationError(self.name, "No webhook URL configured")
        if method not in ('POST', 'PUT'):
            raise NotificationError(self.name, f"Unsupported HTTP method: {method}")

        headers.setdefault('Content-Type', 'application/json')
        payload = event.to_dict()
        payload['source'] = self.config.get('app_name', 'Opswatch')

        try:
            response = requests.request(method, url, json=payload, headers=headers, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(self.name, f"Webhook request failed: {e}") from e

        logger.info(f"Sent webhook notification for alert {event.type} to {url}")


CHANNEL_TYPES = {
    'mail': EmailNotificationChannel,
    'email': EmailNotificationChannel,
    'slack': SlackNotificationChannel,
    'discord': DiscordNotificationChannel,
    'webhook': WebhookNotificationChannel,
}


def create_channels(config: Mapping[str, Any]) -> Dict[str, NotificationChannel]:
    """Build the channels listed in ``NOTIFICATION_CHANNELS``."""
    app_name = config.get('APP_NAME', 'Opswatch')
    settings = {
        'mail': {
            'smtp_server': config.get('MAIL_SERVER', 'localhost'),
            'smtp_port': config.get('MAIL_PORT', 587),
            'username': config.get('MAIL_USERNAME'),
            'password': config.get('MAIL_PASSWORD'),
            'use_tls': config.get('MAIL_USE_TLS', True),
            'from_address': config.get('MAIL_FROM_ADDRESS', 'alerts@opswatch.local'),
            'to_addresses': list(config.get('ALERT_EMAIL_RECIPIENTS') or []),
        },
        'slack': {
            'webhook_url': config.get('SLACK_WEBHOOK_URL'),
            'channel': config.get('SLACK_CHANNEL'),
        },
        'discord': {
            'webhook_url': config.get('DISCORD_WEBHOOK_URL'),
        },
        'webhook': {
            'url': config.get('ALERT_WEBHOOK_URL'),
            'method': config.get('ALERT_WEBHOOK_METHOD', 'POST'),
        },
    }
    settings['email'] = settings['mail']

    channels: Dict[str, NotificationChannel] = {}
    for name in config.get('NOTIFICATION_CHANNELS') or []:
        channel_cls = CHANNEL_TYPES.get(name)
        if channel_cls is None:
            raise ConfigError(f"Unknown notification channel: {name}", {'channel': name})
        channel_config = dict(settings[name])
        channel_config['app_name'] = app_name
        channel_config['timeout'] = config.get('NOTIFICATION_TIMEOUT', 10)
        channel = channel_cls(name, channel_config)
        if not channel.enabled:
            logger.warning(f"Notification channel '{name}' is missing required settings")
        channels[name] = channel
    return channels


@dataclass(frozen=True)
class ChannelResult:
    channel: str
    ok: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {'ok': True}
        return {'ok': False, 'error': self.error}


class AlertDispatcher:
    """Fans one event out to the enabled channels without retrying."""

    def __init__(self, channels: Optional[Mapping[str, NotificationChannel]] = None):
        self.channels: Dict[str, NotificationChannel] = dict(channels or {})

    def dispatch(self, event: AlertEvent, channels: Optional[Iterable[str]] = None) -> Dict[str, ChannelResult]:
        """
        Send an event to every selected channel.

        Args:
            event: The alert to send
            channels: Channel names to use; defaults to all configured channels

        Returns:
            Per-channel result map
        """
        logger.log(event.severity.log_level, f"Alert [{event.type}]: {event.message}")

        names = list(channels) if channels is not None else list(self.channels)
        results: Dict[str, ChannelResult] = {}
        for name in names:
            channel = self.channels.get(name)
            if channel is None:
                results[name] = ChannelResult(name, False, f"Unknown channel: {name}")
                continue
            try:
                channel.send_notification(event)
                results[name] = ChannelResult(name, True)
            except Exception as e:
                logger.error(f"Failed to send {name} notification for {event.type}: {e}")
                results[name] = ChannelResult(name, False, str(e))
        return results


class AlertHistory:
    """Daily buckets of dispatched alerts for the dashboard."""

    key_prefix = 'alert_history'
    max_per_day = 100
    max_days = 30

    def __init__(self, store: KeyValueStore, retention_days: int = 7,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.retention_days = retention_days
        self.clock = clock

    def record(self, event: AlertEvent, results: Dict[str, ChannelResult]) -> None:
        entry = event.to_dict()
        entry['channels'] = {name: result.to_dict() for name, result in results.items()}
        key = f"{self.key_prefix}:{day_bucket(self.clock())}"
        try:
            self.store.push_bounded(key, entry, self.max_per_day, ttl=max(1, self.retention_days) * 86400)
        except StoreError as e:
            logger.error(f"Failed to record alert history: {e}")

    def get_history(self, days: int = 1) -> List[Dict[str, Any]]:
        """Alerts from the last ``days`` days (clamped 1..30), newest first."""
        days = max(1, min(int(days), self.max_days))
        now = self.clock()
        history: List[Dict[str, Any]] = []
        for offset in range(days):
            key = f"{self.key_prefix}:{day_bucket(now - offset * 86400)}"
            try:
                history.extend(reversed(self.store.get_list(key)))
            except StoreError as e:
                logger.error(f"Failed to read alert history {key}: {e}")
        return history

    def clear_old(self, days_to_keep: int = 7) -> int:
        now = self.clock()
        deleted = 0
        for offset in range(days_to_keep, days_to_keep + self.max_days):
            key = f"{self.key_prefix}:{day_bucket(now - offset * 86400)}"
            try:
                if self.store.delete(key):
                    deleted += 1
            except StoreError as e:
                logger.error(f"Failed to delete alert history {key}: {e}")
                break
        return deleted


@dataclass
class AlertOutcome:
    """What happened to one event in the pipeline."""
    event: AlertEvent
    decision: Optional[DedupDecision] = None
    results: Dict[str, ChannelResult] = field(default_factory=dict)

    @property
    def suppressed(self) -> bool:
        return self.decision is not None and self.decision.suppressed

    @property
    def delivered(self) -> bool:
        return any(result.ok for result in self.results.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event': self.event.to_dict(),
            'suppressed': self.suppressed,
            'reason': self.decision.reason if self.decision else None,
            'channels': {name: result.to_dict() for name, result in self.results.items()}
        }


class AlertingPipeline:
    """Evaluator -> deduplicator -> dispatcher, plus history."""

    def __init__(self, evaluator: ThresholdEvaluator, deduplicator: AlertDeduplicator,
                 dispatcher: AlertDispatcher, history: Optional[AlertHistory] = None,
                 notifications_enabled: bool = True):
        self.evaluator = evaluator
        self.deduplicator = deduplicator
        self.dispatcher = dispatcher
        self.history = history
        self.notifications_enabled = notifications_enabled

    def send_alert(self, event: AlertEvent, channels: Optional[Iterable[str]] = None) -> AlertOutcome:
        """Deduplicate and dispatch one event."""
        decision = self.deduplicator.claim(event)
        if decision.suppressed:
            return AlertOutcome(event=event, decision=decision)

        if not self.notifications_enabled:
            logger.log(event.severity.log_level, f"Alert [{event.type}] (notifications disabled): {event.message}")
            return AlertOutcome(event=event, decision=decision)

        results = self.dispatcher.dispatch(event, channels)
        if results and not any(result.ok for result in results.values()):
            logger.warning(f"All channels failed for {event.type}, releasing claim")
            self.deduplicator.release(decision.key)

        if self.history is not None:
            self.history.record(event, results)
        return AlertOutcome(event=event, decision=decision, results=results)

    def process_events(self, events: Iterable[AlertEvent]) -> List[AlertOutcome]:
        return [self.send_alert(event) for event in events]

    def process_snapshot(self, snapshot: MetricsSnapshot) -> List[AlertOutcome]:
        return self.process_events(self.evaluator.evaluate_snapshot(snapshot))

    def process_health_report(self, report) -> List[AlertOutcome]:
        return self.process_events(self.evaluator.evaluate_health_report(report))

    def send_test_alert(self, severity: AlertSeverity, message: Optional[str] = None,
                        channel: Optional[str] = None) -> AlertOutcome:
        """Push one test event straight to the dispatcher, skipping dedup."""
        event = AlertEvent(
            type='test_alert',
            message=message or f"This is a test {severity.value} alert",
            severity=severity,
            context={'test': True}
        )
        results = self.dispatcher.dispatch(event, [channel] if channel else None)
        if self.history is not None:
            self.history.record(event, results)
        return AlertOutcome(event=event, results=results)
