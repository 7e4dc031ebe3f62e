"""Configuration settings for the Opswatch monitoring service."""

import secrets

from opswatch.utils.env_config import get_env_var, get_env_list


class Config:
    """Base configuration class."""

    APP_NAME = get_env_var('APP_NAME', 'Opswatch')
    APP_VERSION = get_env_var('APP_VERSION', '1.0.0')
    ENVIRONMENT = get_env_var('APP_ENV', 'production')

    # Security
    SECRET_KEY = get_env_var('SECRET_KEY') or secrets.token_hex(32)
    SECRET_KEY_SET = bool(get_env_var('SECRET_KEY'))
    HEALTH_CHECK_SECRET = get_env_var('HEALTH_CHECK_SECRET')

    # CORS settings
    CORS_ORIGINS = get_env_list('CORS_ORIGINS', '*')

    # Logging
    LOG_LEVEL = get_env_var('LOG_LEVEL', 'INFO')
    LOG_FILE = get_env_var('LOG_FILE', 'opswatch.log')

    # Database settings
    DATABASE_URL = get_env_var('DATABASE_URL', 'sqlite:///opswatch.db')
    DATABASE_ECHO = get_env_var('DATABASE_ECHO', False, bool)
    DATABASE_CONNECT_TIMEOUT = get_env_var('DATABASE_CONNECT_TIMEOUT', 5, int)

    # Keyed store for dedup keys, error counters and history
    CACHE_DRIVER = get_env_var('CACHE_DRIVER', 'redis')
    REDIS_URL = get_env_var('REDIS_URL', 'redis://localhost:6379/0')
    CACHE_PREFIX = get_env_var('CACHE_PREFIX', 'opswatch:')

    # Queue
    QUEUE_DRIVER = get_env_var('QUEUE_DRIVER', 'sync')
    QUEUE_CONNECTION = get_env_var('QUEUE_CONNECTION', 'default')
    QUEUE_NAME = get_env_var('QUEUE_NAME', 'default')

    # Probes
    DISK_PATH = get_env_var('DISK_PATH', '/')
    PROBE_TIMEOUT = get_env_var('PROBE_TIMEOUT', 2.0, float)
    MEMORY_LIMIT_MB = get_env_var('MEMORY_LIMIT_MB', None, float)
    HEALTH_CHECK_COMPONENTS = get_env_list('HEALTH_CHECK_COMPONENTS', 'application,database,cache')
    HEALTH_REPORT_CACHE_TTL = get_env_var('HEALTH_REPORT_CACHE_TTL', 300, int)

    # Request performance
    SLOW_REQUEST_THRESHOLD_MS = get_env_var('SLOW_REQUEST_THRESHOLD_MS', 1000, float)
    MEMORY_HEAVY_REQUEST_MB = get_env_var('MEMORY_HEAVY_REQUEST_MB', 50, float)

    # Alert thresholds; critical levels are derived when unset
    ALERT_MEMORY_THRESHOLD = get_env_var('ALERT_MEMORY_THRESHOLD', 500, float)  # MB
    ALERT_MEMORY_CRITICAL = get_env_var('ALERT_MEMORY_CRITICAL', None, float)
    ALERT_DISK_THRESHOLD = get_env_var('ALERT_DISK_THRESHOLD', 90, float)  # percent
    ALERT_DISK_CRITICAL = get_env_var('ALERT_DISK_CRITICAL', None, float)
    ALERT_DB_RESPONSE_THRESHOLD = get_env_var('ALERT_DB_RESPONSE_THRESHOLD', 100, float)  # ms
    ALERT_DB_RESPONSE_CRITICAL = get_env_var('ALERT_DB_RESPONSE_CRITICAL', None, float)
    ALERT_CACHE_RESPONSE_THRESHOLD = get_env_var('ALERT_CACHE_RESPONSE_THRESHOLD', 50, float)  # ms
    ALERT_CACHE_RESPONSE_CRITICAL = get_env_var('ALERT_CACHE_RESPONSE_CRITICAL', None, float)
    ALERT_QUEUE_BACKLOG_THRESHOLD = get_env_var('ALERT_QUEUE_BACKLOG_THRESHOLD', 100, int)
    ALERT_QUEUE_BACKLOG_CRITICAL = get_env_var('ALERT_QUEUE_BACKLOG_CRITICAL', None, int)
    ALERT_ERROR_RATE_THRESHOLD = get_env_var('ALERT_ERROR_RATE_THRESHOLD', 5, int)  # errors per window
    ALERT_ERROR_TYPE_THRESHOLD = get_env_var('ALERT_ERROR_TYPE_THRESHOLD', None, int)
    ALERT_MAX_PER_HOUR = get_env_var('ALERT_MAX_PER_HOUR', 10, int)
    ERROR_MONITORING_WINDOW = get_env_var('ERROR_MONITORING_WINDOW', 15, int)  # minutes
    ALERT_WINDOW_GRACE_SECONDS = get_env_var('ALERT_WINDOW_GRACE_SECONDS', 300, int)
    TRACKED_EXCEPTIONS = get_env_list('TRACKED_EXCEPTIONS', '')

    # Retention
    METRICS_RETENTION_HOURS = get_env_var('METRICS_RETENTION_HOURS', 24, int)
    ALERTS_RETENTION_DAYS = get_env_var('ALERTS_RETENTION_DAYS', 7, int)

    # Notifications
    MONITORING_NOTIFICATIONS_ENABLED = get_env_var('MONITORING_NOTIFICATIONS_ENABLED', True, bool)
    NOTIFICATION_CHANNELS = get_env_list('NOTIFICATION_CHANNELS', 'mail')
    NOTIFICATION_TIMEOUT = get_env_var('NOTIFICATION_TIMEOUT', 10, int)  # seconds

    # Email notification settings
    MAIL_SERVER = get_env_var('MAIL_SERVER', 'localhost')
    MAIL_PORT = get_env_var('MAIL_PORT', 587, int)
    MAIL_USERNAME = get_env_var('MAIL_USERNAME')
    MAIL_PASSWORD = get_env_var('MAIL_PASSWORD')
    MAIL_USE_TLS = get_env_var('MAIL_USE_TLS', True, bool)
    MAIL_FROM_ADDRESS = get_env_var('MAIL_FROM_ADDRESS', 'alerts@opswatch.local')
    ALERT_EMAIL_RECIPIENTS = get_env_list('ALERT_EMAIL_RECIPIENTS', '')

    # Chat and webhook notification settings
    SLACK_WEBHOOK_URL = get_env_var('SLACK_WEBHOOK_URL')
    SLACK_CHANNEL = get_env_var('SLACK_CHANNEL')
    DISCORD_WEBHOOK_URL = get_env_var('DISCORD_WEBHOOK_URL')
    ALERT_WEBHOOK_URL = get_env_var('ALERT_WEBHOOK_URL')
    ALERT_WEBHOOK_METHOD = get_env_var('ALERT_WEBHOOK_METHOD', 'POST')


class DevelopmentConfig(Config):
    """Development configuration."""

    DEBUG = True
    ENVIRONMENT = 'development'
    CACHE_DRIVER = get_env_var('CACHE_DRIVER', 'memory')
    MONITORING_NOTIFICATIONS_ENABLED = get_env_var('MONITORING_NOTIFICATIONS_ENABLED', False, bool)


class ProductionConfig(Config):
    """Production configuration."""

    DEBUG = False
    ENVIRONMENT = 'production'

    def __init__(self):
        super().__init__()
        # In production, SECRET_KEY should be set via environment variable
        if not get_env_var('SECRET_KEY'):
            raise ValueError("SECRET_KEY environment variable must be set in production")


class TestingConfig(Config):
    """Testing configuration."""

    TESTING = True
    ENVIRONMENT = 'testing'
    SECRET_KEY_SET = True
    DATABASE_URL = 'sqlite:///:memory:'
    CACHE_DRIVER = 'memory'
    QUEUE_DRIVER = 'sync'
    HEALTH_CHECK_SECRET = None
    NOTIFICATION_CHANNELS = []
    MONITORING_NOTIFICATIONS_ENABLED = True


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
