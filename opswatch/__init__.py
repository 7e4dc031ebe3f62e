"""Opswatch application factory."""

import logging
import os

from flask import Flask
from flask_cors import CORS

__version__ = '1.0.0'


def create_app(config_name=None, service=None):
    """
    Create and configure Flask application.

    Args:
        config_name: Key of the ``config`` mapping; defaults to ``FLASK_ENV``
        service: Prebuilt monitoring service, mainly for tests
    """
    from config import config

    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')

    app = Flask(__name__)
    app.config.from_object(config[config_name]())

    # Configure logging
    configure_logging(app)

    # Initialize extensions
    CORS(app, resources={
        r"/api/*": {"origins": app.config['CORS_ORIGINS']},
        r"/health*": {"origins": app.config['CORS_ORIGINS']}
    })

    # Initialize monitoring
    initialize_monitoring(app, service)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    return app


def configure_logging(app):
    """Configure application logging."""

    if not app.debug and not app.testing:
        # Production logging
        log_level = getattr(logging, app.config['LOG_LEVEL'].upper())

        # File handler
        file_handler = logging.FileHandler(app.config['LOG_FILE'])
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s %(name)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))

        app.logger.addHandler(file_handler)
        app.logger.setLevel(log_level)

        opswatch_logger = logging.getLogger('opswatch')
        opswatch_logger.addHandler(file_handler)
        opswatch_logger.setLevel(log_level)

        app.logger.info('Opswatch application startup')


def initialize_monitoring(app, service=None):
    """Build the monitoring service and hook error and performance tracking into requests."""
    from opswatch.middleware.error_tracking import ErrorTrackingMiddleware
    from opswatch.middleware.performance import PerformanceMiddleware
    from opswatch.services.monitoring_service import MonitoringService

    if service is None:
        service = MonitoringService.initialize(app.config)

    app.extensions['opswatch'] = service
    ErrorTrackingMiddleware(app)
    PerformanceMiddleware(app)


def register_blueprints(app):
    """Register application blueprints."""

    from opswatch.api.health import health_bp
    from opswatch.api.monitoring import monitoring_bp

    app.register_blueprint(health_bp, url_prefix='/health')
    app.register_blueprint(monitoring_bp, url_prefix='/api/monitoring')


def register_error_handlers(app):
    """Register error handlers."""

    @app.errorhandler(400)
    def bad_request(error):
        return {'error': 'Bad request'}, 400

    @app.errorhandler(404)
    def not_found(error):
        return {'error': 'Resource not found'}, 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f'Server Error: {error}')
        return {'error': 'Internal server error'}, 500
