"""Health check endpoints."""

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from opswatch.api.access import get_monitoring_service, secret_required
from opswatch.monitoring.events import HealthStatus

health_bp = Blueprint('health', __name__)


def _status_code(status: HealthStatus) -> int:
    return 503 if status == HealthStatus.UNHEALTHY else 200


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@health_bp.route('/ping', methods=['GET'])
def ping():
    """Liveness only; touches no dependency."""
    return jsonify({
        'status': 'healthy',
        'message': 'pong',
        'timestamp': _now()
    })


@health_bp.route('', methods=['GET'])
@secret_required(production_only=True)
def health_report():
    """Full health report."""
    try:
        service = get_monitoring_service()
        refresh = request.args.get('refresh', '').lower() in ('1', 'true', 'yes')
        report = service.get_health_report(use_cache=not refresh)

        data = report.to_dict()
        data['version'] = current_app.config.get('APP_VERSION', '1.0.0')
        return jsonify(data), _status_code(report.overall_status)

    except Exception as e:
        current_app.logger.error(f"Health check failed: {e}")
        return jsonify({
            'status': HealthStatus.UNHEALTHY.value,
            'error': str(e),
            'timestamp': _now()
        }), 503


def _component_response(name: str):
    try:
        check = get_monitoring_service().health_checker.check_component(name)
        return jsonify({
            'status': check.status.value,
            'message': check.message,
            'details': check.details,
            'timestamp': _now()
        }), _status_code(check.status)

    except Exception as e:
        current_app.logger.error(f"{name} health check failed: {e}")
        return jsonify({
            'status': HealthStatus.UNHEALTHY.value,
            'details': {'error': str(e)},
            'timestamp': _now()
        }), 503


@health_bp.route('/database', methods=['GET'])
def database_health():
    """Database component check."""
    return _component_response('database')


@health_bp.route('/cache', methods=['GET'])
def cache_health():
    """Cache component check."""
    return _component_response('cache')
