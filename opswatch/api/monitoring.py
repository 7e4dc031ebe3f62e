"""Monitoring dashboard API endpoints."""

from flask import Blueprint, current_app, jsonify, request

from opswatch.api.access import get_monitoring_service, secret_required
from opswatch.monitoring.events import AlertSeverity

monitoring_bp = Blueprint('monitoring', __name__)


@monitoring_bp.route('/dashboard', methods=['GET'])
@secret_required()
def dashboard():
    """Health, latest metrics, error rates and recent alerts in one payload."""
    try:
        refresh = request.args.get('refresh', '').lower() in ('1', 'true', 'yes')
        return jsonify(get_monitoring_service().get_dashboard_data(refresh=refresh))

    except Exception as e:
        current_app.logger.error(f"Dashboard data failed: {e}")
        return jsonify({'error': str(e)}), 500


@monitoring_bp.route('/metrics', methods=['GET'])
@secret_required()
def recent_metrics():
    """Recorded metric snapshots; ``hours`` is clamped to 1..168."""
    try:
        hours = request.args.get('hours', 1, type=int)
        hours = max(1, min(hours, 168))
        metrics = get_monitoring_service().collector.get_recent_metrics(hours)

        return jsonify({
            'hours': hours,
            'count': len(metrics),
            'metrics': metrics
        })

    except Exception as e:
        return jsonify({'error': str(e)}), 500


@monitoring_bp.route('/performance', methods=['GET'])
@secret_required()
def performance():
    """Request, memory, database, cache and error analytics; ``hours`` is clamped to 1..168."""
    hours = request.args.get('hours', 24, type=int)
    try:
        return jsonify(get_monitoring_service().get_performance_data(hours))

    except Exception as e:
        current_app.logger.error(f"Performance analytics failed for {hours}h: {e}")
        return jsonify({'error': str(e)}), 500


@monitoring_bp.route('/alerts', methods=['GET'])
@secret_required()
def alert_history():
    """Dispatched alerts, newest first; ``days`` is clamped to 1..30."""
    try:
        days = request.args.get('days', 1, type=int)
        days = max(1, min(days, 30))
        alerts = get_monitoring_service().history.get_history(days)

        return jsonify({
            'days': days,
            'count': len(alerts),
            'alerts': alerts
        })

    except Exception as e:
        return jsonify({'error': str(e)}), 500


@monitoring_bp.route('/alerts/test', methods=['POST'])
@secret_required()
def test_alert():
    """Send a test alert straight to the channels."""
    data = request.get_json(silent=True) or {}

    try:
        severity = AlertSeverity(data.get('severity', 'info'))
    except ValueError:
        return jsonify({
            'error': 'Invalid severity',
            'message': f"Severity must be one of: {', '.join(s.value for s in AlertSeverity)}"
        }), 400

    try:
        outcome = get_monitoring_service().pipeline.send_test_alert(
            severity,
            message=data.get('message'),
            channel=data.get('channel')
        )
        return jsonify(outcome.to_dict())

    except Exception as e:
        current_app.logger.error(f"Test alert failed: {e}")
        return jsonify({'error': str(e)}), 500
