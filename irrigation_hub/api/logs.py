"""History API endpoints."""
from flask import Blueprint, jsonify, request
from irrigation_hub.api import api_bp
from irrigation_hub.api.system import system_state

logs_bp = Blueprint('logs', __name__)
api_bp.register_blueprint(logs_bp)

MAX_LIMIT = 1000


def _limit():
    return max(1, min(request.args.get('limit', default=100, type=int), MAX_LIMIT))


@logs_bp.route('/watering-events', methods=['GET'])
def get_watering_events():
    """Watering events, newest first, optionally for one zone."""
    try:
        events = system_state['history'].list_watering_events(
            zone_id=request.args.get('zone_id'),
            limit=_limit(),
            offset=request.args.get('offset', default=0, type=int),
        )
        return jsonify({
            'success': True,
            'events': events,
            'count': len(events)
        }), 200
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500


@logs_bp.route('/readings', methods=['GET'])
def get_readings():
    """Calibrated readings, filtered by sensor, zone and age."""
    try:
        zone_id = request.args.get('zone_id')
        sensor_ids = None
        if zone_id:
            sensor_ids = [s.sensor_id for s in system_state['store'].sensors_for_zone(zone_id)]

        readings = system_state['history'].list_readings(
            sensor_id=request.args.get('sensor_id'),
            sensor_ids=sensor_ids,
            hours=request.args.get('hours', type=float),
            limit=_limit(),
            offset=request.args.get('offset', default=0, type=int),
        )
        return jsonify({
            'success': True,
            'readings': readings,
            'count': len(readings)
        }), 200
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500


@logs_bp.route('/system-logs', methods=['GET'])
def get_system_logs():
    """Durable alarm and error log."""
    try:
        logs = system_state['history'].list_system_logs(limit=_limit())
        return jsonify({
            'success': True,
            'logs': logs,
            'count': len(logs)
        }), 200
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500
