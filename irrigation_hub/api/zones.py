"""Zone API endpoints."""
from concurrent.futures import TimeoutError as FutureTimeoutError

from flask import Blueprint, jsonify, request
from irrigation_hub.api import api_bp
from irrigation_hub.api.system import system_state
from irrigation_hub.errors import ActuatorError, CommandRefused

zones_bp = Blueprint('zones', __name__)
api_bp.register_blueprint(zones_bp, url_prefix='/zones')


@zones_bp.route('', methods=['GET'])
def list_zones():
    """List zones with configuration, runtime state and today's counters."""
    try:
        store = system_state['store']
        counters = system_state['ledger'].today()
        states = store.zone_states()

        result = []
        for zone_id, zone in store.zone_configs().items():
            entry = zone.to_dict()
            entry['runtime'] = states[zone_id].to_dict() if zone_id in states else None
            entry['today'] = counters.get(zone_id)
            entry['sensors'] = [s.to_dict() for s in store.sensors_for_zone(zone_id)]
            avg = store.zone_average_moisture(zone_id)
            entry['moisture'] = round(avg[0], 4) if avg else None
            result.append(entry)

        return jsonify({
            'success': True,
            'zones': result
        }), 200
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500


@zones_bp.route('/<zone_id>/valve', methods=['POST'])
def set_valve(zone_id):
    """Manually open (one pulse) or close a zone's valve."""
    try:
        data = request.get_json(silent=True) or {}
        is_open = data.get('is_open')
        if not isinstance(is_open, bool):
            return jsonify({
                'success': False,
                'error': "'is_open' must be true or false"
            }), 400

        state = system_state['scheduler'].request_manual(zone_id, is_open)
        return jsonify({
            'success': True,
            'zone_id': zone_id,
            'state': state
        }), 200
    except KeyError:
        return jsonify({
            'success': False,
            'error': f'Zone {zone_id} not found'
        }), 404
    except CommandRefused as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 409
    except FutureTimeoutError:
        return jsonify({
            'success': False,
            'error': 'Scheduler did not respond in time'
        }), 504
    except ActuatorError as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500


@zones_bp.route('/<zone_id>/alarm/clear', methods=['POST'])
def clear_alarm(zone_id):
    """Clear a zone alarm so the scheduler may water it again."""
    try:
        result = system_state['scheduler'].request_clear_alarm(zone_id)
        return jsonify({
            'success': True,
            **result
        }), 200
    except KeyError:
        return jsonify({
            'success': False,
            'error': f'Zone {zone_id} not found'
        }), 404
    except FutureTimeoutError:
        return jsonify({
            'success': False,
            'error': 'Scheduler did not respond in time'
        }), 504
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500
