"""System status and control API endpoints."""
from concurrent.futures import TimeoutError as FutureTimeoutError

from flask import Blueprint, jsonify, request
from irrigation_hub.api import api_bp
from irrigation_hub.config.zone_loader import load_config, VALID_MODES
from irrigation_hub.errors import ConfigError, CommandRefused

system_bp = Blueprint('system', __name__)
api_bp.register_blueprint(system_bp)

# Hub components (initialized in main.py)
system_state = {
    'store': None,
    'ledger': None,
    'scheduler': None,
    'fail_safe': None,
    'history': None,
    'config_path': None,
}


@system_bp.route('/health', methods=['GET'])
def health():
    """Liveness of the hub's moving parts."""
    try:
        store = system_state['store']
        scheduler = system_state['scheduler']
        history = system_state['history']
        fail_safe = system_state['fail_safe']

        checks = {
            'scheduler': scheduler.is_alive() if scheduler else False,
            'database': history.health_check() if history else False,
            'mqtt': store.mqtt_connected if store else False,
            'emergency_stop': fail_safe.is_stopped() if fail_safe else False,
        }
        healthy = checks['scheduler'] and checks['database'] and not checks['emergency_stop']
        return jsonify({
            'success': True,
            'status': 'healthy' if healthy else 'degraded',
            'checks': checks
        }), 200 if healthy else 503
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500


@system_bp.route('/status', methods=['GET'])
def get_status():
    """Point-in-time snapshot of nodes, zones, events and alarms."""
    try:
        snapshot = system_state['store'].snapshot()
        snapshot['fail_safe'] = system_state['fail_safe'].get_status()
        snapshot['alarms'] = snapshot['fail_safe']['alarms']
        return jsonify({
            'success': True,
            'status': snapshot
        }), 200
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500


@system_bp.route('/mode', methods=['POST'])
def set_mode():
    """Switch between auto and monitor mode; applies from the next tick."""
    try:
        data = request.get_json(silent=True) or {}
        mode = data.get('mode')
        if mode not in VALID_MODES:
            return jsonify({
                'success': False,
                'error': f"mode must be one of {', '.join(VALID_MODES)}"
            }), 400

        system_state['store'].set_mode(mode)
        return jsonify({
            'success': True,
            'mode': mode
        }), 200
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500


@system_bp.route('/config/reload', methods=['POST'])
def reload_config():
    """Re-read the config file and replace zones and sensors."""
    try:
        config = load_config(system_state['config_path'])
        result = system_state['scheduler'].request_reload(config)
        return jsonify({
            'success': True,
            'message': 'Configuration reloaded',
            **result
        }), 200
    except ConfigError as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 400
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
    except Exception as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500
