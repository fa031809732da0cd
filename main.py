from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.serving import make_server
import logging
import signal
import sys
import threading

from irrigation_hub.api import api_bp
from irrigation_hub.api.system import system_state
from irrigation_hub.config.config import (
    CONFIG_PATH, LOG_LEVEL, USE_MOCK_HARDWARE, VALVE_TRANSPORT, WEB_HOST, WEB_PORT
)
from irrigation_hub.config.database import init_db
from irrigation_hub.config.zone_loader import load_config
from irrigation_hub.errors import ActuatorError, ConfigError
from irrigation_hub.hardware.mock_gpio import MockGPIO
from irrigation_hub.hardware.valve_actuator import GpioValveActuator, MqttValveActuator, actuator_guard
from irrigation_hub.safety.fail_safe import FailSafe
from irrigation_hub.safety.ledger import SafetyLedger
from irrigation_hub.scheduler.zone_scheduler import ZoneScheduler
from irrigation_hub.services.history_store import HistoryStore
from irrigation_hub.services.persistence import PersistenceFlusher
from irrigation_hub.state.store import StateStore
from irrigation_hub.telemetry.ingestion import TelemetryIngestion

logger = logging.getLogger(__name__)


def create_app():
    """Flask app serving the /api blueprint."""
    app = Flask(__name__)

    # Enable CORS for all routes
    CORS(app)
    app.register_blueprint(api_bp)

    @app.route('/')
    def home():
        return jsonify("Irrigation hub running")

    return app


def build_actuator(config, mqtt_client):
    """Valve actuator for the configured transport."""
    if VALVE_TRANSPORT == 'mqtt':
        actuator = MqttValveActuator(mqtt_client, [])
    elif VALVE_TRANSPORT == 'gpio':
        if USE_MOCK_HARDWARE:
            logger.warning("Using mock GPIO; no relays will switch")
            gpio = MockGPIO()
        else:
            from irrigation_hub.hardware.real_gpio import RealGPIO
            gpio = RealGPIO()
        actuator = GpioValveActuator(gpio, [])
    else:
        raise ConfigError(f"VALVE_TRANSPORT must be 'gpio' or 'mqtt', got {VALVE_TRANSPORT!r}")
    actuator.add_channels(actuator.channel_for(z) for z in config.zones)
    return actuator


def main():
    # Configure logging
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = load_config(CONFIG_PATH)
    except ConfigError as e:
        logger.critical("Invalid configuration: %s", e)
        return 2

    store = StateStore(config.zones, config.sensors, mode=config.mode)
    history = HistoryStore()
    ingestion = TelemetryIngestion(store, history)

    try:
        actuator = build_actuator(config, ingestion.client)
    except (ActuatorError, ConfigError, ImportError, ValueError) as e:
        logger.critical("Valve actuator could not be initialised: %s", e)
        return 1

    fail_safe = FailSafe(actuator, store)
    ledger = SafetyLedger(store, max_concurrent_valves=config.max_concurrent_valves)
    scheduler = ZoneScheduler(store, ledger, actuator, fail_safe, history)
    flusher = PersistenceFlusher(ledger, history)
    ingestion.on_connection_lost = scheduler.request_all_off

    system_state.update({
        'store': store,
        'ledger': ledger,
        'scheduler': scheduler,
        'fail_safe': fail_safe,
        'history': history,
        'config_path': CONFIG_PATH,
    })

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    exit_code = 0
    try:
        with actuator_guard(actuator):
            # valves are closed before anything below can fail
            try:
                init_db()
                ledger.load_today()
            except Exception as e:
                logger.critical("Startup failed: %s", e)
                return 1

            store.record_system("hub started")
            flusher.start()
            scheduler.start()
            ingestion.start()

            server = make_server(WEB_HOST, WEB_PORT, create_app(), threaded=True)
            web_thread = threading.Thread(target=server.serve_forever, name='web', daemon=True)
            web_thread.start()
            logger.info("Web API listening on %s:%d", WEB_HOST, WEB_PORT)

            while not stop_event.wait(1.0):
                if not scheduler.is_alive():
                    logger.critical("Scheduler thread died (%s); closing all valves", scheduler.error)
                    exit_code = 1
                    break

            server.shutdown()
            ingestion.stop()
            scheduler.stop()
            flusher.stop()
    except ActuatorError as e:
        logger.critical("Could not guarantee valves are closed: %s", e)
        return 1

    logger.info("Hub stopped")
    return exit_code


if __name__ == '__main__':
    sys.exit(main())
