"""System configuration settings."""
import os

# Environment detection
IS_RASPBERRY_PI = os.path.exists('/proc/device-tree/model') or os.getenv('USE_REAL_GPIO', 'false').lower() == 'true'
USE_MOCK_HARDWARE = not IS_RASPBERRY_PI or os.getenv('USE_MOCK_HARDWARE', 'false').lower() == 'true'

# Valve transport: 'gpio' drives relays directly, 'mqtt' publishes valve/<zone_id>/set
VALVE_TRANSPORT = os.getenv('VALVE_TRANSPORT', 'gpio').lower()

# Many relay boards switch on a LOW level
RELAY_ACTIVE_LOW = os.getenv('RELAY_ACTIVE_LOW', 'true').lower() in ('1', 'true', 'yes')

# Zone / sensor definitions (TOML)
CONFIG_PATH = os.getenv('CONFIG_PATH', 'config.toml')

# MQTT broker
MQTT_HOST = os.getenv('MQTT_HOST', '127.0.0.1')
MQTT_PORT = int(os.getenv('MQTT_PORT', '1883'))
MQTT_USER = os.getenv('MQTT_USER')
MQTT_PASS = os.getenv('MQTT_PASS')
MQTT_CLIENT_ID = os.getenv('MQTT_CLIENT_ID', 'irrigation-hub')
MQTT_KEEPALIVE_SEC = int(os.getenv('MQTT_KEEPALIVE_SEC', '30'))
MQTT_RECONNECT_DELAY_SEC = int(os.getenv('MQTT_RECONNECT_DELAY_SEC', '2'))  # fixed backoff

# Telemetry limits
MAX_TELEMETRY_PAYLOAD_BYTES = int(os.getenv('MAX_TELEMETRY_PAYLOAD_BYTES', '4096'))
MAX_READINGS_PER_MESSAGE = int(os.getenv('MAX_READINGS_PER_MESSAGE', '32'))
# Raw counts beyond the calibration endpoints that indicate a disconnected/shorted sensor
SENSOR_FAILURE_MARGIN = int(os.getenv('SENSOR_FAILURE_MARGIN', '3000'))

# Task intervals
SCHEDULER_TICK_SEC = float(os.getenv('SCHEDULER_TICK_SEC', '10.0'))
FLUSH_INTERVAL_SEC = float(os.getenv('FLUSH_INTERVAL_SEC', '60.0'))
PRUNE_INTERVAL_SEC = float(os.getenv('PRUNE_INTERVAL_SEC', str(6 * 3600)))

# Retention
READING_RETENTION_DAYS = int(os.getenv('READING_RETENTION_DAYS', '90'))
EVENT_LOG_CAPACITY = int(os.getenv('EVENT_LOG_CAPACITY', '200'))

# Safety ledger day boundaries
LEDGER_TIMEZONE = os.getenv('LEDGER_TIMEZONE', 'UTC')

# Manual override requests wait this long for the scheduler thread
MANUAL_COMMAND_TIMEOUT_SEC = float(os.getenv('MANUAL_COMMAND_TIMEOUT_SEC', '30.0'))

# Web API
WEB_HOST = os.getenv('WEB_HOST', '0.0.0.0')
WEB_PORT = int(os.getenv('WEB_PORT', '8080'))

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Database path
DATABASE_PATH = os.getenv(
    'DATABASE_PATH',
    os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))), 'database', 'irrigation_hub.db')
)
