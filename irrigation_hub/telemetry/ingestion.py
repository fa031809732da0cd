"""MQTT telemetry ingestion."""
import logging
from typing import Callable, Optional, Union

import paho.mqtt.client as mqtt

from irrigation_hub.config.config import (
    MQTT_HOST, MQTT_PORT, MQTT_USER, MQTT_PASS, MQTT_CLIENT_ID,
    MQTT_KEEPALIVE_SEC, MQTT_RECONNECT_DELAY_SEC
)
from irrigation_hub.sensors.calibration import is_reading_plausible
from irrigation_hub.services.history_store import HistoryStore
from irrigation_hub.state.store import StateStore
from irrigation_hub.telemetry.parser import (
    Telemetry, parse_telemetry, extract_node_status_id,
    TELEMETRY_SUBSCRIPTION, NODE_STATUS_SUBSCRIPTION, HUB_STATUS_TOPIC
)

logger = logging.getLogger(__name__)


class TelemetryIngestion:
    """
    Subscribes to node telemetry and feeds validated readings into the store.

    The paho network loop runs in its own thread and reconnects with a fixed
    delay. Every disconnect calls on_connection_lost so valves can be closed.
    """

    def __init__(self, store: StateStore, history: HistoryStore,
                 on_connection_lost: Optional[Callable[[str], None]] = None,
                 client: Optional[mqtt.Client] = None):
        """
        Initialize telemetry ingestion.

        Args:
            store: Shared state store
            history: Reading persistence
            on_connection_lost: Called with a reason on every disconnect
            client: Preconfigured paho client (a new one is created if omitted)
        """
        self.store = store
        self.history = history
        self.on_connection_lost = on_connection_lost
        self.client = client or self._create_client()
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

    def _create_client(self) -> mqtt.Client:
        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=MQTT_CLIENT_ID, clean_session=False)
        if MQTT_USER and MQTT_PASS:
            client.username_pw_set(MQTT_USER, MQTT_PASS)
            logger.info("MQTT: using password authentication")
        else:
            logger.warning("MQTT_USER / MQTT_PASS not set, connecting without authentication")
        client.will_set(HUB_STATUS_TOPIC, payload='offline', qos=1, retain=True)
        client.reconnect_delay_set(min_delay=MQTT_RECONNECT_DELAY_SEC, max_delay=MQTT_RECONNECT_DELAY_SEC)
        return client

    def start(self):
        """Connect in the background; the loop thread keeps retrying."""
        logger.info("Connecting to MQTT broker %s:%d", MQTT_HOST, MQTT_PORT)
        self.client.connect_async(MQTT_HOST, MQTT_PORT, keepalive=MQTT_KEEPALIVE_SEC)
        self.client.loop_start()

    def stop(self):
        """Announce offline and stop the network loop."""
        try:
            if self.client.is_connected():
                self.client.publish(HUB_STATUS_TOPIC, 'offline', qos=1, retain=True)
            self.client.disconnect()
        except Exception as e:
            logger.warning("Error during MQTT disconnect: %s", e)
        self.client.loop_stop()
        logger.info("Telemetry ingestion stopped")

    # ------------------------------------------------------------------
    # paho callbacks (network loop thread)
    # ------------------------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """MQTT connection callback."""
        if reason_code.is_failure:
            logger.error("MQTT connection refused: %s", reason_code)
            return
        # Subscriptions are re-issued on every connect; the broker may have dropped the session
        client.subscribe([(TELEMETRY_SUBSCRIPTION, 1), (NODE_STATUS_SUBSCRIPTION, 1)])
        client.publish(HUB_STATUS_TOPIC, 'online', qos=1, retain=True)
        logger.info("MQTT connected, subscribed to %s and %s", TELEMETRY_SUBSCRIPTION, NODE_STATUS_SUBSCRIPTION)
        self.store.set_mqtt_connected(True)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """MQTT disconnection callback."""
        logger.warning("MQTT disconnected (%s), retrying every %ds", reason_code, MQTT_RECONNECT_DELAY_SEC)
        self.store.set_mqtt_connected(False)
        if self.on_connection_lost is not None:
            try:
                self.on_connection_lost("mqtt disconnected")
            except Exception as e:
                logger.critical("Connection-loss handler failed: %s", e)

    def _on_message(self, client, userdata, msg):
        """MQTT message callback."""
        try:
            self.handle_message(msg.topic, msg.payload)
        except Exception as e:
            logger.exception("Error handling message on %s: %s", msg.topic, e)
            self.store.record_error(f"error handling {msg.topic}: {e}")

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    def handle_message(self, topic: str, payload: Union[bytes, bytearray]) -> Optional[Telemetry]:
        """
        Route one inbound message.

        Returns:
            The decoded telemetry, or None if the message was not telemetry
            or was rejected
        """
        node_id = extract_node_status_id(topic)
        if node_id is not None:
            self._handle_node_status(node_id, payload)
            return None

        telemetry, error = parse_telemetry(topic, bytes(payload) if payload is not None else None)
        if telemetry is None:
            logger.warning("Dropped telemetry: %s", error)
            self.store.record_error(error)
            return None
        self.ingest(telemetry)
        return telemetry

    def ingest(self, telemetry: Telemetry):
        """Drop implausible samples, record the rest and buffer calibrated history."""
        accepted = []
        for sensor_id, raw in telemetry.readings:
            sensor = self.store.resolve_sensor(telemetry.node_id, sensor_id)
            if sensor is not None and not is_reading_plausible(raw, sensor.raw_dry, sensor.raw_wet):
                detail = (f"{telemetry.node_id}/{sensor_id}: implausible raw {raw} "
                          f"(dry {sensor.raw_dry}, wet {sensor.raw_wet}), sensor disconnected or shorted?")
                logger.warning(detail)
                self.store.record_error(detail)
                continue
            if sensor is None:
                logger.debug("Reading from unconfigured sensor %s/%s", telemetry.node_id, sensor_id)
            accepted.append((sensor_id, raw))

        sighting = self.store.record_reading(telemetry.node_id, telemetry.ts, accepted)
        for sensor, raw, value in self.store.calibrated_readings(telemetry.node_id, accepted):
            self.history.add_reading(sighting.last_seen, sensor.sensor_id, raw, value)

    def _handle_node_status(self, node_id: str, payload):
        status = bytes(payload or b'').decode('utf-8', errors='replace').strip()
        if status not in ('online', 'offline'):
            logger.warning("Unexpected status from node %s: %r", node_id, status)
            return
        logger.info("Node %s is %s", node_id, status)
        self.store.record_system(f"node {node_id} {status}")
