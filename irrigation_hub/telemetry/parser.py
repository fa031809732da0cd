"""Wire protocol decoding for node telemetry and valve commands.

Topics:
    tele/<node_id>/reading   {"ts": <unix_seconds>, "readings": [{"sensor_id": str, "raw": uint}, ...]}
    valve/<zone_id>/set      ON | OFF
"""
import json
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from irrigation_hub.config.config import MAX_TELEMETRY_PAYLOAD_BYTES, MAX_READINGS_PER_MESSAGE
from irrigation_hub.errors import TelemetryDecodeError

TELEMETRY_SUBSCRIPTION = 'tele/+/reading'
NODE_STATUS_SUBSCRIPTION = 'status/node/+'
HUB_STATUS_TOPIC = 'status/hub'
VALVE_ON = 'ON'
VALVE_OFF = 'OFF'


@dataclass(frozen=True)
class Telemetry:
    """One decoded telemetry message."""
    node_id: str
    ts: int
    readings: Tuple[Tuple[str, int], ...]


def _split_topic(topic: str, prefix: str, suffix: str) -> Optional[str]:
    parts = topic.split('/')
    if len(parts) == 3 and parts[0] == prefix and parts[2] == suffix and parts[1]:
        return parts[1]
    return None


def extract_node_id(topic: str) -> Optional[str]:
    """Return the node id from a tele/<node_id>/reading topic."""
    return _split_topic(topic, 'tele', 'reading')


def extract_node_status_id(topic: str) -> Optional[str]:
    """Return the node id from a status/node/<node_id> topic."""
    parts = topic.split('/')
    if len(parts) == 3 and parts[0] == 'status' and parts[1] == 'node' and parts[2]:
        return parts[2]
    return None


def extract_zone_id(topic: str) -> Optional[str]:
    """Return the zone id from a valve/<zone_id>/set topic."""
    return _split_topic(topic, 'valve', 'set')


def valve_topic(zone_id: str) -> str:
    return f'valve/{zone_id}/set'


def format_valve_command(is_open: bool) -> bytes:
    return (VALVE_ON if is_open else VALVE_OFF).encode('ascii')


def parse_valve_command(payload: Union[bytes, str]) -> bool:
    """
    Parse a valve command payload.

    Only the exact tokens ON and OFF are valid.

    Raises:
        ValueError: for any other payload
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode('ascii')
        except UnicodeDecodeError as e:
            raise ValueError("valve command is not ASCII") from e
    if payload == VALVE_ON:
        return True
    if payload == VALVE_OFF:
        return False
    raise ValueError(f"unknown valve command {payload!r} (expected ON/OFF)")


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_telemetry(topic: str, payload: bytes) -> Tuple[Optional[Telemetry], Optional[str]]:
    """
    Validate and decode a telemetry message.

    Never raises; a bad message only produces an error string.

    Args:
        topic: MQTT topic the message arrived on
        payload: Raw message payload

    Returns:
        Tuple of (telemetry, error_message); exactly one is None
    """
    node_id = extract_node_id(topic)
    if node_id is None:
        return None, f"unexpected topic {topic!r}"

    if payload is None:
        return None, f"empty payload from {node_id}"
    if len(payload) > MAX_TELEMETRY_PAYLOAD_BYTES:
        return None, (f"payload from {node_id} is {len(payload)} bytes, "
                      f"exceeds {MAX_TELEMETRY_PAYLOAD_BYTES} limit")

    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        return None, f"bad telemetry json from {node_id}: {e}"

    if not isinstance(data, dict):
        return None, f"telemetry from {node_id} is not a JSON object"

    ts = data.get('ts')
    if not _is_int(ts):
        return None, f"telemetry from {node_id}: 'ts' missing or not an integer"

    raw_readings = data.get('readings')
    if not isinstance(raw_readings, list):
        return None, f"telemetry from {node_id}: 'readings' missing or not a list"
    if len(raw_readings) > MAX_READINGS_PER_MESSAGE:
        return None, (f"telemetry from {node_id}: {len(raw_readings)} readings "
                      f"exceeds {MAX_READINGS_PER_MESSAGE} limit")

    readings: List[Tuple[str, int]] = []
    for index, item in enumerate(raw_readings):
        if not isinstance(item, dict):
            return None, f"telemetry from {node_id}: reading {index} is not an object"
        sensor_id = item.get('sensor_id')
        raw = item.get('raw')
        if not isinstance(sensor_id, str) or not sensor_id:
            return None, f"telemetry from {node_id}: reading {index} has no sensor_id"
        if not _is_int(raw) or raw < 0:
            return None, f"telemetry from {node_id}: reading {index} 'raw' must be a non-negative integer"
        readings.append((sensor_id, raw))

    return Telemetry(node_id=node_id, ts=ts, readings=tuple(readings)), None


def decode_telemetry(topic: str, payload: bytes) -> Telemetry:
    """Like parse_telemetry, but raises TelemetryDecodeError on failure."""
    telemetry, error = parse_telemetry(topic, payload)
    if telemetry is None:
        raise TelemetryDecodeError(error)
    return telemetry
