"""Process-wide state store: node liveness, zone runtime state, event ring buffer.

Each mutable region has one writer:
    readings (NodeSighting)   -> telemetry ingestion
    zone runtime state        -> zone scheduler
    events                    -> anyone (append-only, best effort)

Every region has its own lock, held only while copying or replacing entries.
"""
import copy
import logging
import threading
import time
from collections import deque
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from irrigation_hub.config.config import EVENT_LOG_CAPACITY
from irrigation_hub.config.zone_loader import ZoneConfig, SensorConfig, VALID_MODES, MODE_AUTO
from irrigation_hub.sensors.calibration import moisture
from irrigation_hub.state.types import (
    EventKind, NodeSighting, SystemEvent, ZoneRuntimeState, ZoneState, iso
)

logger = logging.getLogger(__name__)


class StateStore:
    """Single shared source of truth for the hub."""

    def __init__(self, zones: Iterable[ZoneConfig], sensors: Iterable[SensorConfig],
                 mode: str = MODE_AUTO, event_capacity: int = EVENT_LOG_CAPACITY,
                 clock: Callable[[], float] = time.time):
        """
        Initialize state store.

        Args:
            zones: Zone configurations
            sensors: Sensor calibration bindings
            mode: Initial operation mode ('auto' or 'monitor')
            event_capacity: Maximum number of events kept in the ring buffer
            clock: Wall-clock source returning unix seconds
        """
        if mode not in VALID_MODES:
            raise ValueError(f"Invalid mode: {mode}")
        self._clock = clock
        self._started_at = clock()

        self._config_lock = threading.Lock()
        self._readings_lock = threading.Lock()
        self._zones_lock = threading.Lock()
        self._events_lock = threading.Lock()

        self._zones: Dict[str, ZoneConfig] = {}
        self._sensors: Dict[str, SensorConfig] = {}
        self._nodes: Dict[str, NodeSighting] = {}
        self._runtime: Dict[str, ZoneRuntimeState] = {}
        self._events: deque = deque(maxlen=event_capacity)

        self._mode = mode
        self._mqtt_connected = False

        self.replace_config(zones, sensors)

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def replace_config(self, zones: Iterable[ZoneConfig], sensors: Iterable[SensorConfig]):
        """
        Replace zone and sensor definitions wholesale.

        Runtime state of zones that survive the reload is kept, new zones
        start Idle with the valve closed, removed zones are dropped.
        """
        zone_map = {z.zone_id: z for z in zones}
        sensor_map = {s.sensor_id: s for s in sensors}
        for sensor in sensor_map.values():
            if sensor.zone_id not in zone_map:
                raise ValueError(f"Sensor {sensor.sensor_id} references unknown zone {sensor.zone_id}")

        with self._config_lock:
            self._zones = zone_map
            self._sensors = sensor_map
        with self._zones_lock:
            self._runtime = {
                zone_id: self._runtime.get(zone_id, ZoneRuntimeState())
                for zone_id in zone_map
            }

    def zone_configs(self) -> Dict[str, ZoneConfig]:
        with self._config_lock:
            return dict(self._zones)

    def zone_config(self, zone_id: str) -> Optional[ZoneConfig]:
        with self._config_lock:
            return self._zones.get(zone_id)

    def sensor_configs(self) -> Dict[str, SensorConfig]:
        with self._config_lock:
            return dict(self._sensors)

    def sensors_for_zone(self, zone_id: str) -> List[SensorConfig]:
        with self._config_lock:
            return [s for s in self._sensors.values() if s.zone_id == zone_id]

    def resolve_sensor(self, node_id: str, sensor_id: str) -> Optional[SensorConfig]:
        """
        Find the calibration binding for a sensor reported by a node.

        Sensors may be configured either node-qualified ("node-a/s1") or by a
        bare id, in which case the configured node must match.
        """
        with self._config_lock:
            qualified = self._sensors.get(f"{node_id}/{sensor_id}")
            if qualified is not None:
                return qualified
            bare = self._sensors.get(sensor_id)
            if bare is not None and bare.node_id == node_id:
                return bare
            return None

    # ------------------------------------------------------------------
    # Mode and connectivity
    # ------------------------------------------------------------------

    @property
    def mode(self) -> str:
        return self._mode

    def set_mode(self, mode: str):
        if mode not in VALID_MODES:
            raise ValueError(f"Invalid mode: {mode}")
        if mode != self._mode:
            self._mode = mode
            self.record_system(f"operation mode set to {mode}")

    @property
    def mqtt_connected(self) -> bool:
        return self._mqtt_connected

    def set_mqtt_connected(self, connected: bool, detail: Optional[str] = None):
        if connected != self._mqtt_connected:
            self._mqtt_connected = connected
            self.record_system(detail or ("mqtt connected" if connected else "mqtt disconnected"))

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    def record_reading(self, node_id: str, ts: int, readings: Iterable[Tuple[str, int]]) -> NodeSighting:
        """
        Record a telemetry message from a node.

        The node's sighting is replaced: last_seen becomes the hub's current
        time and the reading set becomes exactly this message's readings.
        """
        values = {sensor_id: raw for sensor_id, raw in readings}
        sighting = NodeSighting(node_id=node_id, last_seen=self._clock(), reported_ts=ts, readings=values)
        with self._readings_lock:
            self._nodes[node_id] = sighting

        detail = ", ".join(f"{s}={r}" for s, r in values.items())
        self.append_event(SystemEvent(sighting.last_seen, EventKind.READING, f"{node_id}: {detail}"))
        return sighting

    def calibrated_readings(self, node_id: str, readings: Iterable[Tuple[str, int]]) -> List[Tuple[SensorConfig, int, float]]:
        """Pair each configured sensor in a message with its moisture fraction; unknown sensors are skipped."""
        result = []
        for sensor_id, raw in readings:
            sensor = self.resolve_sensor(node_id, sensor_id)
            if sensor is not None:
                result.append((sensor, raw, moisture(raw, sensor.raw_dry, sensor.raw_wet)))
        return result

    def node_sightings(self) -> Dict[str, NodeSighting]:
        with self._readings_lock:
            return dict(self._nodes)

    def zone_average_moisture(self, zone_id: str) -> Optional[Tuple[float, bool]]:
        """
        Average moisture of the zone's sensors.

        Returns:
            (fraction, is_stale) where is_stale means some bound sensors were
            stale or absent, or None if no bound sensor has a fresh reading.
            None means "unknown" and must never be treated as dry or wet.
        """
        zone = self.zone_config(zone_id)
        if zone is None:
            return None
        sensors = self.sensors_for_zone(zone_id)
        if not sensors:
            return None

        cutoff = self._clock() - zone.stale_timeout_min * 60
        nodes = self.node_sightings()

        values = []
        for sensor in sensors:
            node = nodes.get(sensor.node_id)
            if node is None or node.last_seen < cutoff:
                continue
            raw = node.readings.get(sensor.sensor_id)
            if raw is None and '/' in sensor.sensor_id:
                raw = node.readings.get(sensor.sensor_id.split('/', 1)[1])
            if raw is None:
                continue
            values.append(moisture(raw, sensor.raw_dry, sensor.raw_wet))

        if not values:
            return None
        return sum(values) / len(values), len(values) < len(sensors)

    # ------------------------------------------------------------------
    # Zone runtime state (scheduler is the only writer)
    # ------------------------------------------------------------------

    def set_zone_state(self, zone_id: str, state: ZoneRuntimeState):
        if not state.is_consistent():
            raise ValueError(f"Zone {zone_id}: valve_open={state.valve_open} inconsistent with {state.state.value}")
        with self._zones_lock:
            if zone_id not in self._runtime:
                raise KeyError(f"Zone {zone_id} not configured")
            self._runtime[zone_id] = state

    def zone_state(self, zone_id: str) -> Optional[ZoneRuntimeState]:
        with self._zones_lock:
            return self._runtime.get(zone_id)

    def zone_states(self) -> Dict[str, ZoneRuntimeState]:
        with self._zones_lock:
            return dict(self._runtime)

    def watering_count(self) -> int:
        with self._zones_lock:
            return sum(1 for s in self._runtime.values() if s.state is ZoneState.WATERING)

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    def append_event(self, event: SystemEvent):
        """Append to the ring buffer; the oldest entry is evicted when full."""
        with self._events_lock:
            self._events.append(event)

    def record_event(self, kind: EventKind, detail: str):
        self.append_event(SystemEvent(self._clock(), kind, detail))

    def record_valve(self, zone_id: str, is_open: bool):
        self.record_event(EventKind.VALVE, f"{zone_id} set {'ON' if is_open else 'OFF'}")

    def record_error(self, detail: str):
        self.record_event(EventKind.ERROR, detail)

    def record_system(self, detail: str):
        self.record_event(EventKind.SYSTEM, detail)

    def events(self, limit: Optional[int] = None) -> List[SystemEvent]:
        """Events, newest first."""
        with self._events_lock:
            items = list(self._events)
        items.reverse()
        return items[:limit] if limit is not None else items

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict:
        """Point-in-time, JSON-ready copy for external readers."""
        zones = self.zone_configs()
        runtime = self.zone_states()
        nodes = self.node_sightings()
        events = self.events()

        zone_view = {}
        for zone_id, cfg in zones.items():
            entry = runtime.get(zone_id, ZoneRuntimeState()).to_dict()
            entry['name'] = cfg.name
            entry['actuator_channel'] = cfg.actuator_channel
            avg = self.zone_average_moisture(zone_id)
            entry['moisture'] = round(avg[0], 4) if avg else None
            entry['moisture_partial'] = avg[1] if avg else None
            zone_view[zone_id] = entry

        return copy.deepcopy({
            'uptime_secs': int(self._clock() - self._started_at),
            'started_at': iso(self._started_at),
            'mqtt_connected': self._mqtt_connected,
            'mode': self._mode,
            'nodes': {node_id: node.to_dict() for node_id, node in nodes.items()},
            'zones': zone_view,
            'events': [e.to_dict() for e in events],
        })
