"""Zone and sensor configuration loading (TOML)."""
import logging
import tomllib
from dataclasses import dataclass, field
from typing import Dict, List, Union

from irrigation_hub.errors import ConfigError

logger = logging.getLogger(__name__)

MODE_AUTO = 'auto'
MODE_MONITOR = 'monitor'
VALID_MODES = (MODE_AUTO, MODE_MONITOR)

_ZONE_FIELDS = (
    'zone_id', 'name', 'min_moisture', 'target_moisture', 'pulse_sec', 'soak_min',
    'max_open_sec_per_day', 'max_pulses_per_day', 'stale_timeout_min',
)
_SENSOR_FIELDS = ('sensor_id', 'node_id', 'zone_id', 'raw_dry', 'raw_wet')


@dataclass(frozen=True)
class ZoneConfig:
    """A controllable irrigation zone. Immutable for the process lifetime."""
    zone_id: str
    name: str
    min_moisture: float
    target_moisture: float
    pulse_sec: int
    soak_min: int
    max_open_sec_per_day: int
    max_pulses_per_day: int
    stale_timeout_min: int
    actuator_channel: Union[int, str]

    def to_dict(self) -> Dict:
        return {
            'zone_id': self.zone_id,
            'name': self.name,
            'min_moisture': self.min_moisture,
            'target_moisture': self.target_moisture,
            'pulse_sec': self.pulse_sec,
            'soak_min': self.soak_min,
            'max_open_sec_per_day': self.max_open_sec_per_day,
            'max_pulses_per_day': self.max_pulses_per_day,
            'stale_timeout_min': self.stale_timeout_min,
            'actuator_channel': self.actuator_channel,
        }


@dataclass(frozen=True)
class SensorConfig:
    """Calibration binding for one physical sensor."""
    sensor_id: str
    node_id: str
    zone_id: str
    raw_dry: int
    raw_wet: int

    def to_dict(self) -> Dict:
        return {
            'sensor_id': self.sensor_id,
            'node_id': self.node_id,
            'zone_id': self.zone_id,
            'raw_dry': self.raw_dry,
            'raw_wet': self.raw_wet,
        }


@dataclass(frozen=True)
class HubConfig:
    """Everything read from the config file at startup."""
    zones: List[ZoneConfig] = field(default_factory=list)
    sensors: List[SensorConfig] = field(default_factory=list)
    mode: str = MODE_AUTO
    max_concurrent_valves: int = 1

    def zone_map(self) -> Dict[str, ZoneConfig]:
        return {z.zone_id: z for z in self.zones}


def load_config(path: str) -> HubConfig:
    """
    Read and validate a TOML config file.

    Args:
        path: Path to the config file

    Returns:
        Parsed HubConfig

    Raises:
        ConfigError: if the file cannot be read or fails validation
    """
    try:
        with open(path, 'rb') as fh:
            data = tomllib.load(fh)
    except OSError as e:
        raise ConfigError(f"failed to read config {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"failed to parse config {path}: {e}") from e

    config = parse_config(data)
    logger.info("Config loaded from %s: %d zone(s), %d sensor(s), mode=%s",
                path, len(config.zones), len(config.sensors), config.mode)
    return config


def parse_config(data: Dict) -> HubConfig:
    """Build a HubConfig from already-decoded TOML data."""
    mode = str(data.get('mode', MODE_AUTO)).lower()
    if mode not in VALID_MODES:
        raise ConfigError(f"mode must be one of {VALID_MODES}, got {mode!r}")

    max_concurrent = data.get('max_concurrent_valves', 1)
    if not isinstance(max_concurrent, int) or isinstance(max_concurrent, bool) or max_concurrent < 1:
        raise ConfigError(f"max_concurrent_valves must be a positive integer, got {max_concurrent!r}")

    zones = [_parse_zone(entry) for entry in data.get('zones', [])]
    sensors = [_parse_sensor(entry) for entry in data.get('sensors', [])]

    zone_ids = [z.zone_id for z in zones]
    duplicates = {z for z in zone_ids if zone_ids.count(z) > 1}
    if duplicates:
        raise ConfigError(f"duplicate zone_id(s): {', '.join(sorted(duplicates))}")

    sensor_ids = [s.sensor_id for s in sensors]
    duplicates = {s for s in sensor_ids if sensor_ids.count(s) > 1}
    if duplicates:
        raise ConfigError(f"duplicate sensor_id(s): {', '.join(sorted(duplicates))}")

    known = set(zone_ids)
    for sensor in sensors:
        if sensor.zone_id not in known:
            raise ConfigError(f"sensor '{sensor.sensor_id}' references unknown zone '{sensor.zone_id}'")
        if sensor.raw_dry <= sensor.raw_wet:
            # Inverted calibration is surfaced to the operator, not corrected
            logger.warning("Sensor %s has raw_dry (%d) <= raw_wet (%d); check calibration",
                           sensor.sensor_id, sensor.raw_dry, sensor.raw_wet)

    return HubConfig(zones=zones, sensors=sensors, mode=mode, max_concurrent_valves=max_concurrent)


def _parse_zone(entry: Dict) -> ZoneConfig:
    missing = [f for f in _ZONE_FIELDS if f not in entry]
    channel = entry.get('actuator_channel', entry.get('valve_gpio_pin'))
    if channel is None:
        missing.append('actuator_channel')
    if missing:
        raise ConfigError(f"zone {entry.get('zone_id', '?')!r} missing field(s): {', '.join(missing)}")

    try:
        zone = ZoneConfig(
            zone_id=str(entry['zone_id']),
            name=str(entry['name']),
            min_moisture=float(entry['min_moisture']),
            target_moisture=float(entry['target_moisture']),
            pulse_sec=int(entry['pulse_sec']),
            soak_min=int(entry['soak_min']),
            max_open_sec_per_day=int(entry['max_open_sec_per_day']),
            max_pulses_per_day=int(entry['max_pulses_per_day']),
            stale_timeout_min=int(entry['stale_timeout_min']),
            actuator_channel=channel,
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"zone {entry.get('zone_id')!r} has an invalid value: {e}") from e

    if not 0.0 <= zone.min_moisture <= zone.target_moisture <= 1.0:
        raise ConfigError(
            f"zone {zone.zone_id!r}: expected 0 <= min_moisture <= target_moisture <= 1"
        )
    if zone.pulse_sec <= 0 or zone.soak_min < 0 or zone.stale_timeout_min <= 0:
        raise ConfigError(f"zone {zone.zone_id!r}: pulse_sec/stale_timeout_min must be positive, soak_min >= 0")
    if zone.max_open_sec_per_day < 0 or zone.max_pulses_per_day < 0:
        raise ConfigError(f"zone {zone.zone_id!r}: daily limits must not be negative")
    return zone


def _parse_sensor(entry: Dict) -> SensorConfig:
    missing = [f for f in _SENSOR_FIELDS if f not in entry]
    if missing:
        raise ConfigError(f"sensor {entry.get('sensor_id', '?')!r} missing field(s): {', '.join(missing)}")
    try:
        return SensorConfig(
            sensor_id=str(entry['sensor_id']),
            node_id=str(entry['node_id']),
            zone_id=str(entry['zone_id']),
            raw_dry=int(entry['raw_dry']),
            raw_wet=int(entry['raw_wet']),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"sensor {entry.get('sensor_id')!r} has an invalid value: {e}") from e
