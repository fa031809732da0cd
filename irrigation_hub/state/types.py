"""Runtime state types shared by the store, scheduler and API."""
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Any


def iso(ts: Optional[float]) -> Optional[str]:
    """Render a unix timestamp as an ISO-8601 UTC string."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class ZoneState(enum.Enum):
    """Scheduler state of a zone."""
    IDLE = "idle"
    WATERING = "watering"
    SOAKING = "soaking"


class EventKind(enum.Enum):
    """System event kinds shown in the live event log."""
    READING = "reading"
    VALVE = "valve"
    ERROR = "error"
    SYSTEM = "system"
    SCHEDULER = "scheduler"
    STALE = "stale"


@dataclass(frozen=True)
class SystemEvent:
    """Transient operational log entry."""
    ts: float
    kind: EventKind
    detail: str

    def to_dict(self) -> Dict[str, Any]:
        return {'ts': iso(self.ts), 'kind': self.kind.value, 'detail': self.detail}


@dataclass(frozen=True)
class NodeSighting:
    """Liveness and last telemetry of one remote node."""
    node_id: str
    last_seen: float  # hub receive time
    reported_ts: int  # node's own timestamp
    readings: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'last_seen': iso(self.last_seen),
            'reported_ts': self.reported_ts,
            'readings': [{'sensor_id': s, 'raw': r} for s, r in self.readings.items()],
        }


@dataclass(frozen=True)
class ZoneRuntimeState:
    """Mutable-by-replacement scheduler state of one zone."""
    state: ZoneState = ZoneState.IDLE
    valve_open: bool = False
    last_changed: Optional[float] = None
    soak_deadline: Optional[float] = None
    pulse_started: Optional[float] = None
    pulse_reason: Optional[str] = None
    alarmed: bool = False

    def is_consistent(self) -> bool:
        """The valve is open exactly while the zone is watering."""
        return self.valve_open == (self.state is ZoneState.WATERING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'valve_open': self.valve_open,
            'last_changed': iso(self.last_changed),
            'soak_deadline': iso(self.soak_deadline),
            'pulse_started': iso(self.pulse_started),
            'pulse_reason': self.pulse_reason,
            'alarmed': self.alarmed,
        }
