"""Fail-safe mechanisms: global all-off escalation and zone alarms."""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from irrigation_hub.config.database import get_db
from irrigation_hub.errors import ActuatorError
from irrigation_hub.hardware.valve_actuator import ValveActuator
from irrigation_hub.models.system_log import SystemLog, LogLevel
from irrigation_hub.state.store import StateStore

logger = logging.getLogger(__name__)


class FailSafe:
    """
    Escalation path for anything that may leave water running.

    trigger() closes every valve, raises an alarm for the zone involved and
    writes a CRITICAL row to system_logs. Alarmed zones are not scheduled
    until the alarm is cleared by an operator. If all_off itself fails the
    hub enters emergency stop: no valve may be opened until a later all_off
    succeeds.
    """

    def __init__(self, actuator: ValveActuator, store: StateStore, db_session_factory: Callable = get_db):
        """
        Initialize fail-safe.

        Args:
            actuator: Valve actuator used for all_off
            store: State store receiving error events
            db_session_factory: Function that returns a database session generator
        """
        self.actuator = actuator
        self.store = store
        self.db_session_factory = db_session_factory
        self.alarms: Dict[str, Dict] = {}  # zone_id -> {reason, time}
        self.is_emergency_stopped = False
        self.stop_reason: Optional[str] = None
        self.stop_time: Optional[datetime] = None
        self._lock = threading.Lock()

    def trigger(self, reason: str, zone_id: Optional[str] = None) -> bool:
        """
        Close all valves and raise an alarm.

        Args:
            reason: Human readable cause
            zone_id: Zone to alarm, if the failure is zone specific

        Returns:
            True if all_off succeeded
        """
        logger.critical("FAIL-SAFE%s: %s", f" zone {zone_id}" if zone_id else "", reason)
        self.store.record_error(f"fail-safe: {reason}")

        if zone_id is not None:
            with self._lock:
                self.alarms[zone_id] = {'reason': reason, 'time': datetime.now()}

        closed = self.all_off(reason)
        self._log(LogLevel.CRITICAL, reason, zone_id)
        return closed

    def all_off(self, reason: str) -> bool:
        """Close every valve; enter emergency stop if that fails."""
        try:
            self.actuator.all_off()
        except ActuatorError as e:
            logger.critical("all_off failed (%s); valves may be open on channel(s) %s", reason, e.channels)
            self.store.record_error(f"all_off failed: {e}")
            with self._lock:
                self.is_emergency_stopped = True
                self.stop_reason = f"{reason}; all_off failed: {e}"
                self.stop_time = datetime.now()
            self._log(LogLevel.CRITICAL, f"all_off failed: {e}")
            return False

        with self._lock:
            if self.is_emergency_stopped:
                logger.warning("all_off succeeded, emergency stop cleared")
            self.is_emergency_stopped = False
            self.stop_reason = None
            self.stop_time = None
        return True

    def is_alarmed(self, zone_id: str) -> bool:
        with self._lock:
            return zone_id in self.alarms

    def is_stopped(self) -> bool:
        """Check if the hub is emergency stopped."""
        return self.is_emergency_stopped

    def clear_alarm(self, zone_id: str) -> bool:
        """
        Clear a zone alarm.

        Returns:
            True if the zone was alarmed
        """
        with self._lock:
            alarm = self.alarms.pop(zone_id, None)
        if alarm is None:
            return False
        logger.warning("Alarm cleared for zone %s (was: %s)", zone_id, alarm['reason'])
        self.store.record_system(f"alarm cleared for {zone_id}")
        self._log(LogLevel.WARNING, f"alarm cleared (was: {alarm['reason']})", zone_id)
        return True

    def get_status(self) -> Dict:
        """Get alarm and emergency stop status."""
        with self._lock:
            return {
                'is_stopped': self.is_emergency_stopped,
                'reason': self.stop_reason,
                'stop_time': self.stop_time.isoformat() if self.stop_time else None,
                'alarms': {
                    zone_id: {'reason': a['reason'], 'time': a['time'].isoformat()}
                    for zone_id, a in self.alarms.items()
                },
            }

    def _log(self, level: LogLevel, message: str, zone_id: Optional[str] = None):
        """Write a durable system log row; never raises."""
        db = None
        try:
            db = next(self.db_session_factory())
            db.add(SystemLog(log_level=level, component='fail_safe', message=message[:1000], zone_id=zone_id))
            db.commit()
        except Exception as e:
            logger.error("Error writing system log: %s", e)
            if db is not None:
                db.rollback()
        finally:
            if db is not None:
                db.close()
