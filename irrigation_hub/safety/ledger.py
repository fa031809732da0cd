"""Per-zone, per-day safety counters gating every valve opening."""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from irrigation_hub.config.config import LEDGER_TIMEZONE
from irrigation_hub.config.database import get_db
from irrigation_hub.models.daily_counter import DailyCounter
from irrigation_hub.state.store import StateStore

logger = logging.getLogger(__name__)

REFUSE_UNKNOWN_ZONE = 'unknown_zone'
REFUSE_MAX_PULSES = 'max_pulses_per_day'
REFUSE_MAX_OPEN_SEC = 'max_open_sec_per_day'
REFUSE_MAX_CONCURRENT = 'max_concurrent_valves'


@dataclass
class _Usage:
    open_sec: int = 0
    pulses: int = 0


class SafetyLedger:
    """
    The single enforcement point for opening a valve.

    Counters are keyed by (day, zone_id) where day is YYYY-MM-DD in the
    ledger timezone. Rollover is lazy: a new day simply has no entry yet.
    """

    def __init__(self, store: StateStore, max_concurrent_valves: int = 1,
                 db_session_factory: Callable = get_db, timezone_name: str = LEDGER_TIMEZONE):
        """
        Initialize safety ledger.

        Args:
            store: State store (zone limits, watering count and clock)
            max_concurrent_valves: Global cap on simultaneously open valves
            db_session_factory: Function that returns a database session generator
            timezone_name: IANA timezone used for day boundaries
        """
        self.store = store
        self.max_concurrent_valves = max_concurrent_valves
        self.db_session_factory = db_session_factory
        self.tz = ZoneInfo(timezone_name)
        self._counters: Dict[Tuple[str, str], _Usage] = {}
        self._dirty = set()
        self._lock = threading.Lock()

    def day_key(self, ts: Optional[float] = None) -> str:
        """Ledger day for a unix timestamp (default: now)."""
        if ts is None:
            ts = self.store.now()
        return datetime.fromtimestamp(ts, tz=self.tz).strftime('%Y-%m-%d')

    def usage(self, zone_id: str, day: Optional[str] = None) -> Tuple[int, int]:
        """Return (open_sec, pulses) for a zone on a day (default: today)."""
        key = (day or self.day_key(), zone_id)
        with self._lock:
            usage = self._counters.get(key)
            return (usage.open_sec, usage.pulses) if usage else (0, 0)

    def today(self) -> Dict[str, Dict[str, int]]:
        """Today's counters for every configured zone."""
        day = self.day_key()
        result = {}
        for zone_id in self.store.zone_configs():
            open_sec, pulses = self.usage(zone_id, day)
            result[zone_id] = {'day': day, 'open_sec': open_sec, 'pulses': pulses}
        return result

    def refusal_reason(self, zone_id: str, pulse_sec: int) -> Optional[str]:
        """
        Why a pulse of pulse_sec seconds may not start now.

        Returns:
            None if the pulse is allowed, otherwise the name of the limit
        """
        zone = self.store.zone_config(zone_id)
        if zone is None:
            return REFUSE_UNKNOWN_ZONE
        open_sec, pulses = self.usage(zone_id)
        if pulses + 1 > zone.max_pulses_per_day:
            return REFUSE_MAX_PULSES
        if open_sec + pulse_sec > zone.max_open_sec_per_day:
            return REFUSE_MAX_OPEN_SEC
        if self.store.watering_count() >= self.max_concurrent_valves:
            return REFUSE_MAX_CONCURRENT
        return None

    def can_open(self, zone_id: str, pulse_sec: int) -> bool:
        return self.refusal_reason(zone_id, pulse_sec) is None

    def record_pulse(self, zone_id: str, open_sec: int, pulses: int = 1):
        """
        Charge a completed (or aborted) pulse to today's counters.

        The increment is applied in memory first, then written through to
        the database. A failed write leaves the row dirty for flush().
        """
        key = (self.day_key(), zone_id)
        with self._lock:
            usage = self._counters.setdefault(key, _Usage())
            usage.open_sec += max(0, int(open_sec))
            usage.pulses += pulses
            self._dirty.add(key)
            logger.info("Ledger %s %s: open_sec=%d pulses=%d", key[0], zone_id, usage.open_sec, usage.pulses)

        try:
            self.flush()
        except Exception as e:
            logger.error("Error persisting ledger for zone %s, will retry: %s", zone_id, e)

    def flush(self) -> int:
        """
        Write dirty counters to the zone_daily_counters table.

        Returns:
            Number of rows written

        Raises:
            Exception: database errors propagate; rows stay dirty
        """
        with self._lock:
            pending = {key: _Usage(u.open_sec, u.pulses) for key, u in self._counters.items() if key in self._dirty}
        if not pending:
            return 0

        db = next(self.db_session_factory())
        try:
            for (day, zone_id), usage in pending.items():
                row = db.query(DailyCounter).filter_by(day=day, zone_id=zone_id).first()
                if row is None:
                    row = DailyCounter(day=day, zone_id=zone_id)
                    db.add(row)
                # Never move a persisted counter backwards
                row.open_sec = max(row.open_sec or 0, usage.open_sec)
                row.pulses = max(row.pulses or 0, usage.pulses)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        with self._lock:
            for key, usage in pending.items():
                current = self._counters.get(key)
                if current and current.open_sec == usage.open_sec and current.pulses == usage.pulses:
                    self._dirty.discard(key)
        return len(pending)

    def load_today(self) -> int:
        """
        Load the current day's counters from the database.

        Older days are not loaded; they can no longer gate anything.

        Returns:
            Number of zones loaded
        """
        day = self.day_key()
        db = next(self.db_session_factory())
        try:
            rows = db.query(DailyCounter).filter_by(day=day).all()
            loaded = {(row.day, row.zone_id): _Usage(row.open_sec, row.pulses) for row in rows}
        finally:
            db.close()

        with self._lock:
            for key, usage in loaded.items():
                current = self._counters.get(key)
                if current is None:
                    self._counters[key] = usage
                else:
                    current.open_sec = max(current.open_sec, usage.open_sec)
                    current.pulses = max(current.pulses, usage.pulses)
        if loaded:
            logger.info("Loaded ledger counters for %d zone(s) on %s", len(loaded), day)
        return len(loaded)
