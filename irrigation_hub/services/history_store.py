"""Durable reading and watering-event history."""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import text

from irrigation_hub.config.database import get_db
from irrigation_hub.models.reading import ReadingRecord
from irrigation_hub.models.system_log import SystemLog
from irrigation_hub.models.watering_event import WateringEvent, WateringResult

logger = logging.getLogger(__name__)

# Readings kept in memory while the database is unavailable
MAX_PENDING_READINGS = 10000


def _to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class HistoryStore:
    """
    Persistence for readings, watering events and system logs.

    Readings are buffered and written by flush(); watering events are audit
    records and are written immediately, falling back to the buffer when the
    write fails.
    """

    def __init__(self, db_session_factory: Callable = get_db):
        """
        Initialize history store.

        Args:
            db_session_factory: Function that returns a database session generator
        """
        self.db_session_factory = db_session_factory
        self._pending_readings: List[Dict] = []
        self._pending_events: List[Dict] = []
        self._lock = threading.Lock()

    def add_reading(self, ts: float, sensor_id: str, raw: int, moisture: float):
        """Buffer a calibrated reading for the next flush."""
        with self._lock:
            if len(self._pending_readings) >= MAX_PENDING_READINGS:
                self._pending_readings.pop(0)
                logger.warning("Reading buffer full, dropping oldest reading")
            self._pending_readings.append(
                {'ts': _to_datetime(ts), 'sensor_id': sensor_id, 'raw': raw, 'moisture': moisture}
            )

    def add_watering_event(self, ts_start: float, ts_end: Optional[float], zone_id: str,
                           reason: str, result: WateringResult):
        """Record a pulse attempt; retried by flush() if the write fails."""
        row = {
            'ts_start': _to_datetime(ts_start),
            'ts_end': _to_datetime(ts_end) if ts_end is not None else None,
            'zone_id': zone_id,
            'reason': reason,
            'result': result,
        }
        logger.info("Watering event %s: reason=%s result=%s", zone_id, reason, result.value)
        try:
            self._write(WateringEvent, [row])
        except Exception as e:
            logger.error("Error writing watering event for %s, will retry: %s", zone_id, e)
            with self._lock:
                self._pending_events.append(row)

    def pending_counts(self) -> Dict[str, int]:
        with self._lock:
            return {'readings': len(self._pending_readings), 'watering_events': len(self._pending_events)}

    def flush(self) -> int:
        """
        Write buffered readings and events.

        Returns:
            Number of rows written

        Raises:
            Exception: database errors propagate; the buffers are restored
        """
        with self._lock:
            readings, self._pending_readings = self._pending_readings, []
            events, self._pending_events = self._pending_events, []

        try:
            self._write(ReadingRecord, readings)
        except Exception:
            with self._lock:
                self._pending_readings = readings + self._pending_readings
                self._pending_events = events + self._pending_events
            raise

        try:
            self._write(WateringEvent, events)
        except Exception:
            with self._lock:
                self._pending_events = events + self._pending_events
            raise
        return len(readings) + len(events)

    def _write(self, model, rows: List[Dict]):
        if not rows:
            return
        db = next(self.db_session_factory())
        try:
            db.add_all([model(**row) for row in rows])
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def prune(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """
        Delete readings older than the retention window.

        Returns:
            Number of readings deleted
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        db = next(self.db_session_factory())
        try:
            deleted = db.query(ReadingRecord).filter(ReadingRecord.ts < cutoff).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        if deleted:
            logger.info("Pruned %d reading(s) older than %d days", deleted, retention_days)
        return deleted

    def list_readings(self, sensor_id: Optional[str] = None, sensor_ids: Optional[List[str]] = None,
                      hours: Optional[float] = None, limit: int = 100, offset: int = 0) -> List[Dict]:
        """Readings newest first, optionally filtered by sensor(s) and age."""
        db = next(self.db_session_factory())
        try:
            query = db.query(ReadingRecord)
            if sensor_id:
                query = query.filter(ReadingRecord.sensor_id == sensor_id)
            if sensor_ids is not None:
                query = query.filter(ReadingRecord.sensor_id.in_(sensor_ids))
            if hours is not None:
                query = query.filter(ReadingRecord.ts >= datetime.now(timezone.utc) - timedelta(hours=hours))
            rows = query.order_by(ReadingRecord.ts.desc()).offset(offset).limit(limit).all()
            return [row.to_dict() for row in rows]
        finally:
            db.close()

    def list_watering_events(self, zone_id: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[Dict]:
        """Watering events newest first."""
        db = next(self.db_session_factory())
        try:
            query = db.query(WateringEvent)
            if zone_id:
                query = query.filter(WateringEvent.zone_id == zone_id)
            rows = query.order_by(WateringEvent.ts_start.desc(), WateringEvent.id.desc()).offset(offset).limit(limit).all()
            return [row.to_dict() for row in rows]
        finally:
            db.close()

    def list_system_logs(self, limit: int = 100) -> List[Dict]:
        db = next(self.db_session_factory())
        try:
            rows = db.query(SystemLog).order_by(SystemLog.timestamp.desc(), SystemLog.id.desc()).limit(limit).all()
            return [row.to_dict() for row in rows]
        finally:
            db.close()

    def health_check(self) -> bool:
        """Run a trivial query against the database."""
        db = next(self.db_session_factory())
        try:
            db.execute(text('SELECT 1'))
            return True
        except Exception as e:
            logger.error("Database health check failed: %s", e)
            return False
        finally:
            db.close()
