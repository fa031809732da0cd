"""Tests for reading and watering-event history."""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from irrigation_hub.models.watering_event import WateringResult
from irrigation_hub.services.history_store import HistoryStore
from irrigation_hub.services.persistence import PersistenceFlusher
from tests.conftest import START_TS


class TestReadings:
    """Test buffered reading history."""

    def test_readings_buffered_until_flush(self, history):
        history.add_reading(START_TS, 'node-a/s1', 23110, 0.2064)
        assert history.list_readings() == []
        assert history.pending_counts()['readings'] == 1

        assert history.flush() == 1
        readings = history.list_readings()
        assert len(readings) == 1
        assert readings[0]['sensor_id'] == 'node-a/s1'
        assert readings[0]['raw'] == 23110
        assert history.pending_counts()['readings'] == 0

    def test_filter_by_sensor(self, history):
        history.add_reading(START_TS, 'node-a/s1', 20000, 0.4)
        history.add_reading(START_TS + 1, 'node-a/s2', 21000, 0.35)
        history.add_reading(START_TS + 2, 'node-b/s1', 22000, 0.3)
        history.flush()

        assert len(history.list_readings(sensor_id='node-a/s2')) == 1
        assert len(history.list_readings(sensor_ids=['node-a/s1', 'node-b/s1'])) == 2
        assert [r['raw'] for r in history.list_readings()] == [22000, 21000, 20000]

    def test_prune_removes_old_readings(self, history):
        now = datetime.fromtimestamp(START_TS, tz=timezone.utc)
        history.add_reading(START_TS - 100 * 86400, 'node-a/s1', 20000, 0.4)
        history.add_reading(START_TS - 86400, 'node-a/s1', 21000, 0.35)
        history.flush()

        assert history.prune(90, now=now) == 1
        assert [r['raw'] for r in history.list_readings()] == [21000]

    def test_failed_flush_keeps_buffer(self, temp_db):
        broken = Mock(side_effect=RuntimeError('disk full'))
        history = HistoryStore(broken)
        history.add_reading(START_TS, 'node-a/s1', 20000, 0.4)

        with pytest.raises(RuntimeError):
            history.flush()
        assert history.pending_counts()['readings'] == 1

        history.db_session_factory = temp_db
        assert history.flush() == 1


class TestWateringEvents:
    """Test the watering audit trail."""

    def test_event_written_immediately(self, history):
        history.add_watering_event(START_TS, START_TS + 30, 'z1', 'below_min', WateringResult.OK)

        events = history.list_watering_events()
        assert len(events) == 1
        assert events[0]['zone_id'] == 'z1'
        assert events[0]['reason'] == 'below_min'
        assert events[0]['result'] == 'ok'

    def test_newest_first_and_zone_filter(self, history):
        history.add_watering_event(START_TS, START_TS + 30, 'z1', 'below_min', WateringResult.OK)
        history.add_watering_event(START_TS + 60, START_TS + 60, 'z2', 'limit_reached:max_concurrent_valves',
                                   WateringResult.REFUSED)
        history.add_watering_event(START_TS + 90, START_TS + 95, 'z1', 'manual', WateringResult.STOPPED)

        assert [e['reason'] for e in history.list_watering_events(zone_id='z1')] == ['manual', 'below_min']
        assert history.list_watering_events(limit=1)[0]['reason'] == 'manual'

    def test_failed_write_retried_by_flush(self, temp_db):
        history = HistoryStore(Mock(side_effect=RuntimeError('locked')))
        history.add_watering_event(START_TS, START_TS + 30, 'z1', 'below_min', WateringResult.OK)
        assert history.pending_counts()['watering_events'] == 1

        history.db_session_factory = temp_db
        assert history.flush() == 1
        assert len(history.list_watering_events()) == 1

    def test_health_check(self, history):
        assert history.health_check() is True


class TestPersistenceFlusher:
    """Test the periodic flusher."""

    def test_run_once_flushes_and_prunes(self):
        ledger, history = Mock(), Mock()
        ledger.flush.return_value = 1
        history.flush.return_value = 2
        flusher = PersistenceFlusher(ledger, history, flush_interval=60, prune_interval=3600, retention_days=90)

        flusher.run_once()
        flusher.run_once()

        assert ledger.flush.call_count == 2
        assert history.flush.call_count == 2
        history.prune.assert_called_once_with(90)

    def test_errors_do_not_stop_the_pass(self):
        ledger, history = Mock(), Mock()
        ledger.flush.side_effect = RuntimeError('locked')
        history.flush.return_value = 0
        flusher = PersistenceFlusher(ledger, history)

        flusher.run_once()
        history.flush.assert_called_once()

    def test_stop_writes_remaining(self):
        ledger, history = Mock(), Mock()
        ledger.flush.return_value = 0
        history.flush.return_value = 0
        flusher = PersistenceFlusher(ledger, history, flush_interval=3600)
        flusher.start()
        flusher.stop()

        ledger.flush.assert_called_once()
        history.flush.assert_called_once()
        history.prune.assert_not_called()
