"""Tests for fail-safe mechanisms."""
import pytest
from unittest.mock import Mock
from irrigation_hub.errors import ActuatorError
from irrigation_hub.models.system_log import SystemLog, LogLevel
from irrigation_hub.safety.fail_safe import FailSafe
from irrigation_hub.state.types import EventKind


def _logs(temp_db):
    db = next(temp_db())
    try:
        return [(row.log_level, row.zone_id, row.message) for row in db.query(SystemLog).order_by(SystemLog.id).all()]
    finally:
        db.close()


class TestTrigger:
    """Test fail-safe escalation."""

    def test_trigger_closes_everything_and_alarms(self, fail_safe, actuator, store, temp_db):
        actuator.set_open(17, True)
        actuator.set_open(27, True)

        assert fail_safe.trigger('valve stuck', 'z1') is True

        assert actuator.get_open_channels() == []
        assert fail_safe.is_alarmed('z1')
        assert not fail_safe.is_alarmed('z2')
        assert not fail_safe.is_stopped()
        assert _logs(temp_db) == [(LogLevel.CRITICAL, 'z1', 'valve stuck')]
        assert store.events(limit=1)[0].kind is EventKind.ERROR

    def test_trigger_without_zone(self, fail_safe):
        fail_safe.trigger('scheduler crashed')
        assert fail_safe.get_status()['alarms'] == {}

    def test_failed_all_off_enters_emergency_stop(self, fail_safe, actuator, temp_db):
        actuator.fail_close.add(27)
        assert fail_safe.trigger('valve stuck', 'z1') is False

        status = fail_safe.get_status()
        assert status['is_stopped'] is True
        assert 'all_off failed' in status['reason']
        assert status['stop_time'] is not None
        assert [level for level, _, _ in _logs(temp_db)] == [LogLevel.CRITICAL, LogLevel.CRITICAL]

    def test_successful_all_off_clears_emergency_stop(self, fail_safe, actuator):
        actuator.fail_close.add(27)
        fail_safe.all_off('test')
        assert fail_safe.is_stopped()

        actuator.fail_close.clear()
        assert fail_safe.all_off('retry') is True
        assert not fail_safe.is_stopped()

    def test_database_failure_does_not_block_all_off(self, store, actuator):
        def broken_db():
            raise RuntimeError('database unavailable')
            yield

        fail_safe = FailSafe(actuator, store, broken_db)
        actuator.set_open(17, True)

        assert fail_safe.trigger('valve stuck', 'z1') is True
        assert actuator.get_open_channels() == []


class TestAlarms:
    """Test zone alarms."""

    def test_clear_alarm(self, fail_safe, store, temp_db):
        fail_safe.trigger('valve stuck', 'z1')

        assert fail_safe.clear_alarm('z1') is True
        assert not fail_safe.is_alarmed('z1')
        assert store.events(limit=1)[0].detail == 'alarm cleared for z1'
        assert _logs(temp_db)[-1][0] is LogLevel.WARNING

    def test_clear_unknown_alarm(self, fail_safe):
        assert fail_safe.clear_alarm('z1') is False

    def test_status_lists_alarms(self, fail_safe):
        fail_safe.trigger('valve stuck', 'z1')
        alarms = fail_safe.get_status()['alarms']
        assert alarms['z1']['reason'] == 'valve stuck'
        assert alarms['z1']['time']

    def test_all_off_uses_actuator(self, store):
        actuator = Mock()
        actuator.all_off.side_effect = ActuatorError('stuck', [17])
        fail_safe = FailSafe(actuator, store, Mock(side_effect=RuntimeError('no db')))

        assert fail_safe.all_off('test') is False
        actuator.all_off.assert_called_once()
        assert fail_safe.is_stopped()
