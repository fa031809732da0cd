"""Tests for hub startup in main.py."""
import pytest
from unittest.mock import Mock
import main
from irrigation_hub.config.zone_loader import HubConfig
from irrigation_hub.hardware.valve_actuator import RecordingValveActuator
from irrigation_hub.safety.ledger import SafetyLedger


@pytest.fixture
def startup(monkeypatch, zone_config, sensor_config):
    """Patch main() up to the point where hardware and the database are touched."""
    actuator = RecordingValveActuator([17])
    actuator.set_open(17, True)
    ingestion_cls = Mock()

    monkeypatch.setattr(main, 'load_config', lambda path: HubConfig(zones=[zone_config], sensors=[sensor_config]))
    monkeypatch.setattr(main, 'build_actuator', lambda config, client: actuator)
    monkeypatch.setattr(main, 'TelemetryIngestion', ingestion_cls)
    monkeypatch.setattr(main.signal, 'signal', Mock())
    return actuator, ingestion_cls


class TestStartup:
    """Test that a failed startup still leaves every valve closed."""

    def test_database_init_failure_closes_valves(self, startup, monkeypatch):
        actuator, ingestion_cls = startup
        monkeypatch.setattr(main, 'init_db', Mock(side_effect=RuntimeError('disk full')))

        assert main.main() == 1
        assert actuator.all_off_count == 2
        assert actuator.get_open_channels() == []
        ingestion_cls.return_value.start.assert_not_called()

    def test_ledger_load_failure_closes_valves(self, startup, monkeypatch):
        actuator, ingestion_cls = startup
        monkeypatch.setattr(main, 'init_db', Mock())
        monkeypatch.setattr(SafetyLedger, 'load_today', Mock(side_effect=RuntimeError('database is locked')))

        assert main.main() == 1
        assert actuator.all_off_count == 2
        assert actuator.get_open_channels() == []
        ingestion_cls.return_value.start.assert_not_called()

    def test_bad_config_exits_before_hardware(self, monkeypatch):
        from irrigation_hub.errors import ConfigError

        def bad_config(path):
            raise ConfigError('zones missing')

        build = Mock()
        monkeypatch.setattr(main, 'load_config', bad_config)
        monkeypatch.setattr(main, 'build_actuator', build)

        assert main.main() == 2
        build.assert_not_called()
