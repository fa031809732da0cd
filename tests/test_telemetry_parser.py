"""Tests for the telemetry wire protocol."""
import json
import pytest
from irrigation_hub.errors import TelemetryDecodeError
from irrigation_hub.telemetry.parser import (
    parse_telemetry, decode_telemetry, extract_node_id, extract_node_status_id, extract_zone_id,
    valve_topic, format_valve_command, parse_valve_command
)
from irrigation_hub.config.config import MAX_READINGS_PER_MESSAGE, MAX_TELEMETRY_PAYLOAD_BYTES


def _payload(**data):
    return json.dumps(data).encode('utf-8')


class TestTopics:
    """Test topic helpers."""

    def test_extract_node_id(self):
        assert extract_node_id('tele/node-a/reading') == 'node-a'
        assert extract_node_id('tele//reading') is None
        assert extract_node_id('tele/node-a/status') is None
        assert extract_node_id('tele/node-a/reading/extra') is None

    def test_extract_node_status_id(self):
        assert extract_node_status_id('status/node/node-a') == 'node-a'
        assert extract_node_status_id('status/hub') is None

    def test_valve_topic_round_trip(self):
        assert valve_topic('z1') == 'valve/z1/set'
        assert extract_zone_id(valve_topic('z1')) == 'z1'


class TestParseTelemetry:
    """Test telemetry validation."""

    def test_valid_message(self):
        payload = _payload(ts=1700000000, readings=[{'sensor_id': 's1', 'raw': 23110}, {'sensor_id': 's2', 'raw': 0}])
        telemetry, error = parse_telemetry('tele/node-a/reading', payload)

        assert error is None
        assert telemetry.node_id == 'node-a'
        assert telemetry.ts == 1700000000
        assert telemetry.readings == (('s1', 23110), ('s2', 0))

    def test_extra_fields_ignored(self):
        payload = _payload(ts=1, readings=[{'sensor_id': 's1', 'raw': 5, 'unit': 'counts'}], fw='1.2')
        telemetry, error = parse_telemetry('tele/node-a/reading', payload)
        assert error is None
        assert telemetry.readings == (('s1', 5),)

    def test_empty_readings_allowed(self):
        telemetry, error = parse_telemetry('tele/node-a/reading', _payload(ts=1, readings=[]))
        assert error is None
        assert telemetry.readings == ()

    @pytest.mark.parametrize('payload', [
        b'not json',
        b'\xff\xfe\x00',
        b'[1, 2, 3]',
        _payload(readings=[]),
        _payload(ts='1700000000', readings=[]),
        _payload(ts=True, readings=[]),
        _payload(ts=1, readings={'s1': 5}),
        _payload(ts=1, readings=[{'raw': 5}]),
        _payload(ts=1, readings=[{'sensor_id': '', 'raw': 5}]),
        _payload(ts=1, readings=[{'sensor_id': 's1', 'raw': -1}]),
        _payload(ts=1, readings=[{'sensor_id': 's1', 'raw': 1.5}]),
        _payload(ts=1, readings=['s1']),
    ])
    def test_malformed_payload_rejected(self, payload):
        """Bad messages produce an error string and never raise."""
        telemetry, error = parse_telemetry('tele/node-a/reading', payload)
        assert telemetry is None
        assert 'node-a' in error

    def test_wrong_topic_rejected(self):
        telemetry, error = parse_telemetry('tele/node-a/other', _payload(ts=1, readings=[]))
        assert telemetry is None
        assert 'unexpected topic' in error

    def test_too_many_readings_rejected(self):
        readings = [{'sensor_id': f's{i}', 'raw': i} for i in range(MAX_READINGS_PER_MESSAGE + 1)]
        telemetry, error = parse_telemetry('tele/node-a/reading', _payload(ts=1, readings=readings))
        assert telemetry is None
        assert 'limit' in error

    def test_oversized_payload_rejected(self):
        payload = b' ' * (MAX_TELEMETRY_PAYLOAD_BYTES + 1)
        telemetry, error = parse_telemetry('tele/node-a/reading', payload)
        assert telemetry is None
        assert 'exceeds' in error

    def test_deeply_nested_payload_rejected(self):
        """Nesting that blows the decoder's recursion limit is a bad message, not a crash."""
        payload = b'[' * 2000 + b']' * 2000
        assert len(payload) <= MAX_TELEMETRY_PAYLOAD_BYTES
        telemetry, error = parse_telemetry('tele/node-a/reading', payload)
        assert telemetry is None
        assert error

        with pytest.raises(TelemetryDecodeError):
            decode_telemetry('tele/node-a/reading', payload)

    def test_decode_raises(self):
        with pytest.raises(TelemetryDecodeError):
            decode_telemetry('tele/node-a/reading', b'{}')


class TestValveCommand:
    """Test ON/OFF payloads."""

    def test_format(self):
        assert format_valve_command(True) == b'ON'
        assert format_valve_command(False) == b'OFF'

    def test_parse(self):
        assert parse_valve_command(b'ON') is True
        assert parse_valve_command('OFF') is False

    @pytest.mark.parametrize('payload', [b'on', b'1', b'', b'OPEN', b'\xff'])
    def test_parse_rejects_other_tokens(self, payload):
        with pytest.raises(ValueError):
            parse_valve_command(payload)
