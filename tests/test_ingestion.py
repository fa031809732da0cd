"""Tests for MQTT telemetry ingestion."""
import json
import pytest
from unittest.mock import Mock
from irrigation_hub.state.types import EventKind
from irrigation_hub.telemetry.ingestion import TelemetryIngestion


def _payload(readings, ts=1700000000):
    return json.dumps({'ts': ts, 'readings': [{'sensor_id': s, 'raw': r} for s, r in readings]}).encode('utf-8')


@pytest.fixture
def mqtt_client():
    return Mock()


@pytest.fixture
def ingestion(store, history, mqtt_client):
    return TelemetryIngestion(store, history, client=mqtt_client)


class TestHandleMessage:
    """Test routing and validation of inbound messages."""

    def test_valid_telemetry(self, ingestion, store, history):
        telemetry = ingestion.handle_message('tele/node-a/reading', _payload([('s1', 23110)]))

        assert telemetry.node_id == 'node-a'
        assert store.node_sightings()['node-a'].readings == {'s1': 23110}
        assert store.zone_average_moisture('z1')[0] == pytest.approx(0.2064, abs=1e-4)
        assert history.pending_counts()['readings'] == 1

    def test_unconfigured_sensor_kept_but_not_stored(self, ingestion, store, history):
        ingestion.handle_message('tele/node-a/reading', _payload([('s7', 20000)]))

        assert store.node_sightings()['node-a'].readings == {'s7': 20000}
        assert history.pending_counts()['readings'] == 0

    def test_bad_payload_recorded_as_error(self, ingestion, store):
        assert ingestion.handle_message('tele/node-a/reading', b'{not json') is None

        assert store.node_sightings() == {}
        event = store.events(limit=1)[0]
        assert event.kind is EventKind.ERROR
        assert 'node-a' in event.detail

    def test_implausible_reading_dropped(self, ingestion, store, history):
        """A floating or shorted input is reported and kept out of the averages."""
        ingestion.handle_message('tele/node-a/reading', _payload([('s1', 32767)]))

        assert store.node_sightings()['node-a'].readings == {}
        assert store.zone_average_moisture('z1') is None
        assert history.pending_counts()['readings'] == 0
        assert any('implausible' in e.detail for e in store.events() if e.kind is EventKind.ERROR)

    def test_node_status(self, ingestion, store):
        ingestion.handle_message('status/node/node-a', b'offline')
        assert store.events(limit=1)[0].detail == 'node node-a offline'

    def test_message_callback_never_raises(self, ingestion, store, monkeypatch):
        monkeypatch.setattr(ingestion, 'handle_message', Mock(side_effect=RuntimeError('boom')))
        ingestion._on_message(None, None, Mock(topic='tele/node-a/reading', payload=b'{}'))
        assert store.events(limit=1)[0].kind is EventKind.ERROR


class TestConnection:
    """Test connect/disconnect handling."""

    def test_on_connect_subscribes_and_announces(self, ingestion, store, mqtt_client):
        ingestion._on_connect(mqtt_client, None, {}, Mock(is_failure=False))

        mqtt_client.subscribe.assert_called_once_with([('tele/+/reading', 1), ('status/node/+', 1)])
        mqtt_client.publish.assert_called_once_with('status/hub', 'online', qos=1, retain=True)
        assert store.mqtt_connected is True

    def test_refused_connection(self, ingestion, store, mqtt_client):
        ingestion._on_connect(mqtt_client, None, {}, Mock(is_failure=True))
        mqtt_client.subscribe.assert_not_called()
        assert store.mqtt_connected is False

    def test_disconnect_closes_valves(self, ingestion, store):
        """Every disconnect calls the connection-loss handler."""
        on_lost = Mock()
        ingestion.on_connection_lost = on_lost
        store.set_mqtt_connected(True)

        ingestion._on_disconnect(None, None, {}, Mock())

        on_lost.assert_called_once_with('mqtt disconnected')
        assert store.mqtt_connected is False

    def test_disconnect_wired_to_scheduler(self, ingestion, scheduler, actuator, feed):
        feed(0.2)
        scheduler.tick()
        assert actuator.get_open_channels() == [17]

        ingestion.on_connection_lost = scheduler.request_all_off
        ingestion._on_disconnect(None, None, {}, Mock())
        assert actuator.get_open_channels() == []

    def test_start_and_stop(self, ingestion, mqtt_client):
        ingestion.start()
        mqtt_client.connect_async.assert_called_once()
        mqtt_client.loop_start.assert_called_once()

        mqtt_client.is_connected.return_value = True
        ingestion.stop()
        mqtt_client.publish.assert_called_with('status/hub', 'offline', qos=1, retain=True)
        mqtt_client.loop_stop.assert_called_once()
