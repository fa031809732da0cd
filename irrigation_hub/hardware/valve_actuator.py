"""Valve actuation abstraction.

Every variant offers the same two capabilities, set_open and all_off, and
is fail-safe by construction: all_off is idempotent and attempts every
channel even when some of them fail.
"""
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterable, List, Set, Tuple, Union

import paho.mqtt.client as mqtt

from irrigation_hub.config.config import RELAY_ACTIVE_LOW
from irrigation_hub.errors import ActuatorError
from irrigation_hub.hardware.gpio_interface import GPIOInterface
from irrigation_hub.telemetry.parser import valve_topic, format_valve_command

logger = logging.getLogger(__name__)

Channel = Union[int, str]


class ValveActuator(ABC):
    """Abstract interface for valve control."""

    @abstractmethod
    def set_open(self, channel: Channel, is_open: bool):
        """
        Drive one valve open or closed.

        Raises:
            ActuatorError: if the valve could not be driven
        """
        pass

    @abstractmethod
    def all_off(self):
        """
        Close every known valve.

        Raises:
            ActuatorError: listing the channels that could not be closed
        """
        pass

    @abstractmethod
    def add_channels(self, channels: Iterable[Channel]):
        """Register channels (closed) after a config reload."""
        pass

    def is_available(self) -> bool:
        """Whether valves can currently be commanded open."""
        return True

    def channel_for(self, zone) -> Channel:
        """Channel that drives a zone's valve."""
        return zone.actuator_channel

    def is_open(self, channel: Channel) -> bool:
        return channel in self.get_open_channels()

    @abstractmethod
    def get_open_channels(self) -> List[Channel]:
        """Channels last commanded open."""
        pass

    def _close_each(self, channels: Iterable[Channel]):
        failed = []
        for channel in channels:
            try:
                self.set_open(channel, False)
            except ActuatorError as e:
                logger.error("all_off: failed to close channel %s: %s", channel, e)
                failed.append(channel)
        if failed:
            raise ActuatorError(f"failed to close channel(s): {', '.join(map(str, failed))}", failed)


class GpioValveActuator(ValveActuator):
    """Solenoid valves switched through relays on GPIO pins."""

    def __init__(self, gpio: GPIOInterface, channels: Iterable[int], active_low: bool = RELAY_ACTIVE_LOW):
        """
        Initialize valve actuator.

        Args:
            gpio: GPIO interface instance
            channels: GPIO pin numbers, one per zone
            active_low: Relay board energises on a LOW level
        """
        self.gpio = gpio
        self.active_low = active_low
        self.valve_states: Dict[int, bool] = {}
        self._lock = threading.Lock()
        self.add_channels(channels)

    def channel_for(self, zone) -> int:
        return int(zone.actuator_channel)

    def _level(self, is_open: bool) -> bool:
        return (not is_open) if self.active_low else is_open

    def add_channels(self, channels: Iterable[int]):
        for pin in map(int, channels):
            if pin in self.valve_states:
                continue
            try:
                self.gpio.setup_pin(pin, 'output', initial=self._level(False))
                self.gpio.write_pin(pin, self._level(False))
            except Exception as e:
                raise ActuatorError(f"failed to set up valve pin {pin}: {e}", [pin]) from e
            self.valve_states[pin] = False
            logger.info("Valve pin %d configured (closed, active_%s)", pin, 'low' if self.active_low else 'high')

    def set_open(self, channel: int, is_open: bool):
        if channel not in self.valve_states:
            raise ActuatorError(f"Valve pin {channel} not configured", [channel])
        with self._lock:
            try:
                self.gpio.write_pin(channel, self._level(is_open))
            except Exception as e:
                raise ActuatorError(f"failed to {'open' if is_open else 'close'} valve pin {channel}: {e}",
                                    [channel]) from e
            self.valve_states[channel] = is_open

    def all_off(self):
        self._close_each(list(self.valve_states))

    def get_open_channels(self) -> List[int]:
        return [pin for pin, is_open in self.valve_states.items() if is_open]


class MqttValveActuator(ValveActuator):
    """Valves on remote nodes, commanded with ON/OFF on valve/<zone_id>/set."""

    def __init__(self, client, channels: Iterable[str], qos: int = 1):
        """
        Initialize MQTT valve actuator.

        Args:
            client: Connected paho-mqtt client
            channels: Zone ids (the topic segment)
            qos: Publish QoS
        """
        self.client = client
        self.qos = qos
        self.valve_states: Dict[str, bool] = {}
        self.add_channels(channels)

    def is_available(self) -> bool:
        return self.client.is_connected()

    def channel_for(self, zone) -> str:
        return zone.zone_id

    def add_channels(self, channels: Iterable[str]):
        for channel in channels:
            self.valve_states.setdefault(str(channel), False)

    def set_open(self, channel: str, is_open: bool):
        channel = str(channel)
        if channel not in self.valve_states:
            raise ActuatorError(f"Valve {channel} not configured", [channel])
        try:
            info = self.client.publish(valve_topic(channel), format_valve_command(is_open), qos=self.qos)
        except Exception as e:
            raise ActuatorError(f"failed to publish valve command for {channel}: {e}", [channel]) from e
        if info.rc == mqtt.MQTT_ERR_NO_CONN and not is_open and self.qos > 0:
            # paho keeps QoS>0 messages and sends them after reconnecting
            logger.warning("Broker unreachable, OFF for %s queued until reconnect", channel)
        elif info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ActuatorError(f"valve command for {channel} not sent (rc={info.rc})", [channel])
        self.valve_states[channel] = is_open

    def all_off(self):
        self._close_each(list(self.valve_states))

    def get_open_channels(self) -> List[str]:
        return [c for c, is_open in self.valve_states.items() if is_open]


class RecordingValveActuator(ValveActuator):
    """
    Off-target actuator that records every call.

    Failures can be injected per channel and direction through
    fail_open and fail_close.
    """

    def __init__(self, channels: Iterable[Channel] = ()):
        self.valve_states: Dict[Channel, bool] = {}
        self.calls: List[Tuple[str, Channel, bool]] = []
        self.fail_open: Set[Channel] = set()
        self.fail_close: Set[Channel] = set()
        self.all_off_count = 0
        self.add_channels(channels)

    def add_channels(self, channels: Iterable[Channel]):
        for channel in channels:
            self.valve_states.setdefault(channel, False)

    def set_open(self, channel: Channel, is_open: bool):
        self.calls.append(('set_open', channel, is_open))
        if channel not in self.valve_states:
            raise ActuatorError(f"Valve {channel} not configured", [channel])
        if (is_open and channel in self.fail_open) or (not is_open and channel in self.fail_close):
            raise ActuatorError(f"simulated failure driving {channel} {'open' if is_open else 'closed'}", [channel])
        self.valve_states[channel] = is_open

    def all_off(self):
        self.all_off_count += 1
        self._close_each(list(self.valve_states))

    def get_open_channels(self) -> List[Channel]:
        return [c for c, is_open in self.valve_states.items() if is_open]

    def open_commands(self) -> List[Channel]:
        """Channels that were ever asked to open."""
        return [channel for op, channel, is_open in self.calls if op == 'set_open' and is_open]


@contextmanager
def actuator_guard(actuator: ValveActuator):
    """
    Close every valve on entry and on every exit path.

    A failing all_off on exit is logged at CRITICAL and raised.
    """
    actuator.all_off()
    try:
        yield actuator
    finally:
        try:
            actuator.all_off()
            logger.info("Actuator guard: all valves closed")
        except ActuatorError as e:
            logger.critical("Actuator guard: all_off failed on exit: %s", e)
            raise
