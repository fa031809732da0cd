"""Hardware abstraction package."""
from irrigation_hub.hardware.gpio_interface import GPIOInterface
from irrigation_hub.hardware.mock_gpio import MockGPIO
from irrigation_hub.hardware.real_gpio import RealGPIO
from irrigation_hub.hardware.valve_actuator import (
    ValveActuator,
    GpioValveActuator,
    MqttValveActuator,
    RecordingValveActuator,
    actuator_guard,
)

__all__ = [
    'GPIOInterface',
    'MockGPIO',
    'RealGPIO',
    'ValveActuator',
    'GpioValveActuator',
    'MqttValveActuator',
    'RecordingValveActuator',
    'actuator_guard',
]
