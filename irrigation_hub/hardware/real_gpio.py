"""Real GPIO implementation for Raspberry Pi."""
try:
    import RPi.GPIO as GPIO
    RPI_GPIO_AVAILABLE = True
except ImportError:
    RPI_GPIO_AVAILABLE = False
    GPIO = None

from irrigation_hub.hardware.gpio_interface import GPIOInterface


class RealGPIO(GPIOInterface):
    """Real GPIO implementation using RPi.GPIO."""

    def __init__(self):
        """Initialize real GPIO."""
        if not RPI_GPIO_AVAILABLE:
            raise ImportError("RPi.GPIO is not available. Install it with: pip install 'irrigation-hub[gpio]'")

        GPIO.setmode(GPIO.BCM)
        GPIO.setwarnings(False)
        self.setup_pins = set()

    def setup_pin(self, pin: int, mode: str, pull_up_down: str = None, initial: bool = None):
        """Setup a GPIO pin; output pins can be given an initial level."""
        if mode == 'input':
            pull = GPIO.PUD_OFF
            if pull_up_down == 'up':
                pull = GPIO.PUD_UP
            elif pull_up_down == 'down':
                pull = GPIO.PUD_DOWN
            GPIO.setup(pin, GPIO.IN, pull_up_down=pull)
        elif mode == 'output':
            if initial is None:
                GPIO.setup(pin, GPIO.OUT)
            else:
                GPIO.setup(pin, GPIO.OUT, initial=GPIO.HIGH if initial else GPIO.LOW)
        else:
            raise ValueError(f"Invalid mode: {mode}")

        self.setup_pins.add(pin)

    def read_pin(self, pin: int) -> bool:
        """Read digital value from GPIO pin."""
        if pin not in self.setup_pins:
            raise ValueError(f"Pin {pin} not set up")
        return GPIO.input(pin) == GPIO.HIGH

    def write_pin(self, pin: int, value: bool):
        """Write digital value to GPIO pin."""
        if pin not in self.setup_pins:
            raise ValueError(f"Pin {pin} not set up")
        GPIO.output(pin, GPIO.HIGH if value else GPIO.LOW)

    def cleanup(self):
        """Cleanup GPIO resources."""
        GPIO.cleanup()
        self.setup_pins.clear()
