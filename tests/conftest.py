"""Shared pytest fixtures for testing."""
import pytest
import os
import tempfile
import shutil
from irrigation_hub.config.zone_loader import ZoneConfig, SensorConfig
from irrigation_hub.hardware.mock_gpio import MockGPIO
from irrigation_hub.hardware.valve_actuator import RecordingValveActuator
from irrigation_hub.safety.fail_safe import FailSafe
from irrigation_hub.safety.ledger import SafetyLedger
from irrigation_hub.scheduler.zone_scheduler import ZoneScheduler
from irrigation_hub.services.history_store import HistoryStore
from irrigation_hub.state.store import StateStore

# 2025-06-15 12:00:00 UTC
START_TS = 1749988800.0

RAW_DRY = 26000
RAW_WET = 12000


def raw_for(moisture):
    """Raw sample that calibrates to the given moisture fraction."""
    return int(round(RAW_DRY - moisture * (RAW_DRY - RAW_WET)))


class FakeClock:
    """Settable wall clock."""

    def __init__(self, now=START_TS):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(scope='function')
def temp_db():
    """Create a temporary database for testing."""
    # Create temporary directory
    temp_dir = tempfile.mkdtemp()
    db_path = os.path.join(temp_dir, 'test_irrigation_hub.db')

    # Create new engine with test database
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker, scoped_session
    from irrigation_hub.config.database import init_db

    test_engine = create_engine(f'sqlite:///{db_path}', connect_args={'check_same_thread': False}, echo=False)
    TestSessionLocal = scoped_session(sessionmaker(autocommit=False, autoflush=False, bind=test_engine))

    # Initialize database tables
    init_db(bind=test_engine)

    # Create a custom get_db that uses test database
    def test_get_db():
        """Get test database session."""
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    yield test_get_db

    # Cleanup
    TestSessionLocal.remove()
    test_engine.dispose()
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def zone_config():
    """Zone z1: min 0.3, target 0.5, 30 s pulses, 20 min soak."""
    return ZoneConfig(
        zone_id='z1', name='Front bed', min_moisture=0.3, target_moisture=0.5,
        pulse_sec=30, soak_min=20, max_open_sec_per_day=180, max_pulses_per_day=6,
        stale_timeout_min=30, actuator_channel=17,
    )


@pytest.fixture
def sensor_config():
    return SensorConfig(sensor_id='node-a/s1', node_id='node-a', zone_id='z1', raw_dry=RAW_DRY, raw_wet=RAW_WET)


@pytest.fixture
def store(zone_config, sensor_config, clock):
    return StateStore([zone_config], [sensor_config], clock=clock)


@pytest.fixture
def mock_gpio():
    """Create a mock GPIO instance."""
    return MockGPIO()


@pytest.fixture
def actuator():
    return RecordingValveActuator([17, 27])


@pytest.fixture
def history(temp_db):
    return HistoryStore(temp_db)


@pytest.fixture
def fail_safe(actuator, store, temp_db):
    return FailSafe(actuator, store, temp_db)


@pytest.fixture
def ledger(store, temp_db):
    return SafetyLedger(store, max_concurrent_valves=1, db_session_factory=temp_db)


@pytest.fixture
def scheduler(store, ledger, actuator, fail_safe, history):
    return ZoneScheduler(store, ledger, actuator, fail_safe, history, tick_interval=10)


@pytest.fixture
def feed(store):
    """Record a node-a/s1 reading at the current fake time."""
    def _feed(moisture, node_id='node-a', sensor_id='s1'):
        store.record_reading(node_id, int(store.now()), [(sensor_id, raw_for(moisture))])
    return _feed


@pytest.fixture
def app(store, ledger, scheduler, fail_safe, history, tmp_path):
    """Create Flask app for testing with a running scheduler thread."""
    from flask import Flask
    from flask_cors import CORS
    from irrigation_hub.api import api_bp
    from irrigation_hub.api.system import system_state

    system_state.update({
        'store': store,
        'ledger': ledger,
        'scheduler': scheduler,
        'fail_safe': fail_safe,
        'history': history,
        'config_path': str(tmp_path / 'config.toml'),
    })
    scheduler.start(initial_delay=3600)

    # Create a minimal Flask app for testing
    flask_app = Flask(__name__)
    CORS(flask_app)
    flask_app.config['TESTING'] = True
    flask_app.register_blueprint(api_bp)

    yield flask_app

    scheduler.stop()


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
