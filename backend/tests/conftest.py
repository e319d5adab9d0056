import os
import sys
import pytest

# Ensure the backend root (containing the `memorix` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from memorix import create_app, db, socketio
from memorix.services.games.engine import RoundEngine, today_date_num

OWNER = '0xowner'
ADMIN_TOKEN = 'test-admin-token'


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LEDGER_OWNER = OWNER
    ADMIN_TOKEN = ADMIN_TOKEN
    # Deterministic reward parameters matching the worked examples
    BASE_REWARD_PER_STEP = '0.001'
    TIME_BONUS_MULTIPLIER = 100
    DAILY_REWARD_PER_COMPLETION = '0.01'
    LEADERBOARD_REWARD_POOL = '1'
    LEADERBOARD_RANK_WEIGHTS = '30,20,15,10,8,6,4,3,2,2'
    ANTI_CHEAT_ENABLED = True
    MIN_REACTION_TIME_MS = 100
    DAILY_MAX_TRIES = 3


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms=1_760_000_000_000):
        self.now = start_ms

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class RecordingSink:
    def __init__(self, fail=False):
        self.transfers = []
        self.fail = fail

    def __call__(self, player, amount):
        if self.fail:
            raise RuntimeError('transfer rejected')
        self.transfers.append((player, amount))


@pytest.fixture()
def payout_sink():
    return RecordingSink()


@pytest.fixture()
def flask_app(payout_sink):
    application = create_app(TestConfig, payout_sink=payout_sink)
    with application.app_context():
        # Ensure models are imported so tables are created
        import memorix.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def owner():
    return OWNER


@pytest.fixture()
def services(flask_app):
    return flask_app.extensions['memorix']


@pytest.fixture()
def ledger(services):
    return services.ledger


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def engine(services, clock):
    """Engine sharing the app's ledger and accumulator, driven by a fake clock."""
    return RoundEngine(services.settings, services.ledger, services.accumulator, clock=clock)


@pytest.fixture()
def funded_ledger(ledger, owner):
    ledger.deposit(owner, 50 * 10 ** 9)
    return ledger


@pytest.fixture()
def daily_date(ledger, owner, clock):
    """Today's (fake clock) daily challenge, configured: 4x4 grid, 8 steps."""
    date = today_date_num(clock())
    ledger.set_daily_challenge(owner, date, 4, 8, 400, 250, 15000, 3)
    return date


@pytest.fixture()
def settings():
    """Settings snapshot built straight from TestConfig, no app required."""
    from memorix.settings import GameSettings
    return GameSettings.from_config({k: getattr(TestConfig, k) for k in dir(TestConfig) if k.isupper()})


@pytest.fixture()
def config_class():
    return TestConfig
