import os
import sys
import pytest

# Ensure the backend root (containing the `predictoor` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from predictoor import create_app, db, socketio
from predictoor.engine import get_engine
from predictoor.services.prices import StaticPriceOracle
from predictoor.services.rounds.clock import FrozenClock

# 16666 * 60: a round boundary, so the first round starts 60s later
T0 = 999960.0


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = []
    ROUND_DURATION_SEC = 60
    LOCK_WINDOW_SEC = 5
    SCORING_SENSITIVITY = 10
    PRICE_ORACLE = 'static'
    RESULTS_LIMIT = 20
    LEADERBOARD_LIMIT = 10


@pytest.fixture()
def clock():
    return FrozenClock(T0)


@pytest.fixture()
def oracle():
    return StaticPriceOracle(100000.0)


@pytest.fixture()
def flask_app(clock, oracle):
    application = create_app(TestConfig, clock=clock, oracle=oracle)
    with application.app_context():
        # Ensure models are imported so tables are created
        import predictoor.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def engine(flask_app):
    return get_engine(flask_app)


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def active_round(engine, clock):
    """Id of a round that has just become active."""
    report = engine.scheduler.tick()
    round_id = report.created[0]
    rnd = engine.store.get(round_id)
    clock.set(rnd.start_time)
    report = engine.scheduler.tick()
    assert report.activated == [round_id]
    return round_id


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
