import os
import sys
import pytest

# Ensure the project root (containing the `skatebattle` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from skatebattle import create_app, db, socketio
from skatebattle.services import notifications


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    TURN_TIMEOUT_SEC = 60
    RECONNECT_WINDOW_SEC = 120
    MAX_PROCESSED_EVENTS = 100
    MIN_PLAYERS = 2
    DEFAULT_MAX_PLAYERS = 4
    VOTE_TIMEOUT_SEC = 60
    VOTE_MAX_PROCESSED_EVENTS = 50
    ASYNC_TURN_DEADLINE_SEC = 24 * 60 * 60
    GAME_HARD_CAP_SEC = 7 * 24 * 60 * 60
    DEADLINE_WARNING_WINDOW_SEC = 3600
    DEADLINE_WARNING_COOLDOWN_SEC = 1800
    SWEEP_INTERVAL_SEC = 10
    ENABLE_SWEEP_SCHEDULER = False
    SWEEP_HEARTBEAT_SEC = 0
    CRON_SECRET = 'cron-test-secret'


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import skatebattle.models  # noqa: F401
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
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


class NotificationRecorder:
    def __init__(self):
        self.sent = []

    def __call__(self, user_id, kind, payload=None):
        if user_id:
            self.sent.append((user_id, kind, payload or {}))

    def kinds_for(self, user_id):
        return [kind for uid, kind, _ in self.sent if uid == user_id]

    def of_kind(self, kind):
        return [(uid, payload) for uid, k, payload in self.sent if k == kind]


@pytest.fixture()
def sent(monkeypatch):
    recorder = NotificationRecorder()
    monkeypatch.setattr(notifications, 'notify', recorder)
    return recorder
