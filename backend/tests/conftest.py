import os
import sys
import uuid
import pytest

# Ensure the backend root (containing the `quizparty` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quizparty import create_app, db, seed_sample_quiz, socketio
from quizparty.client import ClientConfig, HttpBackend, SessionContext, Subscription
from quizparty.services.games.timer import ServerClock


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = 'DEBUG'
    DEFAULT_TIME_LIMIT_SEC = 300
    DEFAULT_QUESTION_COUNT = 5
    JOIN_CODE_LENGTH = 6
    COUNTDOWN_DURATION_SEC = 0


class FlaskTestBackend(HttpBackend):
    """HttpBackend that routes requests through the Flask test client."""

    def __init__(self, test_client):
        super().__init__()
        self.test_client = test_client
        self.calls = []

    def _send(self, method, path, payload=None, params=None):
        self.calls.append((method, path))
        res = self.test_client.open(path, method=method, json=payload, query_string=params)
        return res.status_code, res.get_json(silent=True) or {}

    def writes(self, suffix):
        return [c for c in self.calls if c[0] == 'POST' and c[1].endswith(suffix)]


class RecordingChannel:
    """In-process event channel; tests deliver notifications by hand."""

    def __init__(self):
        self.subs = {}
        self.unsubscribed = []
        self._next = 0

    def subscribe(self, topic, scope, callback):
        self._next += 1
        sub = Subscription(self._next, topic, scope, callback)
        self.subs[sub.handle] = sub
        return sub

    def unsubscribe(self, sub):
        self.subs.pop(sub.handle, None)
        self.unsubscribed.append(sub.handle)

    def deliver(self, topic, payload):
        for sub in list(self.subs.values()):
            if sub.topic == topic:
                sub.callback(payload)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import quizparty.models  # noqa: F401
        db.create_all()
        seed_sample_quiz()
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


@pytest.fixture()
def quiz_id(client):
    return client.get('/api/quizzes').get_json()[0]['id']


@pytest.fixture()
def make_game(client, quiz_id):
    """Create a game and return ``(code, host_id)``."""
    def _make(question_count=5, time_limit=300):
        host_id = uuid.uuid4().hex
        res = client.post('/api/games/create', json={
            'quiz_id': quiz_id,
            'host_id': host_id,
            'host_name': 'Host',
            'time_limit': time_limit,
            'question_count': question_count,
        })
        assert res.status_code == 201
        return res.get_json()['game_code'], host_id
    return _make


@pytest.fixture()
def join(client):
    def _join(code, name):
        res = client.post('/api/games/join', json={'game_code': code, 'name': name})
        assert res.status_code == 201
        return res.get_json()
    return _join


@pytest.fixture()
def backend(client):
    return FlaskTestBackend(client)


@pytest.fixture()
def channel():
    return RecordingChannel()


@pytest.fixture()
def client_config():
    return ClientConfig(debounce_ms=0, countdown_sec=0, read_retry_budget=2)


@pytest.fixture()
def make_context(backend, channel, client_config):
    contexts = []

    def _make(code, role='player', player_id=None, host_id=None, **kwargs):
        ctx = SessionContext(
            kwargs.pop('backend', backend), kwargs.pop('channel', channel), code,
            role=role, player_id=player_id, host_id=host_id,
            config=client_config, clock=kwargs.pop('clock', None) or ServerClock(), **kwargs
        )
        contexts.append(ctx)
        return ctx

    yield _make
    for ctx in contexts:
        ctx.close()
