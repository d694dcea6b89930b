from datetime import timedelta

import pytest
from scrimhub.app import create_app, db
from scrimhub.models import User
from scrimhub.services.notifier import Notifier
from scrimhub.time_utils import utcnow_naive


class RecordingNotifier(Notifier):
    """Keeps every published event instead of emitting it."""

    def __init__(self):
        self.events = []

    def deliver(self, event, payload, room):
        self.events.append((event, payload, room))

    def names(self):
        return [event for event, _, _ in self.events]

    def payloads(self, event, room=None):
        return [
            payload for name, payload, target in self.events
            if name == event and (room is None or target == room)
        ]


class FakeProvisioner:
    def __init__(self, succeed=True, error='Server did not become ready in time'):
        self.succeed = succeed
        self.error = error
        self.provisioned = []
        self.torn_down = []

    def provision(self, match):
        self.provisioned.append(match.match_id)
        if not self.succeed:
            return {'success': False, 'error': self.error}
        return {
            'success': True,
            'server_info': {
                'ip': '10.0.0.5',
                'port': 27015,
                'password': 'scrim',
                'server_id': 'srv-1',
                'connect_string': 'connect 10.0.0.5:27015; password scrim',
            },
        }

    def teardown(self, server_id):
        self.torn_down.append(server_id)
        return True


class FrozenClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def hub(app):
    return app.extensions['scrimhub']


@pytest.fixture
def clock(hub):
    frozen = FrozenClock(utcnow_naive().replace(microsecond=0))
    hub.clock = frozen
    return frozen


@pytest.fixture
def notifier(hub):
    recording = RecordingNotifier()
    hub.notifier = recording
    return recording


@pytest.fixture
def provisioner(hub):
    fake = FakeProvisioner()
    hub.provisioner = fake
    return fake


@pytest.fixture
def make_users(app):
    """Factory creating committed players ``<prefix>1..N``."""
    def _make(count, prefix='STEAM_', start=1, **fields):
        users = []
        for index in range(start, start + count):
            user = User(steam_id=f'{prefix}{index}', name=f'Player {index}', **fields)
            db.session.add(user)
            users.append(user)
        db.session.commit()
        return users
    return _make


@pytest.fixture
def fill_queue(hub):
    """Join every player in order through the queue manager."""
    def _fill(users):
        for user in users:
            hub.queue.join(user)
        return hub.ready.active_session_for(users[0])
    return _fill


@pytest.fixture
def draft_match(hub):
    """Create a draft-phase match directly from players."""
    def _create(users):
        snapshots = [dict(u.snapshot(), user_id=u.id, joined_at=None) for u in users]
        return hub.matches.create_match(snapshots)
    return _create


@pytest.fixture
def login(client):
    def _login(steam_id, name=None):
        res = client.post('/api/auth/dev-login', json={'steam_id': steam_id, 'name': name or steam_id})
        data = res.get_json()
        return {'Authorization': f'Bearer {data["token"]}'}
    return _login
