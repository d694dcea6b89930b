"""Tests for socket room subscriptions and the socket accept path."""
import pytest
from scrimhub.app import socketio
from scrimhub.models import User
from scrimhub.services.notifier import Notifier


def _events(sio, name):
    return [event['args'][0] for event in sio.get_received() if event['name'] == name]


def _token(headers):
    return headers['Authorization']


def test_join_queue_room_receives_queue_updates(app, client, login):
    headers = login('STEAM_1')
    sio = socketio.test_client(app, flask_test_client=client)
    sio.emit('join', {'room': 'queue', 'token': _token(headers)})
    assert _events(sio, 'status') == [{'message': 'Joined queue'}]

    client.post('/api/queue/join', headers=headers)
    updates = _events(sio, 'queue:updated')
    assert updates and updates[-1]['count'] == 1
    sio.disconnect()


def test_join_requires_token_and_valid_room(app, client, login):
    sio = socketio.test_client(app, flask_test_client=client)
    sio.emit('join', {'room': 'queue'})
    assert _events(sio, 'status') == [{'error': 'Authentication required'}]

    sio.emit('join', {'room': 'lobby-1', 'token': _token(login('STEAM_1'))})
    assert _events(sio, 'status') == [{'error': 'Invalid room'}]
    sio.disconnect()


def test_match_room_is_limited_to_participants_and_admins(app, client, login, hub):
    players = [login(f'STEAM_{i}') for i in range(1, 11)]
    users = [User.query.filter_by(steam_id=f'STEAM_{i}').first() for i in range(1, 11)]
    match = hub.matches.create_match([dict(u.snapshot(), user_id=u.id) for u in users])
    room = f'match-{match.match_id}'

    sio = socketio.test_client(app, flask_test_client=client)
    sio.emit('join', {'room': room, 'token': _token(login('STEAM_OUTSIDER'))})
    assert _events(sio, 'status') == [{'error': 'Forbidden room'}]

    sio.emit('join', {'room': room, 'token': _token(players[0])})
    assert _events(sio, 'status') == [{'message': f'Joined {room}'}]

    app.config['ADMIN_STEAM_IDS'] = 'STEAM_ADMIN'
    sio.emit('join', {'room': room, 'token': _token(login('STEAM_ADMIN'))})
    assert _events(sio, 'status') == [{'message': f'Joined {room}'}]

    sio.emit('join', {'room': 'match-MATCH-missing', 'token': _token(players[0])})
    assert _events(sio, 'status') == [{'error': 'Match not found'}]
    sio.disconnect()


def test_ready_accept_over_socket(app, client, login):
    players = [login(f'STEAM_{i}') for i in range(1, 11)]
    for headers in players:
        client.post('/api/queue/join', headers=headers)

    sio = socketio.test_client(app, flask_test_client=client)
    sio.emit('ready:accept', {'token': _token(players[0])})
    results = _events(sio, 'ready:accept:result')
    assert results[0]['ready']['accepted_count'] == 1
    assert results[0]['ready']['already_accepted'] is False

    sio.emit('ready:accept', {'token': _token(login('STEAM_OUTSIDER'))})
    errors = _events(sio, 'status')
    assert errors[0]['code'] == 'session_not_found'
    sio.disconnect()


def test_notifier_requires_a_delivery_method(app):
    with pytest.raises(TypeError):
        Notifier()

    class FailingNotifier(Notifier):
        def deliver(self, event, payload, room):
            raise ConnectionError('socket gone')

    FailingNotifier().queue_updated({'count': 0})
