"""WebSocket event handlers: room subscriptions and the socket accept path."""
import re

from flask import request
from flask_socketio import emit, join_room, leave_room
from scrimhub.app import socketio
from scrimhub.auth_utils import get_user_from_token
from scrimhub.errors import MatchmakingError
from scrimhub.models import Match, ReadySession
from scrimhub.services.hub import get_hub
from scrimhub.services.notifier import QUEUE_ROOM

_ROOM_PATTERN = re.compile(r'^(match|ready)-((?:MATCH|PEND)-[A-Za-z0-9]+)$')


def _socket_token(payload):
    return payload.get('token') or request.args.get('token') or ''


def _authorize_socket_join(room, token):
    user = get_user_from_token(token)
    if not user:
        return None, 'Authentication required'

    if room == QUEUE_ROOM:
        return user, None

    room_match = _ROOM_PATTERN.match(room)
    if not room_match:
        return None, 'Invalid room'

    room_type, ref = room_match.group(1), room_match.group(2)
    if room_type == 'match':
        match = Match.query.filter_by(match_id=ref).first()
        if not match:
            return None, 'Match not found'
        # Spectating is open to admins only.
        if match.player_by_user_id(user.id) is None and not user.is_admin:
            return None, 'Forbidden room'
        return user, None

    session = ReadySession.query.filter_by(session_ref=ref).first()
    if not session:
        return None, 'Ready session not found'
    if session.player_for(user.id) is None and not user.is_admin:
        return None, 'Forbidden room'
    return user, None


@socketio.on('join')
def on_join(data):
    payload = data if isinstance(data, dict) else {}
    room = str(payload.get('room') or '').strip()
    _, error = _authorize_socket_join(room, _socket_token(payload))
    if error:
        emit('status', {'error': error})
        return

    join_room(room)
    emit('status', {'message': f'Joined {room}'})


@socketio.on('leave')
def on_leave(data):
    payload = data if isinstance(data, dict) else {}
    room = str(payload.get('room') or '').strip()
    if room:
        leave_room(room)


@socketio.on('ready:accept')
def on_ready_accept(data):
    payload = data if isinstance(data, dict) else {}
    user = get_user_from_token(_socket_token(payload))
    if not user:
        emit('status', {'error': 'Authentication required'})
        return

    hub = get_hub()
    try:
        session_ref = str(payload.get('session_id') or payload.get('sessionId') or '').strip()
        if not session_ref:
            session = hub.ready.active_session_for(user)
            session_ref = session.session_ref if session else ''
        stats = hub.ready.accept(session_ref, user.id)
    except MatchmakingError as err:
        emit('status', err.to_dict())
        return
    emit('ready:accept:result', {'ready': stats})
