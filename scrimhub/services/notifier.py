"""Room-addressed, fire-and-forget event publishing."""
from abc import ABC, abstractmethod

from flask import current_app, has_app_context

QUEUE_ROOM = 'queue'


def match_room(match_id):
    return f'match-{match_id}'


def ready_room(session_ref):
    return f'ready-{session_ref}'


class Notifier(ABC):
    """Publishes events to rooms; delivery failures never reach the caller."""

    def publish(self, event, payload, *rooms):
        for room in dict.fromkeys(r for r in rooms if r):
            try:
                self.deliver(event, payload, room)
            except Exception as exc:
                if has_app_context():
                    current_app.logger.warning(
                        'Failed to deliver %s to %s: %s', event, room, exc,
                    )

    @abstractmethod
    def deliver(self, event, payload, room):
        """Send one event to one room."""

    # Queue

    def queue_updated(self, pool_view):
        self.publish('queue:updated', pool_view, QUEUE_ROOM)

    def queue_player_joined(self, player, pool_view):
        self.publish('queue:player-joined', {'player': player, 'queue': pool_view}, QUEUE_ROOM)

    def queue_player_left(self, steam_id, pool_view):
        self.publish('queue:player-left', {'steam_id': steam_id, 'queue': pool_view}, QUEUE_ROOM)

    def queue_full(self, pool_view):
        self.publish('queue:full', pool_view, QUEUE_ROOM)

    # Ready check

    def match_ready(self, stats):
        rooms = [QUEUE_ROOM, ready_room(stats['session_id'])]
        if stats.get('match_id'):
            rooms.append(match_room(stats['match_id']))
        self.publish('match-ready', stats, *rooms)

    def player_accepted(self, stats, steam_id):
        payload = dict(stats, steam_id=steam_id)
        self.publish('player-accepted', payload, *self._ready_rooms(stats))

    def player_declined(self, stats, steam_id):
        payload = dict(stats, steam_id=steam_id)
        self.publish('player-declined', payload, *self._ready_rooms(stats))

    def ready_complete(self, session_ref, match_id):
        payload = {'session_id': session_ref, 'match_id': match_id}
        rooms = (QUEUE_ROOM, ready_room(session_ref), match_room(match_id))
        self.publish('match:ready:complete', payload, *rooms)
        self.publish('match-starting', payload, *rooms)

    def match_cancelled(self, payload):
        rooms = [QUEUE_ROOM]
        if payload.get('session_id'):
            rooms.append(ready_room(payload['session_id']))
        if payload.get('match_id'):
            rooms.append(match_room(payload['match_id']))
        self.publish('match-cancelled', payload, *rooms)

    # Match

    def match_starting(self, match_id):
        payload = {'match_id': match_id}
        self.publish('match-starting', payload, QUEUE_ROOM, match_room(match_id))

    def phase_change(self, match):
        payload = {'match_id': match.match_id, 'phase': match.phase, 'match': match.to_dict()}
        self.publish('phase-change', payload, match_room(match.match_id))

    def draft_update(self, match, pick):
        payload = {'match_id': match.match_id, 'pick': pick, 'match': match.to_dict()}
        self.publish('draft-update', payload, match_room(match.match_id))

    def veto_update(self, match, ban):
        payload = {'match_id': match.match_id, 'ban': ban, 'match': match.to_dict()}
        self.publish('veto-update', payload, match_room(match.match_id))

    def server_ready(self, match):
        payload = {'match_id': match.match_id, 'server_info': match.server_info()}
        self.publish('server-ready', payload, match_room(match.match_id))

    def match_complete(self, match):
        payload = {'match_id': match.match_id, 'result': match.result()}
        self.publish('match-complete', payload, match_room(match.match_id))

    @staticmethod
    def _ready_rooms(stats):
        rooms = [ready_room(stats['session_id'])]
        if stats.get('match_id'):
            rooms.append(match_room(stats['match_id']))
        return rooms


class SocketNotifier(Notifier):
    def __init__(self, socketio):
        self.socketio = socketio

    def deliver(self, event, payload, room):
        self.socketio.emit(event, payload, room=room)
