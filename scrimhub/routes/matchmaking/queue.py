"""Queue join/leave/status routes."""
from flask import request, jsonify
from scrimhub.auth_utils import admin_required, login_required
from scrimhub.routes.matchmaking import queue_bp
from scrimhub.routes.matchmaking.helpers import _enforce_queue_rate_limit
from scrimhub.services.hub import get_hub


def _player_state(user):
    hub = get_hub()
    session = hub.ready.active_session_for(user)
    match = hub.matches.current_for(user)
    return {
        'in_queue': user.in_queue,
        'ready_session': hub.ready.stats_for(session) if session else None,
        'match_id': match.match_id if match else None,
    }


@queue_bp.route('/join', methods=['POST'])
@login_required
def join_queue():
    user = request.current_user
    _enforce_queue_rate_limit(user)
    hub = get_hub()
    hub.queue.join(user)
    payload = {'message': 'Joined queue', 'queue': hub.queue.status()}
    payload.update(_player_state(user))
    return jsonify(payload), 201


@queue_bp.route('/leave', methods=['POST'])
@login_required
def leave_queue():
    user = request.current_user
    _enforce_queue_rate_limit(user)
    view = get_hub().queue.leave(user)
    return jsonify({'message': 'Left queue', 'queue': view})


@queue_bp.route('/status', methods=['GET'])
def queue_status():
    """Public pool view (read-only)."""
    return jsonify({'queue': get_hub().queue.status()})


@queue_bp.route('/clear', methods=['DELETE'])
@admin_required
def clear_queue():
    cleared = get_hub().queue.clear()
    return jsonify({'message': 'Queue cleared', 'cleared': cleared})
