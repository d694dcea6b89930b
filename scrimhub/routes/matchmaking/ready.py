"""Ready-check accept/decline routes."""
from flask import request, jsonify
from scrimhub.auth_utils import login_required
from scrimhub.routes.matchmaking import queue_bp
from scrimhub.routes.matchmaking.helpers import _json_payload, _resolve_session_ref
from scrimhub.services.hub import get_hub


@queue_bp.route('/accept', methods=['POST'])
@login_required
def accept_ready_check():
    user = request.current_user
    session_ref = _resolve_session_ref(user, _json_payload())
    stats = get_hub().ready.accept(session_ref, user.id)
    return jsonify({'ready': stats})


@queue_bp.route('/decline', methods=['POST'])
@login_required
def decline_ready_check():
    user = request.current_user
    session_ref = _resolve_session_ref(user, _json_payload())
    stats = get_hub().ready.decline(session_ref, user.id)
    return jsonify({'ready': stats})


@queue_bp.route('/ready/<session_ref>/accept', methods=['POST'])
@login_required
def accept_ready_session(session_ref):
    stats = get_hub().ready.accept(session_ref, request.current_user.id)
    return jsonify({'ready': stats})


@queue_bp.route('/ready/<session_ref>/status', methods=['GET'])
@login_required
def ready_session_status(session_ref):
    ready = get_hub().ready
    return jsonify({'ready': ready.stats_for(ready.get(session_ref))})


@queue_bp.route('/ready/mine', methods=['GET'])
@login_required
def my_ready_session():
    ready = get_hub().ready
    session = ready.active_session_for(request.current_user)
    return jsonify({'ready': ready.stats_for(session) if session else None})
