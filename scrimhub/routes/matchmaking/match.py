"""Match routes: accept phase, draft picks, map bans, result and cancel."""
from flask import request, jsonify
from scrimhub.auth_utils import admin_required, login_required
from scrimhub.errors import InvalidPhase, NotCaptain, PlayerUnavailable, MapUnavailable, SessionNotFound
from scrimhub.models import PHASE_ACCEPT
from scrimhub.routes.matchmaking import match_bp
from scrimhub.routes.matchmaking.helpers import _can_report_result, _first_value, _json_payload
from scrimhub.services.hub import get_hub


@match_bp.route('/current', methods=['GET'])
@login_required
def current_match():
    match = get_hub().matches.current_for(request.current_user)
    return jsonify({'match': match.to_dict() if match else None})


@match_bp.route('/<match_id>', methods=['GET'])
@login_required
def get_match(match_id):
    match = get_hub().matches.get(match_id)
    return jsonify({'match': match.to_dict()})


@match_bp.route('/<match_id>/accept', methods=['POST'])
@login_required
def accept_match(match_id):
    hub = get_hub()
    match = hub.matches.get(match_id)
    if match.phase != PHASE_ACCEPT:
        raise InvalidPhase('Match is not in accept phase', phase=match.phase)
    session = hub.ready.active_session_for_match(match)
    if session is None:
        raise SessionNotFound(match_id=match.match_id)
    stats = hub.ready.accept(session.session_ref, request.current_user.id)
    return jsonify({'ready': stats})


@match_bp.route('/<match_id>/accept/status', methods=['GET'])
@login_required
def match_accept_status(match_id):
    hub = get_hub()
    match = hub.matches.get(match_id)
    session = hub.ready.latest_session_for_match(match)
    if session is None:
        raise SessionNotFound(match_id=match.match_id)
    return jsonify({'ready': hub.ready.stats_for(session)})


@match_bp.route('/<match_id>/pick', methods=['POST'])
@login_required
def pick_player(match_id):
    data = _json_payload()
    steam_id = _first_value(data, 'steam_id', 'steamId', 'player_id', 'playerId')
    if not steam_id:
        raise PlayerUnavailable('Player steam id required')
    match = get_hub().matches.pick_player(match_id, request.current_user, str(steam_id).strip())
    return jsonify({'match': match.to_dict()})


@match_bp.route('/<match_id>/ban', methods=['POST'])
@login_required
def ban_map(match_id):
    data = _json_payload()
    map_name = _first_value(data, 'map_name', 'mapName', 'map')
    if not map_name:
        raise MapUnavailable('Map name required')
    match = get_hub().matches.ban_map(match_id, request.current_user, map_name)
    return jsonify({'match': match.to_dict()})


@match_bp.route('/<match_id>/complete', methods=['POST'])
@login_required
def complete_match(match_id):
    hub = get_hub()
    match = hub.matches.get(match_id)
    if not _can_report_result(request.current_user, match):
        raise NotCaptain('Only captains or admins can report results')
    data = _json_payload()
    match = hub.matches.complete_match(
        match_id,
        data.get('winner'),
        _first_value(data, 'score_alpha', 'scoreAlpha'),
        _first_value(data, 'score_beta', 'scoreBeta'),
    )
    return jsonify({'match': match.to_dict()})


@match_bp.route('/<match_id>/cancel', methods=['POST'])
@admin_required
def cancel_match(match_id):
    data = _json_payload()
    reason = str(data.get('reason') or 'admin_cancelled').strip()[:40]
    match = get_hub().matches.cancel_match(match_id, reason=reason)
    return jsonify({'match': match.to_dict()})


@match_bp.route('/<match_id>/server', methods=['GET'])
@login_required
def match_server(match_id):
    info = get_hub().matches.server_info(match_id, request.current_user)
    return jsonify({'server_info': info})
