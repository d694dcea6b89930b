"""Administrative match routes."""
from flask import request, jsonify
from scrimhub.auth_utils import admin_required
from scrimhub.routes.matchmaking import match_bp
from scrimhub.routes.matchmaking.helpers import _coerce_int
from scrimhub.services.hub import get_hub


@match_bp.route('/admin/all', methods=['GET'])
@admin_required
def list_all_matches():
    phase = str(request.args.get('phase') or '').strip().lower() or None
    limit = min(max(_coerce_int(request.args.get('limit'), 50), 1), 200)
    matches = get_hub().matches.list_matches(phase=phase, limit=limit)
    return jsonify({'matches': [m.to_dict() for m in matches]})


@match_bp.route('/admin/<match_id>', methods=['DELETE'])
@admin_required
def delete_match(match_id):
    get_hub().matches.delete_match(match_id)
    return jsonify({'message': 'Match deleted', 'match_id': match_id})


@match_bp.route('/admin/reconcile', methods=['POST'])
@admin_required
def reconcile():
    summary = get_hub().reconciler.reconcile()
    return jsonify({'summary': summary})
