"""Player identity routes.

Steam OpenID login lives in front of this service; in development and tests
players sign in through ``/dev-login`` with a steam id of their choosing.
"""
from flask import Blueprint, request, jsonify, current_app
from scrimhub.app import db
from scrimhub.models import User
from scrimhub.auth_utils import configured_admin_steam_ids, generate_token, login_required
from scrimhub.time_utils import utcnow_naive

auth_bp = Blueprint('auth', __name__)
_MAX_NAME_LENGTH = 120


@auth_bp.route('/dev-login', methods=['POST'])
def dev_login():
    if not current_app.config.get('ALLOW_DEV_LOGIN'):
        return jsonify({'error': 'Not found'}), 404

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400
    steam_id = str(data.get('steam_id') or data.get('steamId') or '').strip()
    if not steam_id:
        return jsonify({'error': 'Steam ID required'}), 400
    name = str(data.get('name') or steam_id).strip()[:_MAX_NAME_LENGTH]
    avatar = str(data.get('avatar') or '').strip()

    user = User.query.filter_by(steam_id=steam_id).first()
    created = user is None
    if created:
        user = User(steam_id=steam_id, name=name, avatar=avatar)
        db.session.add(user)
    else:
        user.name = name
        if avatar:
            user.avatar = avatar
    if steam_id in configured_admin_steam_ids():
        user.is_admin = True
    user.last_login = utcnow_naive()
    db.session.commit()

    token = generate_token(user)
    return jsonify({'token': token, 'user': user.to_dict()}), 201 if created else 200


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'user': request.current_user.to_dict()})
