from datetime import datetime, timedelta, timezone
from functools import wraps
from flask import request, jsonify, current_app
import jwt
from scrimhub.app import db
from scrimhub.models import User


def generate_token(user):
    """Issue a bearer token carrying the player's id and steam id."""
    payload = {
        'user_id': user.id,
        'steam_id': user.steam_id,
        'exp': datetime.now(timezone.utc) + timedelta(
            hours=current_app.config.get('JWT_EXPIRATION_HOURS', 24)
        ),
    }
    return jwt.encode(payload, current_app.config['SECRET_KEY'], algorithm='HS256')


def _strip_bearer(raw_token):
    token = str(raw_token or '').strip()
    if token.lower().startswith('bearer '):
        token = token.split(' ', 1)[1].strip()
    return token


def resolve_token(raw_token):
    """Return ``(user, error)`` for a raw header/query/socket token value."""
    token = _strip_bearer(raw_token)
    if not token:
        return None, 'Authentication required'
    try:
        payload = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        return None, 'Token expired'
    except jwt.InvalidTokenError:
        return None, 'Invalid token'

    user = db.session.get(User, payload.get('user_id'))
    if not user or user.steam_id != payload.get('steam_id'):
        return None, 'User not found'
    return user, None


def get_user_from_token(token):
    user, _ = resolve_token(token)
    return user


def configured_admin_steam_ids():
    raw_value = current_app.config.get('ADMIN_STEAM_IDS', '')
    return {item.strip() for item in str(raw_value or '').split(',') if item.strip()}


def login_required(f):
    """Reject the request with 401 unless a valid bearer token is sent."""
    @wraps(f)
    def decorated(*args, **kwargs):
        user, error = resolve_token(request.headers.get('Authorization', ''))
        if error:
            return jsonify({'error': error}), 401
        request.current_user = user
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not request.current_user.is_admin:
            return jsonify({'error': 'Admin access required'}), 403
        return f(*args, **kwargs)
    return decorated
