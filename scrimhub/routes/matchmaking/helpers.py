"""Matchmaking routes: shared helpers."""
from flask import request

from scrimhub.errors import RateLimited, SessionNotFound
from scrimhub.services.hub import get_hub


def _json_payload():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _first_value(data, *keys):
    for key in keys:
        value = data.get(key)
        if value not in (None, ''):
            return value
    return None


def _coerce_int(raw_value, default=None):
    try:
        return int(raw_value)
    except (TypeError, ValueError):
        return default


def _enforce_queue_rate_limit(user):
    retry_after = get_hub().rate_limiter.hit(f'queue:{user.id}')
    if retry_after:
        raise RateLimited(retry_after_seconds=retry_after)


def _resolve_session_ref(user, data):
    """Session named in the payload, or the caller's active ready check."""
    session_ref = _first_value(data, 'session_id', 'sessionId')
    if session_ref:
        return str(session_ref).strip()
    session = get_hub().ready.active_session_for(user)
    if session is None:
        raise SessionNotFound('No active ready check for this player')
    return session.session_ref


def _can_report_result(user, match):
    return user.is_admin or match.side_of_captain(user.steam_id) is not None
