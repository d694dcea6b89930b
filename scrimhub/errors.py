"""Matchmaking error taxonomy.

Every rejected operation carries a stable ``code`` so clients can tell
"not your turn" from "match not found" from "expired" without parsing the
human readable message.
"""


class MatchmakingError(Exception):
    """Base class for rejected matchmaking operations."""

    code = 'matchmaking_error'
    status_code = 400
    default_message = 'Operation rejected'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        payload.update(self.details)
        return payload


# Queue

class AlreadyQueued(MatchmakingError):
    code = 'already_queued'
    status_code = 409
    default_message = 'Already in queue'


class QueueFull(MatchmakingError):
    code = 'queue_full'
    status_code = 409
    default_message = 'Queue is full'


class NotQueued(MatchmakingError):
    code = 'not_queued'
    default_message = 'Not in queue'


class ActiveMatch(MatchmakingError):
    code = 'active_match'
    status_code = 409
    default_message = 'Active match in progress'


class PlayerBanned(MatchmakingError):
    code = 'player_banned'
    status_code = 403
    default_message = 'Player is banned from matchmaking'


class LowTrust(MatchmakingError):
    code = 'low_trust'
    status_code = 403
    default_message = 'Trust score too low to queue'


class RateLimited(MatchmakingError):
    code = 'rate_limited'
    status_code = 429
    default_message = 'Too many requests. Please slow down.'


# Ready/accept

class SessionNotFound(MatchmakingError):
    code = 'session_not_found'
    status_code = 404
    default_message = 'Ready session not found or no longer active'


class NotAParticipant(MatchmakingError):
    code = 'not_a_participant'
    status_code = 403
    default_message = 'Player is not part of this match'


class SessionExpired(MatchmakingError):
    code = 'session_expired'
    status_code = 410
    default_message = 'Accept phase has expired'


class AlreadyDeclined(MatchmakingError):
    code = 'already_declined'
    status_code = 409
    default_message = 'Player already declined'


# Match

class MatchNotFound(MatchmakingError):
    code = 'match_not_found'
    status_code = 404
    default_message = 'Match not found'


class InvalidPhase(MatchmakingError):
    code = 'invalid_phase'
    status_code = 409
    default_message = 'Match is not in the required phase'


class NotCaptain(MatchmakingError):
    code = 'not_captain'
    status_code = 403
    default_message = 'Only captains can perform this action'


class NotYourTurn(MatchmakingError):
    code = 'not_your_turn'
    status_code = 403
    default_message = 'Not your turn'


class PlayerUnavailable(MatchmakingError):
    code = 'player_unavailable'
    default_message = 'Player not found or already drafted'


class MapUnavailable(MatchmakingError):
    code = 'map_unavailable'
    default_message = 'Map not available or already banned'


class InvalidResult(MatchmakingError):
    code = 'invalid_result'
    default_message = 'Valid winner required (alpha, beta, or draw)'


class Conflict(MatchmakingError):
    code = 'conflict'
    status_code = 409
    default_message = 'Match was updated concurrently, retry the request'


class InvariantViolation(MatchmakingError):
    code = 'invariant_violation'
    status_code = 500
    default_message = 'Match state is inconsistent'
