"""Bounded-time ready check.

A session holds a fixed roster of ``QUEUE_SIZE`` players. It completes the
moment the last player accepts, or times out at ``expires_at``: acceptors go
back to the queue with priority and everyone else is dropped. A session can
be attached to a match created in the ``accept`` phase; success then moves
that match to ``draft`` and a timeout cancels it.
"""
import secrets
from datetime import timedelta

from scrimhub.app import db
from scrimhub.errors import (
    AlreadyDeclined, InvariantViolation, NotAParticipant, SessionExpired, SessionNotFound,
)
from scrimhub.models import ReadySession, ReadySessionPlayer, User
from scrimhub.services.locks import match_lock_key, ready_lock_key, retry_on_conflict
from scrimhub.time_utils import seconds_until

ACTIVE = 'active'
COMPLETED = 'completed'
TIMEOUT = 'timeout'
CANCELLED = 'cancelled'


def _new_session_ref():
    return f'PEND-{secrets.token_hex(6)}'


def _deadline_job(session_ref):
    return f'ready:{session_ref}'


class ReadyCoordinator:
    def __init__(self, hub):
        self.hub = hub

    # Lookups

    def _lock_key(self, session):
        if session.match is not None:
            return match_lock_key(session.match.match_id)
        return ready_lock_key(session.session_ref)

    def _load(self, session_ref):
        return ReadySession.query.filter_by(session_ref=session_ref).first()

    def _require(self, session_ref):
        session = self._load(session_ref)
        if session is None:
            raise SessionNotFound(session_id=session_ref)
        return session

    def get(self, session_ref):
        return self._require(session_ref)

    def active_session_for(self, user):
        return (
            ReadySession.query
            .join(ReadySessionPlayer, ReadySessionPlayer.session_id == ReadySession.id)
            .filter(ReadySession.status == ACTIVE, ReadySessionPlayer.user_id == user.id)
            .order_by(ReadySession.created_at.desc())
            .first()
        )

    def active_session_for_match(self, match):
        return (
            ReadySession.query
            .filter_by(match_id=match.id, status=ACTIVE)
            .first()
        )

    def latest_session_for_match(self, match):
        return (
            ReadySession.query
            .filter_by(match_id=match.id)
            .order_by(ReadySession.created_at.desc(), ReadySession.id.desc())
            .first()
        )

    def stats_for(self, session):
        stats = session.to_dict()
        stats.update({
            'accepted_count': len(session.acceptors()),
            'required_count': len(session.players),
            'declined': [p.steam_id for p in session.players if p.declined],
            'seconds_remaining': seconds_until(session.expires_at, self.hub.now())
            if session.status == ACTIVE else 0,
        })
        return stats

    def check_all_accepted(self, session_ref):
        return self._require(session_ref).all_accepted()

    # Lifecycle

    def start(self, players, group_ref=None, timeout_seconds=None, match=None):
        """Open a ready check for exactly ``QUEUE_SIZE`` distinct players."""
        required = int(self.hub.setting('QUEUE_SIZE', 10))
        user_ids = {p['user_id'] for p in players}
        if len(players) != required or len(user_ids) != required:
            raise InvariantViolation(
                f'A ready check needs exactly {required} distinct players',
                player_count=len(players),
            )
        if timeout_seconds is None:
            timeout_seconds = int(self.hub.setting('ACCEPT_TIMEOUT_SECONDS', 20))

        now = self.hub.now()
        session = ReadySession(
            session_ref=_new_session_ref(),
            match=match,
            group_ref=group_ref,
            status=ACTIVE,
            timeout_seconds=timeout_seconds,
            expires_at=now + timedelta(seconds=timeout_seconds),
            created_at=now,
            updated_at=now,
        )
        for seat, player in enumerate(players, start=1):
            session.players.append(ReadySessionPlayer(
                user_id=player['user_id'], steam_id=player['steam_id'],
                name=player['name'], avatar=player.get('avatar') or '',
                seat=seat, joined_at=player.get('joined_at'),
            ))
        db.session.add(session)
        User.query.filter(User.id.in_(user_ids)).update(
            {User.in_queue: True}, synchronize_session=False,
        )
        db.session.commit()

        session_ref = session.session_ref
        self.hub.scheduler.schedule(_deadline_job(session_ref), timeout_seconds, self.handle_deadline, session_ref)
        self.hub.logger.info(
            'Ready check %s started for %s players (%ss)', session_ref, required, timeout_seconds,
        )
        self.hub.notifier.match_ready(self.stats_for(session))

        for player in players:
            if self.hub.automation.is_automated(player['steam_id']):
                self.accept(session_ref, player['user_id'])
        return self._load(session_ref)

    def accept(self, session_ref, user_id):
        """Record an accept. A repeated accept returns the same stats."""
        session = self._require(session_ref)
        with self.hub.locks.transaction(self._lock_key(session)):
            session = self._require(session_ref)
            player = session.player_for(user_id)
            if player is None:
                raise NotAParticipant(session_id=session_ref)
            if player.accepted:
                return dict(self.stats_for(session), already_accepted=True)
            if session.status == TIMEOUT:
                raise SessionExpired(session_id=session_ref)
            if session.status != ACTIVE:
                raise SessionNotFound(session_id=session_ref)
            if self.hub.now() >= session.expires_at:
                raise SessionExpired(session_id=session_ref)
            if player.declined:
                raise AlreadyDeclined(session_id=session_ref)

            player.accepted = True
            player.accepted_at = self.hub.now()
            session.updated_at = player.accepted_at
            db.session.commit()

            stats = self.stats_for(session)
            self.hub.notifier.player_accepted(stats, player.steam_id)
            if session.all_accepted():
                self._complete(session)
                stats = self.stats_for(session)
        return dict(stats, already_accepted=False)

    def decline(self, session_ref, user_id):
        """Record a decline. The session still runs to its deadline."""
        session = self._require(session_ref)
        with self.hub.locks.transaction(self._lock_key(session)):
            session = self._require(session_ref)
            player = session.player_for(user_id)
            if player is None:
                raise NotAParticipant(session_id=session_ref)
            if player.declined or player.accepted:
                return dict(self.stats_for(session), already_responded=True)
            if session.status == TIMEOUT:
                raise SessionExpired(session_id=session_ref)
            if session.status != ACTIVE:
                raise SessionNotFound(session_id=session_ref)

            player.declined = True
            player.declined_at = self.hub.now()
            session.updated_at = player.declined_at
            db.session.commit()
            stats = self.stats_for(session)

        self.hub.logger.info('%s declined ready check %s', player.steam_id, session_ref)
        self.hub.notifier.player_declined(stats, player.steam_id)
        return dict(stats, already_responded=False)

    def handle_deadline(self, session_ref):
        """Deadline timer entry point; safe to run more than once."""
        return retry_on_conflict(self._resolve_deadline, session_ref)

    def _resolve_deadline(self, session_ref):
        session = self._load(session_ref)
        if session is None or session.status != ACTIVE:
            return None
        with self.hub.locks.transaction(self._lock_key(session)):
            session = self._load(session_ref)
            if session is None or session.status != ACTIVE:
                return None
            remaining = (session.expires_at - self.hub.now()).total_seconds()
            if remaining > 0:
                self.hub.scheduler.schedule(
                    _deadline_job(session_ref), remaining, self.handle_deadline, session_ref,
                )
                return None
            if session.all_accepted():
                self._complete(session)
                return self.stats_for(session)
            return self._timeout(session)

    def cancel(self, session_ref, reason='cancelled'):
        """Administrative cancel: nobody is requeued."""
        session = self._require(session_ref)
        with self.hub.locks.transaction(self._lock_key(session)):
            session = self._require(session_ref)
            if session.status != ACTIVE:
                return self.stats_for(session)
            if session.match is not None and not session.match.is_terminal:
                # Cancelling the match also closes this session.
                self.hub.matches.cancel_match(session.match.match_id, reason=reason)
                return self.stats_for(self._require(session_ref))
            self.close_for_cancel(session)
            db.session.commit()
            stats = self.stats_for(session)

        self.hub.notifier.match_cancelled({
            'session_id': session_ref, 'match_id': None, 'reason': reason,
            'non_acceptors': [], 'requeued': [],
        })
        return stats

    def close_for_cancel(self, session):
        """Mark ``session`` cancelled and release its players (caller commits)."""
        session.status = CANCELLED
        session.resolved_at = self.hub.now()
        session.updated_at = session.resolved_at
        for player in session.players:
            if player.user is not None:
                player.user.in_queue = False
        self.hub.scheduler.cancel(_deadline_job(session.session_ref))

    # Resolution (caller holds the session lock)

    def _complete(self, session):
        if session.status != ACTIVE:
            return None
        session.status = COMPLETED
        session.resolved_at = self.hub.now()
        session.updated_at = session.resolved_at
        self.hub.scheduler.cancel(_deadline_job(session.session_ref))

        if session.match is not None:
            match = self.hub.matches.begin_draft(session.match)
        else:
            match = self.hub.matches.create_match(
                [p.snapshot() for p in session.players], session=session,
            )
        self.hub.logger.info('Ready check %s complete, match %s', session.session_ref, match.match_id)
        self.hub.notifier.ready_complete(session.session_ref, match.match_id)
        return match

    def _timeout(self, session):
        session.status = TIMEOUT
        session.resolved_at = self.hub.now()
        session.updated_at = session.resolved_at
        acceptors = [p.snapshot() for p in session.acceptors()]
        non_acceptors = session.non_acceptors()
        for player in non_acceptors:
            if player.user is not None:
                player.user.in_queue = False

        match_id = None
        if session.match is not None:
            match_id = session.match.match_id
            self.hub.matches.abort_for_accept_timeout(session.match)
        db.session.commit()

        self.hub.logger.info(
            'Ready check %s timed out: %s accepted, %s dropped',
            session.session_ref, len(acceptors), len(non_acceptors),
        )
        result = {
            'session_id': session.session_ref,
            'match_id': match_id,
            'reason': 'accept_timeout',
            'non_acceptors': [p.steam_id for p in non_acceptors],
            'requeued': [p['steam_id'] for p in acceptors],
        }
        # Notify before requeueing: a requeue may fill the pool and start a new check.
        self.hub.notifier.match_cancelled(result)
        self.hub.queue.requeue_with_priority(acceptors)
        return result
