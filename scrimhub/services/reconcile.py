"""Cleanup sweep for state left behind by restarts or lost timers."""
from datetime import timedelta

from scrimhub.app import db
from scrimhub.models import POOL_OPEN_STATUSES, Match, QueueEntry, QueuePool, ReadySession, ReadySessionPlayer, User
from scrimhub.services.locks import QUEUE_LOCK


class Reconciler:
    def __init__(self, hub):
        self.hub = hub

    def reconcile(self):
        summary = {
            'expired_pools': self._expire_pools(),
            'resolved_sessions': self._resolve_expired_sessions(),
            'cleared_match_refs': self._clear_stale_match_refs(),
            'cleared_queue_flags': self._clear_stale_queue_flags(),
        }
        self.hub.logger.info('Reconcile summary: %s', summary)
        return summary

    def _expire_pools(self):
        ttl = int(self.hub.setting('QUEUE_TTL_SECONDS', 3600))
        cutoff = self.hub.now() - timedelta(seconds=ttl)
        with self.hub.locks.transaction(QUEUE_LOCK):
            stale = (
                QueuePool.query
                .filter(QueuePool.status != 'completed', QueuePool.created_at < cutoff)
                .all()
            )
            for pool in stale:
                pool.status = 'completed'
                pool.updated_at = self.hub.now()
            db.session.commit()
        return len(stale)

    def _resolve_expired_sessions(self):
        refs = [
            ref for (ref,) in db.session.query(ReadySession.session_ref)
            .filter(ReadySession.status == 'active', ReadySession.expires_at <= self.hub.now())
            .all()
        ]
        for ref in refs:
            self.hub.ready.handle_deadline(ref)
        return len(refs)

    def _clear_stale_match_refs(self):
        cleared = 0
        users = User.query.filter(User.current_match_id.isnot(None)).all()
        for user in users:
            match = db.session.get(Match, user.current_match_id)
            if match is None or match.is_terminal:
                user.current_match_id = None
                cleared += 1
        db.session.commit()
        return cleared

    def _clear_stale_queue_flags(self):
        open_pool_users = {
            user_id for (user_id,) in db.session.query(QueueEntry.user_id)
            .join(QueuePool, QueueEntry.pool_id == QueuePool.id)
            .filter(QueuePool.status.in_(POOL_OPEN_STATUSES))
            .all()
        }
        session_users = {
            user_id for (user_id,) in db.session.query(ReadySessionPlayer.user_id)
            .join(ReadySession, ReadySessionPlayer.session_id == ReadySession.id)
            .filter(ReadySession.status == 'active')
            .all()
        }
        keep = open_pool_users | session_users
        cleared = 0
        for user in User.query.filter_by(in_queue=True).all():
            if user.id not in keep:
                user.in_queue = False
                cleared += 1
        db.session.commit()
        return cleared
