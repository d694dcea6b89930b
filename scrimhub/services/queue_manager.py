"""Waiting pool of players and its promotion into a ready check."""
from datetime import timedelta

from scrimhub.app import db
from scrimhub.errors import (
    ActiveMatch, AlreadyQueued, LowTrust, NotQueued, PlayerBanned, QueueFull,
)
from scrimhub.models import PHASE_ACCEPT, PHASE_DRAFT, POOL_OPEN_STATUSES, QueueEntry, QueuePool, User
from scrimhub.services.locks import QUEUE_LOCK


def _renumber(entries):
    for index, entry in enumerate(entries, start=1):
        entry.position = index


def _priority_order(entries):
    """Priority entries first by original join time, then the rest in place."""
    priority = sorted(
        (e for e in entries if e.has_priority),
        key=lambda e: (e.joined_at is None, e.joined_at, e.position or 0),
    )
    regular = sorted((e for e in entries if not e.has_priority), key=lambda e: e.position or 0)
    return priority + regular


class QueueManager:
    def __init__(self, hub):
        self.hub = hub

    @property
    def required_size(self):
        return int(self.hub.setting('QUEUE_SIZE', 10))

    def _ttl_cutoff(self):
        ttl = int(self.hub.setting('QUEUE_TTL_SECONDS', 3600) or 0)
        if ttl <= 0:
            return None
        return self.hub.now() - timedelta(seconds=ttl)

    def _expire_stale_pools(self, cutoff):
        """Complete open pools older than the TTL and release their players (caller commits)."""
        stale = (
            QueuePool.query
            .filter(QueuePool.status.in_(POOL_OPEN_STATUSES), QueuePool.created_at < cutoff)
            .all()
        )
        for pool in stale:
            pool.status = 'completed'
            pool.updated_at = self.hub.now()
            for entry in pool.entries:
                if entry.user is not None:
                    entry.user.in_queue = False
            self.hub.logger.info('Queue pool %s expired with %s players', pool.id, len(pool.entries))
        return len(stale)

    def current_pool(self, create=True):
        cutoff = self._ttl_cutoff()
        query = QueuePool.query.filter(QueuePool.status.in_(POOL_OPEN_STATUSES))
        if cutoff is not None:
            query = query.filter(QueuePool.created_at >= cutoff)
        pool = query.order_by(QueuePool.created_at.desc(), QueuePool.id.desc()).first()
        if pool is None and create:
            if cutoff is not None:
                self._expire_stale_pools(cutoff)
            now = self.hub.now()
            pool = QueuePool(
                status='waiting', required_size=self.required_size,
                created_at=now, updated_at=now,
            )
            db.session.add(pool)
            db.session.flush()
        return pool

    def status(self):
        pool = self.current_pool(create=False)
        if pool is None:
            return {
                'id': None, 'players': [], 'count': 0,
                'required': self.required_size, 'status': 'waiting', 'created_at': None,
            }
        return pool.to_dict()

    def check_eligibility(self, user):
        if user.current_match_id:
            match = user.current_match
            if match is not None and not match.is_terminal:
                raise ActiveMatch(match_id=match.match_id)
            # Stale reference to a finished match.
            user.current_match_id = None
        if user.is_currently_banned(self.hub.now()):
            raise PlayerBanned(
                reason=user.ban_reason,
                banned_until=user.banned_until.isoformat() if user.banned_until else None,
            )
        if (user.trust_score or 0) < int(self.hub.setting('MIN_TRUST_SCORE', 50)):
            raise LowTrust(trust_score=user.trust_score)

    def join(self, user):
        """Add ``user`` to the open pool; promotes the pool when it fills up."""
        with self.hub.locks.transaction(QUEUE_LOCK):
            user = db.session.get(User, user.id)
            self.check_eligibility(user)
            if self.hub.ready.active_session_for(user) is not None:
                raise AlreadyQueued('Already in an active ready check')

            pool = self.current_pool()
            if pool.entry_for(user.id) is not None:
                raise AlreadyQueued()
            if pool.status != 'waiting' or pool.is_full():
                raise QueueFull()

            now = self.hub.now()
            snapshot = user.snapshot()
            entry = QueueEntry(
                user_id=user.id, joined_at=now, position=len(pool.entries) + 1,
                has_priority=False, **snapshot,
            )
            pool.entries.append(entry)
            user.in_queue = True
            pool.updated_at = now
            if pool.is_full():
                pool.status = 'full'
            db.session.commit()

            pool_id = pool.id
            is_full = pool.status == 'full'
            view = pool.to_dict()
            player = entry.to_dict()

        self.hub.logger.info('%s joined the queue (%s/%s)', user.steam_id, view['count'], view['required'])
        self.hub.notifier.queue_player_joined(player, view)
        self.hub.notifier.queue_updated(view)
        if is_full:
            self.hub.notifier.queue_full(view)
            self.on_capacity_reached(pool_id)
        return view

    def leave(self, user):
        with self.hub.locks.transaction(QUEUE_LOCK):
            user = db.session.get(User, user.id)
            pool = self.current_pool(create=False)
            entry = pool.entry_for(user.id) if pool is not None else None
            if entry is None:
                raise NotQueued()

            pool.entries.remove(entry)
            _renumber(pool.entries)
            user.in_queue = False
            pool.updated_at = self.hub.now()
            if pool.status == 'full':
                pool.status = 'waiting'
            db.session.commit()
            view = pool.to_dict()

        self.hub.logger.info('%s left the queue', user.steam_id)
        self.hub.notifier.queue_player_left(user.steam_id, view)
        self.hub.notifier.queue_updated(view)
        return view

    def requeue_with_priority(self, players):
        """Put ready-check acceptors back at the head of the open pool.

        ``players`` are snapshot dicts (``user_id``, ``steam_id``, ``name``,
        ``avatar``, ``joined_at``). When the pool overflows, the first
        ``required_size`` entries stay and the rest move to a fresh pool.
        """
        if not players:
            return self.status()

        with self.hub.locks.transaction(QUEUE_LOCK):
            now = self.hub.now()
            pool = self.current_pool()
            for player in players:
                entry = pool.entry_for(player['user_id'])
                if entry is None:
                    entry = QueueEntry(
                        user_id=player['user_id'], steam_id=player['steam_id'],
                        name=player['name'], avatar=player.get('avatar') or '',
                        joined_at=player.get('joined_at') or now,
                    )
                    pool.entries.append(entry)
                entry.has_priority = True
                user = db.session.get(User, player['user_id'])
                if user is not None:
                    user.in_queue = True

            ordered = _priority_order(pool.entries)
            overflow = ordered[pool.required_size:]
            pool.entries = ordered[:pool.required_size]
            _renumber(pool.entries)
            pool.updated_at = now
            if pool.is_full():
                pool.status = 'full'
            db.session.flush()

            if overflow:
                carry = QueuePool(
                    status='waiting', required_size=self.required_size,
                    created_at=now, updated_at=now,
                )
                # Newest open pool, so later joins land here.
                db.session.add(carry)
                for index, old in enumerate(overflow, start=1):
                    carry.entries.append(QueueEntry(
                        user_id=old.user_id, steam_id=old.steam_id, name=old.name,
                        avatar=old.avatar, joined_at=old.joined_at,
                        position=index, has_priority=old.has_priority,
                    ))
            db.session.commit()
            pool_id = pool.id
            is_full = pool.status == 'full'
            view = pool.to_dict()

        self.hub.logger.info('Requeued %s players with priority', len(players))
        self.hub.notifier.queue_updated(view)
        if is_full:
            self.hub.notifier.queue_full(view)
            self.on_capacity_reached(pool_id)
            return self.status()
        return view

    def on_capacity_reached(self, pool_id):
        """Promote a full pool exactly once; returns the hand-off result or None."""
        with self.hub.locks.transaction(QUEUE_LOCK):
            pool = db.session.get(QueuePool, pool_id)
            if pool is None or pool.status != 'full':
                return None
            pool.status = 'processing'
            pool.updated_at = self.hub.now()
            entries = sorted(pool.entries, key=lambda e: e.position)
            snapshot = [e.snapshot() for e in entries[:pool.required_size]]
            db.session.commit()

        group_ref = f'POOL-{pool_id}'
        self.hub.logger.info('Pool %s is full, handing %s players off', pool_id, len(snapshot))
        try:
            result = self._hand_off(snapshot, group_ref)
        except Exception:
            self.hub.logger.exception('Hand-off for pool %s failed, releasing its players', pool_id)
            db.session.rollback()
            self._release_failed_pool(pool_id)
            raise

        with self.hub.locks.transaction(QUEUE_LOCK):
            pool = db.session.get(QueuePool, pool_id)
            pool.status = 'completed'
            pool.updated_at = self.hub.now()
            db.session.commit()

        self.hub.notifier.queue_updated(self.status())
        return result

    def _release_failed_pool(self, pool_id):
        """Close a pool whose hand-off raised so it cannot block the queue."""
        with self.hub.locks.transaction(QUEUE_LOCK):
            pool = db.session.get(QueuePool, pool_id)
            if pool is None or pool.status == 'completed':
                return
            pool.status = 'completed'
            pool.updated_at = self.hub.now()
            for entry in pool.entries:
                user = entry.user
                if user is not None and user.current_match_id is None:
                    user.in_queue = False
            db.session.commit()
        self.hub.notifier.queue_updated(self.status())

    def _hand_off(self, snapshot, group_ref):
        if self.hub.setting('SKIP_ACCEPT_PHASE'):
            match = self.hub.matches.create_match(snapshot, phase=PHASE_DRAFT)
            self.hub.notifier.match_starting(match.match_id)
            return match
        timeout = int(self.hub.setting('ACCEPT_TIMEOUT_SECONDS', 20))
        if self.hub.setting('MATCH_FIRST_ACCEPT'):
            match = self.hub.matches.create_match(snapshot, phase=PHASE_ACCEPT)
            try:
                return self.hub.ready.start(snapshot, group_ref=group_ref, timeout_seconds=timeout, match=match)
            except Exception:
                db.session.rollback()
                self.hub.matches.cancel_match(match.match_id, reason='ready_check_failed')
                raise
        return self.hub.ready.start(snapshot, group_ref=group_ref, timeout_seconds=timeout)

    def clear(self):
        """Close every open pool and take its players out of the queue."""
        with self.hub.locks.transaction(QUEUE_LOCK):
            pools = QueuePool.query.filter(QueuePool.status.in_(POOL_OPEN_STATUSES)).all()
            cleared = 0
            for pool in pools:
                for entry in pool.entries:
                    if entry.user is not None:
                        entry.user.in_queue = False
                    cleared += 1
                pool.status = 'completed'
                pool.updated_at = self.hub.now()
            db.session.commit()

        self.hub.logger.info('Queue cleared (%s players removed)', cleared)
        self.hub.notifier.queue_updated(self.status())
        return cleared
