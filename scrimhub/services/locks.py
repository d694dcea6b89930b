"""In-process keyed locks for matchmaking transitions.

Every phase-bearing operation runs while holding the lock for the record it
mutates: ``match:<match_id>`` for matches (and ready sessions attached to a
match), ``ready:<session_ref>`` for standalone ready sessions and ``queue``
for the waiting pool. When two are needed the ready/match lock is always
taken before the queue lock.

The row ``version`` columns catch writers in other processes; a stale write
surfaces as :class:`scrimhub.errors.Conflict`.
"""
import threading
from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from scrimhub.app import db
from scrimhub.errors import Conflict

QUEUE_LOCK = 'queue'


def match_lock_key(match_id):
    return f'match:{match_id}'


def ready_lock_key(session_ref):
    return f'ready:{session_ref}'


class LockRegistry:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}
        self._local = threading.local()

    def _lock_for(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys):
        """Acquire the locks for ``keys`` in the order given."""
        acquired = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    @contextmanager
    def transaction(self, *keys):
        """Hold ``keys`` and translate optimistic-lock failures into Conflict."""
        with self.hold(*keys):
            depth = getattr(self._local, 'depth', 0)
            if depth == 0:
                # Outermost holder: drop cached rows so the transition sees
                # what the previous holder committed.
                db.session.expire_all()
            self._local.depth = depth + 1
            try:
                yield
            except StaleDataError as exc:
                db.session.rollback()
                raise Conflict() from exc
            finally:
                self._local.depth = depth

    def forget(self, key):
        with self._guard:
            self._locks.pop(key, None)


def retry_on_conflict(fn, *args, attempts=3, **kwargs):
    """Run a timer-driven handler, retrying when another writer won the race."""
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except Conflict:
            db.session.rollback()
            if attempt == attempts:
                raise
    return None
