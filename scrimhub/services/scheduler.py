"""Keyed deferred jobs (accept deadlines, turn timers, provisioning).

A key names one logical timer, e.g. ``ready:PEND-ab12`` or ``turn:MATCH-x``.
Scheduling a key that already has a pending job replaces that job, so a
session or turn never has two live timers. Handlers must still re-check the
record status because a replaced timer may already be running.
"""
import threading
from datetime import timedelta

from scrimhub.app import db


class ThreadScheduler:
    """Runs jobs on ``threading.Timer`` threads inside an app context."""

    def __init__(self, app):
        self.app = app
        self._lock = threading.Lock()
        self._timers = {}

    def schedule(self, key, delay_seconds, fn, *args):
        timer = threading.Timer(max(0.0, float(delay_seconds)), self._run, args=(key, fn, args))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            self._timers[key] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def cancel(self, key):
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
            return True
        return False

    def pending(self):
        with self._lock:
            return sorted(self._timers)

    def shutdown(self):
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _run(self, key, fn, args):
        with self._lock:
            current = self._timers.get(key)
            if current is threading.current_thread():
                self._timers.pop(key, None)
        with self.app.app_context():
            try:
                fn(*args)
            except Exception:
                db.session.rollback()
                self.app.logger.exception('Deferred job %s failed', key)
            finally:
                db.session.remove()


class ManualScheduler:
    """Deterministic scheduler driven explicitly (used by the test suite)."""

    def __init__(self, clock):
        self._clock = clock
        self._jobs = {}
        self._sequence = 0

    def schedule(self, key, delay_seconds, fn, *args):
        self._sequence += 1
        due_at = self._clock() + timedelta(seconds=max(0.0, float(delay_seconds)))
        self._jobs[key] = (due_at, self._sequence, fn, args)

    def cancel(self, key):
        return self._jobs.pop(key, None) is not None

    def pending(self):
        return sorted(self._jobs)

    def due_at(self, key):
        job = self._jobs.get(key)
        return job[0] if job else None

    def fire(self, key):
        """Run one job now regardless of its due time."""
        job = self._jobs.pop(key, None)
        if job is None:
            return False
        _, _, fn, args = job
        fn(*args)
        return True

    def run_due(self, now=None):
        """Run every job due at ``now``, including jobs scheduled while running."""
        fired = []
        while True:
            cutoff = now or self._clock()
            due = [
                (job[0], job[1], key) for key, job in self._jobs.items()
                if job[0] <= cutoff
            ]
            if not due:
                return fired
            _, _, key = min(due)
            self.fire(key)
            fired.append(key)

    def run_all(self, max_jobs=500):
        fired = []
        while self._jobs and len(fired) < max_jobs:
            key = min(self._jobs, key=lambda k: (self._jobs[k][0], self._jobs[k][1]))
            self.fire(key)
            fired.append(key)
        return fired
