"""Tests for app startup helpers, the deferred-job schedulers and keyed locks."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm.exc import StaleDataError
from scrimhub.app import _parse_allowed_origins, create_app
from scrimhub.errors import Conflict
from scrimhub.services.locks import LockRegistry, retry_on_conflict
from scrimhub.services.scheduler import ManualScheduler, ThreadScheduler


def test_parse_allowed_origins():
    assert _parse_allowed_origins('') == '*'
    assert _parse_allowed_origins(' * ') == '*'
    assert _parse_allowed_origins('https://a.example, https://b.example,') == [
        'https://a.example', 'https://b.example',
    ]
    assert _parse_allowed_origins(['https://a.example', '']) == ['https://a.example']


def test_production_refuses_default_secret():
    with pytest.raises(RuntimeError):
        create_app('production')


def test_testing_app_uses_manual_scheduler(hub):
    assert isinstance(hub.scheduler, ManualScheduler)


def test_manual_scheduler_runs_due_jobs_in_order():
    now = [datetime(2026, 1, 1, 12, 0, 0)]
    scheduler = ManualScheduler(lambda: now[0])
    ran = []
    scheduler.schedule('b', 10, ran.append, 'b')
    scheduler.schedule('a', 5, ran.append, 'a')
    scheduler.schedule('c', 30, ran.append, 'c')
    scheduler.schedule('c', 60, ran.append, 'c-late')

    assert scheduler.run_due() == []
    now[0] += timedelta(seconds=30)
    assert scheduler.run_due() == ['a', 'b']
    assert ran == ['a', 'b']
    assert scheduler.due_at('c') == datetime(2026, 1, 1, 12, 1, 0)
    assert scheduler.cancel('c') is True
    assert scheduler.cancel('c') is False
    assert scheduler.pending() == []

    scheduler.schedule('later', 3600, ran.append, 'later')
    scheduler.schedule('sooner', 60, ran.append, 'sooner')
    assert scheduler.run_all() == ['sooner', 'later']


def test_thread_scheduler_replaces_and_cancels_jobs(app):
    scheduler = ThreadScheduler(app)
    scheduler.schedule('ready:PEND-1', 300, print)
    scheduler.schedule('ready:PEND-1', 300, print)
    scheduler.schedule('turn:MATCH-1', 300, print)
    assert scheduler.pending() == ['ready:PEND-1', 'turn:MATCH-1']

    assert scheduler.cancel('ready:PEND-1') is True
    assert scheduler.pending() == ['turn:MATCH-1']
    scheduler.shutdown()
    assert scheduler.pending() == []


def test_lock_transaction_translates_stale_writes(app):
    locks = LockRegistry()
    with pytest.raises(Conflict):
        with locks.transaction('match:MATCH-1'):
            raise StaleDataError('version mismatch')

    # Re-entrant for the same key.
    with locks.transaction('queue'):
        with locks.transaction('queue'):
            pass


def test_retry_on_conflict(app):
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise Conflict()
        return 'done'

    assert retry_on_conflict(flaky) == 'done'
    assert len(attempts) == 3

    attempts.clear()
    with pytest.raises(Conflict):
        retry_on_conflict(flaky, attempts=2)
