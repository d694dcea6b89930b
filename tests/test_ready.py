"""Tests for the ready check: accept, decline, completion and timeout."""
import json
from datetime import timedelta

import pytest
from scrimhub.app import db
from scrimhub.errors import (
    AlreadyDeclined, InvariantViolation, NotAParticipant, SessionExpired, SessionNotFound,
)
from scrimhub.models import Match, User


def test_tenth_join_opens_session_and_all_accepts_create_draft(hub, make_users, clock, notifier):
    users = make_users(10)
    for user in users[:9]:
        hub.queue.join(user)
    assert hub.ready.active_session_for(users[0]) is None

    hub.queue.join(users[9])
    session = hub.ready.active_session_for(users[0])
    assert session is not None
    assert {p.user_id for p in session.players} == {u.id for u in users}
    assert session.expires_at == clock.now + timedelta(seconds=20)
    assert 'ready:' + session.session_ref in hub.scheduler.pending()

    session_ref = session.session_ref
    for user in users:
        stats = hub.ready.accept(session_ref, user.id)

    assert stats['status'] == 'completed'
    assert stats['accepted_count'] == 10
    match = Match.query.filter_by(match_id=stats['match_id']).first()
    assert match.phase == 'draft'
    assert match.pick_order == ['alpha', 'alpha', 'beta', 'beta', 'alpha', 'beta', 'alpha', 'beta']
    assert match.current_picker == 'alpha'
    assert 'ready:' + session_ref not in hub.scheduler.pending()

    for user in users:
        refreshed = db.session.get(User, user.id)
        assert refreshed.current_match_id == match.id
        assert refreshed.in_queue is False

    complete_events = notifier.payloads('match:ready:complete')
    assert complete_events and complete_events[0]['match_id'] == match.match_id
    assert notifier.payloads('match-starting', room='queue')


def test_accept_twice_returns_same_stats(hub, make_users, fill_queue):
    users = make_users(10)
    session = fill_queue(users)

    first = hub.ready.accept(session.session_ref, users[0].id)
    second = hub.ready.accept(session.session_ref, users[0].id)
    assert first['accepted_count'] == second['accepted_count'] == 1
    assert first['already_accepted'] is False
    assert second['already_accepted'] is True


def test_accept_rejects_unknown_session_and_outsiders(hub, make_users, fill_queue):
    users = make_users(11)
    session = fill_queue(users[:10])

    with pytest.raises(SessionNotFound):
        hub.ready.accept('PEND-missing', users[0].id)
    with pytest.raises(NotAParticipant):
        hub.ready.accept(session.session_ref, users[10].id)


def test_accept_after_deadline_is_expired(hub, make_users, fill_queue, clock):
    users = make_users(10)
    session = fill_queue(users)
    clock.advance(21)

    with pytest.raises(SessionExpired):
        hub.ready.accept(session.session_ref, users[0].id)


def test_declined_player_cannot_accept_later(hub, make_users, fill_queue, notifier):
    users = make_users(10)
    session = fill_queue(users)

    first = hub.ready.decline(session.session_ref, users[4].id)
    again = hub.ready.decline(session.session_ref, users[4].id)
    assert first['declined'] == ['STEAM_5']
    assert again['already_responded'] is True
    assert notifier.payloads('player-declined')

    with pytest.raises(AlreadyDeclined):
        hub.ready.accept(session.session_ref, users[4].id)
    # A decline does not end the session early.
    assert hub.ready.get(session.session_ref).status == 'active'


def test_check_all_accepted_is_a_pure_read(hub, make_users, fill_queue):
    users = make_users(10)
    session = fill_queue(users)
    for user in users[:9]:
        hub.ready.accept(session.session_ref, user.id)

    assert hub.ready.check_all_accepted(session.session_ref) is False
    assert hub.ready.get(session.session_ref).status == 'active'


def test_timeout_requeues_acceptors_with_priority_and_drops_the_rest(hub, make_users, fill_queue, clock, notifier):
    users = make_users(10)
    session = fill_queue(users)
    session_ref = session.session_ref
    for user in users[:7]:
        hub.ready.accept(session_ref, user.id)
        clock.advance(1)
    hub.ready.decline(session_ref, users[7].id)

    late = make_users(2, prefix='LATE_')
    for user in late:
        hub.queue.join(user)

    clock.advance(20)
    fired = hub.scheduler.run_due()
    assert 'ready:' + session_ref in fired

    resolved = hub.ready.get(session_ref)
    assert resolved.status == 'timeout'
    acceptors = {p.steam_id for p in resolved.acceptors()}
    dropped = {p.steam_id for p in resolved.non_acceptors()}
    assert acceptors | dropped == {u.steam_id for u in users}
    assert acceptors & dropped == set()
    assert dropped == {'STEAM_8', 'STEAM_9', 'STEAM_10'}

    queue = hub.queue.status()
    steam_ids = [p['steam_id'] for p in queue['players']]
    assert steam_ids == [f'STEAM_{i}' for i in range(1, 8)] + ['LATE_1', 'LATE_2']
    assert [p['has_priority'] for p in queue['players']] == [True] * 7 + [False] * 2
    for user in users[7:]:
        refreshed = db.session.get(User, user.id)
        assert refreshed.in_queue is False
        assert refreshed.current_match_id is None

    cancelled = notifier.payloads('match-cancelled', room='queue')
    assert cancelled[-1]['non_acceptors'] == ['STEAM_8', 'STEAM_9', 'STEAM_10']
    assert Match.query.count() == 0


def test_deadline_after_completion_is_a_noop(hub, make_users, fill_queue):
    users = make_users(10)
    session = fill_queue(users)
    for user in users:
        hub.ready.accept(session.session_ref, user.id)

    assert hub.ready.handle_deadline(session.session_ref) is None
    assert hub.ready.get(session.session_ref).status == 'completed'
    assert Match.query.count() == 1


def test_early_deadline_fire_is_rescheduled(hub, make_users, fill_queue, clock):
    users = make_users(10)
    session = fill_queue(users)
    clock.advance(5)

    assert hub.scheduler.fire('ready:' + session.session_ref)
    assert hub.ready.get(session.session_ref).status == 'active'
    assert hub.scheduler.due_at('ready:' + session.session_ref) == session.expires_at


def test_automated_players_accept_immediately(hub, make_users, fill_queue):
    humans = make_users(3)
    bots = make_users(7, prefix='SIM_PLAYER_')
    session = fill_queue(humans + bots)

    stats = hub.ready.stats_for(session)
    assert stats['accepted_count'] == 7
    for user in humans:
        stats = hub.ready.accept(session.session_ref, user.id)
    assert stats['status'] == 'completed'


def test_start_requires_full_distinct_roster(hub, make_users):
    users = make_users(9)
    snapshots = [dict(u.snapshot(), user_id=u.id) for u in users]
    with pytest.raises(InvariantViolation):
        hub.ready.start(snapshots)
    with pytest.raises(InvariantViolation):
        hub.ready.start(snapshots + [snapshots[0]])


def test_cancel_releases_players_without_requeue(hub, make_users, fill_queue, notifier):
    users = make_users(10)
    session = fill_queue(users)

    stats = hub.ready.cancel(session.session_ref)
    assert stats['status'] == 'cancelled'
    assert User.query.filter_by(in_queue=True).count() == 0
    assert hub.queue.status()['count'] == 0
    assert notifier.payloads('match-cancelled')


def test_accept_endpoints(client, login, hub, make_users):
    headers = [login(f'STEAM_{i}') for i in range(1, 11)]
    for header in headers:
        assert client.post('/api/queue/join', headers=header).status_code == 201

    mine = client.get('/api/queue/ready/mine', headers=headers[0])
    ready = json.loads(mine.data)['ready']
    assert ready['required_count'] == 10
    session_ref = ready['session_id']

    by_body = client.post('/api/queue/accept', json={'sessionId': session_ref}, headers=headers[0])
    assert by_body.status_code == 200
    assert json.loads(by_body.data)['ready']['accepted_count'] == 1

    implicit = client.post('/api/queue/accept', headers=headers[1])
    assert json.loads(implicit.data)['ready']['accepted_count'] == 2

    by_path = client.post(f'/api/queue/ready/{session_ref}/accept', headers=headers[2])
    assert json.loads(by_path.data)['ready']['accepted_count'] == 3

    declined = client.post('/api/queue/decline', headers=headers[3])
    assert json.loads(declined.data)['ready']['declined'] == ['STEAM_4']

    status = client.get(f'/api/queue/ready/{session_ref}/status', headers=headers[0])
    assert json.loads(status.data)['ready']['seconds_remaining'] <= 20

    outsider = login('STEAM_OUTSIDER')
    res = client.post(f'/api/queue/ready/{session_ref}/accept', headers=outsider)
    assert res.status_code == 403
    assert json.loads(res.data)['code'] == 'not_a_participant'

    missing = client.post('/api/queue/accept', headers=outsider)
    assert missing.status_code == 404
    assert json.loads(missing.data)['code'] == 'session_not_found'
