"""Tests for the captain draft and map veto."""
import json
from datetime import timedelta

import pytest
from scrimhub.app import db
from scrimhub.config import DEFAULT_MAP_POOL
from scrimhub.errors import (
    InvalidPhase, InvariantViolation, MapUnavailable, NotCaptain, NotYourTurn, PlayerUnavailable,
)
from scrimhub.models import Match, User
from scrimhub.services.draft import build_pick_order, remainder_side
from scrimhub.services.veto import build_veto_order, normalize_map_name


def _users_by_steam(users):
    return {u.steam_id: u for u in users}


def _captain(match, side, users):
    return _users_by_steam(users)[match.captains[side]]


def _run_draft(hub, match, users):
    picks = 0
    while match.phase == 'draft':
        side = match.current_picker
        target = match.undrafted()[0].steam_id
        hub.matches.pick_player(match.match_id, _captain(match, side, users), target)
        picks += 1
    return picks


def test_pick_order_for_ten_players():
    assert build_pick_order(10) == ['alpha', 'alpha', 'beta', 'beta', 'alpha', 'beta', 'alpha', 'beta']


def test_pick_order_for_small_lobbies_alternates():
    assert build_pick_order(4) == ['alpha', 'beta']
    assert build_pick_order(2) == []


def test_remainder_goes_to_smaller_side_and_ties_to_beta():
    assert remainder_side(4, 5) == 'alpha'
    assert remainder_side(5, 4) == 'beta'
    assert remainder_side(5, 5) == 'beta'


def test_veto_order_alternates_starting_with_alpha():
    order = build_veto_order(12)
    assert len(order) == 11
    assert order[:4] == ['alpha', 'beta', 'alpha', 'beta']
    assert order[-1] == 'alpha'
    assert build_veto_order(1) == []


def test_map_names_match_case_insensitively():
    assert normalize_map_name('dust ii', DEFAULT_MAP_POOL) == 'Dust II'
    assert normalize_map_name('Atlantis', DEFAULT_MAP_POOL) is None
    assert normalize_map_name('', DEFAULT_MAP_POOL) is None


def test_draft_fills_both_teams_in_eight_picks(hub, make_users, draft_match, notifier):
    users = make_users(10)
    match = draft_match(users)
    assert match.captain_alpha != match.captain_beta
    assert len(match.undrafted()) == 8

    picks = _run_draft(hub, match, users)

    assert picks == 8
    assert match.phase == 'veto'
    alpha, beta = match.team('alpha'), match.team('beta')
    assert len(alpha) == 5 and len(beta) == 5
    assert set(alpha).isdisjoint(beta)
    assert alpha[0] == match.captain_alpha
    assert beta[0] == match.captain_beta
    assert [p.side for p in match.picks] == build_pick_order(10)
    assert match.current_veto == 'alpha'
    assert len(notifier.payloads('draft-update')) == 8
    assert 'phase-change' in notifier.names()


def test_draft_remainder_assigned_when_pick_order_is_short(hub, make_users, draft_match):
    users = make_users(10)
    match = draft_match(users)
    # Legacy records carried a seven-pick order.
    match.pick_order = build_pick_order(10)[:7]
    db.session.commit()

    picks = _run_draft(hub, match, users)
    assert picks == 7
    assert match.phase == 'veto'
    assert len(match.team('alpha')) == 5
    assert len(match.team('beta')) == 5
    assert match.undrafted() == []


def test_pick_errors(hub, make_users, draft_match):
    users = make_users(10)
    match = draft_match(users)
    alpha_captain = _captain(match, 'alpha', users)
    beta_captain = _captain(match, 'beta', users)
    outsider = next(u for u in users if u.steam_id not in match.captains.values())
    target = match.undrafted()[0].steam_id

    with pytest.raises(NotYourTurn):
        hub.matches.pick_player(match.match_id, beta_captain, target)
    with pytest.raises(NotCaptain):
        hub.matches.pick_player(match.match_id, outsider, target)
    with pytest.raises(PlayerUnavailable):
        hub.matches.pick_player(match.match_id, alpha_captain, match.captain_beta)
    with pytest.raises(PlayerUnavailable):
        hub.matches.pick_player(match.match_id, alpha_captain, 'STEAM_UNKNOWN')

    hub.matches.pick_player(match.match_id, alpha_captain, target)
    with pytest.raises(PlayerUnavailable):
        hub.matches.pick_player(match.match_id, alpha_captain, target)
    assert match.pick_index == 1


def test_veto_leaves_one_map_and_moves_to_ready(hub, make_users, draft_match, provisioner, notifier):
    users = make_users(10)
    match = draft_match(users)
    _run_draft(hub, match, users)

    pool = list(DEFAULT_MAP_POOL)
    for name in pool[:-1]:
        side = match.current_veto
        hub.matches.ban_map(match.match_id, _captain(match, side, users), name)

    assert [b.side for b in match.bans] == build_veto_order(12)
    assert [b.map_name for b in match.bans] == pool[:-1]
    assert match.selected_map == pool[-1]
    assert match.available_maps == [pool[-1]]
    assert match.phase == 'ready'
    assert 'provision:' + match.match_id in hub.scheduler.pending()
    assert len(notifier.payloads('veto-update')) == 11


def test_ban_errors(hub, make_users, draft_match):
    users = make_users(10)
    match = draft_match(users)
    alpha_captain = _captain(match, 'alpha', users)
    beta_captain = _captain(match, 'beta', users)

    with pytest.raises(InvalidPhase):
        hub.matches.ban_map(match.match_id, alpha_captain, 'Mirage')

    _run_draft(hub, match, users)
    with pytest.raises(NotYourTurn):
        hub.matches.ban_map(match.match_id, beta_captain, 'Mirage')
    with pytest.raises(MapUnavailable):
        hub.matches.ban_map(match.match_id, alpha_captain, 'Atlantis')

    hub.matches.ban_map(match.match_id, alpha_captain, 'mirage')
    with pytest.raises(MapUnavailable):
        hub.matches.ban_map(match.match_id, beta_captain, 'Mirage')


def test_pick_and_ban_over_http(client, login, hub):
    headers = {f'STEAM_{i}': login(f'STEAM_{i}') for i in range(1, 11)}
    users = [User.query.filter_by(steam_id=f'STEAM_{i}').first() for i in range(1, 11)]
    snapshots = [dict(u.snapshot(), user_id=u.id) for u in users]
    match = hub.matches.create_match(snapshots)
    match_id = match.match_id

    current = client.get('/api/match/current', headers=headers['STEAM_1'])
    assert json.loads(current.data)['match']['match_id'] == match_id

    for _ in range(8):
        body = json.loads(client.get(f'/api/match/{match_id}', headers=headers['STEAM_1']).data)['match']
        turn = body['current_turn']
        undrafted = [p['steam_id'] for p in body['players'] if p['team'] == 'undrafted']
        res = client.post(
            f'/api/match/{match_id}/pick', json={'steamId': undrafted[0]}, headers=headers[turn['captain']],
        )
        assert res.status_code == 200

    body = json.loads(client.get(f'/api/match/{match_id}', headers=headers['STEAM_1']).data)['match']
    assert body['phase'] == 'veto'
    assert len(body['teams']['alpha']) == 5

    wrong_turn = client.post(
        f'/api/match/{match_id}/ban', json={'mapName': 'Nuke'}, headers=headers[body['captains']['beta']],
    )
    assert wrong_turn.status_code == 403
    assert json.loads(wrong_turn.data)['code'] == 'not_your_turn'

    res = client.post(
        f'/api/match/{match_id}/ban', json={'mapName': 'Nuke'}, headers=headers[body['captains']['alpha']],
    )
    assert res.status_code == 200
    banned = json.loads(res.data)['match']['banned_maps']
    assert banned[0]['map'] == 'Nuke'
    assert banned[0]['banned_by'] == 'alpha'

    missing = client.get('/api/match/MATCH-doesnotexist', headers=headers['STEAM_1'])
    assert missing.status_code == 404
    assert json.loads(missing.data)['code'] == 'match_not_found'


def test_pick_turn_timeout_auto_picks(hub, make_users, draft_match, clock):
    users = make_users(10)
    match = draft_match(users)
    job = 'turn:' + match.match_id
    assert hub.scheduler.due_at(job) == clock.now + timedelta(seconds=60)

    clock.advance(61)
    hub.scheduler.run_due()

    assert match.pick_index == 1
    assert match.picks[0].auto is True
    assert match.current_picker == 'alpha'
    assert hub.scheduler.due_at(job) == clock.now + timedelta(seconds=60)


def test_stale_turn_timer_is_ignored(hub, make_users, draft_match, clock):
    users = make_users(10)
    match = draft_match(users)
    hub.matches.pick_player(match.match_id, _captain(match, 'alpha', users), match.undrafted()[0].steam_id)

    assert hub.matches.handle_turn_timeout(match.match_id, 'draft', 0) is None
    assert match.pick_index == 1


def test_turn_timeouts_can_be_disabled(app, hub, make_users, draft_match):
    app.config['ENFORCE_TURN_TIMEOUTS'] = False
    users = make_users(10)
    match = draft_match(users)
    assert match.turn_deadline is None
    assert 'turn:' + match.match_id not in hub.scheduler.pending()


def test_automated_captains_draft_and_veto_on_their_own(hub, make_users, draft_match):
    bots = make_users(10, prefix='SIM_PLAYER_')
    match = draft_match(bots)

    assert match.phase == 'ready'
    assert len(match.team('alpha')) == 5
    assert len(match.team('beta')) == 5
    assert len(match.bans) == len(DEFAULT_MAP_POOL) - 1
    assert all(p.auto for p in match.picks)
    assert match.selected_map in DEFAULT_MAP_POOL
    assert Match.query.filter_by(phase='ready').count() == 1


def test_single_map_pool_skips_veto_and_selects_that_map(app, hub, make_users, draft_match):
    app.config['MAP_POOL'] = ['Mirage']
    users = make_users(10)
    match = draft_match(users)
    assert match.veto_order == []

    _run_draft(hub, match, users)

    assert match.phase == 'ready'
    assert match.selected_map == 'Mirage'
    assert match.bans == []
    assert f'provision:{match.match_id}' in hub.scheduler.pending()


def test_empty_map_pool_is_rejected(app, make_users, draft_match):
    app.config['MAP_POOL'] = []
    with pytest.raises(InvariantViolation):
        draft_match(make_users(10))
