"""Match lifecycle: accept -> draft -> veto -> ready -> live -> complete.

``cancelled`` is reachable from every non-terminal phase. All transitions run
under the ``match:<match_id>`` lock; notifications are published after the
transition has been committed.
"""
import secrets
import string
from datetime import timedelta

from scrimhub.app import db
from scrimhub.errors import (
    InvalidPhase, InvalidResult, InvariantViolation, MapUnavailable, MatchNotFound,
    NotAParticipant, NotCaptain, NotYourTurn, PlayerUnavailable,
)
from scrimhub.models import (
    PHASE_ACCEPT, PHASE_CANCELLED, PHASE_COMPLETE, PHASE_DRAFT, PHASE_LIVE, PHASE_READY,
    PHASE_VETO, SIDE_ALPHA, SIDE_BETA, UNDRAFTED, Counter, Match, MatchBan, MatchPick,
    MatchPlayer, User,
)
from scrimhub.services.draft import build_pick_order, remainder_side
from scrimhub.services.locks import match_lock_key, retry_on_conflict
from scrimhub.services.veto import build_veto_order, normalize_map_name

RATING_DELTA = 25
_MATCH_ID_ALPHABET = string.ascii_letters + string.digits
_WINNER_ALIASES = {'tie': 'draw'}


def generate_match_id():
    return 'MATCH-' + ''.join(secrets.choice(_MATCH_ID_ALPHABET) for _ in range(10))


def _turn_job(match_id):
    return f'turn:{match_id}'


def _provision_job(match_id):
    return f'provision:{match_id}'


def _teardown_job(match_id):
    return f'teardown:{match_id}'


def _parse_score(raw_value):
    if raw_value is None or raw_value == '':
        return 0
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        raise InvalidResult('Scores must be whole numbers') from None
    if value < 0:
        raise InvalidResult('Scores cannot be negative')
    return value


class MatchEngine:
    def __init__(self, hub):
        self.hub = hub

    # Lookups

    def get(self, match_id):
        match = Match.query.filter_by(match_id=str(match_id or '')).first()
        if match is None:
            raise MatchNotFound(match_id=match_id)
        return match

    def current_for(self, user):
        match = user.current_match
        if match is None or match.is_terminal:
            return None
        return match

    def list_matches(self, phase=None, limit=50):
        query = Match.query
        if phase:
            query = query.filter_by(phase=phase)
        return query.order_by(Match.created_at.desc()).limit(limit).all()

    def server_info(self, match_id, user):
        match = self.get(match_id)
        if match.phase not in (PHASE_LIVE, PHASE_COMPLETE):
            raise InvalidPhase('Server info is available once the match is live', phase=match.phase)
        if match.player_by_user_id(user.id) is None and not user.is_admin:
            raise NotAParticipant(match_id=match.match_id)
        return match.server_info()

    # Creation

    def _select_captains(self, users):
        eligible = [
            u for u in users
            if u.is_captain_eligible and not u.is_currently_banned(self.hub.now())
        ]
        pool = eligible if len(eligible) >= 2 else list(users)
        alpha, beta = self.hub.rng.sample(pool, 2)
        return alpha, beta

    def create_match(self, players, phase=PHASE_DRAFT, session=None):
        """Build a match from player snapshots and commit it.

        ``phase`` is ``draft`` after a successful ready check (or when the
        accept phase is skipped) and ``accept`` when the ready check runs
        against the match itself.
        """
        if phase not in (PHASE_ACCEPT, PHASE_DRAFT):
            raise InvariantViolation(f'Cannot create a match in phase {phase}')
        user_ids = [p['user_id'] for p in players]
        users_by_id = {u.id: u for u in User.query.filter(User.id.in_(user_ids)).all()}
        if len(users_by_id) != len(set(user_ids)) or len(users_by_id) < 2:
            raise InvariantViolation('Match roster references unknown players')

        captain_alpha, captain_beta = self._select_captains([users_by_id[uid] for uid in user_ids])
        now = self.hub.now()
        map_pool = list(self.hub.setting('MAP_POOL') or [])
        if not map_pool:
            raise InvariantViolation('MAP_POOL is empty')
        match = Match(
            match_id=generate_match_id(),
            phase=phase,
            captain_alpha=captain_alpha.steam_id,
            captain_beta=captain_beta.steam_id,
            current_picker=SIDE_ALPHA,
            current_veto=SIDE_ALPHA,
            created_at=now,
            updated_at=now,
        )
        match.pick_order = build_pick_order(len(players))
        match.available_maps = map_pool
        match.veto_order = build_veto_order(len(map_pool))
        if match.pick_order:
            match.current_picker = match.pick_order[0]

        for seat, player in enumerate(players, start=1):
            user = users_by_id[player['user_id']]
            team, slot = UNDRAFTED, None
            if user.id == captain_alpha.id:
                team, slot = SIDE_ALPHA, 1
            elif user.id == captain_beta.id:
                team, slot = SIDE_BETA, 1
            match.players.append(MatchPlayer(
                user_id=user.id, steam_id=player['steam_id'], name=player['name'],
                avatar=player.get('avatar') or '', seat=seat, team=team,
                team_slot=slot, is_captain=slot is not None,
            ))
        db.session.add(match)
        db.session.flush()

        captain_alpha.captain_count = (captain_alpha.captain_count or 0) + 1
        captain_beta.captain_count = (captain_beta.captain_count or 0) + 1
        for user in users_by_id.values():
            user.current_match_id = match.id
            user.in_queue = phase == PHASE_ACCEPT
        if session is not None:
            session.match = match

        events = []
        if phase == PHASE_DRAFT:
            match.draft_started_at = now
            events.extend(self._after_transition(match))
        db.session.commit()

        self.hub.logger.info(
            'Match %s created in %s (captains %s / %s)',
            match.match_id, phase, match.captain_alpha, match.captain_beta,
        )
        self._publish(events)
        return match

    def begin_draft(self, match):
        """Move an ``accept`` match into the draft (caller holds its lock)."""
        if match.phase != PHASE_ACCEPT:
            raise InvalidPhase('Match is not waiting for acceptance', phase=match.phase)
        match.phase = PHASE_DRAFT
        match.draft_started_at = self.hub.now()
        match.updated_at = match.draft_started_at
        for player in match.players:
            if player.user is not None:
                player.user.in_queue = False
        events = [lambda: self.hub.notifier.phase_change(match)]
        events.extend(self._after_transition(match))
        db.session.commit()
        self._publish(events)
        return match

    def abort_for_accept_timeout(self, match):
        """Cancel an ``accept`` match whose ready check timed out (no commit)."""
        self._mark_cancelled(match, 'accept_timeout')

    # Draft

    def pick_player(self, match_id, actor, steam_id):
        with self.hub.locks.transaction(match_lock_key(match_id)):
            match = self.get(match_id)
            if match.phase != PHASE_DRAFT:
                raise InvalidPhase('Match is not in draft phase', phase=match.phase)
            side = match.side_of_captain(actor.steam_id)
            if side is None:
                raise NotCaptain()
            events = self._apply_pick(match, side, steam_id)
            events.extend(self._after_transition(match))
            db.session.commit()
        self._publish(events)
        return match

    def _apply_pick(self, match, side, steam_id, auto=False):
        order = match.pick_order
        if match.pick_index >= len(order):
            raise InvariantViolation('Pick index is past the pick order', pick_index=match.pick_index)
        if side != match.current_picker:
            raise NotYourTurn(current_picker=match.current_picker)
        target = match.player_by_steam_id(steam_id)
        if target is None or target.team != UNDRAFTED:
            raise PlayerUnavailable(steam_id=steam_id)

        now = self.hub.now()
        target.team = side
        target.team_slot = len(match.team(side)) + 1
        pick = MatchPick(
            pick_number=match.pick_index + 1, side=side, steam_id=target.steam_id,
            auto=auto, picked_at=now,
        )
        match.picks.append(pick)
        match.pick_index += 1
        match.updated_at = now
        pick_view = pick.to_dict()
        events = [lambda: self.hub.notifier.draft_update(match, pick_view)]

        if match.pick_index < len(order):
            match.current_picker = order[match.pick_index]
            return events

        remaining = match.undrafted()
        if len(remaining) > 1:
            raise InvariantViolation('Pick order ended with players left undrafted', remaining=len(remaining))
        if remaining:
            leftover = remaining[0]
            leftover.team = remainder_side(len(match.team(SIDE_ALPHA)), len(match.team(SIDE_BETA)))
            leftover.team_slot = len(match.team(leftover.team)) + 1
        events.extend(self._enter_veto(match))
        return events

    # Veto

    def ban_map(self, match_id, actor, map_name):
        with self.hub.locks.transaction(match_lock_key(match_id)):
            match = self.get(match_id)
            if match.phase != PHASE_VETO:
                raise InvalidPhase('Match is not in veto phase', phase=match.phase)
            side = match.side_of_captain(actor.steam_id)
            if side is None:
                raise NotCaptain()
            events = self._apply_ban(match, side, map_name)
            events.extend(self._after_transition(match))
            db.session.commit()
        self._publish(events)
        return match

    def _enter_veto(self, match):
        now = self.hub.now()
        match.phase = PHASE_VETO
        match.veto_started_at = now
        match.veto_index = 0
        events = [lambda: self.hub.notifier.phase_change(match)]
        veto_order = match.veto_order
        if veto_order:
            match.current_veto = veto_order[0]
        elif len(match.available_maps) == 1:
            match.selected_map = match.available_maps[0]
            events.extend(self._enter_ready(match))
        else:
            raise InvariantViolation('Veto order is empty but no single map remains')
        return events

    def _apply_ban(self, match, side, map_name, auto=False):
        order = match.veto_order
        if match.veto_index >= len(order):
            raise InvariantViolation('Veto index is past the veto order', veto_index=match.veto_index)
        if side != match.current_veto:
            raise NotYourTurn(current_veto=match.current_veto)
        available = match.available_maps
        resolved = normalize_map_name(map_name, available)
        if resolved is None:
            raise MapUnavailable(map=map_name)

        now = self.hub.now()
        available.remove(resolved)
        match.available_maps = available
        ban = MatchBan(
            ban_number=match.veto_index + 1, side=side, map_name=resolved,
            auto=auto, banned_at=now,
        )
        match.bans.append(ban)
        match.veto_index += 1
        match.updated_at = now
        ban_view = ban.to_dict()
        events = [lambda: self.hub.notifier.veto_update(match, ban_view)]

        if len(available) == 1:
            match.selected_map = available[0]
            events.extend(self._enter_ready(match))
        elif match.veto_index < len(order):
            match.current_veto = order[match.veto_index]
        else:
            raise InvariantViolation('Veto order ended with several maps left', remaining=len(available))
        return events

    # Turn boundaries

    def _after_transition(self, match):
        """Let automated captains act, then arm the turn timer."""
        events = []
        while match.phase in (PHASE_DRAFT, PHASE_VETO):
            side = match.current_picker if match.phase == PHASE_DRAFT else match.current_veto
            captain = match.captains.get(side)
            if not self.hub.automation.is_automated(captain):
                break
            events.extend(self._auto_act(match, side))
        self._arm_turn_timer(match)
        return events

    def _auto_act(self, match, side):
        if match.phase == PHASE_DRAFT:
            choice = self.hub.automation.choose_pick(match, side)
            if choice is None:
                raise InvariantViolation('No undrafted player left to pick')
            return self._apply_pick(match, side, choice, auto=True)
        choice = self.hub.automation.choose_ban(match, side)
        if choice is None:
            raise InvariantViolation('No map left to ban')
        return self._apply_ban(match, side, choice, auto=True)

    def _arm_turn_timer(self, match):
        job = _turn_job(match.match_id)
        if match.phase not in (PHASE_DRAFT, PHASE_VETO) or not self.hub.setting('ENFORCE_TURN_TIMEOUTS', True):
            match.turn_deadline = None
            self.hub.scheduler.cancel(job)
            return
        if match.phase == PHASE_DRAFT:
            timeout = int(self.hub.setting('PICK_TIMEOUT_SECONDS', 60))
            index = match.pick_index
        else:
            timeout = int(self.hub.setting('BAN_TIMEOUT_SECONDS', 30))
            index = match.veto_index
        match.turn_deadline = self.hub.now() + timedelta(seconds=timeout)
        self.hub.scheduler.schedule(job, timeout, self.handle_turn_timeout, match.match_id, match.phase, index)

    def handle_turn_timeout(self, match_id, phase, index):
        """Turn timer entry point: auto-act if the turn has not moved on."""
        return retry_on_conflict(self._resolve_turn_timeout, match_id, phase, index)

    def _resolve_turn_timeout(self, match_id, phase, index):
        with self.hub.locks.transaction(match_lock_key(match_id)):
            match = Match.query.filter_by(match_id=match_id).first()
            if match is None or match.phase != phase:
                return None
            current_index = match.pick_index if phase == PHASE_DRAFT else match.veto_index
            if current_index != index:
                return None
            now = self.hub.now()
            if match.turn_deadline and now < match.turn_deadline:
                remaining = (match.turn_deadline - now).total_seconds()
                self.hub.scheduler.schedule(
                    _turn_job(match_id), remaining, self.handle_turn_timeout, match_id, phase, index,
                )
                return None

            side = match.current_picker if phase == PHASE_DRAFT else match.current_veto
            self.hub.logger.info('Turn timed out in %s (%s #%s), auto-acting for %s', match_id, phase, index + 1, side)
            events = self._auto_act(match, side)
            events.extend(self._after_transition(match))
            db.session.commit()
        self._publish(events)
        return match

    # Provisioning

    def _enter_ready(self, match):
        now = self.hub.now()
        match.phase = PHASE_READY
        match.ready_started_at = now
        match.turn_deadline = None
        self.hub.scheduler.cancel(_turn_job(match.match_id))
        self.hub.scheduler.schedule(_provision_job(match.match_id), 0, self.handle_provision, match.match_id)
        return [lambda: self.hub.notifier.phase_change(match)]

    def handle_provision(self, match_id):
        """Provision a server for a ``ready`` match, then go live either way."""
        with self.hub.locks.transaction(match_lock_key(match_id)):
            match = Match.query.filter_by(match_id=match_id).first()
            if match is None or match.phase != PHASE_READY:
                return None
            if match.external_match_number is None:
                match.external_match_number = Counter.next_value('match')
            match.provision_requested_at = self.hub.now()
            db.session.commit()

        try:
            result = self.hub.provisioner.provision(match)
        except Exception as exc:
            self.hub.logger.exception('Provisioner crashed for %s', match_id)
            result = {'success': False, 'error': str(exc)}

        with self.hub.locks.transaction(match_lock_key(match_id)):
            match = Match.query.filter_by(match_id=match_id).first()
            if match is None or match.phase != PHASE_READY:
                # Cancelled while the server was booting.
                server_id = (result.get('server_info') or {}).get('server_id')
                if result.get('success') and server_id:
                    self._schedule_teardown(match_id, server_id)
                return None
            success = bool(result.get('success'))
            if success:
                info = result.get('server_info') or {}
                match.server_ip = info.get('ip')
                match.server_port = info.get('port')
                match.server_password = info.get('password')
                match.server_id = info.get('server_id')
                match.connect_string = info.get('connect_string')
                match.provisioning_error = None
            else:
                match.provisioning_error = str(result.get('error') or 'Provisioning failed')
                self.hub.logger.warning(
                    'Provisioning failed for %s: %s; match goes live without a server',
                    match_id, match.provisioning_error,
                )
            match.phase = PHASE_LIVE
            match.live_started_at = self.hub.now()
            match.updated_at = match.live_started_at
            db.session.commit()

        self.hub.notifier.phase_change(match)
        if success:
            self.hub.notifier.server_ready(match)
        return match

    def _schedule_teardown(self, match_id, server_id):
        if server_id:
            self.hub.scheduler.schedule(_teardown_job(match_id), 0, self.handle_teardown, server_id)

    def handle_teardown(self, server_id):
        try:
            self.hub.provisioner.teardown(server_id)
        except Exception as exc:
            self.hub.logger.warning('Teardown of server %s failed: %s', server_id, exc)

    # Terminal transitions

    def _release_players(self, match):
        for player in match.players:
            user = player.user
            if user is None:
                continue
            if user.current_match_id == match.id:
                user.current_match_id = None
            user.in_queue = False

    def complete_match(self, match_id, winner, score_alpha=None, score_beta=None):
        """Record the result; a second call on a completed match is a no-op."""
        winner = _WINNER_ALIASES.get(str(winner or '').strip().lower(), str(winner or '').strip().lower())
        if winner not in (SIDE_ALPHA, SIDE_BETA, 'draw'):
            raise InvalidResult()
        score_alpha = _parse_score(score_alpha)
        score_beta = _parse_score(score_beta)

        with self.hub.locks.transaction(match_lock_key(match_id)):
            match = self.get(match_id)
            if match.phase == PHASE_COMPLETE:
                return match
            if match.phase != PHASE_LIVE:
                raise InvalidPhase('Only live matches can be completed', phase=match.phase)

            now = self.hub.now()
            match.winner = winner
            match.score_alpha = score_alpha
            match.score_beta = score_beta
            match.phase = PHASE_COMPLETE
            match.completed_at = now
            match.updated_at = now
            match.turn_deadline = None
            if not match.stats_applied:
                self._apply_stats(match, winner)
                match.stats_applied = True
            self._release_players(match)
            db.session.commit()
            server_id = match.server_id

        self.hub.logger.info('Match %s complete: %s (%s-%s)', match_id, winner, score_alpha, score_beta)
        self._schedule_teardown(match_id, server_id)
        self.hub.notifier.phase_change(match)
        self.hub.notifier.match_complete(match)
        return match

    def _apply_stats(self, match, winner):
        for player in match.players:
            user = player.user
            if user is None or player.team not in (SIDE_ALPHA, SIDE_BETA):
                continue
            user.matches_played = (user.matches_played or 0) + 1
            if winner == 'draw':
                continue
            if player.team == winner:
                user.wins = (user.wins or 0) + 1
                user.rating = (user.rating or 0) + RATING_DELTA
            else:
                user.losses = (user.losses or 0) + 1
                user.rating = max(0, (user.rating or 0) - RATING_DELTA)

    def _mark_cancelled(self, match, reason):
        now = self.hub.now()
        match.phase = PHASE_CANCELLED
        match.cancel_reason = reason
        match.cancelled_at = now
        match.updated_at = now
        match.turn_deadline = None
        self.hub.scheduler.cancel(_turn_job(match.match_id))
        self.hub.scheduler.cancel(_provision_job(match.match_id))
        self._release_players(match)

    def cancel_match(self, match_id, reason='admin_cancelled'):
        """Cancel a non-terminal match; cancelling a finished match is a no-op."""
        with self.hub.locks.transaction(match_lock_key(match_id)):
            match = self.get(match_id)
            if match.is_terminal:
                return match
            self._mark_cancelled(match, reason)
            session = self.hub.ready.active_session_for_match(match)
            session_ref = None
            if session is not None:
                session_ref = session.session_ref
                self.hub.ready.close_for_cancel(session)
            db.session.commit()
            server_id = match.server_id

        self.hub.logger.info('Match %s cancelled (%s)', match_id, reason)
        self._schedule_teardown(match_id, server_id)
        self.hub.notifier.phase_change(match)
        self.hub.notifier.match_cancelled({
            'session_id': session_ref, 'match_id': match_id, 'reason': reason,
            'non_acceptors': [], 'requeued': [],
        })
        return match

    def delete_match(self, match_id):
        """Administrative removal of a finished match record."""
        with self.hub.locks.transaction(match_lock_key(match_id)):
            match = self.get(match_id)
            if not match.is_terminal:
                raise InvalidPhase('Only completed or cancelled matches can be deleted', phase=match.phase)
            for session in list(match.ready_sessions):
                db.session.delete(session)
            User.query.filter_by(current_match_id=match.id).update(
                {User.current_match_id: None}, synchronize_session=False,
            )
            db.session.delete(match)
            db.session.commit()
        self.hub.locks.forget(match_lock_key(match_id))
        self.hub.logger.info('Match %s deleted', match_id)
        return True

    @staticmethod
    def _publish(events):
        for event in events:
            event()
