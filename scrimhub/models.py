import json
from scrimhub.app import db
from scrimhub.time_utils import utcnow_naive, isoformat_or_none

SIDE_ALPHA = 'alpha'
SIDE_BETA = 'beta'
UNDRAFTED = 'undrafted'

PHASE_ACCEPT = 'accept'
PHASE_DRAFT = 'draft'
PHASE_VETO = 'veto'
PHASE_READY = 'ready'
PHASE_LIVE = 'live'
PHASE_COMPLETE = 'complete'
PHASE_CANCELLED = 'cancelled'
TERMINAL_PHASES = {PHASE_COMPLETE, PHASE_CANCELLED}

POOL_OPEN_STATUSES = ('waiting', 'full')


def _safe_json(raw_value, fallback=None):
    if fallback is None:
        fallback = []
    if not raw_value:
        return fallback
    try:
        return json.loads(raw_value)
    except (TypeError, ValueError):
        return fallback


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    steam_id = db.Column(db.String(64), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    avatar = db.Column(db.String(500), default='')
    profile_url = db.Column(db.String(500), default='')
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    # Trust & eligibility
    trust_score = db.Column(db.Integer, default=100, nullable=False)
    is_captain_eligible = db.Column(db.Boolean, default=True, nullable=False)
    is_banned = db.Column(db.Boolean, default=False, nullable=False)
    ban_reason = db.Column(db.String(255), nullable=True)
    banned_until = db.Column(db.DateTime, nullable=True)  # null = permanent
    # Stats
    matches_played = db.Column(db.Integer, default=0, nullable=False)
    wins = db.Column(db.Integer, default=0, nullable=False)
    losses = db.Column(db.Integer, default=0, nullable=False)
    rating = db.Column(db.Integer, default=1000, nullable=False)
    captain_count = db.Column(db.Integer, default=0, nullable=False)
    # Current status
    current_match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=True)
    in_queue = db.Column(db.Boolean, default=False, nullable=False)
    last_login = db.Column(db.DateTime, default=lambda: utcnow_naive())
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.Index('ix_user_in_queue', 'in_queue'),
        db.Index('ix_user_current_match', 'current_match_id'),
    )

    current_match = db.relationship('Match', foreign_keys=[current_match_id])

    def is_currently_banned(self, now=None):
        if not self.is_banned:
            return False
        if self.banned_until is None:
            return True
        return (now or utcnow_naive()) < self.banned_until

    @property
    def win_rate(self):
        if not self.matches_played:
            return 0
        return round((self.wins / self.matches_played) * 100, 2)

    def snapshot(self):
        """Immutable player reference copied into queue and match records."""
        return {'steam_id': self.steam_id, 'name': self.name, 'avatar': self.avatar or ''}

    def to_dict(self):
        return {
            'id': self.id, 'steam_id': self.steam_id, 'name': self.name,
            'avatar': self.avatar, 'profile_url': self.profile_url,
            'is_admin': self.is_admin, 'trust_score': self.trust_score,
            'is_captain_eligible': self.is_captain_eligible,
            'is_banned': self.is_banned,
            'stats': {
                'matches_played': self.matches_played, 'wins': self.wins,
                'losses': self.losses, 'rating': self.rating,
                'captain_count': self.captain_count, 'win_rate': self.win_rate,
            },
            'current_match_id': self.current_match.match_id if self.current_match else None,
            'in_queue': self.in_queue,
            'created_at': isoformat_or_none(self.created_at),
        }


class QueuePool(db.Model):
    """The waiting room of not-yet-matched players."""
    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(20), default='waiting', nullable=False)
    # waiting, accept_phase, full, processing, completed
    required_size = db.Column(db.Integer, default=10, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    version = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.Index('ix_queue_pool_status_created', 'status', 'created_at'),
    )
    __mapper_args__ = {'version_id_col': version}

    entries = db.relationship(
        'QueueEntry',
        backref='pool',
        order_by='QueueEntry.position',
        cascade='all, delete-orphan',
    )

    def is_full(self):
        return len(self.entries) >= self.required_size

    def entry_for(self, user_id):
        return next((e for e in self.entries if e.user_id == user_id), None)

    def to_dict(self):
        players = [e.to_dict() for e in self.entries]
        return {
            'id': self.id,
            'players': players,
            'count': len(players),
            'required': self.required_size,
            'status': self.status,
            'created_at': isoformat_or_none(self.created_at),
        }


class QueueEntry(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    pool_id = db.Column(db.Integer, db.ForeignKey('queue_pool.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    steam_id = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    avatar = db.Column(db.String(500), default='')
    joined_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    position = db.Column(db.Integer, nullable=False)
    has_priority = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('pool_id', 'user_id', name='uq_queue_entry_pool_user'),
    )

    user = db.relationship('User')

    def snapshot(self):
        return {
            'user_id': self.user_id, 'steam_id': self.steam_id,
            'name': self.name, 'avatar': self.avatar or '',
            'joined_at': self.joined_at,
        }

    def to_dict(self):
        return {
            'steam_id': self.steam_id, 'name': self.name, 'avatar': self.avatar,
            'position': self.position, 'has_priority': self.has_priority,
            'joined_at': isoformat_or_none(self.joined_at),
        }


class ReadySession(db.Model):
    """Bounded-time accept round for a fixed roster."""
    id = db.Column(db.Integer, primary_key=True)
    session_ref = db.Column(db.String(40), unique=True, nullable=False)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=True)
    group_ref = db.Column(db.String(40), nullable=True)
    status = db.Column(db.String(20), default='active', nullable=False)
    # active, completed, timeout, cancelled
    timeout_seconds = db.Column(db.Integer, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    resolved_at = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.Index('ix_ready_session_status_expires', 'status', 'expires_at'),
    )
    __mapper_args__ = {'version_id_col': version}

    match = db.relationship('Match', backref=db.backref('ready_sessions', lazy='select'))
    players = db.relationship(
        'ReadySessionPlayer',
        backref='session',
        order_by='ReadySessionPlayer.seat',
        cascade='all, delete-orphan',
    )

    def player_for(self, user_id):
        return next((p for p in self.players if p.user_id == user_id), None)

    def all_accepted(self):
        return bool(self.players) and all(p.accepted for p in self.players)

    def acceptors(self):
        return [p for p in self.players if p.accepted]

    def non_acceptors(self):
        return [p for p in self.players if not p.accepted]

    def to_dict(self):
        return {
            'session_id': self.session_ref,
            'match_id': self.match.match_id if self.match else None,
            'group_ref': self.group_ref,
            'status': self.status,
            'expires_at': isoformat_or_none(self.expires_at),
            'players': [p.to_dict() for p in self.players],
            'created_at': isoformat_or_none(self.created_at),
        }


class ReadySessionPlayer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('ready_session.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    steam_id = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    avatar = db.Column(db.String(500), default='')
    seat = db.Column(db.Integer, nullable=False)
    joined_at = db.Column(db.DateTime, nullable=True)  # original queue join time
    accepted = db.Column(db.Boolean, default=False, nullable=False)
    accepted_at = db.Column(db.DateTime, nullable=True)
    declined = db.Column(db.Boolean, default=False, nullable=False)
    declined_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.UniqueConstraint('session_id', 'user_id', name='uq_ready_session_player'),
    )

    user = db.relationship('User')

    def snapshot(self):
        return {
            'user_id': self.user_id, 'steam_id': self.steam_id,
            'name': self.name, 'avatar': self.avatar or '',
            'joined_at': self.joined_at,
        }

    def to_dict(self):
        return {
            'steam_id': self.steam_id, 'name': self.name,
            'accepted': self.accepted, 'declined': self.declined,
            'accepted_at': isoformat_or_none(self.accepted_at),
        }


class Match(db.Model):
    """A 5v5 match moving through accept, draft, veto, ready, live."""
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.String(32), unique=True, nullable=False)
    phase = db.Column(db.String(20), default=PHASE_DRAFT, nullable=False)
    captain_alpha = db.Column(db.String(64), nullable=False)
    captain_beta = db.Column(db.String(64), nullable=False)
    # Draft
    pick_order_json = db.Column(db.Text, default='[]')
    current_picker = db.Column(db.String(10), default=SIDE_ALPHA)
    pick_index = db.Column(db.Integer, default=0, nullable=False)
    # Veto
    available_maps_json = db.Column(db.Text, default='[]')
    selected_map = db.Column(db.String(80), nullable=True)
    veto_order_json = db.Column(db.Text, default='[]')
    current_veto = db.Column(db.String(10), default=SIDE_ALPHA)
    veto_index = db.Column(db.Integer, default=0, nullable=False)
    turn_deadline = db.Column(db.DateTime, nullable=True)
    # Server
    external_match_number = db.Column(db.Integer, nullable=True)
    server_ip = db.Column(db.String(120), nullable=True)
    server_port = db.Column(db.Integer, nullable=True)
    server_password = db.Column(db.String(120), nullable=True)
    server_id = db.Column(db.String(120), nullable=True)
    connect_string = db.Column(db.String(255), nullable=True)
    provisioning_error = db.Column(db.Text, nullable=True)
    provision_requested_at = db.Column(db.DateTime, nullable=True)
    # Result
    winner = db.Column(db.String(10), nullable=True)  # alpha, beta, draw
    score_alpha = db.Column(db.Integer, default=0, nullable=False)
    score_beta = db.Column(db.Integer, default=0, nullable=False)
    stats_applied = db.Column(db.Boolean, default=False, nullable=False)
    cancel_reason = db.Column(db.String(40), nullable=True)
    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    draft_started_at = db.Column(db.DateTime, nullable=True)
    veto_started_at = db.Column(db.DateTime, nullable=True)
    ready_started_at = db.Column(db.DateTime, nullable=True)
    live_started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.Index('ix_match_phase', 'phase'),
        db.Index('ix_match_created_at', 'created_at'),
    )
    __mapper_args__ = {'version_id_col': version}

    players = db.relationship(
        'MatchPlayer', backref='match', order_by='MatchPlayer.seat',
        cascade='all, delete-orphan',
    )
    picks = db.relationship(
        'MatchPick', backref='match', order_by='MatchPick.pick_number',
        cascade='all, delete-orphan',
    )
    bans = db.relationship(
        'MatchBan', backref='match', order_by='MatchBan.ban_number',
        cascade='all, delete-orphan',
    )

    @property
    def pick_order(self):
        return _safe_json(self.pick_order_json)

    @pick_order.setter
    def pick_order(self, value):
        self.pick_order_json = json.dumps(list(value))

    @property
    def available_maps(self):
        return _safe_json(self.available_maps_json)

    @available_maps.setter
    def available_maps(self, value):
        self.available_maps_json = json.dumps(list(value))

    @property
    def veto_order(self):
        return _safe_json(self.veto_order_json)

    @veto_order.setter
    def veto_order(self, value):
        self.veto_order_json = json.dumps(list(value))

    @property
    def is_terminal(self):
        return self.phase in TERMINAL_PHASES

    @property
    def captains(self):
        return {SIDE_ALPHA: self.captain_alpha, SIDE_BETA: self.captain_beta}

    def side_of_captain(self, steam_id):
        if steam_id == self.captain_alpha:
            return SIDE_ALPHA
        if steam_id == self.captain_beta:
            return SIDE_BETA
        return None

    def player_by_steam_id(self, steam_id):
        return next((p for p in self.players if p.steam_id == steam_id), None)

    def player_by_user_id(self, user_id):
        return next((p for p in self.players if p.user_id == user_id), None)

    def team(self, side):
        members = [p for p in self.players if p.team == side]
        members.sort(key=lambda p: (p.team_slot is None, p.team_slot or 0))
        return [p.steam_id for p in members]

    def undrafted(self):
        return [p for p in self.players if p.team == UNDRAFTED]

    @property
    def teams(self):
        return {SIDE_ALPHA: self.team(SIDE_ALPHA), SIDE_BETA: self.team(SIDE_BETA)}

    def current_turn(self):
        if self.phase == PHASE_DRAFT:
            return {
                'phase': PHASE_DRAFT, 'side': self.current_picker,
                'captain': self.captains.get(self.current_picker),
                'pick_number': self.pick_index + 1,
                'total_picks': len(self.pick_order),
                'deadline': isoformat_or_none(self.turn_deadline),
            }
        if self.phase == PHASE_VETO:
            return {
                'phase': PHASE_VETO, 'side': self.current_veto,
                'captain': self.captains.get(self.current_veto),
                'ban_number': self.veto_index + 1,
                'total_bans': len(self.veto_order),
                'deadline': isoformat_or_none(self.turn_deadline),
            }
        return None

    def server_info(self):
        return {
            'ip': self.server_ip, 'port': self.server_port,
            'password': self.server_password, 'server_id': self.server_id,
            'connect_string': self.connect_string,
            'external_match_number': self.external_match_number,
            'error': self.provisioning_error,
        }

    def result(self):
        return {
            'winner': self.winner,
            'score': {SIDE_ALPHA: self.score_alpha, SIDE_BETA: self.score_beta},
        }

    def to_dict(self):
        return {
            'match_id': self.match_id,
            'phase': self.phase,
            'players': [p.to_dict() for p in self.players],
            'captains': self.captains,
            'teams': self.teams,
            'pick_order': self.pick_order,
            'current_picker': self.current_picker,
            'pick_index': self.pick_index,
            'pick_history': [p.to_dict() for p in self.picks],
            'available_maps': self.available_maps,
            'banned_maps': [b.to_dict() for b in self.bans],
            'selected_map': self.selected_map,
            'veto_order': self.veto_order,
            'current_veto': self.current_veto,
            'veto_index': self.veto_index,
            'current_turn': self.current_turn(),
            'server_info': self.server_info(),
            'result': self.result(),
            'cancel_reason': self.cancel_reason,
            'created_at': isoformat_or_none(self.created_at),
            'draft_started_at': isoformat_or_none(self.draft_started_at),
            'veto_started_at': isoformat_or_none(self.veto_started_at),
            'live_started_at': isoformat_or_none(self.live_started_at),
            'completed_at': isoformat_or_none(self.completed_at),
        }


class MatchPlayer(db.Model):
    """Player snapshot inside a match with its team assignment."""
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    steam_id = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    avatar = db.Column(db.String(500), default='')
    seat = db.Column(db.Integer, nullable=False)
    team = db.Column(db.String(10), default=UNDRAFTED, nullable=False)
    team_slot = db.Column(db.Integer, nullable=True)
    is_captain = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('match_id', 'user_id', name='uq_match_player'),
        db.Index('ix_match_player_steam_id', 'steam_id'),
    )

    user = db.relationship('User')

    def to_dict(self):
        return {
            'steam_id': self.steam_id, 'name': self.name, 'avatar': self.avatar,
            'team': self.team, 'is_captain': self.is_captain,
        }


class MatchPick(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=False)
    pick_number = db.Column(db.Integer, nullable=False)
    side = db.Column(db.String(10), nullable=False)
    steam_id = db.Column(db.String(64), nullable=False)
    auto = db.Column(db.Boolean, default=False, nullable=False)
    picked_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {
            'captain': self.side, 'steam_id': self.steam_id,
            'pick_number': self.pick_number, 'auto': self.auto,
            'picked_at': isoformat_or_none(self.picked_at),
        }


class MatchBan(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=False)
    ban_number = db.Column(db.Integer, nullable=False)
    side = db.Column(db.String(10), nullable=False)
    map_name = db.Column(db.String(80), nullable=False)
    auto = db.Column(db.Boolean, default=False, nullable=False)
    banned_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {
            'map': self.map_name, 'banned_by': self.side,
            'ban_number': self.ban_number, 'auto': self.auto,
            'banned_at': isoformat_or_none(self.banned_at),
        }


class Counter(db.Model):
    """Monotonic named counters (external match numbers for game servers)."""
    name = db.Column(db.String(40), primary_key=True)
    value = db.Column(db.Integer, default=0, nullable=False)

    @classmethod
    def next_value(cls, name):
        updated = cls.query.filter_by(name=name).update(
            {cls.value: cls.value + 1}, synchronize_session=False,
        )
        if not updated:
            db.session.add(cls(name=name, value=1))
            db.session.flush()
            return 1
        db.session.flush()
        return db.session.query(cls.value).filter_by(name=name).scalar()
