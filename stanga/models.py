from .app import db
from flask_login import UserMixin
from datetime import datetime
from sqlalchemy import UniqueConstraint
from werkzeug.security import generate_password_hash, check_password_hash
import json
import secrets

from .validation import merge_rules

# no 0/O or 1/I to keep codes readable aloud
INVITE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
INVITE_CODE_LENGTH = 6
INVITE_CODE_ATTEMPTS = 10


def generate_invite_code():
    return ''.join(secrets.choice(INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def unique_invite_code(session, attempts=INVITE_CODE_ATTEMPTS, generator=generate_invite_code):
    """Return an invite code not used by any group, or ``None`` after ``attempts`` collisions."""
    for _ in range(attempts):
        code = generator()
        if not session.query(Group.id).filter_by(invite_code=code).first():
            return code
    return None


def _iso(value):
    return value.isoformat() if value else None


def _loads(raw, default):
    try:
        return json.loads(raw) if raw else default
    except (TypeError, ValueError):
        return default


class AuditMixin:
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    # plain ids, the actor may live in another session/bind
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def audit_dict(self):
        return {
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'created_by': self.created_by,
            'updated_by': self.updated_by,
            'deleted_at': _iso(self.deleted_at),
        }


class User(db.Model, UserMixin, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.Text, nullable=True)
    full_name = db.Column(db.String(100), nullable=True)
    avatar_url = db.Column(db.String(500), nullable=True)
    gender = db.Column(db.String(20), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, default=True)
    is_admin = db.Column(db.Boolean, default=False)

    def set_password(self, pw):
        self.password_hash = generate_password_hash(pw)

    def check_password(self, pw):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, pw)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'full_name': self.full_name,
            'avatar_url': self.avatar_url,
            'gender': self.gender,
            'date_of_birth': _iso(self.date_of_birth),
            'is_active': bool(self.is_active),
            'is_admin': bool(self.is_admin),
            **self.audit_dict(),
        }


class Group(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    invite_code = db.Column(db.String(6), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    avatar_url = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'invite_code': self.invite_code,
            'description': self.description,
            'avatar_url': self.avatar_url,
            'is_active': bool(self.is_active),
            **self.audit_dict(),
        }


class GroupMember(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('group.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='member')
    is_active = db.Column(db.Boolean, default=True)

    group = db.relationship(
        'Group',
        backref=db.backref('memberships', cascade='all, delete-orphan')
    )
    user = db.relationship(
        'User',
        backref=db.backref('memberships', cascade='all, delete-orphan')
    )

    __table_args__ = (UniqueConstraint('group_id', 'user_id', name='_group_user_uc'),)

    def to_dict(self):
        data = {
            'id': self.id,
            'group_id': self.group_id,
            'user_id': self.user_id,
            'role': self.role,
            'is_active': bool(self.is_active),
            **self.audit_dict(),
        }
        if self.user:
            data['user'] = {
                'id': self.user.id,
                'email': self.user.email,
                'full_name': self.user.full_name,
                'avatar_url': self.user.avatar_url,
            }
        return data


class Player(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('group.id'), nullable=True)
    # set once a registered user claims this roster entry
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, default=True)

    group = db.relationship('Group', backref=db.backref('players', lazy='dynamic'))
    user = db.relationship('User')

    @property
    def is_live(self):
        return bool(self.is_active) and self.deleted_at is None

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'user_id': self.user_id,
            'name': self.name,
            'is_active': bool(self.is_active),
            **self.audit_dict(),
        }


class Matchday(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('group.id'), nullable=True)
    name = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    scheduled_at = db.Column(db.DateTime, nullable=False)
    location = db.Column(db.String(200), nullable=True)
    number_of_teams = db.Column(db.Integer, nullable=False, default=3)
    status = db.Column(db.String(20), nullable=False, default='upcoming')
    # rules snapshot stored as JSON, see validation.DEFAULT_RULES
    rules = db.Column(db.Text, nullable=False, default='{}')
    is_public = db.Column(db.Boolean, default=True)

    group = db.relationship('Group', backref=db.backref('matchdays', lazy='dynamic'))

    def rules_dict(self):
        return merge_rules(_loads(self.rules, {}))

    def display_name(self):
        from .teams import matchday_display_name
        return matchday_display_name(self.scheduled_at, self.location)

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'name': self.name,
            'display_name': self.display_name(),
            'description': self.description,
            'scheduled_at': _iso(self.scheduled_at),
            'location': self.location,
            'number_of_teams': self.number_of_teams,
            'team_size': self.rules_dict()['team_size'],
            'status': self.status,
            'rules': self.rules_dict(),
            'is_public': bool(self.is_public),
            **self.audit_dict(),
        }


class Team(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    matchday_id = db.Column(db.Integer, db.ForeignKey('matchday.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    color_token = db.Column(db.String(20), nullable=False)
    color_hex = db.Column(db.String(7), nullable=False)
    formation = db.Column('formation_json', db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True)

    matchday = db.relationship(
        'Matchday',
        backref=db.backref('teams', cascade='all, delete-orphan')
    )

    @property
    def is_live(self):
        return bool(self.is_active) and self.deleted_at is None

    def formation_dict(self):
        return _loads(self.formation, None)

    def live_assignments(self):
        rows = [a for a in self.assignments if a.is_live]
        return sorted(rows, key=lambda a: (a.position_order or 0, a.id))

    def to_dict(self, with_assignments=False):
        data = {
            'id': self.id,
            'matchday_id': self.matchday_id,
            'name': self.name,
            'color_token': self.color_token,
            'color_hex': self.color_hex,
            'formation': self.formation_dict(),
            'is_active': bool(self.is_active),
            **self.audit_dict(),
        }
        if with_assignments:
            assignments = [a.to_dict(with_player=True) for a in self.live_assignments()
                           if a.player and a.player.is_live]
            data['assignments'] = assignments
            data['player_count'] = len(assignments)
        return data


class TeamAssignment(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    matchday_id = db.Column(db.Integer, db.ForeignKey('matchday.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    position = db.Column(db.String(30), nullable=True)
    position_order = db.Column(db.Integer, nullable=True)
    x_pct = db.Column(db.Float, nullable=True)
    y_pct = db.Column(db.Float, nullable=True)
    is_active = db.Column(db.Boolean, default=True)

    team = db.relationship(
        'Team',
        backref=db.backref('assignments', cascade='all, delete-orphan')
    )
    player = db.relationship('Player')
    matchday = db.relationship('Matchday')

    @property
    def is_live(self):
        return bool(self.is_active) and self.deleted_at is None

    def to_dict(self, with_player=False):
        data = {
            'id': self.id,
            'matchday_id': self.matchday_id,
            'team_id': self.team_id,
            'player_id': self.player_id,
            'position': self.position,
            'position_order': self.position_order,
            'x_pct': self.x_pct,
            'y_pct': self.y_pct,
            'is_active': bool(self.is_active),
            **self.audit_dict(),
        }
        if with_player and self.player:
            data['player'] = self.player.to_dict()
        return data


class Game(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    matchday_id = db.Column(db.Integer, db.ForeignKey('matchday.id'), nullable=False)
    home_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    away_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')
    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)
    duration = db.Column(db.Integer, nullable=True)  # minutes
    home_score = db.Column(db.Integer, default=0)
    away_score = db.Column(db.Integer, default=0)
    winner_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True)
    end_reason = db.Column(db.String(20), nullable=True)
    max_goals = db.Column(db.Integer, nullable=True)
    queue_position = db.Column(db.Integer, nullable=True)

    matchday = db.relationship(
        'Matchday',
        backref=db.backref('games', cascade='all, delete-orphan')
    )
    home_team = db.relationship('Team', foreign_keys=[home_team_id])
    away_team = db.relationship('Team', foreign_keys=[away_team_id])
    winner_team = db.relationship('Team', foreign_keys=[winner_team_id])

    def team_ids(self):
        return (self.home_team_id, self.away_team_id)

    def to_dict(self, with_teams=False):
        data = {
            'id': self.id,
            'matchday_id': self.matchday_id,
            'home_team_id': self.home_team_id,
            'away_team_id': self.away_team_id,
            'status': self.status,
            'started_at': _iso(self.started_at),
            'ended_at': _iso(self.ended_at),
            'duration': self.duration,
            'home_score': self.home_score or 0,
            'away_score': self.away_score or 0,
            'winner_team_id': self.winner_team_id,
            'end_reason': self.end_reason,
            'max_goals': self.max_goals,
            'queue_position': self.queue_position,
            **self.audit_dict(),
        }
        if with_teams:
            data['home_team'] = self.home_team.to_dict() if self.home_team else None
            data['away_team'] = self.away_team.to_dict() if self.away_team else None
        return data


class GameEvent(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    event_type = db.Column(db.String(20), nullable=False)
    minute = db.Column(db.Integer, nullable=True)
    description = db.Column(db.Text, nullable=True)
    # ``metadata`` is reserved on declarative models
    details = db.Column('metadata', db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True)

    game = db.relationship(
        'Game',
        backref=db.backref('events', cascade='all, delete-orphan')
    )
    player = db.relationship('Player')
    team = db.relationship('Team')

    def metadata_dict(self):
        return _loads(self.details, {})

    def to_dict(self, with_player=False):
        data = {
            'id': self.id,
            'game_id': self.game_id,
            'player_id': self.player_id,
            'team_id': self.team_id,
            'event_type': self.event_type,
            'minute': self.minute,
            'description': self.description,
            'metadata': self.metadata_dict(),
            'is_active': bool(self.is_active),
            **self.audit_dict(),
        }
        if with_player and self.player:
            data['player'] = {'id': self.player.id, 'name': self.player.name}
        return data


class PenaltyShootout(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), unique=True, nullable=False)
    home_team_score = db.Column(db.Integer, default=0)
    away_team_score = db.Column(db.Integer, default=0)
    winner_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='active')

    game = db.relationship(
        'Game',
        backref=db.backref('shootout', uselist=False, cascade='all, delete-orphan')
    )

    def ordered_kicks(self):
        return sorted(self.kicks, key=lambda k: k.kick_order)

    def to_dict(self, with_kicks=False):
        data = {
            'id': self.id,
            'game_id': self.game_id,
            'home_team_score': self.home_team_score or 0,
            'away_team_score': self.away_team_score or 0,
            'winner_team_id': self.winner_team_id,
            'status': self.status,
            **self.audit_dict(),
        }
        if with_kicks:
            data['kicks'] = [k.to_dict(with_player=True) for k in self.ordered_kicks()]
        return data


class PenaltyKick(db.Model, AuditMixin):
    id = db.Column(db.Integer, primary_key=True)
    shootout_id = db.Column(db.Integer, db.ForeignKey('penalty_shootout.id'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    kick_order = db.Column(db.Integer, nullable=False)
    result = db.Column(db.String(10), nullable=False)
    description = db.Column(db.Text, nullable=True)

    shootout = db.relationship(
        'PenaltyShootout',
        backref=db.backref('kicks', cascade='all, delete-orphan')
    )
    player = db.relationship('Player')

    __table_args__ = (UniqueConstraint('shootout_id', 'kick_order', name='_shootout_kick_uc'),)

    def to_dict(self, with_player=False):
        data = {
            'id': self.id,
            'shootout_id': self.shootout_id,
            'player_id': self.player_id,
            'team_id': self.team_id,
            'kick_order': self.kick_order,
            'result': self.result,
            'description': self.description,
            'created_at': _iso(self.created_at),
        }
        if with_player and self.player:
            data['player'] = {'id': self.player.id, 'name': self.player.name}
        return data


class ActivityLog(db.Model):
    __bind_key__ = 'logs'
    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(20), nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)
    changes = db.Column(db.Text, nullable=True)
    details = db.Column('metadata', db.Text, nullable=True)
    # actor loaded manually to avoid cross-db foreign key

    def to_dict(self):
        return {
            'id': self.id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'action': self.action,
            'actor_id': self.actor_id,
            'timestamp': _iso(self.timestamp),
            'changes': _loads(self.changes, None),
            'metadata': _loads(self.details, None),
        }
