from flask import (
    Flask,
    request,
    abort,
    jsonify,
)
from flask_sqlalchemy import SQLAlchemy
from flask_login import (
    LoginManager,
    login_user,
    logout_user,
    login_required,
    current_user,
)
from datetime import datetime
import os
import click
import psutil
import json

from sqlalchemy import inspect, text, or_, and_, func
from werkzeug.exceptions import HTTPException

from .validation import (
    ValidationError,
    GROUP_ROLES,
    GAME_STATUSES,
    END_REASONS,
    KICK_RESULTS,
    MATCHDAY_LIST_STATUSES,
    require_text,
    parse_int,
    optional_int,
    parse_number,
    parse_bool,
    parse_pagination,
    pagination_dict,
    parse_player_payload,
    parse_matchday_payload,
    parse_profile_payload,
)


db = SQLAlchemy()
login_manager = LoginManager()
STARTED_AT = datetime.utcnow()


def create_app():
    app = Flask(__name__)
    db_file = os.environ.get('STANGA_DB_PATH', 'stanga.db')
    log_db_file = os.environ.get('STANGA_LOG_DB_PATH', db_file.replace('.db', '_logs.db'))
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('STANGA_DATABASE_URL') or f'sqlite:///{db_file}'
    app.config['SQLALCHEMY_BINDS'] = {
        'logs': f'sqlite:///{log_db_file}',
    }
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.environ.get('FLASK_SECRET', 'dev-secret-change-me')
    app.config['ACTIVITY_LOG_ENABLED'] = (
        os.environ.get('STANGA_ACTIVITY_LOG', '1').strip().lower() not in ('0', 'false', 'no')
    )
    app.json.sort_keys = False

    db.init_app(app)
    login_manager.init_app(app)

    # Upgrade databases created before groups and team counts existed. Rows
    # written back then have no group; ``flask migrate-to-groups`` adopts them.
    with app.app_context():
        inspector = inspect(db.engine)
        tables = inspector.get_table_names()
        if 'player' in tables:
            columns = [c['name'] for c in inspector.get_columns('player')]
            if 'group_id' not in columns:
                db.session.execute(text('ALTER TABLE player ADD COLUMN group_id INTEGER'))
                db.session.commit()
            if 'user_id' not in columns:
                db.session.execute(text('ALTER TABLE player ADD COLUMN user_id INTEGER'))
                db.session.commit()
        if 'matchday' in tables:
            columns = [c['name'] for c in inspector.get_columns('matchday')]
            if 'group_id' not in columns:
                db.session.execute(text('ALTER TABLE matchday ADD COLUMN group_id INTEGER'))
                db.session.commit()
            if 'number_of_teams' not in columns:
                db.session.execute(text('ALTER TABLE matchday ADD COLUMN number_of_teams INTEGER DEFAULT 3'))
                db.session.execute(text('UPDATE matchday SET number_of_teams=3 WHERE number_of_teams IS NULL'))
                db.session.commit()
        if 'game' in tables:
            columns = [c['name'] for c in inspector.get_columns('game')]
            if 'queue_position' not in columns:
                db.session.execute(text('ALTER TABLE game ADD COLUMN queue_position INTEGER'))
                db.session.commit()
        from .models import ActivityLog  # lazy import to avoid circular reference

        ActivityLog.__table__.create(bind=db.engines['logs'], checkfirst=True)

    from .models import (
        User,
        Group,
        GroupMember,
        Player,
        Matchday,
        Team,
        TeamAssignment,
        Game,
        GameEvent,
        PenaltyShootout,
        PenaltyKick,
        unique_invite_code,
    )
    from .activity import (
        ENTITY_TYPES,
        generate_diff,
        log_activity,
        log_change,
        snapshot,
        recent_activity,
    )
    from .teams import (
        TEAM_COLORS,
        is_valid_color,
        color_name,
        color_hex,
        default_team_specs,
        renamed_for_color,
        suggest_next_game,
    )
    from .games import (
        elapsed_minutes,
        count_goals,
        leading_team_id,
        reached_max_goals,
        finish_game,
        reopen_game,
        shootout_outcome,
    )
    from .stats import (
        compute_player_stats,
        compute_standings,
        compute_overall_player_stats,
        top_scorers,
        top_assists,
        average_goals,
    )
    from . import maintenance

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify(error='Authentication required'), 401

    # ---------- Errors ----------
    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify(error=exc.description), exc.code

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc):
        body = {'error': exc.message}
        if exc.details:
            body['details'] = exc.details
        return jsonify(body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        db.session.rollback()
        app.logger.exception('Unhandled error on %s %s', request.method, request.path)
        return jsonify(error='Internal server error'), 500

    # ---------- CLI ----------
    @app.cli.command('db-init')
    def db_init():
        db.create_all()
        # Ensure a default site admin exists for first-time login
        if not db.session.query(User).filter_by(email='admin@example.com').first():
            u = User(email='admin@example.com', full_name='Admin', is_admin=True)
            u.set_password('admin123')
            db.session.add(u)
            db.session.commit()
            click.echo('Created default admin: admin@example.com / admin123')
        click.echo('Database initialized.')

    @app.cli.command('create-admin')
    @click.option('--email', help='Email for the admin user')
    @click.option('--password', help='Password for the admin user')
    def create_admin(email, password):
        if not email:
            email = click.prompt('Admin email', default='admin@example.com')
        if not password:
            password = click.prompt('Password', hide_input=True, confirmation_prompt=True)
        email = email.strip().lower()
        if db.session.query(User).filter_by(email=email).first():
            click.echo('User exists')
            return
        u = User(email=email, full_name='Admin', is_admin=True)
        u.set_password(password)
        db.session.add(u)
        db.session.commit()
        click.echo('Admin created.')

    @app.cli.command('fix-teams')
    def fix_teams_command():
        for row in maintenance.fix_all_matchday_teams():
            click.echo(f"matchday {row['matchday_id']}: {row['status']} "
                       f"({row['found']}/{row['expected']} teams, removed {row['removed']})")

    @app.cli.command('fix-penalty-completion')
    def fix_penalty_completion_command():
        fixed = maintenance.fix_penalty_completion()
        click.echo(f'Closed {len(fixed)} shootout(s).')

    @app.cli.command('migrate-to-groups')
    @click.option('--name', default='Default Group', help='Name of the group receiving orphaned data')
    def migrate_to_groups_command(name):
        summary = maintenance.migrate_to_groups(name)
        if summary is None:
            raise click.ClickException('Failed to generate unique invite code')
        for key, value in summary.items():
            click.echo(f'{key}: {value}')

    # ---------- Helpers ----------
    def ok(data=None, message=None, status=200, **extra):
        body = {'data': data}
        if message:
            body['message'] = message
        body.update(extra)
        return jsonify(body), status

    def get_json():
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')
        return data

    def membership_for(group_id, user_id):
        return (
            db.session.query(GroupMember)
            .filter_by(group_id=group_id, user_id=user_id, is_active=True)
            .first()
        )

    def load_group(group_id):
        group = db.session.get(Group, group_id) if group_id else None
        if not group or not group.is_active or group.deleted_at:
            abort(404, 'Group not found')
        return group

    def require_group_member(group_id):
        group = load_group(group_id)
        membership = membership_for(group.id, current_user.id)
        if not membership:
            abort(403, 'You are not a member of this group')
        return group, membership

    def require_group_admin(group_id):
        group, membership = require_group_member(group_id)
        if membership.role != 'admin':
            app.logger.info('user %s denied admin action on group %s', current_user.id, group.id)
            abort(403, 'Group admin access required')
        return group, membership

    def require_site_admin():
        if not current_user.is_authenticated or not current_user.is_admin:
            abort(403, 'Site admin access required')

    def active_admin_count(group_id):
        return (
            db.session.query(GroupMember)
            .filter_by(group_id=group_id, role='admin', is_active=True)
            .count()
        )

    def load_player(player_id, include_deleted=False):
        p = db.session.get(Player, player_id)
        if not p or (not include_deleted and not p.is_live):
            abort(404, 'Player not found')
        return p

    def group_player(player_id, group_id):
        p = db.session.get(Player, player_id) if player_id else None
        if not p or not p.is_live or p.group_id != group_id:
            abort(404, 'Player not found')
        return p

    def load_matchday(matchday_id, include_deleted=False):
        md = db.session.get(Matchday, matchday_id)
        if not md or (md.deleted_at and not include_deleted):
            abort(404, 'Matchday not found')
        return md

    def load_team(team_id):
        t = db.session.get(Team, team_id)
        if not t or not t.is_live:
            abort(404, 'Team not found')
        return t

    def load_assignment(assignment_id):
        a = db.session.get(TeamAssignment, assignment_id)
        if not a or not a.is_live:
            abort(404, 'Team assignment not found')
        return a

    def load_game(game_id):
        g = db.session.get(Game, game_id)
        if not g:
            abort(404, 'Game not found')
        return g

    def live_teams(matchday_id):
        return (
            db.session.query(Team)
            .filter(Team.matchday_id == matchday_id, Team.is_active.is_(True), Team.deleted_at.is_(None))
            .order_by(Team.created_at, Team.id)
            .all()
        )

    def squad_size(team):
        return len([a for a in team.live_assignments() if a.player and a.player.is_live])

    def group_dict(group, role=None):
        data = group.to_dict()
        if role:
            data['role'] = role
        data['member_count'] = (
            db.session.query(GroupMember).filter_by(group_id=group.id, is_active=True).count()
        )
        return data

    def linked_assist(goal):
        assists = (
            db.session.query(GameEvent)
            .filter_by(game_id=goal.game_id, event_type='assist', is_active=True)
            .all()
        )
        for a in assists:
            if a.metadata_dict().get('goal_event_id') == goal.id:
                return a
        return None

    def goal_dict(goal):
        data = goal.to_dict(with_player=True)
        assist = linked_assist(goal)
        data['assist'] = assist.to_dict(with_player=True) if assist else None
        return data

    def recount_score(game):
        goals = (
            db.session.query(GameEvent)
            .filter_by(game_id=game.id, event_type='goal', is_active=True)
            .all()
        )
        game.home_score, game.away_score = count_goals(goals, game.home_team_id, game.away_team_id)

    def read_formation(data):
        formation = data.get('formation')
        if formation is None:
            return None
        if not isinstance(formation, (dict, list)):
            raise ValidationError('formation must be an object or a list')
        return json.dumps(formation)

    # ---------- Auth ----------
    @app.route('/api/auth/register', methods=['POST'])
    def register():
        data = get_json()
        email = require_text(data.get('email'), 'email', max_len=255).lower()
        if '@' not in email:
            raise ValidationError('email must be a valid email address')
        password = data.get('password') or ''
        if not isinstance(password, str) or len(password) < 6:
            raise ValidationError('password must be at least 6 characters')
        full_name = require_text(data.get('full_name'), 'full_name', max_len=100, required=False)
        if db.session.query(User).filter_by(email=email).first():
            abort(409, 'Email already registered')
        u = User(email=email, full_name=full_name)
        u.set_password(password)
        db.session.add(u)
        db.session.commit()
        u.created_by = u.id
        db.session.commit()
        login_user(u)
        log_change('user', u, 'create', u.id)
        app.logger.info('registered user %s', u.id)
        return ok(u.to_dict(), 'Registered', 201)

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        data = get_json()
        email = (data.get('email') or '').strip().lower()
        password = data.get('password') or ''
        u = db.session.query(User).filter_by(email=email).first()
        if not u or not u.check_password(password):
            abort(401, 'Invalid credentials')
        if not u.is_active or u.deleted_at:
            abort(403, 'Account disabled')
        login_user(u)
        return ok(u.to_dict(), 'Logged in')

    @app.route('/api/auth/logout', methods=['POST'])
    @login_required
    def logout():
        logout_user()
        return ok(None, 'Logged out')

    @app.route('/api/auth/me')
    @login_required
    def me():
        return ok(current_user.to_dict())

    # ---------- Profile ----------
    @app.route('/api/profile')
    @login_required
    def profile():
        return ok(current_user.to_dict())

    @app.route('/api/profile', methods=['PATCH'])
    @login_required
    def update_profile():
        fields = parse_profile_payload(get_json())
        before = snapshot(current_user)
        for key, value in fields.items():
            setattr(current_user, key, value)
        current_user.updated_by = current_user.id
        db.session.commit()
        log_change('user', current_user, 'update', current_user.id, before=before)
        return ok(current_user.to_dict(), 'Profile updated')

    # ---------- Groups ----------
    @app.route('/api/groups')
    @login_required
    def list_groups():
        rows = (
            db.session.query(Group, GroupMember.role)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .filter(
                GroupMember.user_id == current_user.id,
                GroupMember.is_active.is_(True),
                Group.is_active.is_(True),
                Group.deleted_at.is_(None),
            )
            .order_by(Group.name)
            .all()
        )
        return ok([group_dict(g, role) for g, role in rows])

    @app.route('/api/groups', methods=['POST'])
    @login_required
    def create_group():
        data = get_json()
        name = require_text(data.get('name'), 'name', max_len=100)
        description = require_text(data.get('description'), 'description', max_len=500, required=False)
        code = unique_invite_code(db.session)
        if code is None:
            app.logger.error('invite code space exhausted while creating group %r', name)
            abort(500, 'Failed to generate unique invite code')
        group = Group(name=name, description=description, invite_code=code, created_by=current_user.id)
        db.session.add(group)
        db.session.flush()
        membership = GroupMember(group_id=group.id, user_id=current_user.id, role='admin',
                                 created_by=current_user.id)
        db.session.add(membership)
        db.session.commit()
        log_change('group', group, 'create', current_user.id)
        log_change('group_member', membership, 'create', current_user.id)
        app.logger.info('user %s created group %s', current_user.id, group.id)
        return ok(group_dict(group, 'admin'), 'Group created', 201)

    @app.route('/api/groups/join', methods=['POST'])
    @login_required
    def join_group():
        code = (get_json().get('invite_code') or '')
        code = code.strip().upper() if isinstance(code, str) else ''
        if len(code) != 6:
            raise ValidationError('invite_code must be 6 characters')
        group = (
            db.session.query(Group)
            .filter_by(invite_code=code, is_active=True)
            .filter(Group.deleted_at.is_(None))
            .first()
        )
        if not group:
            abort(404, 'Invalid invite code')
        membership = db.session.query(GroupMember).filter_by(group_id=group.id, user_id=current_user.id).first()
        if membership and membership.is_active:
            abort(400, 'You are already a member of this group')
        if membership:
            before = snapshot(membership)
            membership.is_active = True
            membership.deleted_at = None
            membership.role = 'member'
            membership.updated_by = current_user.id
            db.session.commit()
            log_change('group_member', membership, 'restore', current_user.id, before=before)
        else:
            membership = GroupMember(group_id=group.id, user_id=current_user.id, role='member',
                                     created_by=current_user.id)
            db.session.add(membership)
            db.session.commit()
            log_change('group_member', membership, 'create', current_user.id)
        return ok(group_dict(group, membership.role), 'Joined group')

    @app.route('/api/groups/<int:group_id>')
    @login_required
    def get_group(group_id):
        group, membership = require_group_member(group_id)
        return ok(group_dict(group, membership.role))

    @app.route('/api/groups/<int:group_id>', methods=['PATCH'])
    @login_required
    def update_group(group_id):
        group, membership = require_group_admin(group_id)
        data = get_json()
        before = snapshot(group)
        if 'name' in data:
            group.name = require_text(data.get('name'), 'name', max_len=100)
        if 'description' in data:
            group.description = require_text(data.get('description'), 'description', max_len=500,
                                              required=False)
        if 'avatar_url' in data:
            group.avatar_url = require_text(data.get('avatar_url'), 'avatar_url', max_len=500,
                                            required=False)
        group.updated_by = current_user.id
        db.session.commit()
        log_change('group', group, 'update', current_user.id, before=before)
        return ok(group_dict(group, membership.role), 'Group updated')

    @app.route('/api/groups/<int:group_id>', methods=['DELETE'])
    @login_required
    def delete_group(group_id):
        group, _ = require_group_admin(group_id)
        before = snapshot(group)
        group.is_active = False
        group.deleted_at = datetime.utcnow()
        group.updated_by = current_user.id
        db.session.commit()
        log_change('group', group, 'delete', current_user.id, before=before)
        app.logger.info('user %s deleted group %s', current_user.id, group.id)
        return ok(None, 'Group deleted')

    @app.route('/api/groups/<int:group_id>/regenerate-code', methods=['POST'])
    @login_required
    def regenerate_invite_code(group_id):
        group, _ = require_group_admin(group_id)
        code = unique_invite_code(db.session)
        if code is None:
            abort(500, 'Failed to generate unique invite code')
        before = snapshot(group)
        group.invite_code = code
        group.updated_by = current_user.id
        db.session.commit()
        log_change('group', group, 'update', current_user.id, before=before,
                   metadata={'event': 'invite_code_regenerated'})
        return ok({'invite_code': code}, 'Invite code regenerated')

    @app.route('/api/groups/<int:group_id>/members')
    @login_required
    def list_members(group_id):
        group, _ = require_group_member(group_id)
        members = (
            db.session.query(GroupMember)
            .filter_by(group_id=group.id, is_active=True)
            .order_by(GroupMember.created_at, GroupMember.id)
            .all()
        )
        return ok([m.to_dict() for m in members])

    def load_member(group_id, user_id):
        m = membership_for(group_id, user_id)
        if not m:
            abort(404, 'Member not found')
        return m

    @app.route('/api/groups/<int:group_id>/members/<int:user_id>', methods=['PATCH'])
    @login_required
    def update_member_role(group_id, user_id):
        group, _ = require_group_admin(group_id)
        role = get_json().get('role')
        if role not in GROUP_ROLES:
            raise ValidationError("role must be 'admin' or 'member'")
        target = load_member(group.id, user_id)
        if target.role == 'admin' and role == 'member' and active_admin_count(group.id) <= 1:
            abort(400, 'Cannot demote the last admin of the group')
        before = snapshot(target)
        target.role = role
        target.updated_by = current_user.id
        db.session.commit()
        log_change('group_member', target, 'update', current_user.id, before=before)
        return ok(target.to_dict(), 'Member role updated')

    @app.route('/api/groups/<int:group_id>/members/<int:user_id>', methods=['DELETE'])
    @login_required
    def remove_member(group_id, user_id):
        if user_id == current_user.id:
            group, _ = require_group_member(group_id)
        else:
            group, _ = require_group_admin(group_id)
        target = load_member(group.id, user_id)
        if target.role == 'admin' and active_admin_count(group.id) <= 1:
            abort(400, 'Cannot remove the last admin of the group')
        before = snapshot(target)
        target.is_active = False
        target.deleted_at = datetime.utcnow()
        target.updated_by = current_user.id
        db.session.commit()
        log_change('group_member', target, 'delete', current_user.id, before=before)
        message = 'Left group' if user_id == current_user.id else 'Member removed'
        return ok(None, message)

    # ---------- Players ----------
    @app.route('/api/players')
    @login_required
    def list_players():
        args = request.args
        group_id = parse_int(args.get('group_id'), 'group_id', minimum=1)
        require_group_member(group_id)
        page, limit = parse_pagination(args)
        is_active = parse_bool(args.get('is_active'), default=True)
        query = db.session.query(Player).filter(Player.group_id == group_id)
        if is_active:
            query = query.filter(Player.is_active.is_(True), Player.deleted_at.is_(None))
        else:
            query = query.filter(Player.deleted_at.isnot(None))
        term = (args.get('query') or '').strip()
        if term:
            pattern = term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
            query = query.filter(Player.name.ilike(f'%{pattern}%', escape='\\'))
        total = query.count()
        players = (
            query.order_by(Player.created_at.desc(), Player.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return ok([p.to_dict() for p in players], pagination=pagination_dict(page, limit, total))

    def check_claimable_user(user_id, group_id, player_id=None):
        if user_id is None:
            return
        if not membership_for(group_id, user_id):
            raise ValidationError('user_id must belong to a member of the group')
        taken = (
            db.session.query(Player)
            .filter_by(group_id=group_id, user_id=user_id)
            .filter(Player.deleted_at.is_(None), Player.id != player_id)
            .first()
        )
        if taken:
            abort(400, 'User is already linked to another player in this group')

    @app.route('/api/players', methods=['POST'])
    @login_required
    def create_player():
        data = get_json()
        group_id = parse_int(data.get('group_id'), 'group_id', minimum=1)
        require_group_admin(group_id)
        fields = parse_player_payload(data)
        check_claimable_user(fields.get('user_id'), group_id)
        p = Player(group_id=group_id, created_by=current_user.id, **fields)
        db.session.add(p)
        db.session.commit()
        log_change('player', p, 'create', current_user.id)
        return ok(p.to_dict(), 'Player created', 201)

    @app.route('/api/players/<int:player_id>')
    @login_required
    def get_player(player_id):
        p = load_player(player_id, include_deleted=True)
        require_group_member(p.group_id)
        return ok(p.to_dict())

    @app.route('/api/players/<int:player_id>', methods=['PATCH'])
    @login_required
    def update_player(player_id):
        p = load_player(player_id)
        require_group_admin(p.group_id)
        fields = parse_player_payload(get_json(), partial=True)
        check_claimable_user(fields.get('user_id'), p.group_id, player_id=p.id)
        before = snapshot(p)
        for key, value in fields.items():
            setattr(p, key, value)
        p.updated_by = current_user.id
        db.session.commit()
        log_change('player', p, 'update', current_user.id, before=before)
        return ok(p.to_dict(), 'Player updated')

    @app.route('/api/players/<int:player_id>', methods=['DELETE'])
    @login_required
    def delete_player(player_id):
        p = load_player(player_id)
        require_group_admin(p.group_id)
        before = snapshot(p)
        p.is_active = False
        p.deleted_at = datetime.utcnow()
        p.updated_by = current_user.id
        db.session.commit()
        log_change('player', p, 'delete', current_user.id, before=before)
        return ok(None, 'Player deleted')

    @app.route('/api/players/<int:player_id>/restore', methods=['POST'])
    @login_required
    def restore_player(player_id):
        p = db.session.get(Player, player_id)
        if not p or p.deleted_at is None:
            abort(404, 'Deleted player not found')
        require_group_admin(p.group_id)
        before = snapshot(p)
        p.is_active = True
        p.deleted_at = None
        p.updated_by = current_user.id
        db.session.commit()
        log_change('player', p, 'restore', current_user.id, before=before)
        return ok(p.to_dict(), 'Player restored')

    @app.route('/api/players/<int:player_id>/claim', methods=['POST'])
    @login_required
    def claim_player(player_id):
        p = load_player(player_id)
        require_group_member(p.group_id)
        if p.user_id:
            abort(400, 'Player is already claimed')
        existing = (
            db.session.query(Player)
            .filter_by(group_id=p.group_id, user_id=current_user.id)
            .filter(Player.deleted_at.is_(None))
            .first()
        )
        if existing:
            abort(400, 'You have already claimed a player in this group')
        before = snapshot(p)
        p.user_id = current_user.id
        p.updated_by = current_user.id
        db.session.commit()
        log_change('player', p, 'update', current_user.id, before=before, metadata={'event': 'claimed'})
        return ok(p.to_dict(), 'Player claimed')

    @app.route('/api/players/<int:player_id>/claim', methods=['DELETE'])
    @login_required
    def unclaim_player(player_id):
        p = load_player(player_id)
        require_group_member(p.group_id)
        if p.user_id != current_user.id:
            abort(403, 'You can only unclaim your own player')
        before = snapshot(p)
        p.user_id = None
        p.updated_by = current_user.id
        db.session.commit()
        log_change('player', p, 'update', current_user.id, before=before, metadata={'event': 'unclaimed'})
        return ok(p.to_dict(), 'Player unclaimed')

    # ---------- Matchdays ----------
    @app.route('/api/matchdays')
    @login_required
    def list_matchdays():
        args = request.args
        group_id = parse_int(args.get('group_id'), 'group_id', minimum=1)
        require_group_member(group_id)
        page, limit = parse_pagination(args)
        query = db.session.query(Matchday).filter(
            Matchday.group_id == group_id, Matchday.deleted_at.is_(None)
        )
        status = args.get('status')
        if status:
            if status not in MATCHDAY_LIST_STATUSES:
                raise ValidationError(f"status must be one of {', '.join(MATCHDAY_LIST_STATUSES)}")
            if status == 'past':
                query = query.filter(or_(
                    Matchday.status.in_(('completed', 'cancelled')),
                    and_(Matchday.status == 'upcoming', Matchday.scheduled_at < datetime.utcnow()),
                ))
            else:
                query = query.filter(Matchday.status == status)
        is_public = parse_bool(args.get('is_public'))
        if is_public is not None:
            query = query.filter(Matchday.is_public.is_(is_public))
        total = query.count()
        rows = (
            query.order_by(Matchday.scheduled_at.desc(), Matchday.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return ok([md.to_dict() for md in rows], pagination=pagination_dict(page, limit, total))

    @app.route('/api/matchdays', methods=['POST'])
    @login_required
    def create_matchday():
        data = get_json()
        group_id = parse_int(data.get('group_id'), 'group_id', minimum=1)
        require_group_admin(group_id)
        fields = parse_matchday_payload(data)
        rules = fields.pop('rules')
        md = Matchday(group_id=group_id, rules=json.dumps(rules), created_by=current_user.id, **fields)
        db.session.add(md)
        db.session.commit()
        log_change('matchday', md, 'create', current_user.id)
        return ok(md.to_dict(), 'Matchday created', 201)

    @app.route('/api/matchdays/<int:matchday_id>')
    @login_required
    def get_matchday(matchday_id):
        md = load_matchday(matchday_id)
        require_group_member(md.group_id)
        data = md.to_dict()
        data['teams'] = [t.to_dict() for t in live_teams(md.id)]
        data['games_count'] = len(md.games)
        return ok(data)

    @app.route('/api/matchdays/<int:matchday_id>', methods=['PATCH'])
    @login_required
    def update_matchday(matchday_id):
        md = load_matchday(matchday_id)
        require_group_admin(md.group_id)
        fields = parse_matchday_payload(get_json(), partial=True, base_rules=md.rules_dict())
        before = snapshot(md)
        if 'rules' in fields:
            md.rules = json.dumps(fields.pop('rules'))
        for key, value in fields.items():
            setattr(md, key, value)
        md.updated_by = current_user.id
        db.session.commit()
        log_change('matchday', md, 'update', current_user.id, before=before)
        return ok(md.to_dict(), 'Matchday updated')

    @app.route('/api/matchdays/<int:matchday_id>', methods=['DELETE'])
    @login_required
    def delete_matchday(matchday_id):
        md = load_matchday(matchday_id)
        require_group_admin(md.group_id)
        before = snapshot(md)
        md.status = 'cancelled'
        md.deleted_at = datetime.utcnow()
        md.updated_by = current_user.id
        db.session.commit()
        log_change('matchday', md, 'delete', current_user.id, before=before)
        return ok(None, 'Matchday deleted')

    @app.route('/api/matchdays/<int:matchday_id>/restore', methods=['POST'])
    @login_required
    def restore_matchday(matchday_id):
        md = db.session.get(Matchday, matchday_id)
        if not md or md.deleted_at is None:
            abort(404, 'Deleted matchday not found')
        require_group_admin(md.group_id)
        before = snapshot(md)
        md.deleted_at = None
        md.status = 'upcoming'
        md.updated_by = current_user.id
        db.session.commit()
        log_change('matchday', md, 'restore', current_user.id, before=before)
        return ok(md.to_dict(), 'Matchday restored')

    # ---------- Teams ----------
    @app.route('/api/matchdays/<int:matchday_id>/teams', methods=['POST'])
    @login_required
    def initialize_teams(matchday_id):
        md = load_matchday(matchday_id)
        require_group_admin(md.group_id)
        if live_teams(md.id):
            abort(409, 'Teams already exist for this matchday')
        created = []
        for token, name, hex_value in default_team_specs(md.number_of_teams or 3):
            t = Team(matchday_id=md.id, name=name, color_token=token, color_hex=hex_value,
                     created_by=current_user.id)
            db.session.add(t)
            created.append(t)
        db.session.commit()
        for t in created:
            log_change('team', t, 'create', current_user.id, metadata={'event': 'initialized'})
        return ok([t.to_dict(with_assignments=True) for t in created], 'Teams created', 201)

    @app.route('/api/matchdays/<int:matchday_id>/teams')
    @login_required
    def list_teams(matchday_id):
        md = load_matchday(matchday_id)
        require_group_member(md.group_id)
        return ok([t.to_dict(with_assignments=True) for t in live_teams(md.id)])

    def check_color_free(matchday_id, token, team_id=None):
        if not is_valid_color(token):
            raise ValidationError(f"color_token must be one of {', '.join(TEAM_COLORS)}")
        for other in live_teams(matchday_id):
            if other.color_token == token and other.id != team_id:
                abort(409, 'Color already used by another team in this matchday')

    @app.route('/api/teams', methods=['POST'])
    @login_required
    def create_team():
        data = get_json()
        md = load_matchday(parse_int(data.get('matchday_id'), 'matchday_id', minimum=1))
        require_group_admin(md.group_id)
        token = data.get('color_token')
        check_color_free(md.id, token)
        name = require_text(data.get('name'), 'name', max_len=100, required=False) or color_name(token)
        t = Team(matchday_id=md.id, name=name, color_token=token, color_hex=color_hex(token),
                 formation=read_formation(data), created_by=current_user.id)
        db.session.add(t)
        db.session.commit()
        log_change('team', t, 'create', current_user.id)
        return ok(t.to_dict(with_assignments=True), 'Team created', 201)

    @app.route('/api/teams/<int:team_id>')
    @login_required
    def get_team(team_id):
        t = load_team(team_id)
        require_group_member(t.matchday.group_id)
        return ok(t.to_dict(with_assignments=True))

    @app.route('/api/teams/<int:team_id>', methods=['PATCH'])
    @login_required
    def update_team(team_id):
        t = load_team(team_id)
        require_group_admin(t.matchday.group_id)
        data = get_json()
        before = snapshot(t)
        new_name = None
        if 'name' in data:
            new_name = require_text(data.get('name'), 'name', max_len=100)
        token = data.get('color_token')
        if token is not None and token != t.color_token:
            check_color_free(t.matchday_id, token, team_id=t.id)
            if new_name is None:
                t.name = renamed_for_color(t.name, t.color_token, token)
            t.color_token = token
            t.color_hex = color_hex(token)
        if new_name is not None:
            t.name = new_name
        if 'formation' in data:
            t.formation = read_formation(data)
        t.updated_by = current_user.id
        db.session.commit()
        log_change('team', t, 'update', current_user.id, before=before)
        return ok(t.to_dict(with_assignments=True), 'Team updated')

    @app.route('/api/teams/<int:team_id>', methods=['DELETE'])
    @login_required
    def delete_team(team_id):
        t = load_team(team_id)
        require_group_admin(t.matchday.group_id)
        now = datetime.utcnow()
        before = snapshot(t)
        t.is_active = False
        t.deleted_at = now
        t.updated_by = current_user.id
        removed = []
        for a in t.live_assignments():
            a.is_active = False
            a.deleted_at = now
            a.updated_by = current_user.id
            removed.append(a.id)
        db.session.commit()
        log_change('team', t, 'delete', current_user.id, before=before,
                   metadata={'assignments_removed': removed})
        return ok(None, 'Team deleted')

    # ---------- Team assignments ----------
    def read_placement(data, target):
        if 'position' in data:
            target.position = require_text(data.get('position'), 'position', max_len=30, required=False)
        if 'position_order' in data:
            target.position_order = optional_int(data.get('position_order'), 'position_order', minimum=0)
        if 'x_pct' in data:
            target.x_pct = parse_number(data.get('x_pct'), 'x_pct', minimum=0, maximum=100)
        if 'y_pct' in data:
            target.y_pct = parse_number(data.get('y_pct'), 'y_pct', minimum=0, maximum=100)

    @app.route('/api/teams/<int:team_id>/assign', methods=['POST'])
    @login_required
    def assign_player(team_id):
        t = load_team(team_id)
        md = t.matchday
        require_group_admin(md.group_id)
        data = get_json()
        p = group_player(parse_int(data.get('player_id'), 'player_id', minimum=1), md.group_id)
        existing = (
            db.session.query(TeamAssignment)
            .filter_by(matchday_id=md.id, player_id=p.id, is_active=True)
            .filter(TeamAssignment.deleted_at.is_(None))
            .first()
        )
        if existing and existing.team_id == t.id:
            abort(409, 'Player is already assigned to this team')
        if existing:
            abort(409, 'Player is already assigned to another team in this matchday')
        a = TeamAssignment(matchday_id=md.id, team_id=t.id, player_id=p.id, created_by=current_user.id)
        read_placement(data, a)
        if a.position_order is None:
            a.position_order = len(t.live_assignments())
        db.session.add(a)
        db.session.commit()
        log_change('team_assignment', a, 'create', current_user.id)
        return ok(a.to_dict(with_player=True), 'Player assigned', 201)

    @app.route('/api/team-assignments/<int:assignment_id>')
    @login_required
    def get_assignment(assignment_id):
        a = load_assignment(assignment_id)
        require_group_member(a.matchday.group_id)
        return ok(a.to_dict(with_player=True))

    @app.route('/api/team-assignments/<int:assignment_id>', methods=['PATCH'])
    @login_required
    def update_assignment(assignment_id):
        a = load_assignment(assignment_id)
        require_group_admin(a.matchday.group_id)
        before = snapshot(a)
        read_placement(get_json(), a)
        a.updated_by = current_user.id
        db.session.commit()
        log_change('team_assignment', a, 'update', current_user.id, before=before)
        return ok(a.to_dict(with_player=True), 'Assignment updated')

    @app.route('/api/team-assignments/<int:assignment_id>', methods=['DELETE'])
    @login_required
    def delete_assignment(assignment_id):
        a = load_assignment(assignment_id)
        require_group_admin(a.matchday.group_id)
        before = snapshot(a)
        a.is_active = False
        a.deleted_at = datetime.utcnow()
        a.updated_by = current_user.id
        db.session.commit()
        log_change('team_assignment', a, 'delete', current_user.id, before=before)
        return ok(None, 'Player removed from team')

    # ---------- Games ----------
    @app.route('/api/matchdays/<int:matchday_id>/games', methods=['POST'])
    @login_required
    def start_game(matchday_id):
        md = load_matchday(matchday_id)
        require_group_member(md.group_id)
        data = get_json()
        home_id = optional_int(data.get('home_team_id'), 'home_team_id', minimum=1)
        away_id = optional_int(data.get('away_team_id'), 'away_team_id', minimum=1)
        if not home_id or not away_id:
            raise ValidationError('home_team_id and away_team_id are required')
        if home_id == away_id:
            raise ValidationError('A team cannot play against itself')
        teams = {t.id: t for t in live_teams(md.id)}
        if home_id not in teams or away_id not in teams:
            abort(404, 'Team not found in this matchday')
        home, away = teams[home_id], teams[away_id]
        rules = md.rules_dict()
        if not parse_bool(data.get('force'), default=False):
            required = rules['team_size']
            counts = {'home': squad_size(home), 'away': squad_size(away)}
            if counts['home'] < required or counts['away'] < required:
                return jsonify(
                    error=f'Each team needs at least {required} players',
                    code='INSUFFICIENT_PLAYERS',
                    details={
                        'required': required,
                        'home_team': {'id': home.id, 'name': home.name, 'players': counts['home']},
                        'away_team': {'id': away.id, 'name': away.name, 'players': counts['away']},
                    },
                ), 400
        last_position = (
            db.session.query(func.max(Game.queue_position)).filter_by(matchday_id=md.id).scalar() or 0
        )
        g = Game(
            matchday_id=md.id,
            home_team_id=home.id,
            away_team_id=away.id,
            status='active',
            started_at=datetime.utcnow(),
            home_score=0,
            away_score=0,
            max_goals=rules['max_goals_to_win'],
            queue_position=last_position + 1,
            created_by=current_user.id,
        )
        db.session.add(g)
        db.session.commit()
        log_change('game', g, 'create', current_user.id)
        app.logger.info('game %s started on matchday %s (%s vs %s)', g.id, md.id, home.name, away.name)
        return ok(g.to_dict(with_teams=True), 'Game started', 201)

    @app.route('/api/matchdays/<int:matchday_id>/games')
    @login_required
    def list_games(matchday_id):
        md = load_matchday(matchday_id)
        require_group_member(md.group_id)
        query = db.session.query(Game).filter_by(matchday_id=md.id)
        status = request.args.get('status')
        if status:
            if status not in GAME_STATUSES:
                raise ValidationError(f"status must be one of {', '.join(GAME_STATUSES)}")
            query = query.filter(Game.status == status)
        games = query.order_by(Game.created_at.desc(), Game.id.desc()).all()
        return ok([g.to_dict(with_teams=True) for g in games])

    @app.route('/api/matchdays/<int:matchday_id>/queue-suggestion')
    @login_required
    def queue_suggestion(matchday_id):
        md = load_matchday(matchday_id)
        require_group_member(md.group_id)
        games = db.session.query(Game).filter_by(matchday_id=md.id).all()
        suggestion = suggest_next_game(live_teams(md.id), games)
        if suggestion is None:
            abort(400, 'At least two teams are required')
        active = next((g for g in games if g.status == 'active'), None)
        return ok({
            'home_team': suggestion['home'].to_dict(),
            'away_team': suggestion['away'].to_dict(),
            'waiting_teams': [t.to_dict() for t in suggestion['waiting']],
            'reason': suggestion['reason'],
            'has_active_game': active is not None,
            'active_game': active.to_dict(with_teams=True) if active else None,
        })

    @app.route('/api/games/<int:game_id>')
    @login_required
    def get_game(game_id):
        g = load_game(game_id)
        require_group_member(g.matchday.group_id)
        events = (
            db.session.query(GameEvent)
            .filter_by(game_id=g.id, is_active=True)
            .order_by(GameEvent.created_at.desc(), GameEvent.id.desc())
            .all()
        )
        data = g.to_dict(with_teams=True)
        data['events'] = [e.to_dict(with_player=True) for e in events]
        data['shootout'] = g.shootout.to_dict() if g.shootout else None
        return ok(data)

    @app.route('/api/games/<int:game_id>', methods=['PATCH'])
    @login_required
    def end_game(game_id):
        g = load_game(game_id)
        require_group_member(g.matchday.group_id)
        if g.status != 'active':
            abort(400, 'Only active games can be ended')
        data = get_json()
        end_reason = data.get('end_reason')
        if end_reason not in END_REASONS:
            raise ValidationError(f"end_reason must be one of {', '.join(END_REASONS)}")
        winner_id = optional_int(data.get('winner_team_id'), 'winner_team_id', minimum=1)
        if winner_id is not None and winner_id not in g.team_ids():
            raise ValidationError('winner_team_id must be one of the teams in this game')
        before = snapshot(g)
        finish_game(g, end_reason, winner_id)
        if end_reason == 'penalties' and g.shootout and g.shootout.status == 'active':
            g.shootout.status = 'completed'
            g.shootout.winner_team_id = winner_id
        g.updated_by = current_user.id
        db.session.commit()
        log_change('game', g, 'update', current_user.id, before=before, metadata={'event': 'ended'})
        app.logger.info('game %s ended (%s)', g.id, end_reason)
        return ok(g.to_dict(with_teams=True), 'Game ended')

    # ---------- Goals ----------
    @app.route('/api/games/<int:game_id>/goals')
    @login_required
    def list_goals(game_id):
        g = load_game(game_id)
        require_group_member(g.matchday.group_id)
        goals = (
            db.session.query(GameEvent)
            .filter_by(game_id=g.id, event_type='goal', is_active=True)
            .order_by(GameEvent.created_at, GameEvent.id)
            .all()
        )
        rows = [goal_dict(e) for e in goals]
        return ok({
            'goals': rows,
            'home_team_goals': [r for r in rows if r['team_id'] == g.home_team_id],
            'away_team_goals': [r for r in rows if r['team_id'] == g.away_team_id],
        })

    def new_assist(goal, assister):
        assist = GameEvent(
            game_id=goal.game_id,
            player_id=assister.id,
            team_id=goal.team_id,
            event_type='assist',
            minute=goal.minute,
            details=json.dumps({'goal_event_id': goal.id}),
            created_by=current_user.id,
        )
        db.session.add(assist)
        return assist

    def deactivate(event):
        event.is_active = False
        event.updated_by = current_user.id

    @app.route('/api/games/<int:game_id>/goals', methods=['POST'])
    @login_required
    def add_goal(game_id):
        g = load_game(game_id)
        group_id = g.matchday.group_id
        require_group_member(group_id)
        if g.status != 'active':
            abort(400, 'Goals can only be added to active games')
        data = get_json()
        team_id = parse_int(data.get('team_id'), 'team_id', minimum=1)
        player_id = parse_int(data.get('player_id'), 'player_id', minimum=1)
        assist_id = optional_int(data.get('assist_id'), 'assist_id', minimum=1)
        if assist_id is not None and assist_id == player_id:
            raise ValidationError('A player cannot assist their own goal')
        if team_id not in g.team_ids():
            raise ValidationError('Team is not playing in this game')
        scorer = group_player(player_id, group_id)
        assister = group_player(assist_id, group_id) if assist_id else None
        minute = optional_int(data.get('minute'), 'minute', minimum=0)
        if minute is None:
            minute = elapsed_minutes(g.started_at)
        before = snapshot(g)
        goal = GameEvent(
            game_id=g.id,
            player_id=scorer.id,
            team_id=team_id,
            event_type='goal',
            minute=minute,
            description=require_text(data.get('description'), 'description', max_len=500, required=False),
            details=json.dumps({'assist_id': assist_id}),
            created_by=current_user.id,
        )
        db.session.add(goal)
        db.session.flush()
        assist = new_assist(goal, assister) if assister else None
        recount_score(g)
        early_finish = reached_max_goals(g)
        if early_finish:
            finish_game(g, 'early_finish', leading_team_id(g))
        g.updated_by = current_user.id
        db.session.commit()
        log_change('game', g, 'update', current_user.id, before=before,
                   metadata={'event': 'goal_added', 'goal_event_id': goal.id})
        if early_finish:
            app.logger.info('game %s finished early at %s-%s', g.id, g.home_score, g.away_score)
        return ok({
            'goal': goal.to_dict(with_player=True),
            'assist': assist.to_dict(with_player=True) if assist else None,
            'game': g.to_dict(),
            'early_finish': early_finish,
        }, 'Goal recorded', 201)

    @app.route('/api/games/<int:game_id>/goals/last', methods=['DELETE'])
    @login_required
    def undo_last_goal(game_id):
        g = load_game(game_id)
        require_group_member(g.matchday.group_id)
        if g.status != 'active':
            abort(400, 'Goals can only be undone on active games')
        goal = (
            db.session.query(GameEvent)
            .filter_by(game_id=g.id, event_type='goal', is_active=True)
            .order_by(GameEvent.created_at.desc(), GameEvent.id.desc())
            .first()
        )
        if not goal:
            abort(400, 'No goals to undo')
        before = snapshot(g)
        assist = linked_assist(goal)
        deactivate(goal)
        if assist:
            deactivate(assist)
        recount_score(g)
        g.updated_by = current_user.id
        db.session.commit()
        log_change('game', g, 'update', current_user.id, before=before,
                   metadata={'event': 'goal_undone', 'goal_event_id': goal.id})
        return ok(g.to_dict(), 'Last goal undone')

    def load_goal(event_id):
        e = db.session.get(GameEvent, event_id)
        if not e or e.event_type != 'goal' or not e.is_active:
            abort(404, 'Goal not found')
        return e

    @app.route('/api/goals/<int:event_id>', methods=['PATCH'])
    @login_required
    def update_goal(event_id):
        goal = load_goal(event_id)
        g = goal.game
        group_id = g.matchday.group_id
        require_group_member(group_id)
        data = get_json()
        player_id = parse_int(data.get('player_id', goal.player_id), 'player_id', minimum=1)
        assist_id = optional_int(data.get('assist_id'), 'assist_id', minimum=1)
        if assist_id is not None and assist_id == player_id:
            raise ValidationError('A player cannot assist their own goal')
        scorer = group_player(player_id, group_id)
        assister = group_player(assist_id, group_id) if assist_id else None
        old = goal.to_dict()
        old_assist = linked_assist(goal)
        goal.player_id = scorer.id
        goal.details = json.dumps({'assist_id': assist_id})
        goal.updated_by = current_user.id
        if old_assist:
            deactivate(old_assist)
        assist = new_assist(goal, assister) if assister else None
        db.session.commit()
        log_activity(
            'game', g.id, 'update', current_user.id,
            changes=generate_diff(
                {'player_id': old['player_id'], 'assist_id': old['metadata'].get('assist_id')},
                {'player_id': goal.player_id, 'assist_id': assist_id},
            ),
            metadata={'event': 'goal_edited', 'goal_event_id': goal.id},
        )
        data = goal.to_dict(with_player=True)
        data['assist'] = assist.to_dict(with_player=True) if assist else None
        return ok(data, 'Goal updated')

    @app.route('/api/goals/<int:event_id>', methods=['DELETE'])
    @login_required
    def delete_goal(event_id):
        goal = load_goal(event_id)
        g = goal.game
        require_group_member(g.matchday.group_id)
        before = snapshot(g)
        assist = linked_assist(goal)
        deactivate(goal)
        if assist:
            deactivate(assist)
        recount_score(g)
        reopened = False
        if g.status == 'completed':
            if g.end_reason == 'early_finish' and not reached_max_goals(g):
                reopen_game(g)
                reopened = True
            elif g.end_reason in ('early_finish', 'regulation', 'extra_time'):
                g.winner_team_id = leading_team_id(g)
        g.updated_by = current_user.id
        db.session.commit()
        log_change('game', g, 'update', current_user.id, before=before,
                   metadata={'event': 'goal_deleted', 'goal_event_id': goal.id})
        return ok({'game': g.to_dict(), 'reopened': reopened}, 'Goal deleted')

    # ---------- Penalties ----------
    @app.route('/api/games/<int:game_id>/penalties', methods=['POST'])
    @login_required
    def start_penalties(game_id):
        g = load_game(game_id)
        md = g.matchday
        require_group_member(md.group_id)
        if g.status != 'active':
            abort(400, 'Penalties can only start during an active game')
        if (g.home_score or 0) != (g.away_score or 0):
            abort(400, 'Penalties require a tied score')
        if not md.rules_dict()['penalties_on_tie']:
            abort(400, 'Penalties are disabled for this matchday')
        if g.shootout:
            abort(400, 'A penalty shootout already exists for this game')
        shootout = PenaltyShootout(home_team_score=0, away_team_score=0,
                                   status='active', created_by=current_user.id)
        g.shootout = shootout
        g.updated_by = current_user.id
        db.session.commit()
        log_activity('game', g.id, 'update', current_user.id,
                     metadata={'event': 'penalties_started', 'shootout_id': shootout.id})
        return ok(shootout.to_dict(with_kicks=True), 'Penalty shootout started', 201)

    @app.route('/api/games/<int:game_id>/penalties')
    @login_required
    def get_penalties(game_id):
        g = load_game(game_id)
        require_group_member(g.matchday.group_id)
        if not g.shootout:
            abort(404, 'No penalty shootout for this game')
        return ok(g.shootout.to_dict(with_kicks=True))

    @app.route('/api/games/<int:game_id>/penalties/kick', methods=['POST'])
    @login_required
    def record_kick(game_id):
        g = load_game(game_id)
        group_id = g.matchday.group_id
        require_group_member(group_id)
        data = get_json()
        result = data.get('result')
        if result not in KICK_RESULTS:
            raise ValidationError(f"result must be one of {', '.join(KICK_RESULTS)}")
        player_id = parse_int(data.get('player_id'), 'player_id', minimum=1)
        team_id = parse_int(data.get('team_id'), 'team_id', minimum=1)
        shootout = g.shootout
        if not shootout:
            abort(404, 'No penalty shootout for this game')
        if shootout.status != 'active':
            abort(400, 'Penalty shootout is already completed')
        if team_id not in g.team_ids():
            raise ValidationError('Team is not playing in this game')
        kicker = group_player(player_id, group_id)
        before = snapshot(g)
        kick = PenaltyKick(
            player_id=kicker.id,
            team_id=team_id,
            kick_order=len(shootout.kicks) + 1,
            result=result,
            description=require_text(data.get('description'), 'description', max_len=500, required=False),
            created_by=current_user.id,
        )
        shootout.kicks.append(kick)
        if result == 'goal':
            if team_id == g.home_team_id:
                shootout.home_team_score = (shootout.home_team_score or 0) + 1
            else:
                shootout.away_team_score = (shootout.away_team_score or 0) + 1
        home_kicks = len([k for k in shootout.kicks if k.team_id == g.home_team_id])
        away_kicks = len([k for k in shootout.kicks if k.team_id == g.away_team_id])
        outcome = shootout_outcome(home_kicks, away_kicks,
                                   shootout.home_team_score or 0, shootout.away_team_score or 0)
        if outcome:
            winner_id = g.home_team_id if outcome == 'home' else g.away_team_id
            shootout.status = 'completed'
            shootout.winner_team_id = winner_id
            finish_game(g, 'penalties', winner_id)
            g.updated_by = current_user.id
        shootout.updated_by = current_user.id
        db.session.commit()
        if outcome:
            log_change('game', g, 'update', current_user.id, before=before,
                       metadata={'event': 'penalties_won', 'shootout_id': shootout.id})
            app.logger.info('game %s decided on penalties %s-%s', g.id,
                            shootout.home_team_score, shootout.away_team_score)
        return ok({
            'kick': kick.to_dict(with_player=True),
            'shootout': shootout.to_dict(),
            'game': g.to_dict(),
            'completed': bool(outcome),
        }, 'Kick recorded', 201)

    # ---------- Stats ----------
    def events_for_games(game_ids):
        if not game_ids:
            return []
        return db.session.query(GameEvent).filter(GameEvent.game_id.in_(game_ids)).all()

    def group_players(group_id):
        return db.session.query(Player).filter_by(group_id=group_id).all()

    @app.route('/api/stats/matchday/<int:matchday_id>')
    @login_required
    def matchday_stats(matchday_id):
        md = load_matchday(matchday_id)
        require_group_member(md.group_id)
        teams = live_teams(md.id)
        games = db.session.query(Game).filter_by(matchday_id=md.id).order_by(Game.queue_position, Game.id).all()
        events = events_for_games([g.id for g in games])
        player_stats = compute_player_stats(events, games, group_players(md.group_id))
        completed = [g for g in games if g.status == 'completed']
        return ok({
            'matchday': md.to_dict(),
            'summary': {
                'total_games': len(games),
                'completed_games': len(completed),
                'total_goals': sum((g.home_score or 0) + (g.away_score or 0) for g in completed),
                'total_players': len(player_stats),
                'total_teams': len(teams),
                'average_goals_per_game': average_goals(games),
            },
            'standings': compute_standings(games, teams, md.rules_dict()),
            'top_scorers': top_scorers(player_stats, 5),
            'top_assists': top_assists(player_stats, 5),
            'player_stats': player_stats,
            'games': [g.to_dict(with_teams=True) for g in games],
        })

    @app.route('/api/stats/overall')
    @login_required
    def overall_stats():
        group_id = parse_int(request.args.get('group_id'), 'group_id', minimum=1)
        require_group_member(group_id)
        matchdays = (
            db.session.query(Matchday)
            .filter(Matchday.group_id == group_id, Matchday.deleted_at.is_(None))
            .order_by(Matchday.scheduled_at.desc(), Matchday.id.desc())
            .all()
        )
        games = []
        matchday_standings = []
        for md in matchdays:
            md_games = db.session.query(Game).filter_by(matchday_id=md.id).all()
            games.extend(md_games)
            if any(g.status == 'completed' for g in md_games):
                matchday_standings.append({
                    'matchday_id': md.id,
                    'display_name': md.display_name(),
                    'scheduled_at': md.to_dict()['scheduled_at'],
                    'standings': compute_standings(md_games, live_teams(md.id), md.rules_dict()),
                })
        events = events_for_games([g.id for g in games])
        player_stats = compute_overall_player_stats(events, games, group_players(group_id))
        completed = [g for g in games if g.status == 'completed']
        return ok({
            'summary': {
                'total_games': len(completed),
                'total_goals': sum((g.home_score or 0) + (g.away_score or 0) for g in completed),
                'total_players': len(player_stats),
                'total_matchdays': len(matchdays),
                'average_goals_per_game': average_goals(games),
            },
            'top_scorers': top_scorers(player_stats, 10),
            'top_assists': top_assists(player_stats, 10),
            'player_stats': player_stats[:50],
            'matchday_standings': matchday_standings,
        })

    # ---------- Admin ----------
    @app.route('/api/admin/activity')
    @login_required
    def admin_activity():
        require_site_admin()
        args = request.args
        entity_type = args.get('entity_type')
        if entity_type and entity_type not in ENTITY_TYPES:
            raise ValidationError(f"entity_type must be one of {', '.join(ENTITY_TYPES)}")
        entries = recent_activity(
            entity_type=entity_type,
            entity_id=optional_int(args.get('entity_id'), 'entity_id', minimum=1),
            actor_id=optional_int(args.get('actor_id'), 'actor_id', minimum=1),
            limit=parse_int(args.get('limit'), 'limit', minimum=1, maximum=200, default=50),
        )
        return ok([e.to_dict() for e in entries])

    @app.route('/api/admin/fix-teams', methods=['POST'])
    @login_required
    def admin_fix_teams():
        require_site_admin()
        matchday_id = optional_int(get_json().get('matchday_id'), 'matchday_id', minimum=1)
        if matchday_id:
            results = [maintenance.fix_matchday_teams(load_matchday(matchday_id))]
            db.session.commit()
        else:
            results = maintenance.fix_all_matchday_teams()
        removed = sum(len(r['removed']) for r in results)
        app.logger.info('fix-teams run by %s removed %s team(s)', current_user.id, removed)
        return ok(results, f'Removed {removed} excess team(s)')

    @app.route('/api/admin/fix-penalty-completion', methods=['POST'])
    @login_required
    def admin_fix_penalty_completion():
        require_site_admin()
        fixed = maintenance.fix_penalty_completion()
        return ok({'shootout_ids': fixed}, f'Closed {len(fixed)} shootout(s)')

    @app.route('/api/admin/status')
    @login_required
    def admin_status():
        require_site_admin()
        process = psutil.Process(os.getpid())
        db_path = db.engine.url.database
        db_size = os.path.getsize(db_path) if db_path and os.path.exists(db_path) else 0
        return ok({
            'db_size': db_size,
            'ram_usage': process.memory_info().rss,
            'cpu_usage': psutil.cpu_percent(interval=0.1),
            'uptime': int((datetime.utcnow() - STARTED_AT).total_seconds()),
            'counts': {
                'users': db.session.query(User).count(),
                'groups': db.session.query(Group).filter(Group.deleted_at.is_(None)).count(),
                'matchdays': db.session.query(Matchday).filter(Matchday.deleted_at.is_(None)).count(),
                'games': db.session.query(Game).count(),
            },
        })

    return app
