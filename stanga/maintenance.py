"""Data repair jobs shared by the ``flask`` CLI commands and the admin API."""
from datetime import datetime

from .app import db
from .models import (
    Game,
    Group,
    GroupMember,
    Matchday,
    PenaltyShootout,
    Player,
    Team,
    User,
    unique_invite_code,
)


def fix_matchday_teams(md, now=None):
    """Soft-delete live teams beyond ``md.number_of_teams``, keeping the oldest."""
    now = now or datetime.utcnow()
    teams = (
        db.session.query(Team)
        .filter(Team.matchday_id == md.id, Team.is_active.is_(True), Team.deleted_at.is_(None))
        .order_by(Team.created_at, Team.id)
        .all()
    )
    expected = md.number_of_teams or 0
    result = {'matchday_id': md.id, 'expected': expected, 'found': len(teams), 'removed': []}
    if not teams:
        result['status'] = 'none'
    elif len(teams) == expected:
        result['status'] = 'already_correct'
    elif len(teams) < expected:
        result['status'] = 'needs_more_teams'
    else:
        for team in teams[expected:]:
            team.is_active = False
            team.deleted_at = now
            for a in team.assignments:
                if a.is_live:
                    a.is_active = False
                    a.deleted_at = now
            result['removed'].append(team.id)
        result['status'] = 'removed_excess'
    return result


def fix_all_matchday_teams():
    matchdays = db.session.query(Matchday).filter(Matchday.deleted_at.is_(None)).order_by(Matchday.id).all()
    results = [fix_matchday_teams(md) for md in matchdays]
    db.session.commit()
    return results


def fix_penalty_completion():
    """Close shootouts left ``active`` after their game finished on penalties."""
    rows = (
        db.session.query(PenaltyShootout)
        .join(Game, PenaltyShootout.game_id == Game.id)
        .filter(
            PenaltyShootout.status == 'active',
            Game.status == 'completed',
            Game.end_reason == 'penalties',
        )
        .all()
    )
    fixed = []
    for shootout in rows:
        shootout.status = 'completed'
        if not shootout.winner_team_id:
            shootout.winner_team_id = shootout.game.winner_team_id
        fixed.append(shootout.id)
    db.session.commit()
    return fixed


def migrate_to_groups(name='Default Group'):
    """Move group-less players and matchdays into a default group.

    Every active user becomes an admin of that group. Returns a summary dict,
    or ``None`` when no unique invite code could be generated.
    """
    group = db.session.query(Group).filter_by(name=name).first()
    created = False
    if group is None:
        code = unique_invite_code(db.session)
        if code is None:
            return None
        group = Group(name=name, invite_code=code, description='Created by migrate-to-groups')
        db.session.add(group)
        db.session.flush()
        created = True

    members_added = 0
    for user in db.session.query(User).filter(User.is_active.is_(True)).all():
        membership = db.session.query(GroupMember).filter_by(group_id=group.id, user_id=user.id).first()
        if membership is None:
            db.session.add(GroupMember(group_id=group.id, user_id=user.id, role='admin'))
            members_added += 1
        elif not membership.is_active:
            membership.is_active = True
            membership.deleted_at = None
            membership.role = 'admin'
            members_added += 1

    players = db.session.query(Player).filter(Player.group_id.is_(None)).all()
    for p in players:
        p.group_id = group.id
    matchdays = db.session.query(Matchday).filter(Matchday.group_id.is_(None)).all()
    for md in matchdays:
        md.group_id = group.id
    db.session.commit()
    return {
        'group_id': group.id,
        'group_created': created,
        'invite_code': group.invite_code,
        'members_added': members_added,
        'players_moved': len(players),
        'matchdays_moved': len(matchdays),
    }
