#!/usr/bin/env python
"""Populate the development database with a demo group, roster and matchdays."""
from __future__ import annotations

import argparse
import json
from datetime import datetime, timedelta
from typing import Sequence

from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from stanga.app import create_app, db
from stanga import models
from stanga.games import finish_game
from stanga.teams import default_team_specs
from stanga.validation import merge_rules


def ensure_admin_user() -> models.User:
    admin = models.User.query.filter_by(email="admin@example.com").first()
    if admin is None:
        admin = models.User(
            email="admin@example.com",
            full_name="Admin User",
            is_admin=True,
        )
        admin.set_password("admin123")
        db.session.add(admin)
        db.session.commit()
    return admin


def create_user(name: str, email: str, password: str = "player123") -> models.User:
    user = models.User.query.filter_by(email=email).first()
    if user is None:
        user = models.User(full_name=name, email=email)
        user.set_password(password)
        db.session.add(user)
    return user


def ensure_group(name: str, owner: models.User, members: Sequence[models.User]) -> models.Group:
    group = models.Group.query.filter_by(name=name).first()
    if group is None:
        group = models.Group(
            name=name,
            description="Weekly five-a-side on the riverside pitch.",
            invite_code=models.unique_invite_code(db.session),
            created_by=owner.id,
        )
        db.session.add(group)
        db.session.flush()
    for user in [owner, *members]:
        if not models.GroupMember.query.filter_by(group_id=group.id, user_id=user.id).first():
            role = "admin" if user is owner else "member"
            db.session.add(models.GroupMember(group_id=group.id, user_id=user.id, role=role))
    db.session.commit()
    return group


def ensure_players(group: models.Group, names: Sequence[str]) -> list[models.Player]:
    players: list[models.Player] = []
    for name in names:
        player = models.Player.query.filter_by(group_id=group.id, name=name).first()
        if player is None:
            player = models.Player(group_id=group.id, name=name)
            db.session.add(player)
        players.append(player)
    db.session.commit()
    return players


def ensure_matchday(group: models.Group, location: str, scheduled_at: datetime, status: str) -> models.Matchday:
    matchday = models.Matchday.query.filter_by(group_id=group.id, location=location).first()
    if matchday is None:
        matchday = models.Matchday(
            group_id=group.id,
            location=location,
            scheduled_at=scheduled_at,
            number_of_teams=3,
            rules=json.dumps(merge_rules({"team_size": 4})),
        )
        db.session.add(matchday)
    matchday.status = status
    db.session.commit()
    return matchday


def build_teams(matchday: models.Matchday, players: Sequence[models.Player]) -> list[models.Team]:
    if matchday.teams:
        return list(matchday.teams)
    teams = []
    for token, name, hex_value in default_team_specs(matchday.number_of_teams):
        team = models.Team(matchday_id=matchday.id, name=name, color_token=token, color_hex=hex_value)
        db.session.add(team)
        teams.append(team)
    db.session.flush()
    for idx, player in enumerate(players):
        team = teams[idx % len(teams)]
        db.session.add(
            models.TeamAssignment(
                matchday_id=matchday.id,
                team_id=team.id,
                player_id=player.id,
                position_order=idx // len(teams),
            )
        )
    db.session.commit()
    return teams


def record_game(
    matchday: models.Matchday,
    home: models.Team,
    away: models.Team,
    goals: Sequence[tuple[models.Team, models.Player]],
    queue_position: int,
    started_at: datetime,
) -> models.Game:
    game = models.Game(
        matchday_id=matchday.id,
        home_team_id=home.id,
        away_team_id=away.id,
        status="active",
        started_at=started_at,
        max_goals=matchday.rules_dict()["max_goals_to_win"],
        queue_position=queue_position,
    )
    db.session.add(game)
    db.session.flush()
    for minute, (team, scorer) in enumerate(goals, start=2):
        db.session.add(
            models.GameEvent(
                game_id=game.id,
                player_id=scorer.id,
                team_id=team.id,
                event_type="goal",
                minute=minute,
                details=json.dumps({"assist_id": None}),
            )
        )
    game.home_score = sum(1 for team, _ in goals if team.id == home.id)
    game.away_score = sum(1 for team, _ in goals if team.id == away.id)
    winner = None
    if game.home_score != game.away_score:
        winner = home.id if game.home_score > game.away_score else away.id
    reason = "early_finish" if max(game.home_score, game.away_score) >= game.max_goals else "regulation"
    finish_game(game, reason, winner, now=started_at + timedelta(minutes=8))
    return game


def build_sample_world(reset: bool = False) -> None:
    if reset:
        db.drop_all()
        db.create_all()
    admin = ensure_admin_user()

    member_details = [
        ("Andrei Pop", "andrei@example.com"),
        ("Ioana Radu", "ioana@example.com"),
        ("Mihai Stan", "mihai@example.com"),
    ]
    members = [create_user(name, email) for name, email in member_details]
    db.session.commit()

    group = ensure_group("Tuesday Five", admin, members)
    players = ensure_players(group, [
        "Andrei", "Ioana", "Mihai", "Radu", "Elena", "Florin",
        "George", "Horia", "Irina", "Cosmin", "Vlad", "Dana",
    ])

    now = datetime.utcnow()
    played = ensure_matchday(group, "Riverside Pitch", now - timedelta(days=7), "completed")
    ensure_matchday(group, "Park Arena", now + timedelta(days=7), "upcoming")

    if not played.games:
        black, white, red = build_teams(played, players)[:3]
        kickoff = played.scheduled_at
        record_game(played, black, white, [(black, players[0]), (black, players[3])], 1, kickoff)
        record_game(played, black, red, [(red, players[2])], 2, kickoff + timedelta(minutes=10))
        record_game(played, red, white, [(white, players[1]), (red, players[5])], 3,
                    kickoff + timedelta(minutes=20))
        db.session.commit()

    print(f"Database populated with demo content. Invite code: {group.invite_code}")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="drop and recreate the database before loading data")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        build_sample_world(reset=args.reset)


if __name__ == "__main__":
    main()
