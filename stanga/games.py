import math
from datetime import datetime

REGULATION_KICKS = 5


def elapsed_minutes(started_at, now=None):
    if not started_at:
        return 0
    now = now or datetime.utcnow()
    seconds = (now - started_at).total_seconds()
    return max(0, math.floor(seconds / 60))


def count_goals(events, home_team_id, away_team_id):
    """Score line from the active ``goal`` events of a game."""
    home = away = 0
    for e in events:
        if not e.is_active or e.event_type != 'goal':
            continue
        if e.team_id == home_team_id:
            home += 1
        elif e.team_id == away_team_id:
            away += 1
    return home, away


def leading_team_id(game):
    home = game.home_score or 0
    away = game.away_score or 0
    if home > away:
        return game.home_team_id
    if away > home:
        return game.away_team_id
    return None


def reached_max_goals(game):
    if not game.max_goals:
        return False
    return max(game.home_score or 0, game.away_score or 0) >= game.max_goals


def finish_game(game, end_reason, winner_team_id=None, now=None):
    now = now or datetime.utcnow()
    game.status = 'completed'
    game.ended_at = now
    game.end_reason = end_reason
    game.winner_team_id = winner_team_id
    game.duration = elapsed_minutes(game.started_at, now)


def reopen_game(game):
    game.status = 'active'
    game.ended_at = None
    game.end_reason = None
    game.winner_team_id = None
    game.duration = None


def shootout_outcome(home_kicks, away_kicks, home_score, away_score, regulation=REGULATION_KICKS):
    """Decide a shootout from the kicks taken so far.

    Returns ``'home'`` or ``'away'`` for a decided shootout, else ``None``.
    Within the regulation kicks a side loses once it cannot catch up even by
    scoring every remaining kick. After that it is sudden death: equal kicks
    taken and unequal goals.
    """
    if min(home_kicks, away_kicks) < regulation:
        home_left = max(0, regulation - home_kicks)
        away_left = max(0, regulation - away_kicks)
        if home_score > away_score + away_left:
            return 'home'
        if away_score > home_score + home_left:
            return 'away'
        return None
    if home_kicks == away_kicks and home_score != away_score:
        return 'home' if home_score > away_score else 'away'
    return None
