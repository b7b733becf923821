from .validation import merge_rules

STAT_EVENT_TYPES = ('goal', 'assist', 'penalty_goal', 'penalty_miss')


# --- points for a single completed game ---
def points_for(game, team_id, rules):
    if game.status != 'completed':
        return 0
    rules = merge_rules(rules)
    pts = rules['points']
    winner = game.winner_team_id
    if winner == team_id:
        if game.end_reason == 'penalties':
            return pts['draw'] + pts['penalty_bonus_win'] * rules['penalty_win_weight']
        return pts['regulation_win']
    if winner is None or game.end_reason == 'penalties':
        # draws and shootout losses both keep the draw points
        return pts['draw']
    return pts['loss']


def _counted_events(events, games_by_id):
    for e in events:
        if not e.is_active or not e.player_id:
            continue
        g = games_by_id.get(e.game_id)
        if g is None or g.status != 'completed':
            continue
        yield e, g


def compute_player_stats(events, games, players):
    games_by_id = {g.id: g for g in games}
    rows = {}
    for p in players:
        rows[p.id] = {
            'player_id': p.id,
            'player_name': p.name,
            'games_played': 0,
            'goals': 0,
            'assists': 0,
            'penalty_goals': 0,
            'penalty_misses': 0,
            'goals_per_game': 0.0,
        }
    played = {pid: set() for pid in rows}
    for e, g in _counted_events(events, games_by_id):
        row = rows.get(e.player_id)
        if row is None:
            continue
        played[e.player_id].add(g.id)
        if e.event_type == 'goal':
            row['goals'] += 1
        elif e.event_type == 'assist':
            row['assists'] += 1
        elif e.event_type == 'penalty_goal':
            row['goals'] += 1
            row['penalty_goals'] += 1
        elif e.event_type == 'penalty_miss':
            row['penalty_misses'] += 1
    out = []
    for pid, row in rows.items():
        row['games_played'] = len(played[pid])
        if not row['games_played']:
            continue
        row['goals_per_game'] = round(row['goals'] / row['games_played'], 2)
        out.append(row)
    out.sort(key=lambda r: (-r['goals'], -r['assists'], r['player_name']))
    return out


def compute_standings(games, teams, rules):
    rows = {}
    for t in teams:
        rows[t.id] = {
            'team_id': t.id,
            'team_name': t.name,
            'color_hex': getattr(t, 'color_hex', None),
            'matchday_id': t.matchday_id,
            'games_played': 0,
            'wins': 0,
            'draws': 0,
            'losses': 0,
            'penalty_wins': 0,
            'penalty_losses': 0,
            'goals_for': 0,
            'goals_against': 0,
            'goal_difference': 0,
            'points': 0,
        }
    for g in games:
        if g.status != 'completed':
            continue
        home = rows.get(g.home_team_id)
        away = rows.get(g.away_team_id)
        if home is None or away is None:
            continue
        hs, as_ = g.home_score or 0, g.away_score or 0
        home['games_played'] += 1
        away['games_played'] += 1
        home['goals_for'] += hs
        home['goals_against'] += as_
        away['goals_for'] += as_
        away['goals_against'] += hs
        if g.winner_team_id in (g.home_team_id, g.away_team_id):
            win, lose = (home, away) if g.winner_team_id == g.home_team_id else (away, home)
            win['wins'] += 1
            lose['losses'] += 1
            if g.end_reason == 'penalties':
                win['penalty_wins'] += 1
                lose['penalty_losses'] += 1
        else:
            home['draws'] += 1
            away['draws'] += 1
        home['points'] += points_for(g, g.home_team_id, rules)
        away['points'] += points_for(g, g.away_team_id, rules)
    for row in rows.values():
        row['goal_difference'] = row['goals_for'] - row['goals_against']
    return sorted(
        rows.values(),
        key=lambda r: (-r['points'], -r['goal_difference'], -r['goals_for']),
    )


def compute_overall_player_stats(events, games, players):
    base = compute_player_stats(events, games, players)
    games_by_id = {g.id: g for g in games}
    # player -> {game_id: team the player's first event was for}
    teams_in_game = {}
    for e, g in _counted_events(events, games_by_id):
        teams_in_game.setdefault(e.player_id, {}).setdefault(g.id, e.team_id)
    for row in base:
        per_game = teams_in_game.get(row['player_id'], {})
        matchdays = {games_by_id[gid].matchday_id for gid in per_game}
        wins = sum(1 for gid, team_id in per_game.items()
                   if games_by_id[gid].winner_team_id == team_id)
        row['matchdays_played'] = len(matchdays)
        row['win_rate'] = round(wins / len(per_game) * 100, 1) if per_game else 0.0
    return base


def top_scorers(player_stats, limit=10):
    rows = sorted(
        player_stats,
        key=lambda r: (-r['goals'], -r['assists'], -r['goals_per_game']),
    )
    return rows[:limit]


def top_assists(player_stats, limit=10):
    rows = sorted(
        player_stats,
        key=lambda r: (-r['assists'], -r['goals'], -r['goals_per_game']),
    )
    return rows[:limit]


def average_goals(games):
    completed = [g for g in games if g.status == 'completed']
    if not completed:
        return 0.0
    total = sum((g.home_score or 0) + (g.away_score or 0) for g in completed)
    return round(total / len(completed), 2)
