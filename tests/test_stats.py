import pytest

from stanga.stats import (
    points_for,
    compute_player_stats,
    compute_standings,
    compute_overall_player_stats,
    top_scorers,
    top_assists,
)
from stanga.validation import DEFAULT_RULES


class G:
    def __init__(self, id, home, away, hs, as_, winner=None, end_reason='regulation',
                 status='completed', matchday_id=1):
        self.id = id
        self.home_team_id = home
        self.away_team_id = away
        self.home_score = hs
        self.away_score = as_
        self.winner_team_id = winner
        self.end_reason = end_reason
        self.status = status
        self.matchday_id = matchday_id


class T:
    def __init__(self, id, name, matchday_id=1):
        self.id = id
        self.name = name
        self.matchday_id = matchday_id
        self.color_hex = None


class P:
    def __init__(self, id, name):
        self.id = id
        self.name = name


class E:
    def __init__(self, game_id, player_id, team_id, event_type, is_active=True):
        self.game_id = game_id
        self.player_id = player_id
        self.team_id = team_id
        self.event_type = event_type
        self.is_active = is_active


def test_points_for():
    reg = G(1, 10, 20, 2, 0, winner=10)
    assert points_for(reg, 10, DEFAULT_RULES) == 3
    assert points_for(reg, 20, DEFAULT_RULES) == 0
    pens = G(2, 10, 20, 1, 1, winner=20, end_reason='penalties')
    assert points_for(pens, 20, DEFAULT_RULES) == pytest.approx(2.0)
    assert points_for(pens, 10, DEFAULT_RULES) == 1
    draw = G(3, 10, 20, 1, 1)
    assert points_for(draw, 10, DEFAULT_RULES) == 1
    live = G(4, 10, 20, 1, 0, winner=10, status='active')
    assert points_for(live, 10, DEFAULT_RULES) == 0


def test_points_for_custom_rules():
    rules = {'penalty_win_weight': 1, 'points': {'draw': 2, 'regulation_win': 4}}
    pens = G(1, 10, 20, 0, 0, winner=10, end_reason='penalties')
    assert points_for(pens, 10, rules) == 4
    assert points_for(G(2, 10, 20, 1, 0, winner=10, end_reason='early_finish'), 10, rules) == 4


def test_compute_standings_sorting():
    teams = [T(1, 'Black'), T(2, 'White'), T(3, 'Red')]
    games = [
        G(1, 1, 2, 2, 0, winner=1, end_reason='early_finish'),
        G(2, 1, 3, 1, 1, winner=3, end_reason='penalties'),
        G(3, 3, 2, 1, 1),
        G(4, 2, 3, 5, 0, status='active'),
    ]
    rows = compute_standings(games, teams, DEFAULT_RULES)
    by_name = {r['team_name']: r for r in rows}
    assert [r['team_name'] for r in rows] == ['Black', 'Red', 'White']
    assert by_name['Black']['points'] == 4
    assert by_name['Black']['penalty_losses'] == 1
    assert by_name['Red']['points'] == 3
    assert by_name['Red']['penalty_wins'] == 1
    assert by_name['Red']['draws'] == 1
    assert by_name['White']['games_played'] == 2
    assert by_name['White']['goal_difference'] == -2


def test_standings_tie_breaks_on_goal_difference_then_goals():
    teams = [T(1, 'A'), T(2, 'B'), T(3, 'C'), T(4, 'D')]
    games = [
        G(1, 1, 4, 3, 0, winner=1),
        G(2, 2, 4, 4, 1, winner=2),
        G(3, 3, 4, 2, 0, winner=3),
    ]
    rows = compute_standings(games, teams, DEFAULT_RULES)
    assert [r['team_name'] for r in rows] == ['B', 'A', 'C', 'D']


def test_player_stats():
    players = [P(1, 'Ana'), P(2, 'Dan'), P(3, 'Bench')]
    games = [G(1, 10, 20, 2, 0, winner=10), G(2, 10, 20, 1, 0, winner=10), G(3, 10, 20, 1, 0, status='active')]
    events = [
        E(1, 1, 10, 'goal'), E(1, 2, 10, 'assist'), E(1, 1, 10, 'goal'),
        E(2, 2, 10, 'penalty_goal'), E(2, 1, 10, 'penalty_miss'),
        E(2, 1, 10, 'goal', is_active=False),
        E(3, 1, 10, 'goal'),
    ]
    rows = {r['player_name']: r for r in compute_player_stats(events, games, players)}
    assert set(rows) == {'Ana', 'Dan'}
    assert rows['Ana']['goals'] == 2
    assert rows['Ana']['games_played'] == 2
    assert rows['Ana']['penalty_misses'] == 1
    assert rows['Ana']['goals_per_game'] == 1.0
    assert rows['Dan']['goals'] == 1
    assert rows['Dan']['penalty_goals'] == 1
    assert rows['Dan']['assists'] == 1


def test_overall_player_stats_win_rate():
    players = [P(1, 'Ana')]
    games = [
        G(1, 10, 20, 1, 0, winner=10, matchday_id=1),
        G(2, 30, 40, 0, 1, winner=40, matchday_id=2),
    ]
    events = [E(1, 1, 10, 'goal'), E(2, 1, 30, 'assist'), E(2, 1, 30, 'assist')]
    (row,) = compute_overall_player_stats(events, games, players)
    assert row['matchdays_played'] == 2
    assert row['win_rate'] == 50.0


def test_top_lists():
    rows = [
        {'player_name': 'A', 'goals': 3, 'assists': 0, 'goals_per_game': 1.0},
        {'player_name': 'B', 'goals': 3, 'assists': 2, 'goals_per_game': 1.5},
        {'player_name': 'C', 'goals': 1, 'assists': 5, 'goals_per_game': 0.5},
    ]
    assert [r['player_name'] for r in top_scorers(rows)] == ['B', 'A', 'C']
    assert [r['player_name'] for r in top_assists(rows, limit=2)] == ['C', 'B']


def test_matchday_stats_endpoint(member, matchday, active_game, teams, squads):
    black = teams[0]['id']
    ana, bogdan = squads[black]
    url = f"/api/games/{active_game['id']}/goals"
    member.post(url, json={'team_id': black, 'player_id': ana['id'], 'assist_id': bogdan['id']})
    member.post(url, json={'team_id': black, 'player_id': ana['id']})

    data = member.get(f"/api/stats/matchday/{matchday['id']}").get_json()['data']
    assert data['summary']['completed_games'] == 1
    assert data['summary']['total_goals'] == 2
    assert data['summary']['total_teams'] == 3
    assert data['standings'][0]['team_id'] == black
    assert data['standings'][0]['points'] == 3
    assert data['top_scorers'][0]['player_name'] == 'Ana'
    assert data['top_assists'][0]['player_name'] == 'Bogdan'


def test_overall_stats_endpoint(member, outsider, group, matchday, active_game, teams, squads):
    black = teams[0]['id']
    member.post(f"/api/games/{active_game['id']}/goals", json={'team_id': black, 'player_id': squads[black][0]['id']})
    member.patch(f"/api/games/{active_game['id']}", json={'end_reason': 'regulation', 'winner_team_id': black})
    resp = member.get(f"/api/stats/overall?group_id={group['id']}")
    data = resp.get_json()['data']
    assert data['summary']['total_games'] == 1
    assert data['summary']['total_matchdays'] == 1
    assert data['summary']['average_goals_per_game'] == 1.0
    assert data['player_stats'][0]['win_rate'] == 100.0
    assert data['matchday_standings'][0]['matchday_id'] == matchday['id']
    assert outsider.get(f"/api/stats/overall?group_id={group['id']}").status_code == 403
    assert member.get('/api/stats/overall').status_code == 400
