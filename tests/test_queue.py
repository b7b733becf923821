from datetime import datetime, timedelta

from stanga.teams import suggest_next_game

T0 = datetime(2030, 5, 14, 19, 0)


class FakeTeam:
    def __init__(self, id, name):
        self.id = id
        self.name = name


class FakeGame:
    def __init__(self, id, home, away, winner=None, status='completed', minute=0):
        self.id = id
        self.home_team_id = home
        self.away_team_id = away
        self.winner_team_id = winner
        self.status = status
        self.started_at = T0 + timedelta(minutes=minute)
        self.ended_at = self.started_at + timedelta(minutes=8) if status == 'completed' else None
        self.created_at = self.started_at
        self.queue_position = id

    def team_ids(self):
        return (self.home_team_id, self.away_team_id)


TEAMS = [FakeTeam(1, 'White'), FakeTeam(2, 'Black'), FakeTeam(3, 'Red')]


def names(s):
    return s['home'].name, s['away'].name, [t.name for t in s['waiting']]


def test_needs_two_teams():
    assert suggest_next_game(TEAMS[:1], []) is None


def test_first_game_uses_name_order():
    s = suggest_next_game(TEAMS, [])
    assert names(s) == ('Black', 'Red', ['White'])
    assert s['reason'] == 'first_game'


def test_winner_stays_and_loser_waits():
    games = [FakeGame(1, 2, 3, winner=3)]
    assert names(suggest_next_game(TEAMS, games)) == ('Red', 'White', ['Black'])


def test_draw_falls_back_to_first_pair():
    games = [FakeGame(1, 2, 3, winner=None)]
    s = suggest_next_game(TEAMS, games)
    assert names(s) == ('Black', 'Red', ['White'])
    assert s['reason'] == 'no_previous_winner'


def test_only_latest_completed_game_counts():
    games = [
        FakeGame(1, 2, 3, winner=3, minute=0),
        FakeGame(2, 3, 1, winner=1, minute=10),
        FakeGame(3, 1, 2, status='active', minute=20),
    ]
    assert names(suggest_next_game(TEAMS, games)) == ('White', 'Black', ['Red'])


def test_two_teams_play_again():
    two = TEAMS[:2]
    games = [FakeGame(1, 1, 2, winner=1)]
    assert names(suggest_next_game(two, games)) == ('White', 'Black', [])


def test_longest_idle_team_comes_in_with_four_teams():
    teams = TEAMS + [FakeTeam(4, 'Green')]
    games = [
        FakeGame(1, 2, 4, winner=2, minute=0),    # Black beats Green
        FakeGame(2, 2, 3, winner=2, minute=10),   # Black beats Red
    ]
    # White never played, Green sat out longer than Red
    assert names(suggest_next_game(teams, games)) == ('Black', 'White', ['Green', 'Red'])
