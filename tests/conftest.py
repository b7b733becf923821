import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from stanga.app import create_app, db
from stanga.models import User


@pytest.fixture
def app(tmp_path, monkeypatch):
    # use temporary SQLite databases for testing
    monkeypatch.setenv("STANGA_DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("STANGA_LOG_DB_PATH", str(tmp_path / "test_logs.db"))
    monkeypatch.delenv("STANGA_DATABASE_URL", raising=False)
    monkeypatch.delenv("STANGA_ACTIVITY_LOG", raising=False)
    application = create_app()
    application.config['TESTING'] = True
    with application.app_context():
        db.create_all()
    # requests push their own app context so logins do not leak between clients
    yield application
    with application.app_context():
        db.session.remove()


@pytest.fixture
def session(app):
    with app.app_context():
        yield db.session
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_client(app):
    def factory(email, full_name=None, password='secret123', site_admin=False):
        c = app.test_client()
        resp = c.post('/api/auth/register', json={
            'email': email, 'password': password, 'full_name': full_name or email.split('@')[0],
        })
        assert resp.status_code == 201, resp.get_json()
        if site_admin:
            with app.app_context():
                u = db.session.query(User).filter_by(email=email).one()
                u.is_admin = True
                db.session.commit()
        c.user_id = resp.get_json()['data']['id']
        return c
    return factory


@pytest.fixture
def owner(make_client):
    return make_client('owner@example.com', 'Group Owner')


@pytest.fixture
def group(owner):
    resp = owner.post('/api/groups', json={'name': 'Tuesday Five', 'description': 'Weekly game'})
    assert resp.status_code == 201
    return resp.get_json()['data']


@pytest.fixture
def member(make_client, group):
    c = make_client('member@example.com', 'Regular Member')
    resp = c.post('/api/groups/join', json={'invite_code': group['invite_code'].lower()})
    assert resp.status_code == 200
    return c


@pytest.fixture
def outsider(make_client):
    return make_client('outsider@example.com', 'Out Sider')


@pytest.fixture
def make_players(owner, group):
    def factory(names):
        created = []
        for name in names:
            resp = owner.post('/api/players', json={'group_id': group['id'], 'name': name})
            assert resp.status_code == 201, resp.get_json()
            created.append(resp.get_json()['data'])
        return created
    return factory


@pytest.fixture
def matchday(owner, group):
    resp = owner.post('/api/matchdays', json={
        'group_id': group['id'],
        'scheduled_at': '2030-05-14T19:00:00Z',
        'location': 'Riverside Pitch',
        'rules': {'team_size': 2},
    })
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['data']


@pytest.fixture
def teams(owner, matchday):
    resp = owner.post(f"/api/matchdays/{matchday['id']}/teams")
    assert resp.status_code == 201
    return resp.get_json()['data']


@pytest.fixture
def squads(owner, teams, make_players):
    """Two players on each of the three generated teams."""
    players = make_players(['Ana', 'Bogdan', 'Cristi', 'Dan', 'Elena', 'Florin'])
    squads = {}
    for idx, team in enumerate(teams):
        squads[team['id']] = []
        for p in players[idx * 2: idx * 2 + 2]:
            resp = owner.post(f"/api/teams/{team['id']}/assign", json={'player_id': p['id']})
            assert resp.status_code == 201, resp.get_json()
            squads[team['id']].append(p)
    return squads


@pytest.fixture
def active_game(owner, matchday, teams, squads):
    resp = owner.post(f"/api/matchdays/{matchday['id']}/games", json={
        'home_team_id': teams[0]['id'], 'away_team_id': teams[1]['id'],
    })
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['data']
