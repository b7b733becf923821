from datetime import date, timedelta

from stanga.models import User


def test_user_crud(session):
    # create
    u = User(email='test@example.com', full_name='Test')
    u.set_password('secret')
    session.add(u)
    session.commit()

    fetched = session.query(User).filter_by(email='test@example.com').one()
    assert fetched.check_password('secret')
    assert not fetched.check_password('wrong')
    assert fetched.is_active

    # modify
    fetched.full_name = 'Updated'
    session.commit()
    assert session.get(User, fetched.id).full_name == 'Updated'

    # delete
    session.delete(fetched)
    session.commit()
    assert session.query(User).count() == 0


def test_register_login_logout(client):
    resp = client.post('/api/auth/register', json={
        'email': 'Player@Example.com', 'password': 'secret123', 'full_name': 'Player One',
    })
    assert resp.status_code == 201
    assert resp.get_json()['data']['email'] == 'player@example.com'

    assert client.get('/api/auth/me').status_code == 200
    assert client.post('/api/auth/logout').status_code == 200
    resp = client.get('/api/auth/me')
    assert resp.status_code == 401
    assert resp.get_json() == {'error': 'Authentication required'}

    resp = client.post('/api/auth/login', json={'email': 'player@example.com', 'password': 'nope'})
    assert resp.status_code == 401
    resp = client.post('/api/auth/login', json={'email': 'player@example.com', 'password': 'secret123'})
    assert resp.status_code == 200
    assert resp.get_json()['data']['full_name'] == 'Player One'


def test_register_rejects_duplicates_and_short_passwords(client):
    assert client.post('/api/auth/register', json={'email': 'a@b.co', 'password': '123'}).status_code == 400
    assert client.post('/api/auth/register', json={'email': 'a@b.co', 'password': '123456'}).status_code == 201
    resp = client.post('/api/auth/register', json={'email': 'A@B.co', 'password': '123456'})
    assert resp.status_code == 409


def test_profile_update(make_client):
    c = make_client('profile@example.com')
    resp = c.patch('/api/profile', json={
        'full_name': '  Maria Pop ', 'gender': 'female', 'date_of_birth': '1990-04-02',
    })
    assert resp.status_code == 200
    data = resp.get_json()['data']
    assert data['full_name'] == 'Maria Pop'
    assert data['gender'] == 'female'
    assert data['date_of_birth'] == '1990-04-02'


def test_profile_validation(make_client):
    c = make_client('profile@example.com')
    assert c.patch('/api/profile', json={'full_name': ''}).status_code == 400
    assert c.patch('/api/profile', json={'full_name': 'x' * 101}).status_code == 400
    assert c.patch('/api/profile', json={'full_name': 'Ok', 'gender': 'robot'}).status_code == 400
    assert c.patch('/api/profile', json={'full_name': 'Ok', 'date_of_birth': '1899-12-31'}).status_code == 400
    future = (date.today() + timedelta(days=1)).isoformat()
    assert c.patch('/api/profile', json={'full_name': 'Ok', 'date_of_birth': future}).status_code == 400
    assert c.patch('/api/profile', json={'full_name': 'Ok', 'date_of_birth': '2000-01-01garbage'}).status_code == 400
    resp = c.patch('/api/profile', json={'full_name': 'Ok', 'date_of_birth': '2000-01-01T00:00:00Z'})
    assert resp.get_json()['data']['date_of_birth'] == '2000-01-01'
    assert c.patch('/api/profile', json={'full_name': 'Ok', 'gender': 'prefer_not_to_say'}).status_code == 200


def test_protected_routes_require_login(client):
    assert client.get('/api/groups').status_code == 401
    assert client.post('/api/players', json={}).status_code == 401
