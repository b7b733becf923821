from stanga.activity import generate_diff
from stanga.app import db
from stanga.models import ActivityLog


def test_generate_diff():
    assert generate_diff(None, {'name': 'Ana'}) == {'created': {'name': 'Ana'}}
    assert generate_diff({'name': 'Ana'}, None) == {'deleted': {'name': 'Ana'}}
    diff = generate_diff({'name': 'Ana', 'team': 1}, {'name': 'Anna', 'team': 1, 'x': 2})
    assert diff == {'name': {'from': 'Ana', 'to': 'Anna'}, 'x': {'from': None, 'to': 2}}
    assert generate_diff({'a': 1}, {'a': 1}) == {}


def test_player_lifecycle_is_audited(app, owner, make_players):
    (p,) = make_players(['Ana'])
    owner.patch(f"/api/players/{p['id']}", json={'name': 'Anna'})
    owner.delete(f"/api/players/{p['id']}")
    owner.post(f"/api/players/{p['id']}/restore")
    with app.app_context():
        rows = (
            db.session.query(ActivityLog)
            .filter_by(entity_type='player', entity_id=p['id'])
            .order_by(ActivityLog.id)
            .all()
        )
        assert [r.action for r in rows] == ['create', 'update', 'delete', 'restore']
        assert all(r.actor_id == owner.user_id for r in rows)
        assert rows[0].to_dict()['changes']['created']['name'] == 'Ana'
        assert rows[1].to_dict()['changes'] == {'name': {'from': 'Ana', 'to': 'Anna'}}
        assert rows[2].to_dict()['changes']['is_active'] == {'from': True, 'to': False}


def test_admin_activity_endpoint(make_client, owner, group):
    admin = make_client('root@example.com', site_admin=True)
    assert owner.get('/api/admin/activity').status_code == 403
    resp = admin.get('/api/admin/activity?entity_type=group')
    assert resp.status_code == 200
    rows = resp.get_json()['data']
    assert [(r['entity_type'], r['action']) for r in rows] == [('group', 'create')]
    assert rows[0]['entity_id'] == group['id']
    assert admin.get('/api/admin/activity?entity_type=spaceship').status_code == 400
    assert len(admin.get('/api/admin/activity?limit=1').get_json()['data']) == 1


def test_activity_log_can_be_disabled(tmp_path, monkeypatch):
    from stanga.app import create_app

    monkeypatch.setenv("STANGA_DB_PATH", str(tmp_path / "quiet.db"))
    monkeypatch.setenv("STANGA_LOG_DB_PATH", str(tmp_path / "quiet_logs.db"))
    monkeypatch.setenv("STANGA_ACTIVITY_LOG", "false")
    application = create_app()
    with application.app_context():
        db.create_all()
    c = application.test_client()
    c.post('/api/auth/register', json={'email': 'q@example.com', 'password': 'secret123'})
    c.post('/api/groups', json={'name': 'Quiet'})
    with application.app_context():
        assert db.session.query(ActivityLog).count() == 0
        db.session.remove()


def test_admin_status(make_client):
    admin = make_client('root@example.com', site_admin=True)
    data = admin.get('/api/admin/status').get_json()['data']
    assert data['counts']['users'] == 1
    assert data['ram_usage'] > 0
