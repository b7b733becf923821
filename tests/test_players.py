def test_create_and_list_players(owner, group, make_players):
    make_players(['Ana', 'Mihai', 'Anca'])
    resp = owner.get(f"/api/players?group_id={group['id']}")
    body = resp.get_json()
    # newest first
    assert [p['name'] for p in body['data']] == ['Anca', 'Mihai', 'Ana']
    assert body['pagination'] == {
        'page': 1, 'limit': 20, 'total': 3, 'total_pages': 1, 'has_next': False, 'has_prev': False,
    }

    resp = owner.get(f"/api/players?group_id={group['id']}&query=an")
    assert sorted(p['name'] for p in resp.get_json()['data']) == ['Ana', 'Anca']

    # wildcards in the search term are matched literally
    assert owner.get(f"/api/players?group_id={group['id']}&query=_").get_json()['data'] == []
    assert owner.get(f"/api/players?group_id={group['id']}&query=%25").get_json()['data'] == []

    resp = owner.get(f"/api/players?group_id={group['id']}&limit=2&page=2")
    body = resp.get_json()
    assert [p['name'] for p in body['data']] == ['Ana']
    assert body['pagination']['has_prev'] and not body['pagination']['has_next']


def test_player_validation(owner, group):
    assert owner.post('/api/players', json={'group_id': group['id'], 'name': 'A'}).status_code == 400
    assert owner.post('/api/players', json={'group_id': group['id'], 'name': 'x' * 101}).status_code == 400
    assert owner.get(f"/api/players?group_id={group['id']}&limit=500").status_code == 400
    assert owner.get('/api/players').status_code == 400


def test_members_read_but_cannot_write(member, group, make_players):
    make_players(['Ana'])
    assert member.get(f"/api/players?group_id={group['id']}").status_code == 200
    resp = member.post('/api/players', json={'group_id': group['id'], 'name': 'Sneaky'})
    assert resp.status_code == 403
    assert resp.get_json()['error'] == 'Group admin access required'


def test_outsider_cannot_list(outsider, group):
    assert outsider.get(f"/api/players?group_id={group['id']}").status_code == 403


def test_soft_delete_and_restore(owner, group, make_players):
    (p,) = make_players(['Ana'])
    assert owner.delete(f"/api/players/{p['id']}").status_code == 200
    assert owner.delete(f"/api/players/{p['id']}").status_code == 404
    assert owner.patch(f"/api/players/{p['id']}", json={'name': 'Anna'}).status_code == 404

    assert owner.get(f"/api/players?group_id={group['id']}").get_json()['data'] == []
    deleted = owner.get(f"/api/players?group_id={group['id']}&is_active=false").get_json()['data']
    assert [d['id'] for d in deleted] == [p['id']]
    assert deleted[0]['deleted_at'] is not None

    resp = owner.post(f"/api/players/{p['id']}/restore")
    assert resp.status_code == 200
    assert resp.get_json()['data']['deleted_at'] is None
    assert owner.post(f"/api/players/{p['id']}/restore").status_code == 404
    assert len(owner.get(f"/api/players?group_id={group['id']}").get_json()['data']) == 1


def test_update_player_only_touches_allowed_fields(owner, group, make_players):
    (p,) = make_players(['Ana'])
    resp = owner.patch(f"/api/players/{p['id']}", json={'name': 'Ana Maria', 'group_id': 999})
    data = resp.get_json()['data']
    assert data['name'] == 'Ana Maria'
    assert data['group_id'] == group['id']


def test_claim_and_unclaim(owner, member, group, make_players):
    first, second = make_players(['Ana', 'Bogdan'])
    resp = member.post(f"/api/players/{first['id']}/claim")
    assert resp.status_code == 200
    assert resp.get_json()['data']['user_id'] == member.user_id

    assert owner.post(f"/api/players/{first['id']}/claim").status_code == 400
    # one claimed player per group
    assert member.post(f"/api/players/{second['id']}/claim").status_code == 400

    assert owner.delete(f"/api/players/{first['id']}/claim").status_code == 403
    resp = member.delete(f"/api/players/{first['id']}/claim")
    assert resp.status_code == 200
    assert resp.get_json()['data']['user_id'] is None


def test_admin_cannot_link_user_to_second_player(owner, member, group, make_players):
    ana, bogdan = make_players(['Ana', 'Bogdan'])
    assert member.post(f"/api/players/{ana['id']}/claim").status_code == 200

    resp = owner.patch(f"/api/players/{bogdan['id']}", json={'user_id': member.user_id})
    assert resp.status_code == 400
    resp = owner.post('/api/players', json={'group_id': group['id'], 'name': 'Cristi', 'user_id': member.user_id})
    assert resp.status_code == 400
    # re-saving the already linked player is fine
    resp = owner.patch(f"/api/players/{ana['id']}", json={'name': 'Ana Maria', 'user_id': member.user_id})
    assert resp.status_code == 200

    owner.delete(f"/api/players/{ana['id']}")
    resp = owner.patch(f"/api/players/{bogdan['id']}", json={'user_id': member.user_id})
    assert resp.status_code == 200
    assert resp.get_json()['data']['user_id'] == member.user_id
