from conftest import PASSWORD, login_headers


def test_register_creates_member_profile(client):
    res = client.post('/auth/register', json={
        'email': 'alice@example.com',
        'password': PASSWORD,
        'full_name': 'Alice'
    })

    assert res.status_code == 201
    body = res.get_json()
    assert body['email'] == 'alice@example.com'
    assert body['full_name'] == 'Alice'
    assert body['role'] == 'member'
    assert 'password_hash' not in body


def test_register_duplicate_email_is_conflict(client, make_user):
    make_user('alice@example.com')

    res = client.post('/auth/register', json={'email': 'alice@example.com', 'password': PASSWORD})

    assert res.status_code == 409
    assert res.get_json()['code'] == 'conflict'


def test_register_rejects_short_password(client):
    res = client.post('/auth/register', json={'email': 'bob@example.com', 'password': 'short'})

    assert res.status_code == 400
    body = res.get_json()
    assert body['error'] == 'Password must be 8-128 characters'
    assert 'password' in body['details']


def test_register_requires_json_body(client):
    res = client.post('/auth/register', data='not json', content_type='text/plain')

    assert res.status_code == 400
    assert res.get_json()['error'] == 'Request body must be JSON'


def test_login_returns_tokens_and_sets_cookies(app, client, make_user):
    make_user('alice@example.com')

    res = client.post('/auth/login', json={'email': 'alice@example.com', 'password': PASSWORD})

    assert res.status_code == 200
    body = res.get_json()
    assert body['access_token']
    assert body['refresh_token']
    assert body['user']['email'] == 'alice@example.com'

    cookies = ' '.join(res.headers.getlist('Set-Cookie'))
    assert 'access_token_cookie=' in cookies
    assert 'refresh_token_cookie=' in cookies


def test_login_with_wrong_password(client, make_user):
    make_user('alice@example.com')

    res = client.post('/auth/login', json={'email': 'alice@example.com', 'password': 'wrong-password'})

    assert res.status_code == 401
    assert res.get_json()['error'] == 'Invalid login credentials'


def test_session_cookie_authenticates_browser_requests(client, make_user):
    make_user('alice@example.com')
    client.post('/auth/login', json={'email': 'alice@example.com', 'password': PASSWORD})

    res = client.get('/auth/me')

    assert res.status_code == 200
    assert res.get_json()['email'] == 'alice@example.com'


def test_logout_clears_cookies(client, make_user):
    make_user('alice@example.com')
    client.post('/auth/login', json={'email': 'alice@example.com', 'password': PASSWORD})

    res = client.post('/auth/logout')
    assert res.status_code == 200
    assert res.get_json() == {'success': True}

    assert client.get('/auth/me').status_code == 401


def test_me_requires_authentication(client):
    res = client.get('/auth/me')

    assert res.status_code == 401
    assert res.get_json()['error'] == 'Unauthorized'


def test_invalid_token_is_rejected(client):
    res = client.get('/auth/me', headers={'Authorization': 'Bearer not-a-token'})

    assert res.status_code == 401
    assert res.get_json()['error'] == 'Invalid session'


def test_update_own_profile(client, make_user):
    _, headers = make_user('alice@example.com')

    res = client.patch('/auth/me', json={'full_name': 'Alice Liddell', 'avatar_url': 'http://x/a.png'},
                       headers=headers)

    assert res.status_code == 200
    assert res.get_json()['full_name'] == 'Alice Liddell'
    assert client.get('/auth/me', headers=headers).get_json()['avatar_url'] == 'http://x/a.png'


def test_refresh_issues_new_access_token(app, client, make_user):
    make_user('alice@example.com')
    tokens = app.test_client().post(
        '/auth/login', json={'email': 'alice@example.com', 'password': PASSWORD}
    ).get_json()

    res = client.post('/auth/refresh', headers={'Authorization': f"Bearer {tokens['refresh_token']}"})

    assert res.status_code == 200
    new_token = res.get_json()['access_token']
    assert client.get('/auth/me', headers={'Authorization': f'Bearer {new_token}'}).status_code == 200


def test_only_admin_can_change_roles(client, make_user):
    member_id, member_headers = make_user('member@example.com')
    _, admin_headers = make_user('admin@example.com', role='admin')

    denied = client.patch(f'/auth/profiles/{member_id}/role', json={'role': 'manager'}, headers=member_headers)
    assert denied.status_code == 403

    res = client.patch(f'/auth/profiles/{member_id}/role', json={'role': 'manager'}, headers=admin_headers)
    assert res.status_code == 200
    assert res.get_json()['role'] == 'manager'


def test_change_role_validates_role(client, make_user):
    member_id, _ = make_user('member@example.com')
    _, admin_headers = make_user('admin@example.com', role='admin')

    res = client.patch(f'/auth/profiles/{member_id}/role', json={'role': 'owner'}, headers=admin_headers)

    assert res.status_code == 400
    assert res.get_json()['error'] == 'Role must be one of: admin, manager, member'


def test_change_role_unknown_profile(client, make_user):
    _, admin_headers = make_user('admin@example.com', role='admin')

    res = client.patch('/auth/profiles/999/role', json={'role': 'manager'}, headers=admin_headers)

    assert res.status_code == 404


def test_users_list_needs_login(app, client, make_user):
    make_user('alice@example.com')
    headers = login_headers(app, 'alice@example.com')

    assert client.get('/api/users').status_code == 401

    users = client.get('/api/users', headers=headers).get_json()
    assert [u['email'] for u in users] == ['alice@example.com']
    assert set(users[0]) >= {'id', 'full_name', 'email', 'role'}


def test_health_and_index(client):
    health = client.get('/health')
    assert health.status_code == 200
    assert health.get_json()['database'] == 'connected'

    index = client.get('/')
    assert index.get_json()['message'] == 'Team Board API'
    assert index.headers['X-Content-Type-Options'] == 'nosniff'


def test_unknown_route_returns_json_404(client):
    res = client.get('/nope')

    assert res.status_code == 404
    assert res.get_json()['error'] == 'The requested resource does not exist'
