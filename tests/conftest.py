"""Pytest fixtures for team board"""
import io
from urllib.parse import urlsplit

import pytest

from app import create_app
from client import TeamBoardClient
from config import TestingConfig
from models import db, Profile

PASSWORD = 'password123'


@pytest.fixture()
def app(tmp_path):
    class _Config(TestingConfig):
        UPLOAD_FOLDER = str(tmp_path / 'uploads')

    app = create_app(_Config)
    try:
        yield app
    finally:
        with app.app_context():
            db.session.remove()
            db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


def set_role(app, user_id, role):
    with app.app_context():
        profile = db.session.get(Profile, user_id)
        profile.role = role
        db.session.commit()


def login_headers(app, email, password=PASSWORD):
    # 用另一個 test client,避免 login 的 cookie 留在共用的 client 上
    res = app.test_client().post('/auth/login', json={'email': email, 'password': password})
    assert res.status_code == 200, res.get_json()
    return {'Authorization': f"Bearer {res.get_json()['access_token']}"}


@pytest.fixture()
def make_user(app, client):
    """註冊使用者並回傳 (id, Authorization headers)"""
    def _make(email, role='member', full_name=None):
        res = client.post('/auth/register', json={
            'email': email,
            'password': PASSWORD,
            'full_name': full_name or email.split('@')[0].title()
        })
        assert res.status_code == 201, res.get_json()
        user_id = res.get_json()['id']
        if role != 'member':
            set_role(app, user_id, role)
        return user_id, login_headers(app, email)
    return _make


@pytest.fixture()
def make_project(client):
    def _make(headers, name='Website Redesign', description='New landing page'):
        res = client.post('/api/projects', json={'name': name, 'description': description}, headers=headers)
        assert res.status_code == 201, res.get_json()
        return res.get_json()['id']
    return _make


# --- TeamBoardClient over the Flask test client -----------------------------

class _TestResponse:
    """只實作 TeamBoardClient 用到的 requests.Response 介面"""

    def __init__(self, resp):
        self._resp = resp
        self.status_code = resp.status_code
        self.ok = resp.status_code < 400
        self.reason = resp.status.split(' ', 1)[1] if ' ' in resp.status else ''

    def json(self):
        payload = self._resp.get_json(silent=True)
        if payload is None:
            raise ValueError('Response body is not JSON')
        return payload


class FlaskTransport:
    """取代 requests.Session,把 request 轉給 Flask test client"""

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls = []

    def request(self, method, url, json=None, params=None, files=None, data=None, headers=None, timeout=None):
        path = urlsplit(url).path
        self.calls.append((method, path))

        kwargs = {'headers': headers or {}, 'query_string': params}
        if files:
            form = dict(data or {})
            for field, (filename, content, content_type) in files.items():
                form[field] = (io.BytesIO(content), filename, content_type)
            kwargs['data'] = form
            kwargs['content_type'] = 'multipart/form-data'
        elif json is not None:
            kwargs['json'] = json

        return _TestResponse(self.test_client.open(path, method=method, **kwargs))


@pytest.fixture()
def api_client(app):
    """回傳一個 factory: api_client(email) 會登入後回傳 TeamBoardClient"""
    def _make(email=None, password=PASSWORD):
        transport = FlaskTransport(app.test_client(use_cookies=False))
        api = TeamBoardClient('http://localhost', session=transport)
        if email:
            result = api.login_email(email, password)
            assert result.error is None, result.error
        return api
    return _make
