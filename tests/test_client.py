import requests

from client import TeamBoardClient, ApiError, sanitize_filename
from conftest import PASSWORD
from tasks import TITLE_ERROR


# --- A tiny fake session for transport-level behaviour ---------------------

class _FakeResponse:
    def __init__(self, status_code, payload=None, reason='', is_json=True):
        self.status_code = status_code
        self.ok = status_code < 400
        self.reason = reason
        self._payload = payload
        self._is_json = is_json

    def json(self):
        if not self._is_json:
            raise ValueError('not json')
        return self._payload


class _FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response


def test_network_failure_becomes_error_result():
    session = _FakeSession(error=requests.ConnectionError('connection refused'))
    api = TeamBoardClient('http://localhost:8888', session=session)

    result = api.get_projects()

    assert result.data is None
    assert isinstance(result.error, ApiError)
    assert result.error.status is None
    assert 'connection refused' in result.error.message


def test_error_body_message_and_code_are_kept():
    session = _FakeSession(_FakeResponse(409, {'error': 'User is already a member', 'code': 'conflict'}))
    api = TeamBoardClient('http://localhost:8888', session=session)

    result = api.add_project_member(1, 2)

    assert result.error.message == 'User is already a member'
    assert result.error.status == 409
    assert result.error.is_conflict


def test_non_json_error_falls_back_to_reason():
    session = _FakeSession(_FakeResponse(502, reason='Bad Gateway', is_json=False))
    api = TeamBoardClient('http://localhost:8888', session=session)

    result = api.get_projects()

    assert result.error.message == 'Bad Gateway'
    assert not result.error.is_conflict


def test_gateway_calls_use_api_prefix_and_bearer_token():
    session = _FakeSession(_FakeResponse(200, []))
    api = TeamBoardClient('http://localhost:8888/', session=session)
    api.access_token = 'abc'

    api.get_project_tasks(7)

    method, url, kwargs = session.calls[0]
    assert method == 'GET'
    assert url == 'http://localhost:8888/api/tasks'
    assert kwargs['params'] == {'project_id': 7}
    assert kwargs['headers'] == {'Authorization': 'Bearer abc'}


def test_profile_without_session_makes_no_call():
    session = _FakeSession(_FakeResponse(200, {}))
    api = TeamBoardClient('http://localhost:8888', session=session)

    result = api.get_my_profile()

    assert result.error.message == 'No session'
    assert session.calls == []


def test_sanitize_filename():
    assert sanitize_filename("my photo (1).png") == "my_photo_(1).png"
    assert sanitize_filename("ünïcode/../x.png") == "_n_code_.._x.png"


def test_public_url_is_built_locally():
    session = _FakeSession()
    api = TeamBoardClient('http://localhost:8888', session=session)

    assert api.get_public_url('3/a.png') == 'http://localhost:8888/storage/public/3/a.png'
    assert session.calls == []


# --- Against the real app --------------------------------------------------

def test_login_keeps_session(api_client, make_user):
    user_id, _ = make_user('alice@example.com')
    api = api_client()

    result = api.login_email('alice@example.com', PASSWORD)

    assert result.error is None
    assert api.my_id == user_id
    assert api.get_my_profile().data['email'] == 'alice@example.com'


def test_bad_login_leaves_client_logged_out(api_client, make_user):
    make_user('alice@example.com')
    api = api_client()

    result = api.login_email('alice@example.com', 'nope-nope-nope')

    assert result.error.status == 401
    assert result.error.message == 'Invalid login credentials'
    assert api.my_id is None


def test_validation_message_reaches_caller(api_client, make_user):
    make_user('pm@example.com', role='manager')
    api = api_client('pm@example.com')
    project = api.create_project('Website Redesign', 'New landing page').data

    result = api.create_project_task({'project_id': project['id'], 'title': 'Go'})

    assert result.data is None
    assert result.error.status == 400
    assert result.error.message == TITLE_ERROR


def test_project_task_lifecycle(api_client, make_user):
    make_user('pm@example.com', role='manager')
    dev_id, _ = make_user('dev@example.com')
    api = api_client('pm@example.com')

    project = api.create_project('Website Redesign', '').data
    assert api.add_project_member(project['id'], dev_id).error is None
    assert api.add_project_member(project['id'], dev_id).data['already_member'] is True

    task = api.create_project_task({'project_id': project['id'], 'title': 'Design mockups'}).data
    assert api.update_task_status(task['id'], 'in-progress').data['status'] == 'in-progress'
    assert api.update_task_assignment(task['id'], dev_id).data['assignee']['id'] == dev_id

    stats = api.get_project_stats(project['id']).data
    assert stats['tasks']['in-progress'] == 1

    assert api.delete_project_task(task['id']).error is None
    assert api.get_project_tasks(project['id']).data == []

    assert api.remove_project_member(project['id'], dev_id).error is None
    assert api.get_project_members(project['id']).data == []


def test_upload_then_share(api_client, make_user):
    user_id, _ = make_user('alice@example.com')
    api = api_client('alice@example.com')

    uploaded = api.upload_file(api.my_id, 'my shot.png', b'img', 'image/png')
    assert uploaded.error is None
    assert uploaded.data['path'] == f'{user_id}/my_shot.png'

    assert [f['name'] for f in api.get_files().data] == ['my_shot.png']
    assert api.upload_file(api.my_id, 'my shot.png', b'img').error.is_conflict

    shared = api.share_file(api.my_id, 'my_shot.png', 60)
    assert shared.data['signed_url']

    assert api.delete_file(api.my_id, 'my_shot.png').error is None


def test_admin_changes_role_through_facade(api_client, make_user):
    member_id, _ = make_user('dev@example.com')
    make_user('admin@example.com', role='admin')
    api = api_client('admin@example.com')

    assert api.update_profile_role(member_id, 'manager').data['role'] == 'manager'
    roles = {p['id']: p['role'] for p in api.get_all_profiles().data}
    assert roles[member_id] == 'manager'


def test_logout_forgets_tokens(api_client, make_user):
    make_user('alice@example.com')
    api = api_client('alice@example.com')

    assert api.logout().error is None
    assert api.access_token is None
    assert api.get_my_profile().error.message == 'No session'
