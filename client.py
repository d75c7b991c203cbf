from collections import namedtuple
import logging
import re

import requests

logger = logging.getLogger(__name__)

# ============================================
# 統一的回傳格式
# ============================================

# error 為 None 代表成功
Result = namedtuple('Result', ['data', 'error'])


class ApiError:
    """
    呼叫失敗時的錯誤物件

    status 為 None 代表連線失敗 (沒有拿到 HTTP 回應);
    code 是 API 回傳的錯誤代碼,例如 'conflict'
    """

    def __init__(self, message, status=None, code=None):
        self.message = message
        self.status = status
        self.code = code

    @property
    def is_conflict(self):
        return self.code == 'conflict' or self.status == 409

    def __repr__(self):
        return f"ApiError({self.message!r}, status={self.status!r}, code={self.code!r})"

    def __str__(self):
        return self.message


_UNSAFE_FILENAME_CHARS = re.compile(r"[^0-9a-zA-Z!\-_.*'()]")


def sanitize_filename(filename):
    return _UNSAFE_FILENAME_CHARS.sub('_', filename)


class TeamBoardClient:
    """
    Client data facade

    專案 / 任務 / 評論 / 成員 / 使用者列表走 /api (gateway);
    登入、自己的 profile、檔案儲存直接打 data service (/auth, /storage)。

    每個方法只送出一個 request,不重試,也不會因為預期中的錯誤丟 exception,
    呼叫端要自己檢查 result.error
    """

    def __init__(self, base_url, session=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        self.access_token = None
        self.refresh_token = None
        self.user = None

    # ============================================
    # HTTP helpers
    # ============================================

    def _headers(self, token=None):
        token = token or self.access_token
        return {'Authorization': f'Bearer {token}'} if token else {}

    def _request(self, path, method='GET', body=None, params=None, files=None, data=None, token=None):
        url = f"{self.base_url}{path}"
        try:
            res = self.session.request(
                method,
                url,
                json=body,
                params=params,
                files=files,
                data=data,
                headers=self._headers(token),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {str(e)}")
            return Result(None, ApiError(str(e)))

        if not res.ok:
            message = res.reason or f'HTTP {res.status_code}'
            code = None
            try:
                payload = res.json()
                if isinstance(payload, dict):
                    message = payload.get('error') or message
                    code = payload.get('code')
            except ValueError:
                pass
            logger.debug(f"{method} {path} -> {res.status_code}: {message}")
            return Result(None, ApiError(message, status=res.status_code, code=code))

        try:
            return Result(res.json(), None)
        except ValueError:
            return Result(None, ApiError('Invalid JSON response', status=res.status_code))

    def _api_request(self, endpoint, method='GET', body=None, params=None):
        return self._request(f"/api{endpoint}", method, body=body, params=params)

    def _no_session(self):
        return Result(None, ApiError('No session', status=401))

    # ============================================
    # Auth (直接打 data service)
    # ============================================

    def login_email(self, email, password):
        result = self._request('/auth/login', 'POST', {'email': email, 'password': password})
        if result.error is None:
            self.access_token = result.data['access_token']
            self.refresh_token = result.data.get('refresh_token')
            self.user = result.data.get('user')
        return result

    def register_email(self, email, password, full_name=''):
        return self._request('/auth/register', 'POST', {
            'email': email,
            'password': password,
            'full_name': full_name
        })

    def refresh_session(self):
        if not self.refresh_token:
            return self._no_session()
        result = self._request('/auth/refresh', 'POST', token=self.refresh_token)
        if result.error is None:
            self.access_token = result.data['access_token']
        return result

    def logout(self):
        if not self.access_token:
            return self._no_session()
        result = self._request('/auth/logout', 'POST')
        self.access_token = None
        self.refresh_token = None
        self.user = None
        return result

    @property
    def my_id(self):
        return self.user['id'] if self.user else None

    # ============================================
    # Files (直接打 storage)
    # ============================================

    def upload_file(self, my_id, filename, content, content_type='application/octet-stream'):
        path = f"{my_id}/{sanitize_filename(filename)}"
        return self._request(
            '/storage/files', 'POST',
            files={'file': (sanitize_filename(filename), content, content_type)},
            data={'path': path}
        )

    def get_files(self):
        return self._request('/storage/files')

    def delete_file(self, my_id, filename):
        return self._request(f"/storage/files/{my_id}/{filename}", 'DELETE')

    def share_file(self, my_id, filename, time_in_sec, for_download=False):
        return self._request(f"/storage/files/{my_id}/{filename}/share", 'POST', {
            'expires_in': time_in_sec,
            'download': for_download
        })

    def get_public_url(self, path):
        """只組出網址,不會送 request"""
        return f"{self.base_url}/storage/public/{path}"

    # ============================================
    # Profiles & Users
    # ============================================

    def get_my_profile(self):
        if not self.access_token:
            return self._no_session()
        return self._request('/auth/me')

    def update_my_profile(self, **fields):
        return self._request('/auth/me', 'PATCH', fields)

    def update_profile_role(self, user_id, role):
        return self._request(f"/auth/profiles/{user_id}/role", 'PATCH', {'role': role})

    def get_all_profiles(self):
        return self._api_request('/users')

    # ============================================
    # Projects
    # ============================================

    def get_projects(self):
        return self._api_request('/projects')

    def get_project(self, project_id):
        return self._api_request(f"/projects/{project_id}")

    def create_project(self, name, description):
        return self._api_request('/projects', 'POST', {'name': name, 'description': description})

    def delete_project(self, project_id):
        return self._api_request(f"/projects/{project_id}", 'DELETE')

    def get_project_stats(self, project_id):
        return self._api_request(f"/projects/{project_id}/stats")

    # ============================================
    # Project Tasks
    # ============================================

    def get_project_tasks(self, project_id):
        return self._api_request('/tasks', params={'project_id': project_id})

    def get_task(self, task_id):
        return self._api_request(f"/tasks/{task_id}")

    def create_project_task(self, task):
        return self._api_request('/tasks', 'POST', task)

    def update_task(self, task_id, fields):
        return self._api_request(f"/tasks/{task_id}", 'PUT', fields)

    def update_task_status(self, task_id, status):
        return self.update_task(task_id, {'status': status})

    def update_task_assignment(self, task_id, assigned_to):
        return self.update_task(task_id, {'assigned_to': assigned_to})

    def delete_project_task(self, task_id):
        return self._api_request(f"/tasks/{task_id}", 'DELETE')

    # ============================================
    # Task Comments
    # ============================================

    def get_task_comments(self, task_id):
        return self._api_request(f"/tasks/{task_id}/comments")

    def add_task_comment(self, task_id, content, image_url=None):
        return self._api_request(f"/tasks/{task_id}/comments", 'POST', {
            'content': content,
            'image_url': image_url
        })

    def delete_task_comment(self, comment_id):
        return self._api_request(f"/comments/{comment_id}", 'DELETE')

    # ============================================
    # Project Members
    # ============================================

    def get_project_members(self, project_id):
        return self._api_request(f"/projects/{project_id}/members")

    def add_project_member(self, project_id, user_id, role='member'):
        return self._api_request(f"/projects/{project_id}/members", 'POST', {
            'user_id': user_id,
            'role': role
        })

    def remove_project_member(self, project_id, user_id):
        return self._api_request(f"/projects/{project_id}/members", 'DELETE', {'user_id': user_id})
