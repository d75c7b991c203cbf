"""
畫面層的 view-model

每個畫面 (專案列表、看板、任務詳細、成員管理、dashboard、使用者管理) 各自持有
一份暫存的資料,透過 TeamBoardClient 跟 server 同步:

- load() 整批重新抓取並取代本地狀態;任何一個 request 失敗時本地狀態完全不動
- attempt() 先改本地狀態 (optimistic),request 失敗就 alert 並重新 load(),
  load() 也失敗時才還原成 mutation 之前的本地值
- 會產生新資料列或 server 端欄位的操作 (建立、成員增減、刪評論) 成功後一律 load();
  只改一個本地已知欄位的操作 (狀態、刪任務、刪專案、改角色) 成功後保留本地值
"""
from collections import namedtuple
from datetime import date
import logging
import time

from models import TASK_STATUSES, ROLES, MANAGER_ROLES

logger = logging.getLogger(__name__)

ProjectSummary = namedtuple(
    'ProjectSummary', ['id', 'name', 'total_tasks', 'completed_tasks', 'progress']
)


def default_alert(message):
    logger.warning(f"ALERT: {message}")


def completion_percent(completed, total):
    """四捨五入 (0.5 進位) 的完成百分比,沒有任務時為 0"""
    if not total:
        return 0
    return int(completed * 100 / total + 0.5)


class RemoteCallFailed(Exception):
    def __init__(self, error):
        super().__init__(str(error))
        self.error = error


class ScreenViewModel:
    """所有畫面共用的 load / attempt 流程"""

    # attempt() 失敗且 load() 也失敗時要還原的欄位
    state_keys = ()

    def __init__(self, client, alert=None):
        self.client = client
        self.alert = alert if alert is not None else default_alert
        self.loading = False
        self.last_error = None

    # ---- 子類別實作: 抓資料 (只放在 local 變數) 後回傳 dict
    def fetch(self):
        raise NotImplementedError

    def apply(self, state):
        for name, value in state.items():
            setattr(self, name, value)

    @staticmethod
    def unwrap(result):
        if result.error is not None:
            raise RemoteCallFailed(result.error)
        return result.data

    def load(self):
        """
        重新抓取整個畫面的資料

        Returns:
            bool: 成功時本地狀態等於 server 回應;失敗時本地狀態不變
        """
        self.loading = True
        try:
            state = self.fetch()
        except RemoteCallFailed as e:
            self.last_error = e.error
            logger.error(f"{type(self).__name__}.load failed: {e}")
            self.alert(f"Failed to load data: {e}")
            return False
        finally:
            self.loading = False

        self.apply(state)
        self.last_error = None
        return True

    def attempt(self, transform, remote_call, failure_message):
        """
        Optimistic mutation

        先套用 transform 再送出 remote_call;失敗時 alert 並 load() 回到 server 的狀態。
        load() 也失敗時還原成 transform 之前的本地狀態,畫面上不會留著沒成功的值
        """
        snapshot = {name: getattr(self, name) for name in self.state_keys}
        transform()
        try:
            error = remote_call().error
        except Exception as e:
            logger.error(f"{failure_message}: {str(e)}", exc_info=True)
            error = e
        else:
            if error is not None:
                logger.error(f"{failure_message}: {error}")

        if error is None:
            return True

        self.last_error = error
        self.alert(failure_message)
        if not self.load():
            self.apply(snapshot)
            self.last_error = error
        return False

    def _my_role(self):
        # 讀不到 profile 不算 load 失敗,只是沒有角色
        result = self.client.get_my_profile()
        if result.error is not None:
            logger.warning(f"Could not fetch profile: {result.error}")
            return None
        return (result.data or {}).get('role')


# ============================================
# 專案看板
# ============================================

class ProjectBoardViewModel(ScreenViewModel):

    state_keys = ('project', 'tasks', 'members', 'user_role')

    def __init__(self, client, project_id, alert=None):
        super().__init__(client, alert)
        self.project_id = project_id
        self.project = None
        self.tasks = []
        self.members = []
        self.user_role = None
        self.adding = False

    @property
    def is_manager(self):
        return self.user_role in MANAGER_ROLES

    def fetch(self):
        user_role = self._my_role()
        project = self.unwrap(self.client.get_project(self.project_id))
        tasks = self.unwrap(self.client.get_project_tasks(self.project_id)) or []
        memberships = self.unwrap(self.client.get_project_members(self.project_id)) or []

        return {
            'user_role': user_role,
            'project': project,
            'tasks': tasks,
            'members': [m['profile'] for m in memberships if m.get('profile')]
        }

    def find_task(self, task_id):
        for task in self.tasks:
            if task['id'] == task_id:
                return task
        return None

    def columns(self):
        return {status: [t for t in self.tasks if t['status'] == status] for status in TASK_STATUSES}

    def progress(self):
        done = sum(1 for t in self.tasks if t['status'] == 'done')
        return completion_percent(done, len(self.tasks))

    # ---- commands

    def move_task(self, task_id, new_status):
        """
        移動任務到另一欄

        非 manager 移到 done 在這裡就擋掉,不送 request 也不改本地狀態
        """
        if new_status not in TASK_STATUSES:
            raise ValueError(f"Unknown task status: {new_status}")

        if new_status == 'done' and not self.is_manager:
            self.alert("Only Managers can complete tasks!")
            return False

        task = self.find_task(task_id)
        if task is None or task['status'] == new_status:
            return False

        def transform():
            self.tasks = [dict(t, status=new_status) if t['id'] == task_id else t for t in self.tasks]

        return self.attempt(
            transform,
            lambda: self.client.update_task_status(task_id, new_status),
            'Failed to update task'
        )

    def delete_task(self, task_id):
        if not self.is_manager:
            return False

        def transform():
            self.tasks = [t for t in self.tasks if t['id'] != task_id]

        return self.attempt(
            transform,
            lambda: self.client.delete_project_task(task_id),
            'Failed to delete task'
        )

    def quick_add(self, title):
        """
        快速新增 (只有標題)

        不放暫時的 placeholder,id 和預設欄位都由 server 產生,
        所以不論成功失敗都重新 load()
        """
        if not self.is_manager or not title or not title.strip():
            return False

        self.adding = True
        try:
            result = self.client.create_project_task({
                'project_id': self.project_id,
                'title': title.strip(),
                'description': '',
                'status': 'todo'
            })
        finally:
            self.adding = False

        if result.error is not None:
            self.last_error = result.error
            logger.error(f"Error creating task: {result.error}")
            self.alert('Failed to create task')

        self.load()
        return result.error is None

    def create_task(self, title, description='', assigned_to=None, deadline=None):
        """New Task 對話框: 可以指定負責人和截止日"""
        if not self.is_manager:
            return False

        if isinstance(deadline, date):
            deadline = deadline.isoformat()

        self.adding = True
        try:
            result = self.client.create_project_task({
                'project_id': self.project_id,
                'title': title,
                'description': description or '',
                'status': 'todo',
                'assigned_to': assigned_to or None,
                'deadline': deadline or None
            })
        finally:
            self.adding = False

        if result.error is not None:
            self.last_error = result.error
            logger.error(f"Error creating task: {result.error}")
            self.alert('Failed to create task')
            return False

        self.load()
        return True

    def assign_task(self, task_id, user_id):
        def transform():
            self.tasks = [dict(t, assigned_to=user_id) if t['id'] == task_id else t for t in self.tasks]

        ok = self.attempt(
            transform,
            lambda: self.client.update_task_assignment(task_id, user_id),
            'Failed to assign task'
        )
        # assignee 的名字是 server join 出來的
        if ok:
            self.load()
        return ok

    def members_dialog(self, alert=None):
        return ManageMembersViewModel(
            self.client,
            self.project_id,
            lambda: self.members,
            on_update=self.load,
            alert=alert if alert is not None else self.alert
        )

    def task_detail(self, task_id, alert=None):
        task = self.find_task(task_id)
        if task is None:
            return None
        return TaskDetailViewModel(self.client, task, alert=alert if alert is not None else self.alert)


# ============================================
# 任務詳細 (評論)
# ============================================

class TaskDetailViewModel(ScreenViewModel):

    state_keys = ('comments',)

    def __init__(self, client, task, alert=None):
        super().__init__(client, alert)
        self.task = task
        self.comments = []
        self.commenting = False

    @property
    def my_id(self):
        return self.client.my_id

    def fetch(self):
        return {'comments': self.unwrap(self.client.get_task_comments(self.task['id'])) or []}

    def can_delete(self, comment):
        return self.my_id is not None and comment['user_id'] == self.my_id

    def post_comment(self, text, attachment=None):
        """
        新增評論

        attachment 是 (filename, bytes),會先上傳到 storage,
        再把 public URL 存進評論的 image_url
        """
        text = text or ''
        if (not text.strip() and not attachment) or self.my_id is None:
            return False

        self.commenting = True
        try:
            image_url = None
            if attachment:
                filename, content = attachment
                name = f"task_{self.task['id']}_{int(time.time() * 1000)}_{filename}"
                upload = self.client.upload_file(self.my_id, name, content)
                if upload.error is not None:
                    return self._comment_failed(upload.error)
                image_url = self.client.get_public_url(upload.data['path'])

            result = self.client.add_task_comment(self.task['id'], text, image_url)
            if result.error is not None:
                return self._comment_failed(result.error)
        finally:
            self.commenting = False

        self.load()
        return True

    def _comment_failed(self, error):
        self.last_error = error
        logger.error(f"Error posting comment: {error}")
        self.alert('Failed to post comment')
        return False

    def delete_comment(self, comment_id):
        comment = next((c for c in self.comments if c['id'] == comment_id), None)
        if comment is None or not self.can_delete(comment):
            return False

        result = self.client.delete_task_comment(comment_id)
        if result.error is not None:
            self.last_error = result.error
            logger.error(f"Error deleting comment {comment_id}: {result.error}")
            self.alert('Failed to delete comment')

        self.load()
        return result.error is None


# ============================================
# 成員管理
# ============================================

class ManageMembersViewModel(ScreenViewModel):

    state_keys = ('all_profiles',)

    def __init__(self, client, project_id, current_members, on_update=None, alert=None):
        super().__init__(client, alert)
        self.project_id = project_id
        self._current_members = current_members if callable(current_members) else (lambda: current_members)
        self.on_update = on_update
        self.all_profiles = []
        self.busy = False

    @property
    def current_members(self):
        return self._current_members() or []

    def fetch(self):
        return {'all_profiles': self.unwrap(self.client.get_all_profiles()) or []}

    def available_profiles(self):
        member_ids = {m['id'] for m in self.current_members}
        return [p for p in self.all_profiles if p['id'] not in member_ids]

    def _updated(self):
        if self.on_update:
            self.on_update()

    def add_member(self, user_id, role='member'):
        """重複加入 (conflict) 不算失敗"""
        if not user_id:
            return False

        self.busy = True
        try:
            result = self.client.add_project_member(self.project_id, user_id, role)
        finally:
            self.busy = False

        if result.error is not None and not result.error.is_conflict:
            self.last_error = result.error
            logger.error(f"Error adding member {user_id}: {result.error}")
            self.alert('Failed to add member')
            return False

        self._updated()
        return True

    def remove_member(self, user_id):
        result = self.client.remove_project_member(self.project_id, user_id)
        if result.error is not None:
            self.last_error = result.error
            logger.error(f"Error removing member {user_id}: {result.error}")
            self.alert('Failed to remove member')
            return False

        self._updated()
        return True


# ============================================
# 專案列表
# ============================================

class ProjectListViewModel(ScreenViewModel):

    state_keys = ('projects', 'user_role')

    def __init__(self, client, alert=None):
        super().__init__(client, alert)
        self.projects = []
        self.user_role = None
        self.submitting = False

    @property
    def can_create(self):
        return self.user_role in MANAGER_ROLES

    def fetch(self):
        return {
            'user_role': self._my_role(),
            'projects': self.unwrap(self.client.get_projects()) or []
        }

    def create_project(self, name, description=''):
        if not name or not name.strip():
            return False

        self.submitting = True
        try:
            result = self.client.create_project(name.strip(), description)
        finally:
            self.submitting = False

        if result.error is not None:
            self.last_error = result.error
            logger.error(f"Error creating project: {result.error}")
            self.alert(f"Failed to create project: {result.error}")
            return False

        self.load()
        return True

    def delete_project(self, project_id):
        def transform():
            self.projects = [p for p in self.projects if p['id'] != project_id]

        return self.attempt(
            transform,
            lambda: self.client.delete_project(project_id),
            'Failed to delete project'
        )


# ============================================
# Dashboard (各專案進度)
# ============================================

class DashboardViewModel(ScreenViewModel):

    state_keys = ('summaries',)

    def __init__(self, client, alert=None):
        super().__init__(client, alert)
        self.summaries = []

    @property
    def total_projects(self):
        return len(self.summaries)

    def fetch(self):
        projects = self.unwrap(self.client.get_projects()) or []

        # 每個專案各發一個 request,依序執行 (N+1,專案數量不多時可接受)
        summaries = []
        for project in projects:
            tasks = self.unwrap(self.client.get_project_tasks(project['id'])) or []
            completed = sum(1 for t in tasks if t['status'] == 'done')
            summaries.append(ProjectSummary(
                id=project['id'],
                name=project['name'],
                total_tasks=len(tasks),
                completed_tasks=completed,
                progress=completion_percent(completed, len(tasks))
            ))

        return {'summaries': summaries}


# ============================================
# 使用者角色管理
# ============================================

class AdminUsersViewModel(ScreenViewModel):

    state_keys = ('profiles',)

    def __init__(self, client, alert=None):
        super().__init__(client, alert)
        self.profiles = []
        self.updating = None

    def fetch(self):
        return {'profiles': self.unwrap(self.client.get_all_profiles()) or []}

    def change_role(self, user_id, new_role):
        """server 確認後才更新本地那一列"""
        if new_role not in ROLES:
            raise ValueError(f"Unknown role: {new_role}")

        self.updating = user_id
        try:
            result = self.client.update_profile_role(user_id, new_role)
        finally:
            self.updating = None

        if result.error is not None:
            self.last_error = result.error
            logger.error(f"Error updating role: {result.error}")
            self.alert('Failed to update role')
            return False

        self.profiles = [dict(p, role=new_role) if p['id'] == user_id else p for p in self.profiles]
        return True
