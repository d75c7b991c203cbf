"""View-model + TeamBoardClient against the real Flask app"""
from urllib.parse import urlsplit

from viewmodels import (
    ProjectBoardViewModel, ProjectListViewModel, DashboardViewModel, AdminUsersViewModel
)


class _Alerts(list):
    def __call__(self, message):
        self.append(message)


def test_website_redesign_board(client, api_client, make_user):
    make_user('pm@example.com', role='manager', full_name='Pat Manager')
    dev_id, _ = make_user('dev@example.com', full_name='Dana Dev')
    alerts = _Alerts()

    manager = api_client('pm@example.com')
    projects = ProjectListViewModel(manager, alert=alerts)
    assert projects.load() and projects.can_create
    assert projects.create_project('Website Redesign', 'New landing page')
    project_id = projects.projects[0]['id']

    board = ProjectBoardViewModel(manager, project_id, alert=alerts)
    assert board.load()
    assert board.members_dialog().add_member(dev_id)
    assert board.members_dialog().add_member(dev_id)
    assert [m['full_name'] for m in board.members] == ['Dana Dev']

    assert board.quick_add('Design mockups')
    assert board.quick_add('Go') is False
    assert alerts == ['Failed to create task']
    assert [t['title'] for t in board.tasks] == ['Design mockups']

    task_id = board.tasks[0]['id']
    assert board.move_task(task_id, 'in-progress')

    # member 可以移動但不能完成
    developer = api_client('dev@example.com')
    dev_board = ProjectBoardViewModel(developer, project_id, alert=alerts)
    dev_board.load()
    calls_before = len(developer.session.calls)
    assert dev_board.move_task(task_id, 'done') is False
    assert len(developer.session.calls) == calls_before
    assert dev_board.find_task(task_id)['status'] == 'in-progress'

    assert board.move_task(task_id, 'done')
    assert board.load() and board.progress() == 100

    dashboard = DashboardViewModel(manager, alert=alerts)
    assert dashboard.load()
    assert [(s.name, s.total_tasks, s.progress) for s in dashboard.summaries] == [('Website Redesign', 1, 100)]


def test_failed_move_reverts_to_server_state(api_client, make_user, make_project):
    _, headers = make_user('pm@example.com', role='manager')
    project_id = make_project(headers)
    alerts = _Alerts()
    manager = api_client('pm@example.com')

    board = ProjectBoardViewModel(manager, project_id, alert=alerts)
    board.load()
    board.quick_add('Design mockups')
    task_id = board.tasks[0]['id']

    # 另一個人先刪掉了這個任務
    assert manager.delete_project_task(task_id).error is None

    assert board.move_task(task_id, 'in-progress') is False
    assert alerts == ['Failed to update task']
    assert board.tasks == []


def test_comment_with_attachment(client, api_client, make_user, make_project):
    _, headers = make_user('pm@example.com', role='manager')
    project_id = make_project(headers)
    manager = api_client('pm@example.com')

    board = ProjectBoardViewModel(manager, project_id)
    board.load()
    board.quick_add('Design mockups')
    detail = board.task_detail(board.tasks[0]['id'])

    assert detail.post_comment('see mockup', attachment=('mockup.png', b'\x89PNG'))

    comment = detail.comments[0]
    assert comment['content'] == 'see mockup'
    assert detail.can_delete(comment)
    image = client.get(urlsplit(comment['image_url']).path)
    assert image.status_code == 200
    assert image.data == b'\x89PNG'

    assert detail.delete_comment(comment['id'])
    assert detail.comments == []


def test_admin_promotes_member(api_client, make_user):
    make_user('admin@example.com', role='admin')
    dev_id, _ = make_user('dev@example.com')
    alerts = _Alerts()

    admin = AdminUsersViewModel(api_client('admin@example.com'), alert=alerts)
    admin.load()
    assert admin.change_role(dev_id, 'manager')
    assert {p['id']: p['role'] for p in admin.profiles}[dev_id] == 'manager'

    # 非 admin 改角色會被 server 拒絕
    member = AdminUsersViewModel(api_client('dev@example.com'), alert=alerts)
    member.load()
    assert member.change_role(dev_id, 'admin') is False
    assert alerts == ['Failed to update role']
