import click
from flask import current_app
from models import db, Profile, Project, ProjectMember, Task, ROLES, TASK_STATUSES
from client import TeamBoardClient
from viewmodels import ProjectBoardViewModel, DashboardViewModel
import logging

logger = logging.getLogger(__name__)

COLUMN_TITLES = {
    'todo': 'To Do',
    'in-progress': 'In Progress',
    'done': 'Done'
}

# ============================================
# 文字輸出 (只負責排版)
# ============================================

def render_board(vm):
    project = vm.project or {}
    lines = [
        "=" * 60,
        f"{project.get('name', '')}  ({vm.progress()}% done)",
        "=" * 60
    ]

    columns = vm.columns()
    for status in TASK_STATUSES:
        tasks = columns[status]
        lines.append(f"\n【{COLUMN_TITLES[status]}】{len(tasks)}")
        for t in tasks:
            assignee = (t.get('assignee') or {}).get('full_name') or '-'
            deadline = t.get('deadline') or ''
            lines.append(f"  #{t['id']} {t['title']}  @{assignee} {deadline}".rstrip())

    names = ', '.join(m.get('full_name') or m.get('email') for m in vm.members)
    lines.append(f"\nMembers: {names or '-'}")
    return "\n".join(lines)

def render_dashboard(vm):
    lines = [f"Projects: {vm.total_projects}"]
    for s in vm.summaries:
        bar = '#' * (s.progress // 10)
        lines.append(f"  {s.name:<30} {s.completed_tasks}/{s.total_tasks}  [{bar:<10}] {s.progress}%")
    return "\n".join(lines)

def echo_alert(message):
    click.echo(f"! {message}", err=True)

def logged_in_client(base_url, email, password):
    client = TeamBoardClient(
        base_url or current_app.config['CLIENT_BASE_URL'],
        timeout=current_app.config['CLIENT_TIMEOUT']
    )
    result = client.login_email(email, password)
    if result.error is not None:
        raise click.ClickException(f"Login failed: {result.error}")
    return client

# ============================================
# Flask CLI commands
# ============================================

def register_commands(app):

    @app.cli.command('show-db')
    def show_db():
        """印出資料庫內容"""
        click.echo("\n" + "=" * 60)
        click.echo("資料庫內容")
        click.echo("=" * 60)

        profiles = Profile.query.order_by(Profile.id).all()
        click.echo(f"\n【使用者】共 {len(profiles)} 筆:")
        for p in profiles:
            click.echo(f"  ID: {p.id}, Email: {p.email}, Name: {p.full_name}, Role: {p.role}")

        projects = Project.query.order_by(Project.id).all()
        click.echo(f"\n【專案】共 {len(projects)} 筆:")
        for p in projects:
            creator = p.creator.email if p.creator else '-'
            click.echo(f"  ID: {p.id}, Name: {p.name}, Creator: {creator}")

        members = ProjectMember.query.all()
        click.echo(f"\n【專案成員】共 {len(members)} 筆:")
        for m in members:
            click.echo(f"  Project: {m.project_id}, User: {m.user.email}, Role: {m.role}")

        tasks = Task.query.order_by(Task.id).all()
        click.echo(f"\n【任務】共 {len(tasks)} 筆:")
        for t in tasks:
            click.echo(f"  ID: {t.id}, Title: {t.title}, Status: {t.status}")

        click.echo("\n" + "=" * 60)

    @app.cli.command('set-role')
    @click.argument('email')
    @click.argument('role', type=click.Choice(ROLES))
    def set_role(email, role):
        """直接改資料庫裡的角色 (建立第一個 admin 用)"""
        profile = Profile.query.filter_by(email=email).first()
        if not profile:
            raise click.ClickException(f"No profile with email {email}")

        profile.role = role
        db.session.commit()
        logger.info(f"Role of {profile.email} set to {role} from CLI")
        click.echo(f"{profile.email} is now {role}")

    @app.cli.command('board')
    @click.argument('project_id', type=int)
    @click.option('--email', required=True)
    @click.option('--password', required=True, prompt=True, hide_input=True)
    @click.option('--base-url', default=None, help='預設用 CLIENT_BASE_URL')
    def board(project_id, email, password, base_url):
        """透過 API 顯示專案看板"""
        client = logged_in_client(base_url, email, password)
        vm = ProjectBoardViewModel(client, project_id, alert=echo_alert)
        if not vm.load():
            raise click.ClickException('Could not load project board')
        click.echo(render_board(vm))

    @app.cli.command('dashboard')
    @click.option('--email', required=True)
    @click.option('--password', required=True, prompt=True, hide_input=True)
    @click.option('--base-url', default=None, help='預設用 CLIENT_BASE_URL')
    def dashboard(email, password, base_url):
        """透過 API 顯示所有專案的進度"""
        client = logged_in_client(base_url, email, password)
        vm = DashboardViewModel(client, alert=echo_alert)
        if not vm.load():
            raise click.ClickException('Could not load dashboard')
        click.echo(render_dashboard(vm))
