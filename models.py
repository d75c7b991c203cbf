
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

TASK_STATUSES = ('todo', 'in-progress', 'done')
ROLES = ('admin', 'manager', 'member')
MANAGER_ROLES = ('admin', 'manager')

# ============================================
# 1. Profile 模型 (id 即登入身份)
# ============================================
class Profile(db.Model):
    __tablename__ = 'profiles'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(225), nullable=False)
    full_name = db.Column(db.String(100))
    avatar_url = db.Column(db.String(500))
    role = db.Column(db.String(20), nullable=False, default='member')  # admin, manager, member
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 關聯
    created_projects = db.relationship('Project', backref='creator', lazy=True)
    tasks_assigned = db.relationship('Task', backref='assignee', lazy=True)
    comments = db.relationship('TaskComment', backref='author', lazy=True)

    @property
    def is_manager(self):
        return self.role in MANAGER_ROLES

# ============================================
# 2. Project 模型
# ============================================
class Project(db.Model):
    __tablename__ = 'projects'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 關聯 (刪除專案時一起刪除任務與成員)
    tasks = db.relationship('Task', backref='project', lazy=True, cascade='all,delete-orphan')
    members = db.relationship('ProjectMember', backref='project', lazy=True, cascade='all,delete-orphan')

# ============================================
# 3. ProjectMember 模型 (join table, 沒有自己的 id)
# ============================================
class ProjectMember(db.Model):
    __tablename__ = 'project_members'

    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), primary_key=True)
    role = db.Column(db.String(20), nullable=False, default='member')
    joined_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 關聯
    user = db.relationship('Profile', backref='project_memberships')

# ============================================
# 4. Task 模型
# ============================================
class Task(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    status = db.Column(db.String(20), nullable=False, default='todo')  # todo, in-progress, done
    assigned_to = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=True)
    deadline = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    comments = db.relationship('TaskComment', backref='task', lazy=True, cascade='all,delete-orphan')

    # 索引
    __table_args__ = (
        db.Index('idx_task_project_status', 'project_id', 'status'),
        db.Index('idx_task_assigned', 'assigned_to'),
    )

# ============================================
# 5. TaskComment 模型
# ============================================
class TaskComment(db.Model):
    __tablename__ = 'task_comments'

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey('tasks.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    content = db.Column(db.Text, nullable=False, default='')
    image_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('idx_comment_task_created', 'task_id', 'created_at'),
    )

# ============================================
# 序列化 (回傳給前端的 JSON 格式)
# ============================================

def _iso(value):
    return value.isoformat() if value else None

def serialize_profile(profile):
    return {
        'id': profile.id,
        'full_name': profile.full_name,
        'email': profile.email,
        'avatar_url': profile.avatar_url,
        'role': profile.role,
        'created_at': _iso(profile.created_at)
    }

def serialize_project(project, with_creator=False):
    data = {
        'id': project.id,
        'name': project.name,
        'description': project.description,
        'created_by': project.created_by,
        'created_at': _iso(project.created_at)
    }
    if with_creator:
        data['creator'] = {
            'id': project.creator.id,
            'full_name': project.creator.full_name
        } if project.creator else None
    return data

def serialize_task(task):
    return {
        'id': task.id,
        'project_id': task.project_id,
        'title': task.title,
        'description': task.description,
        'status': task.status,
        'assigned_to': task.assigned_to,
        'assignee': {
            'id': task.assignee.id,
            'full_name': task.assignee.full_name,
            'email': task.assignee.email
        } if task.assigned_to else None,
        'deadline': _iso(task.deadline),
        'created_at': _iso(task.created_at)
    }

def serialize_comment(comment):
    return {
        'id': comment.id,
        'task_id': comment.task_id,
        'user_id': comment.user_id,
        'content': comment.content,
        'image_url': comment.image_url,
        'author': {
            'full_name': comment.author.full_name,
            'avatar_url': comment.author.avatar_url
        } if comment.author else None,
        'created_at': _iso(comment.created_at)
    }

def serialize_member(membership):
    return {
        'project_id': membership.project_id,
        'user_id': membership.user_id,
        'role': membership.role,
        'joined_at': _iso(membership.joined_at),
        'profile': {
            'id': membership.user.id,
            'full_name': membership.user.full_name,
            'email': membership.user.email,
            'role': membership.user.role
        } if membership.user else None
    }
