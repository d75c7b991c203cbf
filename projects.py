from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func, case
from marshmallow import Schema, fields, validate, EXCLUDE
from models import (
    db, Project, ProjectMember, Profile, Task, ROLES,
    serialize_project, serialize_member
)
from auth import get_current_user, validate_request_data, validation_failed
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateProjectSchema(Schema):
    """建立專案驗證"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255, error='Project name is required'),
        error_messages={'required': 'Project name is required'}
    )
    description = fields.Str(
        allow_none=True,
        validate=validate.Length(max=2000),
        load_default=None
    )

class AddMemberSchema(Schema):
    """新增成員驗證"""
    class Meta:
        unknown = EXCLUDE

    user_id = fields.Int(required=True, error_messages={'required': 'User ID is required'})
    role = fields.Str(validate=validate.OneOf(ROLES), load_default='member')

class RemoveMemberSchema(Schema):
    """移除成員驗證"""
    class Meta:
        unknown = EXCLUDE

    user_id = fields.Int(required=True, error_messages={'required': 'User ID is required'})

# ============================================
# 建立專案
# ============================================

@projects_bp.route('', methods=['POST'])
@jwt_required()
def create_project():
    """
    建立新專案

    created_by 從登入身份取得,不從 body 讀
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateProjectSchema, data)
    if not is_valid:
        return validation_failed(result)

    project = Project(
        name=result['name'],
        description=result.get('description'),
        created_by=current_user.id
    )

    try:
        db.session.add(project)
        db.session.commit()

        logger.info(f"Project created: {project.name} by user {current_user.email}")

        return jsonify(serialize_project(project)), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Project creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project creation failed due to server error'}), 500

# ============================================
# 查詢所有專案
# ============================================

@projects_bp.route('', methods=['GET'])
@jwt_required()
def get_projects():
    """查詢所有專案"""
    if not get_current_user():
        return jsonify({'error': 'Unauthorized'}), 401

    try:
        projects = Project.query.order_by(Project.id.asc()).all()
        return jsonify([serialize_project(p) for p in projects]), 200

    except Exception as e:
        logger.error(f"Error fetching projects: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch projects'}), 500

# ============================================
# 查詢單一專案 (join 建立者 profile)
# ============================================

@projects_bp.route('/<int:project_id>', methods=['GET'])
@jwt_required()
def get_project(project_id):
    """查詢專案詳細資訊"""
    if not get_current_user():
        return jsonify({'error': 'Unauthorized'}), 401

    try:
        project = Project.query.options(
            joinedload(Project.creator)
        ).filter_by(id=project_id).first()

        if not project:
            return jsonify({'error': 'Project not found'}), 404

        return jsonify(serialize_project(project, with_creator=True)), 200

    except Exception as e:
        logger.error(f"Error fetching project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch project details'}), 500

# ============================================
# 刪除專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@jwt_required()
def delete_project(project_id):
    """刪除專案 (cascade 會一起刪除任務、評論、成員)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    try:
        project_name = project.name

        db.session.delete(project)
        db.session.commit()

        logger.info(f"Project deleted: {project_name} by user {current_user.email}")

        return jsonify({'success': True}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Project deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project deletion failed due to server error'}), 500

# ============================================
# 專案成員管理
# ============================================

@projects_bp.route('/<int:project_id>/members', methods=['GET'])
@jwt_required()
def get_project_members(project_id):
    """取得專案成員列表 (join profile)"""
    if not get_current_user():
        return jsonify({'error': 'Unauthorized'}), 401

    try:
        members = ProjectMember.query.filter_by(project_id=project_id).options(
            joinedload(ProjectMember.user)
        ).order_by(ProjectMember.joined_at.asc()).all()

        return jsonify([serialize_member(m) for m in members]), 200

    except Exception as e:
        logger.error(f"Error fetching members: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch members'}), 500

@projects_bp.route('/<int:project_id>/members', methods=['POST'])
@jwt_required()
def add_project_member(project_id):
    """
    新增專案成員

    重複加入同一個 (project, user) 視為成功,不會產生第二筆
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(AddMemberSchema, data)
    if not is_valid:
        return validation_failed(result)

    if not db.session.get(Project, project_id):
        return jsonify({'error': 'Project not found'}), 404

    user = db.session.get(Profile, result['user_id'])
    if not user:
        return jsonify({'error': 'User not found'}), 404

    existing = db.session.get(ProjectMember, (project_id, result['user_id']))
    if existing:
        return jsonify({'success': True, 'already_member': True}), 200

    try:
        member = ProjectMember(
            project_id=project_id,
            user_id=result['user_id'],
            role=result['role']
        )
        db.session.add(member)
        db.session.commit()

        logger.info(f"Member added to project {project_id}: user {user.email}")

        return jsonify({'success': True, 'already_member': False}), 200

    except IntegrityError:
        # 另一個請求剛好先加入了同一組
        db.session.rollback()
        logger.warning(f"Duplicate membership ({project_id}, {result['user_id']})")
        return jsonify({'error': 'User is already a member', 'code': 'conflict'}), 409
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error adding member: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to add member due to server error'}), 500

@projects_bp.route('/<int:project_id>/members', methods=['DELETE'])
@jwt_required()
def remove_project_member(project_id):
    """移除專案成員 (body: user_id)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(RemoveMemberSchema, data)
    if not is_valid:
        return validation_failed(result)

    try:
        deleted = ProjectMember.query.filter_by(
            project_id=project_id,
            user_id=result['user_id']
        ).delete()
        db.session.commit()

        logger.info(f"Member {result['user_id']} removed from project {project_id} ({deleted} row)")

        return jsonify({'success': True}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error removing member: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to remove member due to server error'}), 500

# ============================================
# 專案統計
# ============================================

@projects_bp.route('/<int:project_id>/stats', methods=['GET'])
@jwt_required()
def get_project_stats(project_id):
    """
    取得專案統計資訊

    使用聚合查詢一次算出各狀態的任務數
    """
    if not get_current_user():
        return jsonify({'error': 'Unauthorized'}), 401

    if not db.session.get(Project, project_id):
        return jsonify({'error': 'Project not found'}), 404

    try:
        task_stats = db.session.query(
            func.count(Task.id).label('total'),
            func.sum(case((Task.status == 'todo', 1), else_=0)).label('todo'),
            func.sum(case((Task.status == 'in-progress', 1), else_=0)).label('in_progress'),
            func.sum(case((Task.status == 'done', 1), else_=0)).label('done')
        ).filter(Task.project_id == project_id).first()

        member_count = ProjectMember.query.filter_by(project_id=project_id).count()

        total = task_stats.total or 0
        done = task_stats.done or 0

        return jsonify({
            'tasks': {
                'total': total,
                'todo': task_stats.todo or 0,
                'in-progress': task_stats.in_progress or 0,
                'done': done
            },
            'members': member_count,
            'completion_rate': int(done * 100 / total + 0.5) if total else 0
        }), 200

    except Exception as e:
        logger.error(f"Error fetching stats: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch statistics'}), 500
