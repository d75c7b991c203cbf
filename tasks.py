from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from marshmallow import Schema, fields, validate, EXCLUDE
from models import db, Task, Project, ProjectMember, TASK_STATUSES, serialize_task
from auth import get_current_user, validate_request_data, validation_failed
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

TITLE_ERROR = 'Invalid Title: Must be a string of at least 3 characters'

# ============================================
# Input Validation Schemas
# ============================================

class CreateTaskSchema(Schema):
    """建立任務驗證"""
    class Meta:
        unknown = EXCLUDE

    title = fields.Str(
        required=True,
        validate=validate.Length(min=3, max=255, error=TITLE_ERROR),
        error_messages={'required': TITLE_ERROR, 'null': TITLE_ERROR, 'invalid': TITLE_ERROR}
    )
    project_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error='Project ID is required'),
        error_messages={
            'required': 'Project ID is required',
            'null': 'Project ID is required',
            'invalid': 'Project ID must be an integer'
        }
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000), load_default='')
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES), load_default='todo')
    assigned_to = fields.Int(allow_none=True, load_default=None)
    deadline = fields.Date(allow_none=True, load_default=None)

class UpdateTaskSchema(Schema):
    """更新任務驗證 (partial update,所有欄位都是選填)"""
    class Meta:
        unknown = EXCLUDE

    title = fields.Str(
        validate=validate.Length(min=3, max=255, error=TITLE_ERROR),
        error_messages={'null': TITLE_ERROR, 'invalid': TITLE_ERROR}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES))
    assigned_to = fields.Int(allow_none=True)
    deadline = fields.Date(allow_none=True)

# ============================================
# 輔助函數
# ============================================

def role_permissions_enforced():
    return current_app.config.get('ENFORCE_ROLE_PERMISSIONS', True)

def is_project_member(project_id, user_id):
    return db.session.get(ProjectMember, (project_id, user_id)) is not None

def load_task(task_id):
    return Task.query.options(joinedload(Task.assignee)).filter_by(id=task_id).first()

# ============================================
# 建立任務
# ============================================

@tasks_bp.route('/tasks', methods=['POST'])
@jwt_required()
def create_task():
    """
    在專案中建立任務

    只有 admin / manager 可以建立 (ENFORCE_ROLE_PERMISSIONS)
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateTaskSchema, data)
    if not is_valid:
        return validation_failed(result)

    if role_permissions_enforced() and not current_user.is_manager:
        logger.warning(f"Task creation denied for {current_user.email} (role={current_user.role})")
        return jsonify({'error': 'Only Managers can create tasks'}), 403

    if not db.session.get(Project, result['project_id']):
        return jsonify({'error': 'Project not found'}), 404

    # 指派對象必須是專案成員
    if result.get('assigned_to') and not is_project_member(result['project_id'], result['assigned_to']):
        return jsonify({'error': 'Assigned user is not a member of this project'}), 400

    task = Task(
        title=result['title'],
        description=result.get('description') or '',
        project_id=result['project_id'],
        status=result['status'],
        assigned_to=result.get('assigned_to'),
        deadline=result.get('deadline')
    )

    try:
        db.session.add(task)
        db.session.commit()

        logger.info(f"Task created: {task.title} in project {task.project_id} by user {current_user.email}")

        return jsonify(serialize_task(load_task(task.id))), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Task creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task creation failed due to server error'}), 500

# ============================================
# 查詢任務列表 (可用 project_id / status 篩選)
# ============================================

@tasks_bp.route('/tasks', methods=['GET'])
@jwt_required()
def get_tasks():
    """查詢任務列表"""
    if not get_current_user():
        return jsonify({'error': 'Unauthorized'}), 401

    try:
        query = Task.query.options(joinedload(Task.assignee))

        project_id = request.args.get('project_id', type=int)
        if project_id:
            query = query.filter_by(project_id=project_id)

        status = request.args.get('status')
        if status:
            query = query.filter_by(status=status)

        tasks = query.order_by(Task.id.asc()).all()

        return jsonify([serialize_task(t) for t in tasks]), 200

    except Exception as e:
        logger.error(f"Error fetching tasks: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch tasks'}), 500

# ============================================
# 查詢單一任務
# ============================================

@tasks_bp.route('/tasks/<int:task_id>', methods=['GET'])
@jwt_required()
def get_task(task_id):
    if not get_current_user():
        return jsonify({'error': 'Unauthorized'}), 401

    try:
        task = load_task(task_id)
        if not task:
            return jsonify({'error': 'Task not found'}), 404

        return jsonify(serialize_task(task)), 200

    except Exception as e:
        logger.error(f"Error fetching task {task_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch task'}), 500

# ============================================
# 更新任務 (partial update)
# ============================================

@tasks_bp.route('/tasks/<int:task_id>', methods=['PUT'])
@jwt_required()
def update_task(task_id):
    """
    更新任務資訊

    只會更新 body 裡有出現的欄位;
    把狀態改成 done 需要 admin / manager
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateTaskSchema, data)
    if not is_valid:
        return validation_failed(result)

    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404

    if (result.get('status') == 'done' and task.status != 'done'
            and role_permissions_enforced() and not current_user.is_manager):
        logger.warning(f"Task completion denied for {current_user.email} on task {task_id}")
        return jsonify({'error': 'Only Managers can complete tasks'}), 403

    if result.get('assigned_to') and not is_project_member(task.project_id, result['assigned_to']):
        return jsonify({'error': 'Assigned user is not a member of this project'}), 400

    changes = {}
    for field in ['title', 'description', 'status', 'assigned_to', 'deadline']:
        if field in result:
            new_value = result[field]
            if field == 'description' and new_value is None:
                new_value = ''
            if getattr(task, field) != new_value:
                changes[field] = {'old': str(getattr(task, field)), 'new': str(new_value)}
                setattr(task, field, new_value)

    try:
        if changes:
            db.session.commit()
            logger.info(f"Task {task_id} updated by user {current_user.email}: {list(changes)}")

        return jsonify(serialize_task(load_task(task_id))), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Task update error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task update failed due to server error'}), 500

# ============================================
# 刪除任務
# ============================================

@tasks_bp.route('/tasks/<int:task_id>', methods=['DELETE'])
@jwt_required()
def delete_task(task_id):
    """刪除任務 (cascade 會自動刪除評論)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404

    try:
        task_title = task.title

        db.session.delete(task)
        db.session.commit()

        logger.info(f"Task deleted: {task_title} by user {current_user.email}")

        return jsonify({'success': True}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Task deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task deletion failed due to server error'}), 500
