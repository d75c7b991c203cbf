from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from marshmallow import Schema, fields, validate, validates_schema, ValidationError, EXCLUDE
from models import db, Task, TaskComment, serialize_comment
from auth import get_current_user, validate_request_data, validation_failed
import logging

comments_bp = Blueprint('comments', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateCommentSchema(Schema):
    """評論驗證: 文字和圖片至少要有一個"""
    class Meta:
        unknown = EXCLUDE

    content = fields.Str(validate=validate.Length(max=2000), load_default='')
    image_url = fields.Str(allow_none=True, validate=validate.Length(max=500), load_default=None)

    @validates_schema
    def validate_not_empty(self, data, **kwargs):
        if not (data.get('content') or '').strip() and not data.get('image_url'):
            raise ValidationError('Comment must have text or an image', 'content')

# ============================================
# 任務評論列表 (依建立時間排序)
# ============================================

@comments_bp.route('/tasks/<int:task_id>/comments', methods=['GET'])
@jwt_required()
def get_task_comments(task_id):
    if not get_current_user():
        return jsonify({'error': 'Unauthorized'}), 401

    try:
        comments = TaskComment.query.filter_by(task_id=task_id).options(
            joinedload(TaskComment.author)
        ).order_by(TaskComment.created_at.asc(), TaskComment.id.asc()).all()

        return jsonify([serialize_comment(c) for c in comments]), 200

    except Exception as e:
        logger.error(f"Error fetching comments for task {task_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch comments'}), 500

# ============================================
# 新增評論
# ============================================

@comments_bp.route('/tasks/<int:task_id>/comments', methods=['POST'])
@jwt_required()
def create_task_comment(task_id):
    """
    新增任務評論

    作者從登入身份取得,body 裡的 user_id 會被忽略
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateCommentSchema, data)
    if not is_valid:
        return validation_failed(result)

    if not db.session.get(Task, task_id):
        return jsonify({'error': 'Task not found'}), 404

    try:
        comment = TaskComment(
            task_id=task_id,
            user_id=current_user.id,
            content=result['content'],
            image_url=result.get('image_url')
        )
        db.session.add(comment)
        db.session.commit()

        logger.info(f"Comment added to task {task_id} by user {current_user.email}")

        return jsonify(serialize_comment(comment)), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Comment creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to add comment due to server error'}), 500

# ============================================
# 刪除評論 (作者本人或 admin)
# ============================================

@comments_bp.route('/comments/<int:comment_id>', methods=['DELETE'])
@jwt_required()
def delete_task_comment(comment_id):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    comment = db.session.get(TaskComment, comment_id)
    if not comment:
        return jsonify({'error': 'Comment not found'}), 404

    if comment.user_id != current_user.id and current_user.role != 'admin':
        return jsonify({'error': 'Only the author can delete this comment'}), 403

    try:
        db.session.delete(comment)
        db.session.commit()

        logger.info(f"Comment {comment_id} deleted by user {current_user.email}")

        return jsonify({'success': True}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Comment deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to delete comment due to server error'}), 500
