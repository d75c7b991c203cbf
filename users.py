from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required
from models import Profile
from auth import get_current_user
import logging

users_bp = Blueprint('users', __name__)
logger = logging.getLogger(__name__)

# ============================================
# 使用者列表
# ============================================

@users_bp.route('/users', methods=['GET'])
@jwt_required()
def list_users():
    """列出所有 profile (id, full_name, email, role)"""
    if not get_current_user():
        return jsonify({'error': 'Unauthorized'}), 401

    try:
        profiles = Profile.query.order_by(Profile.id.asc()).all()

        return jsonify([{
            'id': p.id,
            'full_name': p.full_name,
            'email': p.email,
            'role': p.role,
            'created_at': p.created_at.isoformat() if p.created_at else None
        } for p in profiles]), 200

    except Exception as e:
        logger.error(f"Error fetching users: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch users'}), 500
