from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import (
    create_access_token, create_refresh_token, jwt_required, get_jwt_identity,
    set_access_cookies, set_refresh_cookies, unset_jwt_cookies
)
from marshmallow import Schema, fields, validate, ValidationError, EXCLUDE
from sqlalchemy.exc import IntegrityError
from models import db, Profile, ROLES, serialize_profile
from extensions import bcrypt, limiter
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)


# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

class RegisterSchema(Schema):
    """註冊輸入驗證"""
    class Meta:
        unknown = EXCLUDE

    email = fields.Email(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Invalid email format'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=8, max=128, error='Password must be 8-128 characters'),
        error_messages={'required': 'Password is required'}
    )
    full_name = fields.Str(
        validate=validate.Length(max=100, error='Full name must be at most 100 characters'),
        load_default=''
    )

class LoginSchema(Schema):
    """登入輸入驗證"""
    class Meta:
        unknown = EXCLUDE

    email = fields.Email(required=True)
    password = fields.Str(required=True)

class UpdateProfileSchema(Schema):
    """個人資料更新驗證"""
    class Meta:
        unknown = EXCLUDE

    full_name = fields.Str(validate=validate.Length(max=100))
    avatar_url = fields.Str(allow_none=True, validate=validate.Length(max=500))

class UpdateRoleSchema(Schema):
    """角色更新驗證"""
    role = fields.Str(
        required=True,
        validate=validate.OneOf(ROLES, error='Role must be one of: admin, manager, member')
    )

# ============================================
# Helper Functions (供其他模組使用)
# ============================================

def validate_request_data(schema_class, data, partial=False):
    """
    統一的輸入驗證函數

    Returns:
        tuple: (is_valid, data_or_errors)
    """
    schema = schema_class()
    try:
        validated_data = schema.load(data, partial=partial)
        return True, validated_data
    except ValidationError as err:
        return False, err.messages

def _first_message(messages):
    if isinstance(messages, dict):
        for value in messages.values():
            return _first_message(value)
    if isinstance(messages, list) and messages:
        return _first_message(messages[0])
    return str(messages)

def validation_failed(errors):
    """把 marshmallow 錯誤轉成 400 回應,第一個錯誤訊息放在 error"""
    return jsonify({'error': _first_message(errors), 'details': errors}), 400

def get_current_user():
    """
    取得當前登入的使用者

    token 合法但使用者已不存在時回傳 None
    """
    try:
        user_id = get_jwt_identity()
        if not user_id:
            return None
        return db.session.get(Profile, int(user_id))
    except Exception as e:
        logger.error(f"Error getting current user: {str(e)}")
        return None

def _login_limit():
    return current_app.config['LOGIN_RATE_LIMIT']

def _register_limit():
    return current_app.config['REGISTER_RATE_LIMIT']

# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
@limiter.limit(_register_limit)
def register():
    """
    使用者註冊

    新使用者的角色由 DEFAULT_ROLE 決定 (預設 member)
    """
    data = request.get_json(silent=True)

    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(RegisterSchema, data)
    if not is_valid:
        return validation_failed(result)

    if Profile.query.filter_by(email=result['email']).first():
        return jsonify({'error': 'Email already exists', 'code': 'conflict'}), 409

    hashed_password = bcrypt.generate_password_hash(result['password']).decode('utf-8')

    profile = Profile(
        email=result['email'],
        full_name=result['full_name'] or None,
        password_hash=hashed_password,
        role=current_app.config['DEFAULT_ROLE']
    )

    try:
        db.session.add(profile)
        db.session.commit()

        logger.info(f"New user registered: {profile.email}")

        return jsonify(serialize_profile(profile)), 201

    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Email already exists', 'code': 'conflict'}), 409
    except Exception as e:
        db.session.rollback()
        # 不要把 exception 細節洩漏給前端
        logger.error(f"Registration error for {result['email']}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Registration failed due to server error'}), 500

# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit(_login_limit)
def login():
    """
    使用者登入

    token 同時放在 body (給 client facade) 和 cookie (給瀏覽器 session)
    """
    data = request.get_json(silent=True)

    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(LoginSchema, data)
    if not is_valid:
        return validation_failed(result)

    profile = Profile.query.filter_by(email=result['email']).first()

    # 不要區分是 email 錯還是 password 錯,避免帳號枚舉攻擊
    if not profile or not bcrypt.check_password_hash(profile.password_hash, result['password']):
        logger.warning(f"Failed login attempt for email: {result['email']}")
        return jsonify({'error': 'Invalid login credentials'}), 401

    access_token = create_access_token(identity=str(profile.id))
    refresh_token = create_refresh_token(identity=str(profile.id))

    logger.info(f"User logged in: {profile.email}")

    response = jsonify({
        'access_token': access_token,
        'refresh_token': refresh_token,
        'user': serialize_profile(profile)
    })
    set_access_cookies(response, access_token)
    set_refresh_cookies(response, refresh_token)
    return response, 200

# ============================================
# Token 刷新 API
# ============================================

@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """用 refresh token 換新的 access token"""
    profile = get_current_user()

    if not profile:
        return jsonify({'error': 'Invalid or inactive user'}), 401

    access_token = create_access_token(identity=str(profile.id))

    response = jsonify({'access_token': access_token})
    set_access_cookies(response, access_token)
    return response, 200

# ============================================
# 登出 API
# ============================================

@auth_bp.route('/logout', methods=['POST'])
@jwt_required()
def logout():
    """登出 (清掉 session cookie)"""
    logger.info(f"User logged out: {get_jwt_identity()}")

    response = jsonify({'success': True})
    unset_jwt_cookies(response)
    return response, 200

# ============================================
# 取得 / 更新自己的 profile
# ============================================

@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    """取得當前登入使用者的 profile (包含 role)"""
    profile = get_current_user()

    if not profile:
        logger.warning(f"Token valid but profile not found: {get_jwt_identity()}")
        return jsonify({'error': 'Profile not found'}), 404

    return jsonify(serialize_profile(profile)), 200

@auth_bp.route('/me', methods=['PATCH'])
@jwt_required()
def update_me():
    """更新當前使用者資料"""
    profile = get_current_user()

    if not profile:
        return jsonify({'error': 'Profile not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateProfileSchema, data)
    if not is_valid:
        return validation_failed(result)

    for field in ['full_name', 'avatar_url']:
        if field in result:
            setattr(profile, field, result[field])

    try:
        db.session.commit()
        logger.info(f"Profile updated: {profile.email}")

        return jsonify(serialize_profile(profile)), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Profile update error for {profile.email}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Update failed due to server error'}), 500

# ============================================
# 修改使用者角色 (只有 admin 可以)
# ============================================

@auth_bp.route('/profiles/<int:user_id>/role', methods=['PATCH'])
@jwt_required()
def update_profile_role(user_id):
    """修改其他使用者的角色"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    if current_user.role != 'admin':
        return jsonify({'error': 'Only admins can change roles'}), 403

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateRoleSchema, data)
    if not is_valid:
        return validation_failed(result)

    profile = db.session.get(Profile, user_id)
    if not profile:
        return jsonify({'error': 'Profile not found'}), 404

    try:
        old_role = profile.role
        profile.role = result['role']
        db.session.commit()

        logger.info(f"Role of {profile.email} changed {old_role} -> {profile.role} by {current_user.email}")

        return jsonify(serialize_profile(profile)), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Role update error for profile {user_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Role update failed due to server error'}), 500
