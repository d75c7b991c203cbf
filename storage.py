from flask import Blueprint, request, jsonify, current_app, send_from_directory, url_for, abort
from flask_jwt_extended import jwt_required
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from marshmallow import Schema, fields, validate, EXCLUDE
from werkzeug.utils import secure_filename
from werkzeug.security import safe_join
from auth import get_current_user, validate_request_data, validation_failed
from datetime import datetime, timezone
import logging
import os

storage_bp = Blueprint('storage', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class ShareFileSchema(Schema):
    """產生 signed URL 的參數"""
    class Meta:
        unknown = EXCLUDE

    expires_in = fields.Int(required=True, validate=validate.Range(min=1))
    download = fields.Bool(load_default=False)

# ============================================
# 輔助函數
# ============================================

def upload_root():
    """上傳目錄的絕對路徑 (相對路徑以 app root 為準)"""
    folder = current_app.config['UPLOAD_FOLDER']
    if not os.path.isabs(folder):
        folder = os.path.join(current_app.root_path, folder)
    return folder

def allowed_file(filename):
    return '.' in filename and \
        filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_EXTENSIONS']

def owned_path(user, name):
    """
    把 "<user_id>/<filename>" 轉成安全的相對路徑

    Returns:
        str|None: 不屬於這個使用者或檔名不合法時回傳 None
    """
    owner, _, filename = name.partition('/')
    if owner != str(user.id):
        return None
    filename = secure_filename(filename)
    if not filename:
        return None
    return f"{owner}/{filename}"

def share_serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt='storage-share')

def public_url(path):
    return url_for('storage.public_file', path=path, _external=True)

# ============================================
# 上傳檔案
# ============================================

@storage_bp.route('/files', methods=['POST'])
@jwt_required()
def upload_file():
    """
    上傳檔案 (multipart/form-data)

    path 預設為 "<user_id>/<原始檔名>",一定要放在自己的目錄底下;
    同名檔案已存在時回 409
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    file = request.files.get('file')
    if not file or not file.filename:
        return jsonify({'error': 'No file provided'}), 400

    requested = request.form.get('path') or f"{current_user.id}/{file.filename}"
    path = owned_path(current_user, requested)
    if not path:
        return jsonify({'error': 'Files must be stored under your own folder'}), 400

    if not allowed_file(path):
        return jsonify({'error': 'File type not allowed'}), 400

    target = os.path.join(upload_root(), path)
    if os.path.exists(target):
        return jsonify({'error': 'The resource already exists', 'code': 'conflict'}), 409

    try:
        os.makedirs(os.path.dirname(target), exist_ok=True)
        file.save(target)

        logger.info(f"File uploaded: {path} by user {current_user.email}")

        return jsonify({'path': path, 'public_url': public_url(path)}), 201

    except OSError as e:
        logger.error(f"File upload error for {path}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Upload failed due to server error'}), 500

# ============================================
# 列出自己的檔案
# ============================================

@storage_bp.route('/files', methods=['GET'])
@jwt_required()
def list_files():
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    folder = os.path.join(upload_root(), str(current_user.id))
    if not os.path.isdir(folder):
        return jsonify([]), 200

    files = []
    for name in sorted(os.listdir(folder)):
        full_path = os.path.join(folder, name)
        if not os.path.isfile(full_path):
            continue
        stat = os.stat(full_path)
        files.append({
            'name': name,
            'size': stat.st_size,
            'updated_at': datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat()
        })

    return jsonify(files), 200

# ============================================
# 刪除檔案
# ============================================

@storage_bp.route('/files/<path:name>', methods=['DELETE'])
@jwt_required()
def delete_file(name):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    path = owned_path(current_user, name)
    if not path:
        return jsonify({'error': 'Permission denied'}), 403

    target = os.path.join(upload_root(), path)
    if not os.path.isfile(target):
        return jsonify({'error': 'Object not found'}), 404

    try:
        os.remove(target)
        logger.info(f"File deleted: {path} by user {current_user.email}")
        return jsonify({'success': True}), 200

    except OSError as e:
        logger.error(f"File deletion error for {path}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Delete failed due to server error'}), 500

# ============================================
# Signed URL (有時效的分享連結)
# ============================================

@storage_bp.route('/files/<path:name>/share', methods=['POST'])
@jwt_required()
def share_file(name):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Unauthorized'}), 401

    path = owned_path(current_user, name)
    if not path:
        return jsonify({'error': 'Permission denied'}), 403

    if not os.path.isfile(os.path.join(upload_root(), path)):
        return jsonify({'error': 'Object not found'}), 404

    data = request.get_json(silent=True) or {}
    is_valid, result = validate_request_data(ShareFileSchema, data)
    if not is_valid:
        return validation_failed(result)

    expires_in = min(result['expires_in'], current_app.config['SIGNED_URL_MAX_AGE'])
    token = share_serializer().dumps({
        'path': path,
        'expires_in': expires_in,
        'download': result['download']
    })

    return jsonify({
        'signed_url': url_for('storage.signed_file', token=token, _external=True),
        'expires_in': expires_in
    }), 200

@storage_bp.route('/signed/<token>', methods=['GET'])
def signed_file(token):
    """用 signed URL 下載檔案 (不需要登入)"""
    serializer = share_serializer()
    try:
        payload, signed_at = serializer.loads(
            token,
            max_age=current_app.config['SIGNED_URL_MAX_AGE'],
            return_timestamp=True
        )
    except SignatureExpired:
        return jsonify({'error': 'Signed URL has expired'}), 400
    except BadSignature:
        return jsonify({'error': 'Invalid signed URL'}), 400

    age = (datetime.now(signed_at.tzinfo) - signed_at).total_seconds()
    if age > payload['expires_in']:
        return jsonify({'error': 'Signed URL has expired'}), 400

    return send_from_directory(upload_root(), payload['path'], as_attachment=payload['download'])

# ============================================
# Public URL
# ============================================

@storage_bp.route('/public/<path:path>', methods=['GET'])
def public_file(path):
    target = safe_join(upload_root(), path)
    if not target or not os.path.isfile(target):
        abort(404)
    return send_from_directory(upload_root(), path)
