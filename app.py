from flask import Flask, request, jsonify
from flask_cors import CORS
from config import get_config
from models import db
from extensions import jwt, bcrypt, limiter
from sqlalchemy import text
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import os

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    設定 logging 系統

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 設定統一的 log format
    """
    log_dir = app.config.get('LOG_DIR', 'logs')
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    # Info log handler (記錄一般資訊)
    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    # Error log handler (只記錄錯誤)
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    # blueprint 模組用 logging.getLogger(__name__),所以掛在 root logger
    root_logger = logging.getLogger()
    root_logger.addHandler(info_handler)
    root_logger.addHandler(error_handler)
    root_logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    app.logger.addHandler(info_handler)
    app.logger.addHandler(error_handler)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    app.logger.info('Application startup')

# ============================================
# JWT 錯誤處理
# ============================================

def register_jwt_handlers(app):

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        """處理 token 過期"""
        app.logger.warning(f"Expired token attempt from: {request.remote_addr}")
        return jsonify({
            'error': 'Session expired',
            'message': 'The token has expired. Please refresh your token or login again.'
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        """處理無效的 token"""
        app.logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'Invalid session',
            'message': 'Token validation failed. Please provide a valid token.'
        }), 401

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        """處理缺少 token"""
        app.logger.warning(f"Unauthorized access attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'Unauthorized',
            'message': 'Authentication is required. Please log in.'
        }), 401

    @jwt.revoked_token_loader
    def revoked_token_callback(jwt_header, jwt_payload):
        """處理被撤銷的 token"""
        return jsonify({
            'error': 'Session revoked',
            'message': 'The token has been revoked. Please login again.'
        }), 401

# ============================================
# 全域錯誤處理
# ============================================

def register_error_handlers(app):

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'error': 'The request is malformed or invalid',
            'status': 400
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'The requested resource does not exist',
            'status': 404
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'The HTTP method is not allowed for this endpoint',
            'status': 405
        }), 405

    @app.errorhandler(413)
    def payload_too_large(error):
        return jsonify({
            'error': 'The uploaded file is too large',
            'status': 413
        }), 413

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        app.logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        return jsonify({
            'error': 'Too many requests. Please try again later.',
            'status': 429
        }), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        """
        處理 500 錯誤

        不洩漏錯誤細節給前端,完整 stack trace 只寫進 log
        """
        db.session.rollback()
        app.logger.error(f"Internal server error: {str(error)}", exc_info=True)
        return jsonify({
            'error': 'An internal error occurred',
            'status': 500
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """最後的防線,捕捉所有沒被處理的 exception"""
        # 像 404 / 405 這種 HTTPException 交給上面對應的 handler
        code = getattr(error, 'code', None)
        if isinstance(code, int) and code < 500:
            return jsonify({'error': getattr(error, 'description', str(error)), 'status': code}), code

        db.session.rollback()
        app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)
        return jsonify({
            'error': 'An unexpected error occurred. Please try again later.',
            'status': 500
        }), 500

# ============================================
# App Factory
# ============================================

def create_app(config_class=None):
    app = Flask(__name__)
    config_class = config_class or get_config()
    app.config.from_object(config_class)

    if not app.testing:
        config_class.validate()

    # 不要用 '*',應該指定允許的來源
    CORS(app,
         supports_credentials=True,
         origins=app.config['CORS_ORIGINS'],
         methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization', 'X-CSRF-TOKEN'])

    # 擴展初始化
    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)

    if not app.debug and not app.testing:
        setup_logging(app)

    register_jwt_handlers(app)
    register_error_handlers(app)

    # Data service: auth + blob storage
    from auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')

    from storage import storage_bp
    app.register_blueprint(storage_bp, url_prefix='/storage')

    # API gateway
    from projects import projects_bp
    app.register_blueprint(projects_bp, url_prefix='/api/projects')

    from tasks import tasks_bp
    app.register_blueprint(tasks_bp, url_prefix='/api')

    from comments import comments_bp
    app.register_blueprint(comments_bp, url_prefix='/api')

    from users import users_bp
    app.register_blueprint(users_bp, url_prefix='/api')

    from cli import register_commands
    register_commands(app)

    with app.app_context():
        db.create_all()

    # ============================================
    # Request/Response Logging
    # ============================================

    @app.before_request
    def log_request():
        if not app.debug:
            app.logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        if not app.debug:
            app.logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        # 加上 security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'

        return response

    # ============================================
    # Health Check Endpoint
    # ============================================

    @app.route('/health', methods=['GET'])
    def health_check():
        """用於 load balancer 或監控系統檢查服務是否正常"""
        try:
            db.session.execute(text('SELECT 1'))

            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'timestamp': datetime.utcnow().isoformat()
            }), 200
        except Exception as e:
            app.logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

    # ============================================
    # API 首頁
    # ============================================

    @app.route('/')
    @limiter.limit("10 per minute")
    def home():
        return jsonify({
            'message': 'Team Board API',
            'version': app.config['API_VERSION'],
            'endpoints': {
                'health': {'path': '/health', 'methods': ['GET']},
                'auth': {
                    'register': {'path': '/auth/register', 'methods': ['POST']},
                    'login': {'path': '/auth/login', 'methods': ['POST']},
                    'refresh': {'path': '/auth/refresh', 'methods': ['POST']},
                    'logout': {'path': '/auth/logout', 'methods': ['POST']},
                    'me': {'path': '/auth/me', 'methods': ['GET', 'PATCH']},
                    'role': {'path': '/auth/profiles/:id/role', 'methods': ['PATCH']}
                },
                'storage': {
                    'files': {'path': '/storage/files', 'methods': ['GET', 'POST']},
                    'file': {'path': '/storage/files/:path', 'methods': ['DELETE']},
                    'share': {'path': '/storage/files/:path/share', 'methods': ['POST']},
                    'public': {'path': '/storage/public/:path', 'methods': ['GET']}
                },
                'projects': {
                    'list': {'path': '/api/projects', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/api/projects/:id', 'methods': ['GET', 'DELETE']},
                    'members': {'path': '/api/projects/:id/members', 'methods': ['GET', 'POST', 'DELETE']},
                    'stats': {'path': '/api/projects/:id/stats', 'methods': ['GET']}
                },
                'tasks': {
                    'list': {'path': '/api/tasks', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/api/tasks/:id', 'methods': ['GET', 'PUT', 'DELETE']},
                    'comments': {'path': '/api/tasks/:id/comments', 'methods': ['GET', 'POST']}
                },
                'comments': {'path': '/api/comments/:id', 'methods': ['DELETE']},
                'users': {'path': '/api/users', 'methods': ['GET']}
            }
        })

    return app

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # 在 production 環境不要用 Flask 內建的 server
    # 應該用 gunicorn 或 uwsgi
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.getenv('FLASK_PORT', 8888))

    create_app().run(
        debug=debug_mode,
        port=port,
        host='0.0.0.0'
    )
