from flask_jwt_extended import JWTManager
from flask_bcrypt import Bcrypt
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# ============================================
# 擴展實例
# 在 create_app() 裡呼叫 init_app,blueprint 可以直接 import
# ============================================

jwt = JWTManager()
bcrypt = Bcrypt()

# storage / strategy / default limits 從 app.config 的 RATELIMIT_* 讀取
limiter = Limiter(key_func=get_remote_address)
