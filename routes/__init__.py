from .health import health_bp
from .auth import auth_bp
from .api_auth import api_auth_bp
from .admin import admin_bp
