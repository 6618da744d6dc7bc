import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored beside the app as storefront.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "storefront.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shared counters (rate limits, telemetry). Unset = per-process memory cache
    REDIS_URL = os.getenv("REDIS_URL")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Cookie-based web sessions
    AUTH_COOKIE_NAME = "storefront_session"
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60
    REMEMBER_SESSION_LIFETIME_SECONDS = 30 * 24 * 60 * 60
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False  # set True when using HTTPS

    # Session-scoped cache entries dropped on logout
    LOGOUT_CLEAR_KEYS = [
        "sanctum_token",
        "cart",
        "user_preferences",
        "temp_data",
        "last_activity",
        "shopping_session",
    ]

    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    # Login throttling per email|ip
    LOGIN_MAX_ATTEMPTS = _env_int("LOGIN_MAX_ATTEMPTS", 5)
    LOGIN_DECAY_SECONDS = _env_int("LOGIN_DECAY_SECONDS", 60)

    # Account lockout
    ACCOUNT_LOCK_THRESHOLD = 5
    ACCOUNT_LOCK_MINUTES = 5

    # Idle timeout: 30 minutes without an authenticated request
    IDLE_TIMEOUT_MINUTES = 30

    # Bearer tokens ("devices")
    TOKEN_PREFIX = os.getenv("TOKEN_PREFIX", "pb_")
    TOKEN_TTL_MINUTES = _env_int("TOKEN_TTL_MINUTES", 7 * 24 * 60)
    REMEMBER_TOKEN_TTL_DAYS = 30
    MAX_TOKENS_PER_USER = _env_int("MAX_TOKENS_PER_USER", 10)

    TOKEN_REFRESH_THRESHOLD_SECONDS = 2 * 60 * 60
    ROTATE_TOKENS_ON_REFRESH = os.getenv("ROTATE_TOKENS_ON_REFRESH", "false").lower() == "true"
    REFRESH_MAX_ATTEMPTS = 10
    REFRESH_DECAY_SECONDS = 60

    API_MAX_REQUESTS = _env_int("API_MAX_REQUESTS", 1000)
    API_DECAY_SECONDS = 60

    # Non-admins probing the admin API
    UNAUTHORIZED_MAX_ATTEMPTS = 10
    UNAUTHORIZED_DECAY_SECONDS = 300

    # Suspicious activity heuristics
    RAPID_REQUEST_THRESHOLD = 100  # per minute
    REQUEST_PATTERN_LIMIT = 50
    ACTIVITY_FINGERPRINT_TTL_SECONDS = 24 * 60 * 60

    TOKEN_ABILITIES = {
        "admin:read": "Read admin resources",
        "admin:write": "Write admin resources",
        "admin:delete": "Delete admin resources",
        "user:read": "Read user resources",
        "user:write": "Write user resources",
        "user:manage": "Manage user accounts",
        "orders:read": "Read orders",
        "orders:write": "Write orders",
        "orders:cancel": "Cancel orders",
        "products:read": "Read products",
        "products:write": "Write products",
        "analytics:read": "Read analytics data",
        "web:access": "First-party web access",
    }
    ADMIN_TOKEN_ABILITIES = ["admin:read", "admin:write"]
    WEB_TOKEN_ABILITIES = ["web:access"]

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    REDIS_URL = None
    BCRYPT_ROUNDS = 4
    LOGIN_MAX_ATTEMPTS = 5
    LOGIN_DECAY_SECONDS = 60
    MAX_TOKENS_PER_USER = 10
    API_MAX_REQUESTS = 1000
    ROTATE_TOKENS_ON_REFRESH = False
