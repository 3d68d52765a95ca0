import os


def _optional_float(value):
    """Parse an optional float env var. Empty/unset means None."""
    if value in (None, ""):
        return None
    return float(value)


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Backend API ---
    # Customer API (servers, subscriptions, auth).
    API_BASE_URL = os.environ.get("API_BASE_URL", "http://localhost:5000/api")
    # Admin API lives on a separate base URL.
    ADMIN_API_BASE_URL = os.environ.get(
        "ADMIN_API_BASE_URL", "http://localhost:5000/api/admin"
    )
    # Seconds. Unset = wait for the backend indefinitely.
    BACKEND_TIMEOUT = _optional_float(os.environ.get("BACKEND_TIMEOUT"))

    # Public URL of this app, used to build checkout return URLs.
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:3000")
    # Plan / upgrade page (hosted checkout for add-ons).
    PLAN_PAGE_URL = os.environ.get("PLAN_PAGE_URL", "/plan")

    # --- Pending deployments ---
    # Outbox records older than this are ignored and purged.
    PENDING_DEPLOYMENT_TTL_HOURS = int(
        os.environ.get("PENDING_DEPLOYMENT_TTL_HOURS", 24)
    )

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "API_BASE_URL",
            "APP_BASE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = Config.SQLALCHEMY_DATABASE_URI or "sqlite:///hostpanel.db"
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, CSRF disabled, fixed backend URLs."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    API_BASE_URL = "http://backend.test/api"
    ADMIN_API_BASE_URL = "http://backend.test/api/admin"
    BACKEND_TIMEOUT = None
    APP_BASE_URL = "http://localhost:3000"
    PLAN_PAGE_URL = "/plan"
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
