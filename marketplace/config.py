import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


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

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # --- Marketplace economics ---
    # Commission the platform keeps on every sale, in percent.
    PLATFORM_COMMISSION_PERCENT = float(
        os.environ.get("PLATFORM_COMMISSION_PERCENT", 15)
    )
    # Published card fee schedule, used for the ledger's processing fee estimate.
    STRIPE_FEE_PERCENT = float(os.environ.get("STRIPE_FEE_PERCENT", 2.9))
    STRIPE_FEE_FIXED_CENTS = int(os.environ.get("STRIPE_FEE_FIXED_CENTS", 30))

    # --- Checkout ---
    CHECKOUT_CURRENCY = os.environ.get("CHECKOUT_CURRENCY", "usd")
    CHECKOUT_SESSION_TTL_MINUTES = int(
        os.environ.get("CHECKOUT_SESSION_TTL_MINUTES", 30)
    )
    # Each cart item takes one metadata key; Stripe allows 50 per object.
    CHECKOUT_MAX_ITEMS = int(os.environ.get("CHECKOUT_MAX_ITEMS", 20))

    # --- Webhooks ---
    STRIPE_WEBHOOK_TOLERANCE = int(
        os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 300)
    )  # seconds; older signatures are rejected as replays
    WEBHOOK_PROCESSING_LEASE_SECONDS = int(
        os.environ.get("WEBHOOK_PROCESSING_LEASE_SECONDS", 300)
    )  # a "processing" row older than this is treated as a crashed attempt

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    # --- Rate limiting ---
    RATELIMIT_ENABLED = not _env_flag("RATELIMIT_DISABLED")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
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
    SESSION_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, CSRF disabled."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    APP_BASE_URL = "http://localhost:5000"
    PLATFORM_COMMISSION_PERCENT = 15
    STRIPE_FEE_PERCENT = 2.9
    STRIPE_FEE_FIXED_CENTS = 30
    CHECKOUT_CURRENCY = "usd"
    CHECKOUT_SESSION_TTL_MINUTES = 30
    CHECKOUT_MAX_ITEMS = 20
    STRIPE_WEBHOOK_TOLERANCE = 300
    WEBHOOK_PROCESSING_LEASE_SECONDS = 300
    WTF_CSRF_ENABLED = False  # disable CSRF for test requests
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
