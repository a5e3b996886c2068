# ==========================================================================================================
# -------------- Configuration file for the Investor Portal Flask application ------------------------------
# ==========================================================================================================
import os
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _csv_env(name, default=""):
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = os.getenv("DEBUG", "False").lower() in ("true", "1", "t")
    TESTING = False

    _database_url = os.getenv("DATABASE_URL")
    if not _database_url:
        _database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'portal.db')}"

    if _database_url.startswith("postgres://"):
        _database_url = _database_url.replace("postgres://", "postgresql+pg8000://", 1)

    SQLALCHEMY_DATABASE_URI = _database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # Outbound email (approval / rejection notices, password reset codes)
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "True").lower() in ("true", "1", "t")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", MAIL_USERNAME)
    MAIL_SUPPRESS_SEND = os.getenv("MAIL_SUPPRESS_SEND", "False").lower() in ("true", "1", "t")

    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")
    COMPANY_NAME = os.getenv("COMPANY_NAME", "Aaron M LLP")

    # Form provider webhook
    JOTFORM_WEBHOOK_SECRET = os.getenv("JOTFORM_WEBHOOK_SECRET")
    JOTFORM_ALLOWED_IPS = _csv_env(
        "JOTFORM_ALLOWED_IPS",
        "54.208.102.37,54.208.102.38,54.208.102.39,54.208.102.40",
    )
    WEBHOOK_IP_CHECK = FLASK_ENV != "development"

    # Security
    ADMIN_IP_WHITELIST = _csv_env("ADMIN_IP_WHITELIST")
    RATELIMIT_ENABLED = True
    RATELIMIT_REDIS_URL = os.getenv("RATELIMIT_REDIS_URL")
    # Number of trusted reverse proxies in front of the app (0 = none)
    PROXY_FIX_X_FOR = int(os.getenv("PROXY_FIX_X_FOR", "0"))

    # Onboarding
    INVITE_TOKEN_TTL_DAYS = int(os.getenv("INVITE_TOKEN_TTL_DAYS", "7"))
    PASSWORD_RESET_TTL_MINUTES = int(os.getenv("PASSWORD_RESET_TTL_MINUTES", "10"))

    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True


class TestingConfig(Config):

    SECRET_KEY = "testing-secret-key"
    FLASK_ENV = "testing"
    TESTING = True
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}

    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "no-reply@portal.test"

    APP_BASE_URL = "http://portal.test"
    JOTFORM_WEBHOOK_SECRET = "webhook-test-secret"
    WEBHOOK_IP_CHECK = False

    ADMIN_IP_WHITELIST = []
    RATELIMIT_ENABLED = False
    RATELIMIT_REDIS_URL = None
