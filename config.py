# ==========================================================================================================
# -------------- Configuration file for the MatrixFlow Flask application -----------------------------------
# ==========================================================================================================
import os
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        raise ValueError("SECRET_KEY must be set")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = os.getenv("DEBUG", "False").lower() in ("true", "1", "t")

    _database_url = os.getenv("DATABASE_URL")
    if not _database_url:
        _database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'matrix_cache.db')}"

    # Hosted Postgres hands out postgres:// URLs; force the pure-python driver
    if _database_url.startswith("postgres://"):
        _database_url = _database_url.replace("postgres://", "postgresql+pg8000://", 1)
    elif _database_url.startswith("postgresql://"):
        _database_url = _database_url.replace("postgresql://", "postgresql+pg8000://", 1)

    SQLALCHEMY_DATABASE_URI = _database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # Remote spreadsheet script (authoritative store); unset = local-only mode
    MATRIX_REMOTE_URL = os.getenv("MATRIX_REMOTE_URL")
    REMOTE_TIMEOUT_SECONDS = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "20"))

    GRACE_WINDOW_MINUTES = int(os.getenv("GRACE_WINDOW_MINUTES", "15"))
    ATTACHMENT_CACHE_LIMIT = int(os.getenv("ATTACHMENT_CACHE_LIMIT", "50000"))
    OUTBOX_SYNCHRONOUS = os.getenv("OUTBOX_SYNCHRONOUS", "False").lower() in ("true", "1", "t")

    ROOT_MEMBER_ID = os.getenv("ROOT_MEMBER_ID", "root-001")
    ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "password")
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@matrixflow.com")
    ADMIN_PHONE = os.getenv("ADMIN_PHONE", "+390000000000")

    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:10000/")
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", str(1024 * 1024)))
    LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "10"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    MATRIX_REMOTE_URL = None
    OUTBOX_SYNCHRONOUS = True
    GEMINI_API_KEY = None
