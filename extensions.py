from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate


db = SQLAlchemy()
migrate = Migrate()

ENGINE_KEY = "matrix_engine"


def init_extensions(app, remote_store=None):
    """Initialize Flask extensions and wire the matrix reconciliation engine"""
    db.init_app(app)
    migrate.init_app(app, db)

    from matrix.ai_assist import GeminiAssistant
    from matrix.cache_store import LocalCacheStore
    from matrix.outbox import Outbox
    from matrix.reconciliation import ReconciliationEngine
    from matrix.remote_store import SheetsRemoteStore
    from matrix.session import SessionManager

    root_id = app.config.get("ROOT_MEMBER_ID", "root-001")
    if remote_store is None and app.config.get("MATRIX_REMOTE_URL"):
        remote_store = SheetsRemoteStore(
            app.config["MATRIX_REMOTE_URL"],
            timeout=app.config.get("REMOTE_TIMEOUT_SECONDS", 20),
            root_id=root_id,
        )

    cache = LocalCacheStore(
        attachment_limit=app.config.get("ATTACHMENT_CACHE_LIMIT", 50000),
        root_id=root_id,
    )
    engine = ReconciliationEngine(
        cache=cache,
        session=SessionManager(cache),
        remote=remote_store,
        outbox=Outbox(synchronous=app.config.get("OUTBOX_SYNCHRONOUS", False)),
        grace_minutes=app.config.get("GRACE_WINDOW_MINUTES", 15),
        root_id=root_id,
        admin_defaults={
            "username": app.config.get("ADMIN_USERNAME", "admin"),
            "password": app.config.get("ADMIN_PASSWORD", "password"),
            "email": app.config.get("ADMIN_EMAIL", "admin@matrixflow.com"),
            "phone": app.config.get("ADMIN_PHONE", "+390000000000"),
        },
    )
    app.extensions[ENGINE_KEY] = engine
    app.extensions["matrix_assistant"] = GeminiAssistant(
        api_key=app.config.get("GEMINI_API_KEY"),
        model=app.config.get("GEMINI_MODEL", "gemini-2.5-flash"),
    )

    app.logger.info(
        f"Matrix engine initialized (remote={'on' if remote_store else 'off'}, "
        f"database={app.config.get('SQLALCHEMY_DATABASE_URI')})"
    )
    return app


def get_engine():
    return current_app.extensions[ENGINE_KEY]


def get_assistant():
    return current_app.extensions["matrix_assistant"]
