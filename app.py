import os
from datetime import datetime, timezone

from flask import Flask, jsonify

from config import Config
from extensions import db, get_engine, init_extensions
from logger import setup_logging


def create_app(config_class=Config, remote_store=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
        )

    # ------------------------------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------------------------------
    setup_logging(app)

    # ------------------------------------------------------------------------------------------
    # SQLite cache needs its instance folder
    # ------------------------------------------------------------------------------------------
    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if database_uri.startswith("sqlite:///") and ":memory:" not in database_uri:
        instance_dir = os.path.dirname(database_uri[len("sqlite:///"):])
        if instance_dir:
            os.makedirs(instance_dir, exist_ok=True)

    # ------------------------------------------------------------------------------------------
    # Initialize extensions
    # ------------------------------------------------------------------------------------------
    init_extensions(app, remote_store=remote_store)

    with app.app_context():
        import models  # noqa: F401  (registers the cache table)
        db.create_all()

    register_blueprints(app)

    @app.route("/healthz")
    def healthz():
        return jsonify({
            "status": "ok",
            "sync": get_engine().status.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }), 200

    return app


def register_blueprints(app):
    """Register all blueprints"""
    from blueprints.auth import bp as auth_bp
    from blueprints.profile import bp as profile_bp
    from blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(admin_bp)


if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    app.run(debug=app.config.get("DEBUG", False), host="0.0.0.0", port=port)
