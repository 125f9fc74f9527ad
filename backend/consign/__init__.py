# backend/consign/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate, enable_sqlite_savepoints
from .logging_config import configure_logging


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    with app.app_context():
        enable_sqlite_savepoints(db.engine)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Per-app collaborators
    from .services.audit_service import AuditHealth, EXTENSION_KEY as AUDIT_HEALTH_KEY
    from .services.notification_service import DatabaseNotifier, EXTENSION_KEY as NOTIFIER_KEY
    app.extensions.setdefault(
        AUDIT_HEALTH_KEY,
        AuditHealth(window_minutes=int(app.config["AUDIT_DEGRADED_WINDOW_MINUTES"])),
    )
    app.extensions.setdefault(NOTIFIER_KEY, DatabaseNotifier())

    # Register blueprints
    from .routes.system import system_bp
    from .routes.deliveries import deliveries_bp
    from .routes.cutoff import cutoff_bp
    from .routes.reliability import reliability_bp
    from .routes.stores import stores_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(deliveries_bp)
    app.register_blueprint(cutoff_bp)
    app.register_blueprint(reliability_bp)
    app.register_blueprint(stores_bp)
    app.register_blueprint(notifications_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Actor-Id, X-Actor-Role"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    # Background cut-off sweep (no-op unless ENABLE_BACKGROUND_JOBS)
    from .scheduler import init_scheduler
    init_scheduler(app)

    return app
