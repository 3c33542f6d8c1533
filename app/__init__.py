"""
Product Workspace Platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from app.config import config
from app.models import db
from app.middleware.jwt_auth import init_jwt_middleware
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing + auth middleware ─────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import team as _team_models             # noqa: F401
    from app.models import workspace as _workspace_models   # noqa: F401
    from app.models import work_item as _work_item_models   # noqa: F401
    from app.models import strategy as _strategy_models     # noqa: F401
    from app.models import feedback as _feedback_models     # noqa: F401
    from app.models import ai as _ai_models                 # noqa: F401

    if app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite") and not app.testing:
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.health_bp import health_bp
    from app.blueprints.auth_bp import auth_bp
    from app.blueprints.team_bp import team_bp
    from app.blueprints.workspace_bp import workspace_bp
    from app.blueprints.work_item_bp import work_item_bp
    from app.blueprints.timeline_bp import timeline_bp
    from app.blueprints.dependency_bp import dependency_bp
    from app.blueprints.strategy_bp import strategy_bp
    from app.blueprints.feedback_bp import feedback_bp
    from app.blueprints.insight_bp import insight_bp, public_bp
    from app.blueprints.template_bp import template_bp
    from app.blueprints.analytics_bp import analytics_bp
    from app.blueprints.ai_bp import ai_bp
    from app.blueprints.agent_bp import agent_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(team_bp)
    app.register_blueprint(workspace_bp)
    app.register_blueprint(work_item_bp)
    app.register_blueprint(timeline_bp)
    app.register_blueprint(dependency_bp)
    app.register_blueprint(strategy_bp)
    app.register_blueprint(feedback_bp)
    app.register_blueprint(insight_bp)
    app.register_blueprint(public_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(analytics_bp)
    app.register_blueprint(ai_bp)
    app.register_blueprint(agent_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-templates")
    def seed_templates_cmd():
        """Seed the built-in system workspace templates."""
        from app.services.template_service import seed_system_templates
        count = seed_system_templates()
        db.session.commit()
        logger.info("Seeded %s system templates.", count)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return {"error": "Not found", "path": request.path}, 404
        return {"error": "Not found"}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
