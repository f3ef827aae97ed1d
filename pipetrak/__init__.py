"""
PipeTrak
Flask Application Factory.

Usage:
    from pipetrak import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as sa_engine, event as sa_event
from sqlalchemy.exc import SQLAlchemyError

from pipetrak.config import config
from pipetrak.middleware.logging_config import configure_logging
from pipetrak.middleware.rate_limiter import init_rate_limits
from pipetrak.middleware.timing import init_request_timing
from pipetrak.models import db
from pipetrak.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)

# Import files can be large; everything else is a small JSON body.
MAX_CONTENT_LENGTH = 10 * 1024 * 1024
_BODY_TYPES = ("json", "multipart/form-data", "csv")


@sa_event.listens_for(sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enforce foreign keys on SQLite connections (repair links, welder refs)."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _init_request_guards(app):
    app.config.setdefault("MAX_CONTENT_LENGTH", MAX_CONTENT_LENGTH)

    @app.before_request
    def _require_known_body_type():
        if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
            return None
        if not request.path.startswith("/api/") or not request.data:
            return None
        if not any(t in (request.content_type or "") for t in _BODY_TYPES):
            abort(415, description="Content-Type must be application/json")
        return None


def _bootstrap_schema(app):
    """Create missing tables and seed the default templates.

    Deployments run ``flask db upgrade`` first; this keeps dev and test
    databases usable without it.
    """
    from pipetrak.models import component, field_weld, milestone_event, project, rollup, template  # noqa: F401
    from pipetrak.services.template_registry import seed_default_templates

    with app.app_context():
        try:
            db.create_all()
            created = seed_default_templates()
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            app.logger.warning("Schema bootstrap failed: %s", exc)
            return
        if created:
            app.logger.info("Seeded %d default progress templates", created)


def _register_blueprints(app):
    from pipetrak.blueprints.component_bp import component_bp
    from pipetrak.blueprints.field_weld_bp import field_weld_bp
    from pipetrak.blueprints.health_bp import health_bp
    from pipetrak.blueprints.import_bp import import_bp
    from pipetrak.blueprints.project_bp import project_bp
    from pipetrak.blueprints.rollup_bp import rollup_bp
    from pipetrak.blueprints.template_bp import template_bp
    from pipetrak.blueprints.welder_bp import welder_bp

    for bp in (project_bp, component_bp, field_weld_bp, welder_bp,
               rollup_bp, import_bp, template_bp, health_bp):
        app.register_blueprint(bp)


def _register_cli(app):
    @app.cli.command("seed-templates")
    def seed_templates_cmd():
        """Seed the default progress templates (one per component type)."""
        from pipetrak.services.template_registry import seed_default_templates
        count = seed_default_templates()
        db.session.commit()
        logger.info("Seeded %s new progress templates.", count)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")
    config_obj = config[config_name]
    if config_name == "production":
        config_obj = config_obj()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_obj)

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _init_request_guards(app)
    _bootstrap_schema(app)
    _register_blueprints(app)
    init_rate_limits(app, limiter)
    register_error_handlers(app)
    _register_cli(app)

    logger.debug("PipeTrak app created", extra={"event_type": "startup"})
    return app
