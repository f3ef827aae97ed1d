"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        : ping
    GET /api/v1/health/ready  : simple 200 for load balancers
    GET /api/v1/health/live   : database check plus template seed status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from pipetrak.models import db
from pipetrak.models.template import ProgressTemplate
from pipetrak.services.template_registry import DEFAULT_TEMPLATES

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ping():
    return jsonify({"status": "ok", "app": "PipeTrak"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Load balancer readiness check, always 200 if the app is running."""
    return jsonify({"status": "ok"}), 200


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _template_check() -> dict:
    """Components cannot be created or updated for a type without its template."""
    seeded = set(db.session.execute(db.select(ProgressTemplate.component_type)).scalars())
    missing = sorted(set(DEFAULT_TEMPLATES) - seeded)
    return {"status": "missing" if missing else "ok", "missing": missing}


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _database_check()}
    if checks["database"]["status"] == "ok":
        checks["templates"] = _template_check()
    checks["engine"] = {
        "rollup_refresh_mode": current_app.config.get("ROLLUP_REFRESH_MODE"),
        "repair_chain_max_depth": current_app.config.get("REPAIR_CHAIN_MAX_DEPTH"),
        "testing": current_app.testing,
    }

    healthy = all(c.get("status", "ok") == "ok" for c in checks.values())
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
