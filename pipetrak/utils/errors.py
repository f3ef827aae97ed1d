"""Standardised API error responses.

Usage
-----
    from pipetrak.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Drawing not found")
    return api_error(E.VALIDATION_REQUIRED, "milestone_name is required")

Service exceptions (``pipetrak.core.exceptions``) do not need explicit
handling in views: ``register_error_handlers`` maps every kind once.
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from pipetrak.core.exceptions import ProgressEngineError
from pipetrak.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention: ERR_ prefix for standard application errors; engine kinds
    map 1:1 onto ERR_<KIND> codes.
    """

    # Validation - HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    MILESTONE_NOT_IN_TEMPLATE = "ERR_MILESTONE_NOT_IN_TEMPLATE"
    TYPE_MISMATCH = "ERR_TYPE_MISMATCH"
    OUT_OF_RANGE = "ERR_OUT_OF_RANGE"

    # Not-found - HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict - HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    REFERENTIAL_CONFLICT = "ERR_REFERENTIAL_CONFLICT"

    # Business rule - HTTP 422
    BUSINESS_RULE = "ERR_BUSINESS_RULE"
    TEMPLATE_NOT_FOUND = "ERR_TEMPLATE_NOT_FOUND"
    WELDER_REQUIRED = "ERR_WELDER_REQUIRED"
    REPAIR_CHAIN_TOO_DEEP = "ERR_REPAIR_CHAIN_TOO_DEEP"

    # Server - HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.MILESTONE_NOT_IN_TEMPLATE: 400,
    E.TYPE_MISMATCH: 400,
    E.OUT_OF_RANGE: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.REFERENTIAL_CONFLICT: 409,
    E.BUSINESS_RULE: 422,
    E.TEMPLATE_NOT_FOUND: 422,
    E.WELDER_REQUIRED: 422,
    E.REPAIR_CHAIN_TOO_DEEP: 422,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}

# Engine exception kind → error code
_KIND_CODES: dict[str, str] = {
    "TemplateNotFound": E.TEMPLATE_NOT_FOUND,
    "MilestoneNotInTemplate": E.MILESTONE_NOT_IN_TEMPLATE,
    "TypeMismatch": E.TYPE_MISMATCH,
    "OutOfRange": E.OUT_OF_RANGE,
    "WelderRequired": E.WELDER_REQUIRED,
    "RepairChainTooDeep": E.REPAIR_CHAIN_TOO_DEEP,
    "NotFound": E.NOT_FOUND,
    "ReferentialConflict": E.REFERENTIAL_CONFLICT,
    "Conflict": E.CONFLICT_DUPLICATE,
    "ValidationError": E.BUSINESS_RULE,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (offending field, limits, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` - drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_code_for(exc: ProgressEngineError) -> str:
    """Return the ``E.*`` code for an engine exception."""
    return _KIND_CODES.get(exc.kind, E.VALIDATION_INVALID)


def register_error_handlers(app):
    """Map engine exceptions and database failures to JSON responses."""

    @app.errorhandler(ProgressEngineError)
    def _engine_error(exc: ProgressEngineError):
        db.session.rollback()
        details = {"kind": exc.kind, **exc.details}
        return api_error(error_code_for(exc), exc.message, details=details)

    @app.errorhandler(SQLAlchemyError)
    def _database_error(exc: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Unhandled database error")
        return api_error(E.DATABASE, "Database error, the request was not applied and may be retried")

    @app.errorhandler(404)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(exc):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(415)
    def _unsupported_media_type(exc):
        return api_error(E.VALIDATION_INVALID, exc.description, status=415)

    @app.errorhandler(500)
    def _server_error(exc):
        logger.error("500 error: %s", exc, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
