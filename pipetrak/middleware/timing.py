"""
Request timing middleware.

Every response carries X-Request-ID (echoed from the caller when present)
and X-Request-Duration-Ms. Writes against components and field welds are
logged at INFO with the scope ids taken from the URL, so a milestone or NDE
change can be traced from the access log back to its audit events.
"""

import logging
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

_HEALTH_PATHS = frozenset({"/api/v1/health", "/api/v1/health/ready", "/api/v1/health/live"})
_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_SCOPE_ARGS = ("project_id", "component_id", "field_weld_id", "welder_id")


def _scope() -> dict:
    view_args = request.view_args or {}
    return {key: view_args[key] for key in _SCOPE_ARGS if key in view_args}


def _actor() -> str | None:
    if request.method not in _WRITE_METHODS or not request.is_json:
        return None
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload.get("actor_id")
    return None


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = g.request_id

        if request.path in _HEALTH_PATHS:
            return response

        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 1),
            "request_id": g.request_id,
            "actor": _actor(),
            **_scope(),
        }
        slow_ms = current_app.config.get("SLOW_REQUEST_MS", 1000)
        line = "%s %s %d (%.0fms)"
        args = (request.method, request.path, response.status_code, duration_ms)

        if response.status_code >= 500:
            logger.error("Server error: " + line, *args, extra=extra)
        elif duration_ms > slow_ms:
            logger.warning("Slow request: " + line, *args, extra=extra)
        elif request.method in _WRITE_METHODS and response.status_code < 400:
            logger.info("Write: " + line, *args, extra=extra)
        else:
            logger.debug("Request: " + line, *args, extra=extra)
        return response
