"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in pipetrak/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from pipetrak.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Blueprint name → limit
WRITE_LIMIT = "120/minute"
IMPORT_LIMIT = "10/minute"
READ_LIMIT = "300/minute"

_WRITE_BLUEPRINTS = ("components", "field_welds", "welders", "projects", "templates")
_READ_BLUEPRINTS = ("rollups",)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Field-weld import:      10/minute  (whole-file transactions)
        - Mutation blueprints:    120/minute (milestone taps from the field UI)
        - Rollup reads:           300/minute
        - Health check:           exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("imports")
    if bp:
        limiter.limit(IMPORT_LIMIT)(bp)

    for bp_name in _WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in _READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: import %s, write %s, read %s",
        IMPORT_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
