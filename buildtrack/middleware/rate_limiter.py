"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter. The Limiter instance is
created in buildtrack/__init__.py with no default limits; this module
applies granular limits per route category.

Limits (per remote IP):
    - Login / set-password:  10/minute
    - Callable functions:    30/minute
    - Write-heavy blueprints: 120/minute
    - Health check:          exempt

Usage:
    from buildtrack.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

AUTH_LIMIT = "10/minute"
FUNCTIONS_LIMIT = "30/minute"
WRITE_LIMIT = "120/minute"


def init_rate_limits(app, limiter):
    """Apply rate limits to API blueprints. Disabled in testing mode."""
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit(AUTH_LIMIT)(bp)

    bp = app.blueprints.get("functions")
    if bp:
        limiter.limit(FUNCTIONS_LIMIT)(bp)

    for bp_name in ("guitars", "runs", "invoices", "custom_shop"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info(
        "Rate limiter configured — auth: %s, functions: %s, write: %s",
        AUTH_LIMIT, FUNCTIONS_LIMIT, WRITE_LIMIT,
    )
