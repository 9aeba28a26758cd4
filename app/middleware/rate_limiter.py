"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

TRACEABILITY_LIMIT = "60/minute"
AUDIT_LIMIT = "30/minute"


def rate_limit_key():
    """Rate limit key: authenticated username if available, else remote IP."""
    caller = getattr(g, "caller", None)
    if caller is not None:
        return f"user:{caller.username}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per caller, falling back to remote IP):
        - Traceability + requirements: 60/minute (fan out to upstream systems)
        - Audit:                       30/minute (exports scan the whole trail)
        - Health check:                exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("traceability", "requirement"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(TRACEABILITY_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("audit")
    if bp:
        limiter.limit(AUDIT_LIMIT, key_func=rate_limit_key)(bp)

    # Health check is exempt
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — traceability: %s, audit: %s",
        TRACEABILITY_LIMIT, AUDIT_LIMIT,
    )
