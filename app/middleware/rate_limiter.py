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

logger = logging.getLogger(__name__)

# Blueprints carrying privileged decisions
DECISION_BLUEPRINTS = ("approval_bp", "document_bp", "admin_bp")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Approval decisions, document reviews + admin user actions: DECISION_RATE_LIMIT (30/minute)
        - Health check: exempt

    Rate limiting is disabled when RATELIMIT_ENABLED is False (testing).
    """
    if not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (RATELIMIT_ENABLED=False)")
        return

    decision_limit = app.config.get("DECISION_RATE_LIMIT", "30/minute")
    for bp_name in DECISION_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(decision_limit)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured (decisions/admin: %s)", decision_limit)
