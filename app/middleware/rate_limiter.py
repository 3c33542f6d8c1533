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


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - AI / agent endpoints: 10/minute  (LLM calls are expensive)
        - Public voting:        30/minute
        - Auth endpoints:       20/minute
        - Write-heavy domain:   120/minute
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("ai", "agent"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("10/minute")(bp)

    bp = app.blueprints.get("public")
    if bp:
        limiter.limit("30/minute")(bp)

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit("20/minute")(bp)

    for bp_name in ("work_item", "timeline", "dependency", "feedback", "strategy"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("120/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — AI: 10/min, public: 30/min, auth: 20/min, write: 120/min"
    )
