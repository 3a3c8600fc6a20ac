"""
Rate limiting configuration.

The Limiter instance is created in app/__init__.py with no default limits;
this module applies per-method limits to the ARP blueprint.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def _is_read():
    return flask_request.method in ("GET", "HEAD", "OPTIONS")


def _is_write():
    return not _is_read()


def init_rate_limits(app, limiter):
    """
    Apply rate limits to the ARP API (per remote IP).

        - Write endpoints:  60/minute  (POST/PUT)
        - Read endpoints:   200/minute (GET)
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("arp")
    if bp:
        limiter.limit(WRITE_LIMIT, exempt_when=_is_read)(bp)
        limiter.limit(READ_LIMIT, exempt_when=_is_write)(bp)

    health = app.view_functions.get("health")
    if health:
        limiter.exempt(health)

    logger.info("Rate limits applied: write=%s read=%s", WRITE_LIMIT, READ_LIMIT)
