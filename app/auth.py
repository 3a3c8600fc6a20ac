"""
Attendance Recovery Program service
Authentication middleware and acting-user resolution.

Provides:
    - API key authentication via X-API-Key header
    - Acting-user resolution from identity headers (current_actor)
    - Content-Type enforcement for state-changing requests

Security model:
    - All /api/v1/* endpoints require a valid API key (except /api/v1/health)
    - The API key fixes the caller's role; identity headers only name the user
    - With auth disabled (development, tests) the role is taken from
      X-User-Role and defaults to 'admin'

Configuration (env vars):
    API_KEYS          : comma-separated list of valid API keys
                        e.g. "key1:admin,key2:coach,key3:employee"
                        Format: "<key>:<role>" where role is admin|hr_manager|coach|employee
    API_AUTH_ENABLED  : set to "false" to disable auth (development only)

Identity headers (set by the upstream identity provider):
    X-User-Id, X-User-Name, X-User-Role, X-Personnel-Id
"""

import logging
import os
from typing import Optional

from flask import current_app, g, jsonify, request

from app.services.permission import ROLES, Actor

logger = logging.getLogger(__name__)

_FALSEY = ("false", "0", "no", "off")


def _parse_api_keys() -> dict[str, str]:
    """
    Parse API_KEYS env var into {key: role} mapping.

    Format: "key1:admin,key2:coach,key3:employee"
    Keys without a role default to 'employee'.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if ":" in entry:
            key, role = entry.rsplit(":", 1)
            role = role.strip().lower()
            if role not in ROLES:
                logger.warning("Unknown role '%s' for API key, defaulting to 'employee'", role)
                role = "employee"
            keys[key.strip()] = role
        else:
            keys[entry] = "employee"
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in _FALSEY
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in _FALSEY
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    return request.headers.get("X-API-Key", "").strip() or None


def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that content type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def current_actor() -> Actor:
    """
    Build the acting user for the current request.

    The role comes from the authenticated API key when auth is on, otherwise
    from X-User-Role. An unparseable X-Personnel-Id is treated as absent.
    """
    role = getattr(g, "current_user_role", None)
    if role is None:
        role = (request.headers.get("X-User-Role") or "admin").strip().lower()
    if role not in ROLES:
        logger.warning("Unknown role '%s' in request, treating as 'employee'", role)
        role = "employee"

    raw_pid = (request.headers.get("X-Personnel-Id") or "").strip()
    try:
        personnel_id = int(raw_pid) if raw_pid else None
    except ValueError:
        personnel_id = None

    user_id = (request.headers.get("X-User-Id") or "").strip() or getattr(g, "api_key", None) or "anonymous"
    name = (request.headers.get("X-User-Name") or "").strip()
    return Actor(user_id=user_id, name=name, role=role, personnel_id=personnel_id)


def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips the health check
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health":
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if not _is_auth_enabled():
            g.api_key = "dev-mode"
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return jsonify({"error": "Server authentication not configured"}), 500

        role = api_keys.get(api_key)
        if role is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return jsonify({"error": "Invalid API key"}), 401

        g.current_user_role = role
        g.api_key = api_key
        return None

    logger.info(
        "Auth middleware installed (enabled=%s)", _is_auth_enabled()
    )
