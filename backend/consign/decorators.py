# Overview: Request decorators for API routes; caller identity and role checks.

import hmac
from functools import wraps
from flask import request, jsonify, g, current_app

ROLE_OWNER = "owner"
ROLE_SUPPLIER = "supplier"
VALID_ROLES = {ROLE_OWNER, ROLE_SUPPLIER}


def require_actor(f):
    """
    Establish the caller from gateway-supplied headers.

    Sets:
    - g.actor_id: int from X-Actor-Id (must be positive; 0 is the system)
    - g.actor_role: "owner" or "supplier" from X-Actor-Role

    Returns 401 if either header is missing or malformed. Authentication
    itself happens upstream.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = request.headers.get("X-Actor-Id")
        role = (request.headers.get("X-Actor-Role") or "").strip().lower()

        try:
            actor_id = int(raw_id)
        except (TypeError, ValueError):
            return jsonify({"error": "Actor identity required"}), 401

        if actor_id <= 0 or role not in VALID_ROLES:
            return jsonify({"error": "Invalid actor identity"}), 401

        g.actor_id = actor_id
        g.actor_role = role
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. Must be applied AFTER @require_actor.

    Returns 403 otherwise.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if getattr(g, "actor_role", None) not in roles:
                current_app.logger.info(
                    "Role check failed: actor %s (%s) needs %s for %s",
                    getattr(g, "actor_id", None), getattr(g, "actor_role", None),
                    "/".join(roles), request.path,
                )
                return jsonify({"error": "Forbidden"}), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def require_cron_secret(f):
    """Guard for the external cron trigger: Authorization: Bearer <CRON_SECRET>."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        auth_header = request.headers.get("Authorization") or ""

        if not secret or not hmac.compare_digest(auth_header.encode(), f"Bearer {secret}".encode()):
            return jsonify({"error": "Unauthorized"}), 401

        return f(*args, **kwargs)

    return decorated_function
