# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User


ACTOR_HEADER = "X-User-Id"


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def require_actor(f):
    """
    Load the calling user into g.current_user.

    Login and sessions are handled by the gateway in front of this service;
    it forwards the authenticated user id in the X-User-Id header.

    Returns 401 if the header is missing, malformed, or names an unknown or
    deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.get(User, int(raw))
        if user is None or not user.is_active:
            current_app.logger.warning("rejected actor id %s on %s", raw, request.path)
            return jsonify({"error": "Invalid or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require g.current_user to hold one of the given roles.

    Must be stacked under @require_actor.
    """
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401
            if g.current_user.role not in allowed:
                return jsonify({"error": "Permission denied"}), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
