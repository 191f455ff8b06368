# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .extensions import db
from .models import User

ROLE_BOOKER = "booker"
ROLE_SALESMAN = "salesman"
ROLE_KPO = "kpo"
ROLE_ADMIN = "admin"


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def require_actor(f):
    """
    Resolve the acting user for the request.

    Authentication happens upstream; the gateway forwards the verified user id
    in the X-User-Id header. Sets g.current_user.

    Returns 401 if the header is missing or malformed, or the user is unknown
    or deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id", "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.get(User, int(raw))
        if not user or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require one of the given roles. Admins pass every role check.

    Must be applied after @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if user.role != ROLE_ADMIN and user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
