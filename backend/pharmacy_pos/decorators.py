# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .extensions import db
from .models import User


def require_user(f):
    """
    Resolve the acting user from the X-User-Id header.

    Sets g.current_user. Returns 401 when the header is missing, malformed,
    or names an unknown or deactivated user. Passwords and sessions are
    handled upstream; the header is trusted.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id", "").strip()
        if not raw.isdigit():
            return jsonify({"error": "X-User-Id header required"}), 401

        user = db.session.get(User, int(raw))
        if user is None or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function
