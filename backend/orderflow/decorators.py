# Overview: Request decorators that establish caller identity for API routes.

"""
Authentication itself happens upstream. The gateway in front of this service
forwards the verified identity in headers:

- X-User-Id: customer id (cart, checkout, returns)
- X-Admin-Id: staff id (order status, rules, return decisions, partners)
"""

from functools import wraps
from flask import request, jsonify, g


def _header_id(name: str) -> int | None:
    raw = (request.headers.get(name) or "").strip()
    if not raw.isdigit() or int(raw) < 1:
        return None
    return int(raw)


def require_user(f):
    """Sets g.current_user_id. Returns 401 when X-User-Id is missing or malformed."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = _header_id("X-User-Id")
        if user_id is None:
            return jsonify({"error": "Authentication required"}), 401
        g.current_user_id = user_id
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Sets g.current_admin_id. Returns 403 when X-Admin-Id is missing or malformed."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin_id = _header_id("X-Admin-Id")
        if admin_id is None:
            return jsonify({"error": "Admin access required"}), 403
        g.current_admin_id = admin_id
        return f(*args, **kwargs)

    return decorated_function
