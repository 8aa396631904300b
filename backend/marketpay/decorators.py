# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Resolve the acting user from the upstream auth gateway.

    The gateway authenticates the caller and forwards their user id in the
    X-Actor-Id header. Sets:
    - g.current_user: the acting User
    - g.actor_id: its id

    SECURITY: Returns 401 if:
    - Header missing or not an integer
    - Unknown user
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw:
            return jsonify({"error": "Authentication required"}), 401

        try:
            actor_id = int(raw)
        except ValueError:
            return jsonify({"error": "Invalid actor id"}), 401

        user = db.session.get(User, actor_id)
        if not user or not user.is_active:
            return jsonify({"error": "Invalid or inactive user"}), 401

        g.current_user = user
        g.actor_id = user.id

        return f(*args, **kwargs)

    return decorated_function
