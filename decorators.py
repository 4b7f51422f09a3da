from functools import wraps
from flask import session, request, current_app, jsonify, g
from models import User
from extensions import db


def current_user():
    uid = session.get("user_id")
    if uid is None:
        return None
    return db.session.get(User, uid)


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = current_user()
        if not user:
            session.clear()
            return jsonify({"error": "Unauthorized"}), 401
        g.user = user
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = current_user()
        if not user:
            return jsonify({"error": "Unauthorized"}), 401
        if not user.is_admin:
            return jsonify({"error": "Forbidden"}), 403
        g.user = user
        return f(*args, **kwargs)
    return decorated_function


def internal_or_login_required(f):
    """Accept either a logged-in user or a server-side caller holding the internal API key."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        key = request.headers.get("x-internal-api-key")
        if key and key == current_app.config.get("INTERNAL_API_KEY"):
            g.user = None
            g.internal = True
            return f(*args, **kwargs)
        user = current_user()
        if not user:
            return jsonify({"error": "Unauthorized"}), 401
        g.user = user
        g.internal = False
        return f(*args, **kwargs)
    return decorated_function
