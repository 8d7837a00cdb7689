from functools import wraps
from flask import g, jsonify

from models import db
from models.user import User
from security.tokens import get_token_from_request


def load_current_user():
    token = get_token_from_request()
    if not token:
        g.user = None
        g.auth_token = None
        return
    g.auth_token = token
    g.user = db.session.get(User, token.user_id)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
