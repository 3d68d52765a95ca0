"""
Custom route decorators for access control.

- token_required: user is logged in AND the session holds a backend token.
- authorization_required: the request carries an Authorization header
  (proxy routes forward it untouched and never look inside).
- admin_authorization_required: same for the admin API, falling back to the
  admin token kept in the session.

Both answer in JSON; there are no HTML pages to redirect to.
"""

from functools import wraps

from flask import g, jsonify, request
from flask_login import login_required

from hostpanel.extensions import login_manager


def token_required(f):
    """Require login + a backend bearer token in the session."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not getattr(g, "token", None):
            return login_manager.unauthorized()
        return f(*args, **kwargs)

    return decorated


def authorization_required(f):
    """Require an Authorization header; 401 otherwise."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not request.headers.get("Authorization"):
            return jsonify({"success": False, "message": "Authentication required"}), 401
        return f(*args, **kwargs)

    return decorated


def admin_authorization_required(f):
    """Require admin credentials: the Authorization header, or else the
    admin token stored in the session at login.

    Sets g.admin_authorization to the header value to forward.
    """

    @wraps(f)
    def decorated(*args, **kwargs):
        header = request.headers.get("Authorization")
        if not header and getattr(g, "admin_token", None):
            header = f"Bearer {g.admin_token}"
        if not header:
            return jsonify({"success": False, "message": "Authentication required"}), 401
        g.admin_authorization = header
        return f(*args, **kwargs)

    return decorated
