"""Auth blueprint — /auth/*

Login and registration are delegated to the backend API. On success the
bearer token and user profile are kept in the signed session; admins also
get an admin token used by the /api/admin proxy.
"""

import logging

from flask import Blueprint, g, jsonify, request, session
from flask_login import current_user, login_user, logout_user

from hostpanel.extensions import limiter
from hostpanel.models.user import SessionUser
from hostpanel.services.api_client import AuthenticationError, BackendError

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

# Keys owned by a login; cleared together on logout.
SESSION_KEYS = (
    "token",
    "admin_token",
    "user",
    "deploy_workflow",
    "upsize_workflow",
    "backup_cache",
)


def _start_session(data):
    """Store the backend's login answer and log the user in."""
    token = data.get("token")
    user_data = data.get("user") or {}
    if not token or user_data.get("id") is None:
        raise BackendError("Invalid response from server", 502, data)

    user = SessionUser.from_dict(user_data)
    session.clear()
    session["token"] = token
    session["user"] = user.to_dict()
    if user.is_admin:
        session["admin_token"] = token
    login_user(user)
    logger.info(f"User {user.id} logged in")
    return user


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    body = request.get_json(silent=True) or {}
    email = (body.get("email") or "").lower().strip()
    password = body.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    try:
        data = g.backend.login(email, password)
    except AuthenticationError:
        return jsonify({"error": "Invalid email or password."}), 401

    user = _start_session(data)
    return jsonify({"user": user.to_dict()})


# ──────────────────────────────────────────────
# POST /auth/register
# ──────────────────────────────────────────────

@auth_bp.route("/register", methods=["POST"])
@limiter.limit("10 per minute")
def register():
    body = request.get_json(silent=True) or {}
    email = (body.get("email") or "").lower().strip()
    password = body.get("password") or ""
    name = (body.get("name") or "").strip()

    errors = []
    if not email:
        errors.append("Email is required.")
    if not password:
        errors.append("Password is required.")
    elif len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    if not name:
        errors.append("Name is required.")
    if errors:
        return jsonify({"error": errors[0], "errors": errors}), 400

    data = g.backend.register(email, password, name)
    # Some backends register without issuing a token; log in explicitly then.
    if not data.get("token"):
        data = g.backend.login(email, password)

    user = _start_session(data)
    return jsonify({"user": user.to_dict()}), 201


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
def logout():
    if current_user.is_authenticated:
        logger.info(f"User {current_user.id} logged out")
    logout_user()
    for key in SESSION_KEYS:
        session.pop(key, None)
    return jsonify({"success": True})


# ──────────────────────────────────────────────
# GET /auth/me
# ──────────────────────────────────────────────

@auth_bp.route("/me", methods=["GET"])
def me():
    if not current_user.is_authenticated:
        return jsonify({"user": None})
    return jsonify({"user": current_user.to_dict()})
