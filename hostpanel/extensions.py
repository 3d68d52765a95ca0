"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import jsonify, session
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit; applied per route
    storage_uri="memory://",
)

AUTH_ERROR_MESSAGE = "Authentication error, please log in again"


@login_manager.user_loader
def load_user(user_id):
    """Rebuild the logged-in user from the session copy of the backend profile.

    The backend owns user accounts; nothing is stored locally.
    """
    from hostpanel.models.user import SessionUser

    data = session.get("user")
    if not data or str(data.get("id")) != str(user_id):
        return None
    return SessionUser.from_dict(data)


@login_manager.unauthorized_handler
def unauthorized():
    """JSON 401 instead of a redirect; every client of this app speaks JSON."""
    return jsonify({"error": AUTH_ERROR_MESSAGE}), 401
