"""Credentials middleware — per-request backend credentials.

Runs before every request. Sets:
    g.token        — bearer token of the logged-in user (session), or None
    g.admin_token  — bearer token for the admin API, admins only
    g.user_id      — backend user id, or None
    g.backend      — a BackendClient for this app's configuration

Nothing here is shared between requests; every backend call receives the
token it should use as an argument.
"""

from flask import current_app, g, session

from hostpanel.services.api_client import BackendClient


def resolve_credentials():
    g.token = session.get("token")
    g.admin_token = session.get("admin_token")
    user = session.get("user") or {}
    g.user_id = str(user["id"]) if user.get("id") is not None else None
    g.backend = BackendClient.from_config(current_app.config)


def init_credentials_middleware(app):
    """Register the credentials resolver as a before_request hook."""
    app.before_request(resolve_credentials)
