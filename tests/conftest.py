"""Shared test fixtures for the hostpanel test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- backend: MagicMock standing in for the BackendClient of every request
- login: puts a logged-in user (token + profile) into the test client's session
- make_server / make_server_type / make_subscription: backend JSON builders
"""

from unittest.mock import MagicMock, create_autospec, patch

import pytest

from hostpanel import create_app
from hostpanel.extensions import db as _db
from hostpanel.services.api_client import BackendClient

USER = {"id": "42", "email": "owner@example.com", "name": "Site Owner", "is_admin": False}
TOKEN = "tok-user-42"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def backend():
    """Replace the per-request BackendClient with a MagicMock.

    The mock keeps the real client's method signatures, so a call with the
    wrong arguments fails the test.
    """
    fake = create_autospec(BackendClient, instance=True)
    with patch("hostpanel.middleware.credentials.BackendClient") as cls:
        cls.from_config.return_value = fake
        yield fake


@pytest.fixture
def login(client):
    """Return a function that logs `user` in on the test client."""

    def _login(user=None, token=TOKEN, admin_token=None):
        user = dict(user or USER)
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user["id"])
            sess["_fresh"] = True
            sess["token"] = token
            sess["user"] = user
            if admin_token:
                sess["admin_token"] = admin_token
        return user

    return _login


def make_server(id="1", name="shop.example.com", server_type_name="Standard",
                **extra):
    server = {
        "id": id,
        "name": name,
        "url": name,
        "status": "running",
        "deploy_status": "active",
        "ip_address": "203.0.113.10",
        "server_type_name": server_type_name,
        "server_type_id": "st-1",
        "agent_status": "online",
        "backups_enabled": False,
        "created_at": "2025-01-01T00:00:00Z",
        "stripe_subscription_id": None,
        "plan_type": None,
        "is_local_business_site": False,
    }
    server.update(extra)
    return server


def make_server_type(id="st-1", name="Standard", size="s-1vcpu-1gb", max_sites=1,
                     price=10):
    return {"id": id, "name": name, "size": size, "max_sites": max_sites, "price": price}


def make_subscription(id="1", stripe_subscription_id="sub_1", plan_type="standard",
                      status="active", **extra):
    sub = {
        "id": id,
        "user_id": USER["id"],
        "stripe_subscription_id": stripe_subscription_id,
        "plan_type": plan_type,
        "status": status,
        "created_at": "2025-01-01T00:00:00Z",
        "backup_id": None,
    }
    sub.update(extra)
    return sub


def response(status=200, json_data=None, text=""):
    """A requests.Response stand-in for patched requests.request."""
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    if json_data is None:
        resp.json.side_effect = ValueError("No JSON")
        resp.content = text.encode()
    else:
        resp.json.return_value = json_data
        resp.content = b"{...}"
    resp.text = text
    return resp
