import os
import logging

import click
from flask import Flask, jsonify
from flask_login import current_user

from hostpanel.config import config_by_name
from hostpanel.extensions import AUTH_ERROR_MESSAGE, db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from hostpanel import models  # noqa: F401

    # --- Credentials middleware ---
    from hostpanel.middleware.credentials import init_credentials_middleware
    init_credentials_middleware(app)

    # --- Register blueprints ---
    from hostpanel.blueprints.auth import auth_bp
    from hostpanel.blueprints.dashboard import dashboard_bp
    from hostpanel.blueprints.proxy import proxy_bp
    from hostpanel.blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(proxy_bp)
    app.register_blueprint(admin_bp)

    # Exempt JSON blueprints from CSRF: bearer tokens or the SPA's own
    # same-origin JSON calls, never HTML forms
    for bp in (auth_bp, dashboard_bp, proxy_bp, admin_bp):
        csrf.exempt(bp)

    # --- Root route ---
    @app.route("/")
    def index():
        """Health check plus who is logged in."""
        user = current_user.to_dict() if current_user.is_authenticated else None
        return jsonify({"status": "ok", "user": user})

    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=(self)"
        )
        # JSON only; nothing here should ever be rendered or framed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """JSON error bodies for HTTP errors and the service exceptions."""
    from hostpanel.services.api_client import AuthenticationError, BackendError
    from hostpanel.services.errors import RedirectRequired, WorkflowError

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({"error": AUTH_ERROR_MESSAGE}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(WorkflowError)
    def workflow_error(e):
        # e.g. a license bought before the deploy failed stays in the audit log
        db.session.commit()
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(RedirectRequired)
    def redirect_required(e):
        # Overlays and audit rows written before the redirect decision stay
        db.session.commit()
        return jsonify({"redirect": e.url, "reason": e.reason})

    @app.errorhandler(AuthenticationError)
    def authentication_error(e):
        db.session.rollback()
        return jsonify({"error": AUTH_ERROR_MESSAGE}), 401

    @app.errorhandler(BackendError)
    def backend_error(e):
        db.session.rollback()
        app.logger.error(f"Backend error: {e.message} ({e.status_code})")
        status = e.status_code if e.status_code and 400 <= e.status_code < 600 else 502
        return jsonify({"error": e.message}), status


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("verify-backend")
    def verify_backend():
        """Check that the customer and admin APIs answer.

        Any HTTP answer counts as reachable; only connection failures and
        timeouts are reported as errors.

        Usage:
            flask verify-backend
        """
        import requests

        targets = [
            ("API_BASE_URL", app.config["API_BASE_URL"], "/servers/status"),
            ("ADMIN_API_BASE_URL", app.config["ADMIN_API_BASE_URL"], "/servers"),
        ]
        failed = False
        for label, base, path in targets:
            url = f"{base.rstrip('/')}{path}"
            try:
                response = requests.get(url, timeout=app.config.get("BACKEND_TIMEOUT") or 10)
            except requests.exceptions.RequestException as e:
                click.echo(f"  {label}: {url}")
                click.echo(f"    ERROR: {e}")
                failed = True
                continue
            click.echo(f"  {label}: {url}")
            click.echo(f"    reachable, HTTP {response.status_code}")

        if failed:
            raise click.ClickException("Backend not reachable.")

    @app.cli.command("purge-pending-deployments")
    @click.option("--dry-run", is_flag=True, help="Count stale records without deleting them.")
    @click.option("--ttl-hours", type=int, default=None, help="Override PENDING_DEPLOYMENT_TTL_HOURS.")
    def purge_pending_deployments(dry_run, ttl_hours):
        """Delete pending deployments whose checkout was never completed.

        Usage:
            flask purge-pending-deployments
            flask purge-pending-deployments --dry-run
        """
        from hostpanel.services.outbox_service import purge_stale

        count = purge_stale(ttl_hours=ttl_hours, dry_run=dry_run)
        if dry_run:
            click.echo(f"[DRY RUN] Would delete {count} stale pending deployment(s).")
        else:
            click.echo(f"Deleted {count} stale pending deployment(s).")
