"""Proxy blueprint — /api/servers/* and /api/subscription/*

Thin pass-through to the customer API for the single-page client. The
Authorization header is forwarded verbatim; routes answer 401 without one.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from hostpanel.decorators import authorization_required
from hostpanel.services.proxy_service import forward

logger = logging.getLogger(__name__)

proxy_bp = Blueprint("proxy", __name__, url_prefix="/api")


def _forward(method, path, action, body=None, params=None, authorization=True,
             no_cache=False):
    payload, status = forward(
        current_app.config["API_BASE_URL"],
        method,
        path,
        authorization=request.headers.get("Authorization") if authorization else None,
        json=body,
        params=params,
        timeout=current_app.config.get("BACKEND_TIMEOUT"),
        action=action,
        no_cache=no_cache,
    )
    return jsonify(payload), status


def _body():
    return request.get_json(silent=True) or {}


# ──────────────────────────────────────────────
# Servers
# ──────────────────────────────────────────────

@proxy_bp.route("/servers", methods=["GET"])
@authorization_required
def list_servers():
    return _forward(
        "GET", "/servers", "fetch servers",
        params=request.args.to_dict(), no_cache=True,
    )


@proxy_bp.route("/servers/server-types", methods=["GET"])
@authorization_required
def server_types():
    return _forward("GET", "/servers/server-types", "fetch server types", no_cache=True)


@proxy_bp.route("/servers/status", methods=["GET"])
def servers_status():
    """Public fleet status, no auth."""
    return _forward(
        "GET", "/servers/status", "fetch server status",
        authorization=False, no_cache=True,
    )


@proxy_bp.route("/servers/deploy", methods=["POST"])
@proxy_bp.route("/servers/deploy-with-agent", methods=["POST"])
@authorization_required
def deploy():
    """Both paths deploy through the agent-based endpoint."""
    return _forward("POST", "/servers/deploy-with-agent", "deploy server", body=_body())


@proxy_bp.route("/servers/<server_id>", methods=["DELETE"])
@authorization_required
def delete_server(server_id):
    return _forward("DELETE", f"/servers/{server_id}", "delete server")


@proxy_bp.route("/servers/<server_id>/backups", methods=["GET"])
@authorization_required
def list_backups(server_id):
    return _forward("GET", f"/servers/{server_id}/backups", "fetch backups", no_cache=True)


@proxy_bp.route("/servers/<server_id>/refresh-status", methods=["POST"])
@authorization_required
def refresh_status(server_id):
    return _forward("POST", f"/servers/{server_id}/refresh-status", "refresh status")


@proxy_bp.route("/servers/<server_id>/restore", methods=["POST"])
@authorization_required
def restore(server_id):
    body = _body()
    if not body.get("backupId"):
        return jsonify({"error": "Backup ID is required"}), 400
    return _forward("POST", f"/servers/{server_id}/restore", "restore backup", body=body)


@proxy_bp.route("/servers/<server_id>/toggle-backups", methods=["POST"])
@authorization_required
def toggle_backups(server_id):
    return _forward(
        "POST", f"/servers/{server_id}/toggle-backups", "toggle backups", body=_body()
    )


@proxy_bp.route("/servers/<server_id>/upsize", methods=["POST"])
@authorization_required
def upsize(server_id):
    body = _body()
    if not body.get("serverTypeId"):
        return jsonify({"error": "Server type ID is required"}), 400
    return _forward("POST", f"/servers/{server_id}/upsize", "upsize server", body=body)


@proxy_bp.route("/servers/<server_id>/metrics", methods=["GET"])
@authorization_required
def server_metrics(server_id):
    """Agent metrics, only for one of the caller's own servers."""
    config = current_app.config
    authorization = request.headers.get("Authorization")
    servers, status = forward(
        config["API_BASE_URL"], "GET", "/servers",
        authorization=authorization,
        timeout=config.get("BACKEND_TIMEOUT"),
        action="fetch server details",
    )
    if status >= 400:
        return jsonify(servers), status

    server = next(
        (s for s in servers.get("servers") or [] if str(s.get("id")) == server_id),
        None,
    )
    if server is None:
        return jsonify({"error": "Server not found or access denied"}), 404
    if not server.get("agent_id"):
        return jsonify({"error": "Server does not have an agent installed"}), 404

    payload, status = forward(
        config["API_BASE_URL"], "GET", f"/servers/{server_id}/agent-metrics",
        authorization=authorization,
        timeout=config.get("BACKEND_TIMEOUT"),
        action="fetch server metrics",
        no_cache=True,
    )
    if status == 404:
        return jsonify(
            {"error": "Metrics endpoint not available. Agent may be offline."}
        ), 404
    return jsonify(payload), status


# ──────────────────────────────────────────────
# Subscriptions
# ──────────────────────────────────────────────

@proxy_bp.route("/subscription", methods=["GET"])
@authorization_required
def list_subscriptions():
    return _forward("GET", "/subscription", "fetch subscriptions")


@proxy_bp.route("/subscription", methods=["POST"])
@authorization_required
def create_checkout():
    return _forward("POST", "/subscription", "create checkout session", body=_body())


@proxy_bp.route("/subscription/cancel/<subscription_id>", methods=["POST"])
@authorization_required
def cancel_subscription(subscription_id):
    return _forward(
        "POST", f"/subscription/cancel/{subscription_id}", "cancel subscription"
    )


@proxy_bp.route("/subscription/upgrade", methods=["POST"])
@authorization_required
def upgrade_subscription():
    body = _body()
    if not body.get("subscriptionId") or not body.get("newPlanType"):
        return jsonify({"error": "Subscription ID and new plan type are required"}), 400
    return _forward("POST", "/subscription/upgrade", "upgrade subscription", body=body)


@proxy_bp.route("/subscription/license-counts", methods=["GET"])
@authorization_required
def license_counts():
    return _forward("GET", "/subscription/license-counts", "fetch license counts")


@proxy_bp.route("/subscription/customer/payment-methods", methods=["GET"])
@authorization_required
def payment_methods():
    return _forward(
        "GET", "/subscription/customer/payment-methods", "fetch payment methods"
    )


@proxy_bp.route("/subscription/create-with-payment-method", methods=["POST"])
@authorization_required
def create_with_payment_method():
    return _forward(
        "POST", "/subscription/create-with-payment-method",
        "create subscription", body=_body(),
    )


@proxy_bp.route("/subscription/add-backup-addon", methods=["POST"])
@authorization_required
def add_backup_addon():
    return _forward(
        "POST", "/subscription/add-backup-addon", "add backup addon", body=_body()
    )


@proxy_bp.route("/subscription/remove-backup-addon", methods=["POST"])
@authorization_required
def remove_backup_addon():
    return _forward(
        "POST", "/subscription/remove-backup-addon", "remove backup addon", body=_body()
    )


@proxy_bp.route("/subscription/stripe-items", methods=["GET"])
@authorization_required
def stripe_items():
    subscription_id = request.args.get("subscriptionId")
    if not subscription_id:
        return jsonify({"error": "Subscription ID is required"}), 400
    return _forward(
        "GET", "/subscription/stripe-items", "fetch subscription items",
        params={"subscriptionId": subscription_id},
    )


@proxy_bp.route("/subscription/cancel-item", methods=["DELETE"])
@authorization_required
def cancel_item():
    subscription_id = request.args.get("subscriptionId")
    item_id = request.args.get("itemId")
    if not subscription_id or not item_id:
        return jsonify({"error": "Subscription ID and Item ID are required"}), 400
    return _forward(
        "DELETE", f"/subscription/stripe-item/{subscription_id}/{item_id}",
        "cancel subscription item",
    )
