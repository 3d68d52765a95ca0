"""Admin blueprint — /api/admin/*

Pass-through to the admin API (ADMIN_API_BASE_URL) for the admin panel.
Reads carry a `_=<ms>` cache-busting parameter. All routes protected by
@admin_authorization_required.

Route Map:
  GET    /api/admin/servers                     — All servers
  POST   /api/admin/servers/deploy              — Deploy a server
  POST   /api/admin/servers/deploy-with-agent   — Deploy with agent
  DELETE /api/admin/servers/<id>                — Delete a server
  POST   /api/admin/servers/refresh-status      — Re-poll every server
  POST   /api/admin/servers/reset-sites         — Reset a server's site count
  GET    /api/admin/users                       — All users
  POST   /api/admin/users                       — Create user
  PUT    /api/admin/users                       — Update user (id in body)
  DELETE /api/admin/users?id=<id>               — Delete user
  DELETE /api/admin/users/batch-delete          — Delete several users
  GET    /api/admin/agents                      — All agents
  POST   /api/admin/agents/generate             — New agent key
  POST   /api/admin/agents/batch-deploy         — Several agent keys
  DELETE /api/admin/agents/batch-delete         — Delete several agents
  POST   /api/admin/agents/<id>/update          — Update agent
  POST   /api/admin/agents/<id>/rollback        — Roll agent back
  POST   /api/admin/agents/<id>/system-update   — OS update on agent host
  DELETE /api/admin/agents/<id>/delete          — Delete agent
  GET    /api/admin/tables                      — Database tables
  GET    /api/admin/tables/<name>/structure     — Table columns
  GET    /api/admin/tables/<name>/data          — Table rows
  DELETE /api/admin/tables/<name>/data          — Empty a table
  PATCH  /api/admin/server-types/<id>           — Change max_sites etc.
"""

import logging
import time

from flask import Blueprint, current_app, g, jsonify, request

from hostpanel.decorators import admin_authorization_required
from hostpanel.services.api_client import cache_buster
from hostpanel.services.proxy_service import forward

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _admin(method, path, action, body=None, params=None, read=False):
    """Forward to the admin API. Returns (payload, status)."""
    return forward(
        current_app.config["ADMIN_API_BASE_URL"],
        method,
        path,
        authorization=g.admin_authorization,
        json=body,
        params=params,
        timeout=current_app.config.get("BACKEND_TIMEOUT"),
        action=action,
        no_cache=read,
        cache_bust=read,
    )


def _respond(result):
    payload, status = result
    return jsonify(payload), status


def _body():
    return request.get_json(silent=True) or {}


# ══════════════════════════════════════════════
#  SERVERS
# ══════════════════════════════════════════════

@admin_bp.route("/servers", methods=["GET"])
@admin_authorization_required
def servers():
    return _respond(_admin("GET", "/servers", "fetch servers", read=True))


@admin_bp.route("/servers/deploy", methods=["POST"])
@admin_authorization_required
def deploy_server():
    return _respond(_admin("POST", "/servers/deploy", "deploy server", body=_body()))


@admin_bp.route("/servers/deploy-with-agent", methods=["POST"])
@admin_authorization_required
def deploy_server_with_agent():
    return _respond(
        _admin("POST", "/servers/deploy-with-agent", "deploy server", body=_body())
    )


@admin_bp.route("/servers/<server_id>", methods=["DELETE"])
@admin_authorization_required
def delete_server(server_id):
    return _respond(_admin("DELETE", f"/servers/{server_id}", "delete server"))


@admin_bp.route("/servers/refresh-status", methods=["POST"])
@admin_authorization_required
def refresh_server_statuses():
    return _respond(
        _admin("POST", "/servers/refresh-status", "refresh server statuses")
    )


@admin_bp.route("/servers/reset-sites", methods=["POST"])
@admin_authorization_required
def reset_sites():
    """Reset a server's active-site count. Lives on the customer API."""
    server_id = _body().get("serverId")
    if not server_id:
        return jsonify({"error": "Server ID is required"}), 400
    return _respond(forward(
        current_app.config["API_BASE_URL"],
        "POST",
        f"/servers/{server_id}/reset-sites",
        authorization=g.admin_authorization,
        timeout=current_app.config.get("BACKEND_TIMEOUT"),
        action="reset active sites count",
    ))


# ══════════════════════════════════════════════
#  USERS
# ══════════════════════════════════════════════

@admin_bp.route("/users", methods=["GET"])
@admin_authorization_required
def users():
    return _respond(_admin("GET", "/users", "fetch users", read=True))


@admin_bp.route("/users", methods=["POST"])
@admin_authorization_required
def create_user():
    return _respond(_admin("POST", "/users", "create user", body=_body()))


@admin_bp.route("/users", methods=["PUT"])
@admin_authorization_required
def update_user():
    body = _body()
    user_id = body.pop("id", None)
    if not user_id:
        return jsonify({"error": "User ID is required"}), 400
    return _respond(_admin("PUT", f"/users/{user_id}", "update user", body=body))


@admin_bp.route("/users", methods=["DELETE"])
@admin_authorization_required
def delete_user():
    user_id = request.args.get("id")
    if not user_id:
        return jsonify({"error": "User ID is required"}), 400
    return _respond(_admin("DELETE", f"/users/{user_id}", "delete user"))


@admin_bp.route("/users/batch-delete", methods=["DELETE"])
@admin_authorization_required
def batch_delete_users():
    user_ids = _body().get("userIds")
    if not isinstance(user_ids, list) or not user_ids:
        return jsonify({"error": "User IDs array is required"}), 400
    return _respond(
        _admin("DELETE", "/users/batch", "batch delete users", body={"userIds": user_ids})
    )


# ══════════════════════════════════════════════
#  AGENTS
# ══════════════════════════════════════════════

@admin_bp.route("/agents", methods=["GET"])
@admin_authorization_required
def agents():
    return _respond(_admin("GET", "/agents", "fetch agents", read=True))


@admin_bp.route("/agents/generate", methods=["POST"])
@admin_authorization_required
def generate_agent():
    return _respond(
        _admin("POST", "/agents/generate", "generate agent key", body=_body())
    )


@admin_bp.route("/agents/batch-deploy", methods=["POST"])
@admin_authorization_required
def batch_deploy_agents():
    """Generate `count` agent keys one after another.

    Stops at the first failure; keys generated before it are kept by the
    backend but not returned.
    """
    body = _body()
    try:
        count = int(body.get("count") or 0)
    except (TypeError, ValueError):
        count = 0
    if count < 1:
        return jsonify({"error": "Count must be at least 1"}), 400

    prefix = body.get("namePrefix") or "batch-agent"
    generated = []
    for i in range(count):
        name = f"{prefix}-{cache_buster()}-{i}"
        payload, status = _admin(
            "POST", "/agents/generate", "generate agent key", body={"name": name}
        )
        if status >= 400:
            logger.error(f"Batch agent deploy stopped at {i}/{count}: {status}")
            return jsonify({"error": "Failed to generate batch agents"}), 500
        generated.append(payload)
        # keep the backend from being flooded
        time.sleep(0.1)

    return jsonify({"count": len(generated), "agents": generated})


@admin_bp.route("/agents/batch-delete", methods=["DELETE"])
@admin_authorization_required
def batch_delete_agents():
    agent_ids = _body().get("agentIds")
    if not isinstance(agent_ids, list) or not agent_ids:
        return jsonify({"error": "Agent IDs array is required"}), 400
    return _respond(
        _admin("DELETE", "/agents/batch", "batch delete agents", body={"agentIds": agent_ids})
    )


@admin_bp.route("/agents/<agent_id>/<operation>", methods=["POST"])
@admin_authorization_required
def agent_operation(agent_id, operation):
    """update | rollback | system-update"""
    if operation not in ("update", "rollback", "system-update"):
        return jsonify({"error": "Not found"}), 404
    return _respond(_admin(
        "POST", f"/agents/{agent_id}/{operation}",
        f"{operation.replace('-', ' ')} agent", body=_body(),
    ))


@admin_bp.route("/agents/<agent_id>/delete", methods=["DELETE"])
@admin_authorization_required
def delete_agent(agent_id):
    return _respond(_admin("DELETE", f"/agents/{agent_id}", "delete agent"))


# ══════════════════════════════════════════════
#  TABLES
# ══════════════════════════════════════════════

@admin_bp.route("/tables", methods=["GET"])
@admin_authorization_required
def tables():
    return _respond(_admin("GET", "/tables", "fetch tables", read=True))


@admin_bp.route("/tables/<name>/structure", methods=["GET"])
@admin_authorization_required
def table_structure(name):
    return _respond(
        _admin("GET", f"/tables/{name}/structure", "fetch table structure", read=True)
    )


@admin_bp.route("/tables/<name>/data", methods=["GET"])
@admin_authorization_required
def table_data(name):
    return _respond(
        _admin("GET", f"/tables/{name}/data", "fetch table data", read=True)
    )


@admin_bp.route("/tables/<name>/data", methods=["DELETE"])
@admin_authorization_required
def delete_table_data(name):
    payload, status = _admin("DELETE", f"/tables/{name}/data", "delete table data")
    if status >= 400:
        return jsonify(payload), status
    return jsonify({"message": "Data deleted successfully"})


# ══════════════════════════════════════════════
#  SERVER TYPES
# ══════════════════════════════════════════════

@admin_bp.route("/server-types/<server_type_id>", methods=["PATCH"])
@admin_authorization_required
def update_server_type(server_type_id):
    body = _body()
    max_sites = body.get("max_sites")
    if not isinstance(max_sites, int) or isinstance(max_sites, bool) or max_sites < 1:
        return jsonify({"success": False, "message": "Invalid max_sites value"}), 400
    return _respond(_admin(
        "PATCH", f"/server-types/{server_type_id}", "update server type", body=body
    ))
