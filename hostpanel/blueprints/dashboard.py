"""Dashboard blueprint — /dashboard/*

JSON endpoints behind the single-page dashboard. Every decision of the deploy,
upsize and backup workflows is taken server-side; the browser only renders
what these routes return. All routes protected by @token_required.

Route Map:
  GET  /dashboard                                  — snapshot (+ checkout return)
  POST /dashboard/deploy/select-type               — start deploy for a server type
  POST /dashboard/deploy/submit                    — domain entered, classify + dispatch
  POST /dashboard/deploy/choose-subscription       — pick one of several subscriptions
  POST /dashboard/deploy/pay                       — buy license with a saved card
  POST /dashboard/deploy/checkout                  — hosted checkout URL
  POST /dashboard/deploy/cancel                    — close the deploy modal
  POST /dashboard/sites/<id>/upsize/open           — open upsize modal
  POST /dashboard/sites/<id>/upsize/select         — pick target type
  POST /dashboard/sites/<id>/upsize/confirm        — send the upsize
  POST /dashboard/sites/<id>/upsize/cancel         — close upsize modal
  POST /dashboard/sites/<id>/backups/enable        — enable or ask for payment
  POST /dashboard/sites/<id>/backups/purchase      — buy add-on with saved card
  POST /dashboard/sites/<id>/backups/disable       — disable ("delete" typed)
  POST /dashboard/sites/<id>/backups/remove-addon  — cancel the add-on
  GET  /dashboard/sites/<id>/backups               — backup points (cached)
  POST /dashboard/sites/<id>/restore               — restore a backup point
  POST /dashboard/sites/<id>/delete                — delete (name typed)
  GET  /dashboard/sites/<id>/status                — agent metrics
  POST /dashboard/sites/<id>/refresh-status        — re-poll provider status
  POST /dashboard/subscriptions/<id>/items/<item>/cancel — drop a line item
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request, session

from hostpanel.decorators import token_required
from hostpanel.extensions import db
from hostpanel.services import site_service
from hostpanel.services.backup_service import BackupService
from hostpanel.services.errors import WorkflowError
from hostpanel.services.orchestrator import DeploymentOrchestrator
from hostpanel.services.resources import (
    fetch_server_types,
    fetch_sites,
    filter_sites,
    find_site,
    load_dashboard,
)
from hostpanel.services.upsize_service import UpsizeWorkflow

logger = logging.getLogger(__name__)

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/dashboard")

BACKUP_CACHE_KEY = "backup_cache"


def _body():
    return request.get_json(silent=True) or {}


def _orchestrator():
    return DeploymentOrchestrator(g.backend, g.token, g.user_id, session)


def _upsize():
    return UpsizeWorkflow(g.backend, g.token, g.user_id, session)


def _backups():
    cache = session.setdefault(BACKUP_CACHE_KEY, {})
    # nested dict changes are invisible to the session otherwise
    session.modified = True
    return BackupService(
        g.backend, g.token, g.user_id, cache,
        plan_page=current_app.config["PLAN_PAGE_URL"],
    )


def _site_or_404(site_id, sites=None):
    if sites is None:
        sites = fetch_sites(g.backend, g.token)
    site = find_site(sites, site_id)
    if site is None:
        raise WorkflowError("Site not found.", status_code=404)
    return site


def _checkout_urls():
    base = current_app.config["APP_BASE_URL"].rstrip("/")
    return (
        f"{base}/dashboard?success=true&deploy=true",
        f"{base}/dashboard?canceled=true",
    )


# ══════════════════════════════════════════════
#  SNAPSHOT
# ══════════════════════════════════════════════

@dashboard_bp.route("", methods=["GET"])
@token_required
def index():
    """Sites, server types, license counts and subscriptions.

    Also completes the return leg of hosted checkout:
      ?success=true&deploy=true — deploy the saved pending request
      ?canceled=true            — drop the saved pending request
      ?success=true&signup=true — first visit after signing up
    """
    success = request.args.get("success") == "true"
    orchestrator = _orchestrator()

    deployment = None
    if success and request.args.get("deploy") == "true":
        outcome = orchestrator.resume_after_checkout()
        if outcome is not None:
            deployment = outcome.to_dict()
    elif request.args.get("canceled") == "true":
        orchestrator.discard_checkout()

    snapshot = load_dashboard(g.backend, g.token, g.user_id)
    # overlays reconciled by the fetch are deleted
    db.session.commit()

    data = snapshot.to_dict()
    term = request.args.get("q")
    if term:
        data["sites"] = [s.to_dict() for s in filter_sites(snapshot.sites, term)]
    data["deployWorkflow"] = orchestrator.workflow.to_dict()
    data["upsizeWorkflow"] = _upsize().data
    if deployment is not None:
        data["deployment"] = deployment
    if success and request.args.get("signup") == "true":
        data["welcome"] = True
    return jsonify(data)


# ══════════════════════════════════════════════
#  DEPLOY
# ══════════════════════════════════════════════

@dashboard_bp.route("/deploy/select-type", methods=["POST"])
@token_required
def deploy_select_type():
    server_type_id = _body().get("serverTypeId")
    if not server_type_id:
        return jsonify({"error": "Server type ID is required"}), 400
    workflow = _orchestrator().select_server_type(server_type_id)
    return jsonify({"workflow": workflow.to_dict()})


@dashboard_bp.route("/deploy/submit", methods=["POST"])
@token_required
def deploy_submit():
    snapshot = load_dashboard(g.backend, g.token, g.user_id)
    outcome = _orchestrator().submit(_body().get("domain"), snapshot)
    db.session.commit()
    return jsonify(outcome.to_dict())


@dashboard_bp.route("/deploy/choose-subscription", methods=["POST"])
@token_required
def deploy_choose_subscription():
    subscription_id = _body().get("subscriptionId")
    if not subscription_id:
        return jsonify({"error": "Please select a subscription."}), 400
    outcome = _orchestrator().choose_subscription(subscription_id)
    db.session.commit()
    return jsonify(outcome.to_dict())


@dashboard_bp.route("/deploy/pay", methods=["POST"])
@token_required
def deploy_pay():
    outcome = _orchestrator().pay_with_card(_body().get("paymentMethodId"))
    db.session.commit()
    return jsonify(outcome.to_dict())


@dashboard_bp.route("/deploy/checkout", methods=["POST"])
@token_required
def deploy_checkout():
    success_url, cancel_url = _checkout_urls()
    url = _orchestrator().start_checkout(success_url, cancel_url)
    return jsonify({"url": url})


@dashboard_bp.route("/deploy/cancel", methods=["POST"])
@token_required
def deploy_cancel():
    workflow = _orchestrator().cancel()
    return jsonify({"workflow": workflow.to_dict()})


# ══════════════════════════════════════════════
#  UPSIZE
# ══════════════════════════════════════════════

@dashboard_bp.route("/sites/<site_id>/upsize/open", methods=["POST"])
@token_required
def upsize_open(site_id):
    site = _site_or_404(site_id)
    workflow = _upsize()
    workflow.open(site)
    return jsonify({
        "workflow": workflow.data,
        "serverTypes": [st.to_dict() for st in fetch_server_types(g.backend, g.token)],
    })


@dashboard_bp.route("/sites/<site_id>/upsize/select", methods=["POST"])
@token_required
def upsize_select(site_id):
    target = _body().get("serverType")
    if not target:
        return jsonify({"error": "Server type is required"}), 400
    site = _site_or_404(site_id)
    workflow = _upsize()
    confirmation = workflow.select_type(
        site, fetch_server_types(g.backend, g.token), target
    )
    return jsonify({
        "workflow": workflow.data,
        "confirmation": confirmation.to_dict() if confirmation else None,
    })


@dashboard_bp.route("/sites/<site_id>/upsize/confirm", methods=["POST"])
@token_required
def upsize_confirm(site_id):
    site = _site_or_404(site_id)
    result = _upsize().confirm(
        site,
        fetch_server_types(g.backend, g.token),
        approve_plan_change=bool(_body().get("approvePlanChange")),
    )
    db.session.commit()
    return jsonify(result.to_dict())


@dashboard_bp.route("/sites/<site_id>/upsize/cancel", methods=["POST"])
@token_required
def upsize_cancel(site_id):
    workflow = _upsize()
    workflow.cancel()
    return jsonify({"workflow": workflow.data})


# ══════════════════════════════════════════════
#  BACKUPS
# ══════════════════════════════════════════════

@dashboard_bp.route("/sites/<site_id>/backups/enable", methods=["POST"])
@token_required
def backups_enable(site_id):
    site = _site_or_404(site_id)
    result = _backups().enable(site)
    db.session.commit()
    return jsonify(dict(result, site=site.to_dict()))


@dashboard_bp.route("/sites/<site_id>/backups/purchase", methods=["POST"])
@token_required
def backups_purchase(site_id):
    site = _site_or_404(site_id)
    purchase = _backups().purchase(site, _body().get("paymentMethodId"))
    db.session.commit()
    return jsonify({
        "message": purchase.message,
        "chargedAmount": purchase.charged_amount,
        "backupsEnabled": purchase.backups_enabled,
        "site": site.to_dict(),
    })


@dashboard_bp.route("/sites/<site_id>/backups/disable", methods=["POST"])
@token_required
def backups_disable(site_id):
    site = _site_or_404(site_id)
    _backups().disable(site, _body().get("confirmation"))
    db.session.commit()
    return jsonify({"success": True, "site": site.to_dict()})


@dashboard_bp.route("/sites/<site_id>/backups/remove-addon", methods=["POST"])
@token_required
def backups_remove_addon(site_id):
    site = _site_or_404(site_id)
    data = _backups().remove_addon(site)
    db.session.commit()
    return jsonify(data)


@dashboard_bp.route("/sites/<site_id>/backups", methods=["GET"])
@token_required
def backups_list(site_id):
    site = _site_or_404(site_id)
    refresh = request.args.get("refresh") == "true"
    backups = _backups().list_backups(site, refresh=refresh)
    return jsonify({"backups": [b.to_dict() for b in backups]})


@dashboard_bp.route("/sites/<site_id>/restore", methods=["POST"])
@token_required
def restore(site_id):
    body = _body()
    if not body.get("backupId"):
        return jsonify({"error": "Backup ID is required"}), 400
    sites = fetch_sites(g.backend, g.token)
    site = _site_or_404(site_id, sites)
    message = _backups().restore(
        site, body["backupId"], body.get("acknowledgement"), sites
    )
    db.session.commit()
    return jsonify({"message": message, "sites": [s.to_dict() for s in sites]})


# ══════════════════════════════════════════════
#  SITE MANAGEMENT
# ══════════════════════════════════════════════

@dashboard_bp.route("/sites/<site_id>/delete", methods=["POST"])
@token_required
def delete(site_id):
    body = _body()
    site = _site_or_404(site_id)
    warnings = site_service.delete_site(
        g.backend, g.token, g.user_id, site,
        body.get("confirmation"),
        cancel_subscription=bool(body.get("cancelSubscription")),
    )
    db.session.commit()
    if site.server_id:
        session.get(BACKUP_CACHE_KEY, {}).pop(site.server_id, None)
        session.modified = True
    return jsonify({"success": True, "warnings": warnings, "refetch": True})


@dashboard_bp.route("/sites/<site_id>/status", methods=["GET"])
@token_required
def status(site_id):
    site = _site_or_404(site_id)
    return jsonify(site_service.server_status(g.backend, g.token, site))


@dashboard_bp.route("/sites/<site_id>/refresh-status", methods=["POST"])
@token_required
def refresh_status(site_id):
    site = _site_or_404(site_id)
    data = site_service.refresh_status(g.backend, g.token, site)
    return jsonify(data)


@dashboard_bp.route(
    "/subscriptions/<subscription_id>/items/<item_id>/cancel", methods=["POST"]
)
@token_required
def cancel_item(subscription_id, item_id):
    data = site_service.cancel_subscription_item(
        g.backend, g.token, g.user_id, subscription_id, item_id
    )
    db.session.commit()
    return jsonify(data)
