"""Site management — delete (with optional subscription cancel) and status."""

import logging

from hostpanel.services import audit_service, overlay_service
from hostpanel.services.api_client import AuthenticationError, BackendError
from hostpanel.services.errors import ConfirmationError, WorkflowError
from hostpanel.services.resources import fetch_server_metrics

logger = logging.getLogger(__name__)

STILL_DELETED = "The site will still be deleted."


def format_uptime(seconds):
    """Seconds -> "<d>d <h>h <m>m"."""
    seconds = int(seconds or 0)
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    return f"{days}d {hours}h {minutes}m"


def _cancel_site_subscription(client, token, site):
    """Cancel the subscription billing this site. Returns a warning or None.

    Never raises for backend failures; deletion goes ahead regardless.
    """
    try:
        data = client.list_subscriptions(token)
    except AuthenticationError:
        raise
    except BackendError as e:
        return f"Failed to fetch subscriptions: {e.status_code}. {STILL_DELETED}"

    match = next(
        (
            s for s in data.get("subscriptions") or []
            if s.get("stripe_subscription_id") == site.stripe_subscription_id
        ),
        None,
    )
    if match is None:
        return f"No active subscription found matching this site. {STILL_DELETED}"

    try:
        client.cancel_subscription(token, match["id"])
    except AuthenticationError:
        raise
    except BackendError as e:
        return (
            f"Failed to cancel subscription ({e.status_code}): {e.message}. "
            f"{STILL_DELETED}"
        )
    logger.info(f"Canceled subscription {match['id']} for site {site.id}")
    return None


def delete_site(client, token, user_id, site, confirmation_text,
                cancel_subscription=False):
    """Delete a site, optionally cancelling its subscription first.

    Args:
        confirmation_text: Must equal the site name exactly (both trimmed,
            case-sensitive).
        cancel_subscription: The user opted in to cancelling billing too.

    Returns:
        List of warnings about the subscription cancellation, if any.

    Raises:
        ConfirmationError: If the typed name does not match.
        WorkflowError: If the delete call itself fails.
    """
    if (confirmation_text or "").strip() != site.name.strip():
        raise ConfirmationError("Please type the exact site name to confirm deletion.")

    warnings = []
    if cancel_subscription and site.stripe_subscription_id:
        warning = _cancel_site_subscription(client, token, site)
        if warning:
            logger.warning(f"Site {site.id}: {warning}")
            warnings.append(warning)

    try:
        client.delete_server(token, site.id)
    except AuthenticationError:
        raise
    except BackendError as e:
        raise WorkflowError(f"Failed to delete site: {e.message}") from e

    overlay_service.clear(user_id, site.id)
    audit_service.log_action(
        user_id, "site.deleted",
        site_id=site.id, name=site.name,
        subscription_canceled=bool(cancel_subscription and not warnings),
    )
    return warnings


def server_status(client, token, site):
    """Latest agent metrics for the status panel."""
    if not site.server_id:
        raise WorkflowError("This site has no server to report on.")
    metrics = fetch_server_metrics(client, token, site.server_id)
    status = metrics.get("status") if isinstance(metrics.get("status"), dict) else metrics
    result = {"siteId": site.id, "agentConnected": site.agent_connected, "metrics": metrics}
    if status.get("uptime") is not None:
        result["uptime"] = format_uptime(status["uptime"])
    return result


def refresh_status(client, token, site):
    """Ask the backend to re-poll the server's provider status."""
    if not site.server_id:
        raise WorkflowError("This site has no server to refresh.")
    try:
        return client.refresh_server_status(token, site.server_id)
    except AuthenticationError:
        raise
    except BackendError as e:
        raise WorkflowError(f"Failed to refresh status: {e.message}") from e


def cancel_subscription_item(client, token, user_id, subscription_id, item_id):
    """Remove one line item (e.g. an add-on) from a subscription."""
    try:
        data = client.cancel_item(token, subscription_id, item_id)
    except AuthenticationError:
        raise
    except BackendError as e:
        raise WorkflowError(f"Failed to cancel item: {e.message}") from e
    audit_service.log_action(
        user_id, "subscription.item_canceled",
        subscription_id=subscription_id, item_id=item_id,
    )
    return data
