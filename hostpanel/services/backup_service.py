"""Backup workflow — enable (payment-gated), disable and restore.

Disabling destroys every backup point on the server, so it needs the
literal word "delete" typed in. Restoring needs the backup's timestamp
typed in. A started restore marks the server's sites as restoring without
waiting for the backend and is never rolled back; the next fetch
reconciles it (see overlay_service).
"""

import logging

from hostpanel.services import audit_service, overlay_service
from hostpanel.services.api_client import AuthenticationError, BackendError
from hostpanel.services.errors import ConfirmationError, RedirectRequired, WorkflowError
from hostpanel.services.payment_gate import PaymentGate
from hostpanel.services.resources import (
    BackupPoint,
    Subscription,
    fetch_backups,
    fetch_stripe_items,
)

logger = logging.getLogger(__name__)

DISABLE_CONFIRMATION_WORD = "delete"
MISSING_BACKUP_SUBSCRIPTION = "backup subscription"
RESTORE_STARTED_MESSAGE = (
    "Backup restore has been initiated. Your server will be restored shortly."
)


class BackupService:
    """Backup actions for one user.

    Args:
        client: BackendClient.
        token: Bearer token for every backend call.
        user_id: Backend user id (overlay and audit owner).
        cache: Mutable mapping of server_id -> list of backup point dicts,
            normally a dict kept in the Flask session.
        plan_page: Path of the plan/upgrade page.
    """

    def __init__(self, client, token, user_id, cache, plan_page="/plan"):
        self.client = client
        self.token = token
        self.user_id = str(user_id)
        self.cache = cache
        self.plan_page = plan_page
        self.gate = PaymentGate(client, token, self.user_id)

    def _require_server(self, site):
        if not site.server_id:
            raise WorkflowError("Cannot configure backups: No valid server found for this site")

    def upgrade_url(self, site, with_items=True):
        """Plan page preloaded with the site's subscription and its items.

        The items are left out when they cannot be fetched.
        """
        items = None
        if with_items and site.stripe_subscription_id:
            try:
                items = fetch_stripe_items(self.client, self.token, site.stripe_subscription_id)
            except AuthenticationError:
                raise
            except BackendError as e:
                logger.error(f"Error fetching subscription items: {e.message}")
        return self.gate.backup_checkout_url(site, self.plan_page, items)

    # ──────────────────────────────────────────────
    # Enable
    # ──────────────────────────────────────────────

    def has_backup_subscription(self, site, subscriptions):
        plan = (site.server_type or "").lower()
        for sub in subscriptions:
            if not sub.is_active:
                continue
            if sub.plan_type == plan and sub.backup_id:
                return True
            if sub.is_backup_addon and sub.plan_type[: -len("_backup")] == plan:
                return True
        return False

    def enable(self, site):
        """Turn backups on, or say what the user must do first.

        Returns a dict:
            {"status": "enabled"}
            {"status": "payment_required", "paymentOptions": {...}}

        Raises:
            RedirectRequired: No card on file, or the subscription check
                failed; continue on the plan page.
        """
        self._require_server(site)
        try:
            data = self.client.list_subscriptions(self.token)
        except AuthenticationError:
            raise
        except BackendError as e:
            logger.error(f"Failed to check backup subscription: {e.message}")
            raise RedirectRequired(
                self.upgrade_url(site, with_items=False), "subscription_check_failed"
            ) from e

        subscriptions = [Subscription.from_dict(s) for s in data.get("subscriptions") or []]
        if self.has_backup_subscription(site, subscriptions):
            self._toggle(site, True)
            return {"status": "enabled"}

        options = self.gate.options()
        if options.requires_checkout:
            raise RedirectRequired(self.upgrade_url(site), "no_payment_method")
        return {"status": "payment_required", "paymentOptions": options.to_dict()}

    def purchase(self, site, payment_method_id):
        """Buy the add-on with a saved card, then enable backups."""
        self._require_server(site)
        if not payment_method_id:
            raise RedirectRequired(self.upgrade_url(site), "no_payment_method")
        return self.gate.purchase_backup_addon(site, payment_method_id)

    # ──────────────────────────────────────────────
    # Disable
    # ──────────────────────────────────────────────

    def disable(self, site, confirmation_text):
        """Turn backups off. Existing backup points are lost.

        Raises:
            ConfirmationError: Unless the text is "delete" (any case).
        """
        if (confirmation_text or "").strip().lower() != DISABLE_CONFIRMATION_WORD:
            raise ConfirmationError('Please type "delete" to confirm disabling backups.')
        self._require_server(site)
        self._toggle(site, False)
        self.cache.pop(site.server_id, None)
        overlay_service.clear(self.user_id, site.id, "backups")

    def _toggle(self, site, enable):
        try:
            self.client.toggle_backups(self.token, site.server_id, enable)
        except AuthenticationError:
            raise
        except BackendError as e:
            if enable and MISSING_BACKUP_SUBSCRIPTION in e.message:
                logger.info(f"No backup subscription for server {site.server_id}, redirecting")
                raise RedirectRequired(
                    self.upgrade_url(site), "missing_backup_subscription"
                ) from e
            action = "enable" if enable else "disable"
            raise WorkflowError(f"Failed to {action} backups: {e.message}") from e

        site.has_backups = enable
        site.backups_enabled = enable
        audit_service.log_action(
            self.user_id, "backup.enabled" if enable else "backup.disabled",
            site_id=site.id, server_id=site.server_id,
        )

    # ──────────────────────────────────────────────
    # Backup points and restore
    # ──────────────────────────────────────────────

    def list_backups(self, site, refresh=False):
        """Backup points for the site's server, cached per server."""
        self._require_server(site)
        if not refresh and site.server_id in self.cache:
            return [BackupPoint.from_dict(b) for b in self.cache[site.server_id]]
        backups = fetch_backups(self.client, self.token, site.server_id)
        self.cache[site.server_id] = [b.to_dict() for b in backups]
        return backups

    def restore(self, site, backup_id, acknowledgement, sites):
        """Restore the server from `backup_id`.

        `acknowledgement` must repeat the backup's timestamp. On success
        every site on the same server is marked restoring in `sites`.
        """
        self._require_server(site)
        backup = next(
            (b for b in self.list_backups(site) if b.id == str(backup_id)), None
        )
        if backup is None:
            raise WorkflowError("Backup not found.", status_code=404)
        if (acknowledgement or "").strip() != backup.date.strip():
            raise ConfirmationError(
                "Please type the backup timestamp exactly to confirm the restore."
            )

        try:
            self.client.restore_backup(self.token, site.server_id, backup.id)
        except AuthenticationError:
            raise
        except BackendError as e:
            raise WorkflowError(f"Failed to restore backup: {e.message}") from e

        for s in sites:
            if s.server_id == site.server_id:
                s.deploy_status = "restoring"
                overlay_service.mark_restoring(self.user_id, s.id, backup.id)

        audit_service.log_action(
            self.user_id, "backup.restored",
            site_id=site.id, server_id=site.server_id, backup_id=backup.id,
        )
        return RESTORE_STARTED_MESSAGE

    def remove_addon(self, site):
        """Cancel the backup add-on for the site's plan."""
        plan = (site.server_type or site.plan_type or "").lower()
        try:
            data = self.client.remove_backup_addon(self.token, plan)
        except AuthenticationError:
            raise
        except BackendError as e:
            raise WorkflowError(f"Failed to remove backup addon: {e.message}") from e
        if site.server_id:
            self.cache.pop(site.server_id, None)
        audit_service.log_action(
            self.user_id, "backup.addon_removed", site_id=site.id, plan_type=plan
        )
        return data
