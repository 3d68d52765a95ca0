"""Payment gate — shared by license purchases and the backup add-on.

Either the user has cards on file (one-click charge with a chosen card) or
they are sent to a hosted page: Stripe checkout for a new license, the plan
upgrade page for the backup add-on. "Add new card" always takes the hosted
route.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote, urlencode

from hostpanel.services import audit_service, overlay_service
from hostpanel.services.api_client import AuthenticationError, BackendError
from hostpanel.services.errors import WorkflowError
from hostpanel.services.resources import fetch_payment_methods

logger = logging.getLogger(__name__)


def format_amount(amount):
    """Render a dollar amount the way the backend sends it: 10, 9.5, 12.99."""
    if isinstance(amount, float) and amount.is_integer():
        return str(int(amount))
    return str(amount)


def existing_items_param(items):
    return ",".join(f"{i.product_name.lower()}:{format_amount(i.amount)}" for i in items)


def plan_upgrade_url(plan_page, subscription_id=None, plan_type=None, items=None):
    """URL of the plan page preloaded for an upgrade of `subscription_id`.

    Falls back to the bare plan page when the site has no subscription.
    """
    if not subscription_id:
        return plan_page
    params = {
        "upgrade": "true",
        "subscriptionId": subscription_id,
        "planType": plan_type or "",
    }
    if items:
        params["existingItems"] = existing_items_param(items)
    return f"{plan_page}?{urlencode(params, quote_via=quote, safe='')}"


@dataclass
class PaymentOptions:
    methods: list = field(default_factory=list)
    default_payment_method_id: Optional[str] = None

    @property
    def requires_checkout(self):
        return not self.methods

    def to_dict(self):
        return {
            "paymentMethods": [m.to_dict() for m in self.methods],
            "defaultPaymentMethodId": self.default_payment_method_id,
            "requiresCheckout": self.requires_checkout,
        }


@dataclass
class BackupPurchase:
    charged_amount: Optional[float]
    backups_enabled: bool

    @property
    def message(self):
        text = "Backup addon successfully added!"
        if self.charged_amount is not None:
            text += f" You were charged ${format_amount(self.charged_amount)}."
        if not self.backups_enabled:
            text += (
                " Backups could not be switched on automatically;"
                " please contact support."
            )
        return text


class PaymentGate:

    def __init__(self, client, token, user_id=None):
        self.client = client
        self.token = token
        self.user_id = user_id

    def options(self):
        """Saved cards, default first. Empty means hosted checkout only."""
        methods, default_id = fetch_payment_methods(self.client, self.token)
        return PaymentOptions(methods=methods, default_payment_method_id=default_id)

    # ──────────────────────────────────────────────
    # Deployment licenses
    # ──────────────────────────────────────────────

    def purchase_license(self, plan_type, payment_method_id):
        """Create a subscription for `plan_type` charged to a saved card."""
        if not payment_method_id:
            raise WorkflowError("Please select a payment method.")
        data = self.client.create_with_payment_method(
            self.token, plan_type, payment_method_id
        )
        logger.info(f"Purchased {plan_type} license for user {self.user_id}")
        return data

    def start_license_checkout(self, plan_type, success_url, cancel_url):
        """Create a hosted checkout session and return its URL."""
        data = self.client.create_checkout(
            self.token, plan_type, success_url, cancel_url
        )
        url = data.get("checkoutUrl")
        if not url:
            raise WorkflowError("No checkout URL received", status_code=502)
        return url

    # ──────────────────────────────────────────────
    # Backup add-on
    # ──────────────────────────────────────────────

    def purchase_backup_addon(self, site, payment_method_id=None):
        """Charge the backup add-on, then switch backups on for the server.

        The add-on must be created before the toggle. If the toggle fails
        after the charge went through it is not retried: the site is shown
        with has_backups and backups_enabled=False and a backups overlay
        keeps warning until the backend reports backups enabled.
        """
        if not site.server_id:
            raise WorkflowError("Server ID not found for this site")

        server_type = (site.server_type or "").lower()
        try:
            data = self.client.add_backup_addon(
                self.token, server_type, site.server_id, payment_method_id
            )
        except AuthenticationError:
            raise
        except BackendError as e:
            raise WorkflowError(
                f"Failed to add backup addon: {e.message}", e.status_code
            ) from e

        enabled = True
        try:
            self.client.toggle_backups(self.token, site.server_id, True)
        except BackendError as e:
            logger.error(
                f"Backup addon charged but enabling backups on server "
                f"{site.server_id} failed: {e.message}"
            )
            enabled = False

        site.has_backups = True
        site.backups_enabled = enabled
        if not enabled:
            overlay_service.mark_backups(self.user_id, site.id, False)

        charged = data.get("chargedAmount")
        audit_service.log_action(
            self.user_id, "backup.addon_purchased",
            site_id=site.id, server_id=site.server_id,
            charged_amount=charged, backups_enabled=enabled,
        )
        return BackupPurchase(charged_amount=charged, backups_enabled=enabled)

    def backup_checkout_url(self, site, plan_page, items=None):
        """Plan upgrade page for buying the add-on without a saved card."""
        return plan_upgrade_url(
            plan_page,
            site.stripe_subscription_id,
            site.plan_type or (site.server_type or "").lower(),
            items,
        )
