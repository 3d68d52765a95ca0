"""Tests for the payment gate.

Covers:
- Payment options (default card first, hosted checkout when no card)
- Backup add-on purchase: add-on before toggle, toggle failure not retried
- Plan upgrade URL construction
"""

from unittest.mock import call, create_autospec

import pytest

from hostpanel.models.site_overlay import SiteOverlay
from hostpanel.services.api_client import AuthenticationError, BackendClient, BackendError
from hostpanel.services.errors import WorkflowError
from hostpanel.services.payment_gate import PaymentGate, plan_upgrade_url
from hostpanel.services.resources import Site, StripeItem

from conftest import make_server


def _card(pm_id, last4="4242"):
    return {
        "id": pm_id,
        "card": {"brand": "visa", "last4": last4, "exp_month": 4, "exp_year": 2031},
        "billing_details": {"name": "Owner"},
    }


@pytest.fixture
def api():
    return create_autospec(BackendClient, instance=True)


@pytest.fixture
def gate(api):
    return PaymentGate(api, "tok", "42")


class TestOptions:

    def test_default_card_first(self, gate, api):
        api.payment_methods.return_value = {
            "paymentMethods": [_card("pm_a", "1111"), _card("pm_b", "2222")],
            "defaultPaymentMethodId": "pm_b",
        }

        options = gate.options()

        assert [m.id for m in options.methods] == ["pm_b", "pm_a"]
        assert options.methods[0].is_default is True
        assert options.requires_checkout is False

    def test_no_cards_means_checkout(self, gate, api):
        api.payment_methods.return_value = {"paymentMethods": []}
        assert gate.options().requires_checkout is True

    def test_payment_methods_read_failure_is_empty(self, gate, api):
        api.payment_methods.side_effect = BackendError("down", 503)
        assert gate.options().methods == []

    def test_purchase_license_requires_card(self, gate, api):
        with pytest.raises(WorkflowError):
            gate.purchase_license("standard", None)
        api.create_with_payment_method.assert_not_called()


class TestBackupAddon:

    def _site(self):
        return Site.from_server(make_server(id="7", server_type_name="Performance"))

    def test_addon_then_toggle(self, gate, api):
        api.add_backup_addon.return_value = {"chargedAmount": 12.0}
        site = self._site()

        result = gate.purchase_backup_addon(site, "pm_1")

        assert api.mock_calls == [
            call.add_backup_addon("tok", "performance", "7", "pm_1"),
            call.toggle_backups("tok", "7", True),
        ]
        assert result.backups_enabled is True
        assert result.message == "Backup addon successfully added! You were charged $12."
        assert site.has_backups and site.backups_enabled

    def test_toggle_failure_is_recorded_not_retried(self, gate, api):
        api.add_backup_addon.return_value = {"chargedAmount": 5}
        api.toggle_backups.side_effect = BackendError("agent offline", 500)
        site = self._site()

        result = gate.purchase_backup_addon(site, "pm_1")

        assert api.toggle_backups.call_count == 1
        assert result.backups_enabled is False
        assert site.has_backups is True
        assert site.backups_enabled is False
        overlay = SiteOverlay.query.filter_by(site_id="7", kind="backups").one()
        assert overlay.value == {"backups_enabled": False}

    def test_addon_failure_stops_before_toggle(self, gate, api):
        api.add_backup_addon.side_effect = BackendError("Card declined", 402)

        with pytest.raises(WorkflowError) as exc:
            gate.purchase_backup_addon(self._site(), "pm_1")

        assert exc.value.message == "Failed to add backup addon: Card declined"
        api.toggle_backups.assert_not_called()

    def test_addon_auth_error_propagates(self, gate, api):
        api.add_backup_addon.side_effect = AuthenticationError()
        with pytest.raises(AuthenticationError):
            gate.purchase_backup_addon(self._site(), "pm_1")

    def test_local_business_site_has_no_server(self, gate, api):
        site = Site.from_server(make_server(is_local_business_site=True, plan_type="standard"))
        with pytest.raises(WorkflowError):
            gate.purchase_backup_addon(site, "pm_1")
        api.add_backup_addon.assert_not_called()


class TestPlanUpgradeUrl:

    def test_bare_plan_page_without_subscription(self):
        assert plan_upgrade_url("/plan") == "/plan"

    def test_full_url(self):
        items = [
            StripeItem(id="si_1", product_name="Standard", amount=10),
            StripeItem(id="si_2", product_name="Standard_Backup", amount=2.5),
        ]
        url = plan_upgrade_url("/plan", "sub_1", "standard", items)
        assert url == (
            "/plan?upgrade=true&subscriptionId=sub_1&planType=standard"
            "&existingItems=standard%3A10%2Cstandard_backup%3A2.5"
        )

    def test_items_left_out_when_missing(self):
        url = plan_upgrade_url("/plan", "sub_1", "scale")
        assert url == "/plan?upgrade=true&subscriptionId=sub_1&planType=scale"
