"""Tests for the dashboard blueprint.

Covers:
- Snapshot: sites, server types, licenses, search, overlay warnings
- Deploy over HTTP, including the hosted-checkout round trip
- Upsize, backups, restore and delete routes
- Error translation (workflow errors, redirects, expired tokens)
"""

from hostpanel.extensions import AUTH_ERROR_MESSAGE
from hostpanel.models.pending_deployment import PendingDeployment
from hostpanel.services import overlay_service
from hostpanel.services.api_client import AuthenticationError

from conftest import make_server, make_server_type, make_subscription


def _stub_dashboard(backend, servers=None, licenses=None, subscriptions=None):
    backend.list_servers.return_value = {"servers": servers or []}
    backend.list_server_types.return_value = {"serverTypes": [
        make_server_type(id="st-1", name="Standard"),
        make_server_type(id="st-2", name="Performance", size="s-1vcpu-2gb"),
    ]}
    backend.license_counts.return_value = {"licenseCounts": licenses or {}}
    backend.list_subscriptions.return_value = {"subscriptions": subscriptions or []}
    backend.payment_methods.return_value = {"paymentMethods": []}
    backend.deploy_with_agent.return_value = ({"message": "Deployment queued"}, 202)


class TestSnapshot:

    def test_snapshot(self, client, backend, login):
        login()
        _stub_dashboard(
            backend, servers=[make_server()], licenses={"Standard": 2},
            subscriptions=[make_subscription()],
        )

        resp = client.get("/dashboard")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["sites"][0]["name"] == "shop.example.com"
        assert data["serverTypes"][0]["description"] == "1 CPU, 1GB RAM, 25GB SSD"
        assert data["licenseCounts"] == {"standard": 2}
        assert data["deployWorkflow"]["state"] == "idle"
        backend.list_servers.assert_called_once_with("tok-user-42")

    def test_search(self, client, backend, login):
        login()
        _stub_dashboard(backend, servers=[
            make_server(id="1", name="bakery.com"),
            make_server(id="2", name="garage.com", server_type_name="Scale"),
        ])

        data = client.get("/dashboard?q=scale").get_json()

        assert [s["name"] for s in data["sites"]] == ["garage.com"]

    def test_read_failure_still_renders(self, client, backend, login):
        from hostpanel.services.api_client import BackendError

        login()
        _stub_dashboard(backend)
        backend.list_server_types.side_effect = BackendError("down", 503)

        resp = client.get("/dashboard")

        assert resp.status_code == 200
        assert resp.get_json()["serverTypes"] == []

    def test_expired_token(self, client, backend, login):
        login()
        _stub_dashboard(backend)
        backend.list_servers.side_effect = AuthenticationError("jwt expired")

        resp = client.get("/dashboard")

        assert resp.status_code == 401
        assert resp.get_json()["error"] == AUTH_ERROR_MESSAGE

    def test_overlay_warning_surfaced(self, client, backend, login, db_session):
        login()
        overlay_service.mark_backups("42", "1", False)
        db_session.commit()
        _stub_dashboard(backend, servers=[make_server(id="1")])

        data = client.get("/dashboard").get_json()

        assert len(data["warnings"]) == 1
        assert data["sites"][0]["has_backups"] is True

    def test_signup_welcome(self, client, backend, login):
        login()
        _stub_dashboard(backend)
        data = client.get("/dashboard?success=true&signup=true").get_json()
        assert data["welcome"] is True


class TestDeploy:

    def test_direct_deploy(self, client, backend, login):
        login()
        _stub_dashboard(backend, licenses={"standard": 1})

        client.post("/dashboard/deploy/select-type", json={"serverTypeId": "st-1"})
        resp = client.post("/dashboard/deploy/submit", json={"domain": "shop.com"})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "deployed"
        assert data["queued"] is True
        assert data["refetch"] is True

    def test_submit_without_type_conflicts(self, client, backend, login):
        login()
        _stub_dashboard(backend)
        resp = client.post("/dashboard/deploy/submit", json={"domain": "shop.com"})
        assert resp.status_code == 409

    def test_checkout_round_trip(self, client, backend, login):
        """No license -> hosted checkout -> return deploys exactly once."""
        login()
        _stub_dashboard(backend)
        backend.create_checkout.return_value = {"checkoutUrl": "https://checkout.stripe.com/x"}

        client.post("/dashboard/deploy/select-type", json={"serverTypeId": "st-2"})
        data = client.post("/dashboard/deploy/submit", json={"domain": "shop.com"}).get_json()
        assert data["status"] == "payment_required"
        assert data["paymentOptions"]["requiresCheckout"] is True

        resp = client.post("/dashboard/deploy/checkout")
        assert resp.get_json()["url"] == "https://checkout.stripe.com/x"
        backend.create_checkout.assert_called_once_with(
            "tok-user-42", "performance",
            "http://localhost:3000/dashboard?success=true&deploy=true",
            "http://localhost:3000/dashboard?canceled=true",
        )
        assert PendingDeployment.query.count() == 1

        data = client.get("/dashboard?success=true&deploy=true").get_json()
        assert data["deployment"]["status"] == "deployed"
        backend.deploy_with_agent.assert_called_once_with(
            "tok-user-42", name="shop.com", domain="shop.com",
            server_type_id="st-2", subscription_id=None,
        )

        data = client.get("/dashboard?success=true&deploy=true").get_json()
        assert "deployment" not in data
        assert backend.deploy_with_agent.call_count == 1

    def test_canceled_checkout_discards(self, client, backend, login):
        login()
        _stub_dashboard(backend)
        backend.create_checkout.return_value = {"checkoutUrl": "https://checkout.stripe.com/x"}
        client.post("/dashboard/deploy/select-type", json={"serverTypeId": "st-1"})
        client.post("/dashboard/deploy/submit", json={"domain": "shop.com"})
        client.post("/dashboard/deploy/checkout")

        client.get("/dashboard?canceled=true")

        assert PendingDeployment.query.count() == 0
        backend.deploy_with_agent.assert_not_called()

    def test_deploy_failure_is_400_with_message(self, client, backend, login):
        from hostpanel.services.api_client import BackendError

        login()
        _stub_dashboard(backend, licenses={"standard": 1})
        backend.deploy_with_agent.side_effect = BackendError("Invalid domain", 422)

        client.post("/dashboard/deploy/select-type", json={"serverTypeId": "st-1"})
        resp = client.post("/dashboard/deploy/submit", json={"domain": "bad domain"})

        assert resp.status_code == 422
        assert resp.get_json()["error"] == "Failed to create site: Invalid domain"
        with client.session_transaction() as sess:
            assert sess["deploy_workflow"]["state"] == "awaiting_domain_input"
            assert sess["deploy_workflow"]["domain"] == "bad domain"


class TestSiteActions:

    def test_upsize_downgrade_rejected(self, client, backend, login):
        login()
        _stub_dashboard(backend, servers=[make_server(id="7", server_type_name="Performance")])

        client.post("/dashboard/sites/7/upsize/open")
        resp = client.post("/dashboard/sites/7/upsize/select", json={"serverType": "Standard"})

        assert resp.status_code == 400
        backend.upsize_server.assert_not_called()

    def test_upsize_flow(self, client, backend, login):
        login()
        _stub_dashboard(backend, servers=[make_server(id="7")])
        backend.upsize_server.return_value = {"chargedAmount": 5}

        client.post("/dashboard/sites/7/upsize/open")
        data = client.post(
            "/dashboard/sites/7/upsize/select", json={"serverType": "Performance"}
        ).get_json()
        assert data["confirmation"]["planChanges"] is True

        resp = client.post(
            "/dashboard/sites/7/upsize/confirm", json={"approvePlanChange": True}
        )

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "upsized"
        backend.upsize_server.assert_called_once_with("tok-user-42", "7", "st-2")

    def test_unknown_site(self, client, backend, login):
        login()
        _stub_dashboard(backend)
        resp = client.post("/dashboard/sites/404/upsize/open")
        assert resp.status_code == 404

    def test_enable_backups_redirect(self, client, backend, login):
        login()
        _stub_dashboard(backend, servers=[make_server(id="7")])

        resp = client.post("/dashboard/sites/7/backups/enable")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["redirect"] == "/plan"
        assert data["reason"] == "no_payment_method"

    def test_disable_requires_delete(self, client, backend, login):
        login()
        _stub_dashboard(backend, servers=[make_server(id="7", backups_enabled=True)])

        resp = client.post("/dashboard/sites/7/backups/disable", json={"confirmation": "yes"})

        assert resp.status_code == 400
        backend.toggle_backups.assert_not_called()

    def test_restore(self, client, backend, login):
        login()
        _stub_dashboard(backend, servers=[make_server(id="7")])
        backend.list_backups.return_value = {"backups": [
            {"id": "b1", "date": "2025-03-01 02:00:00", "size": "1 GB"},
        ]}

        resp = client.post("/dashboard/sites/7/restore", json={
            "backupId": "b1", "acknowledgement": "2025-03-01 02:00:00",
        })

        assert resp.status_code == 200
        assert resp.get_json()["sites"][0]["deploy_status"] == "restoring"

    def test_delete_needs_exact_name(self, client, backend, login):
        login()
        _stub_dashboard(backend, servers=[make_server(id="7", name="My-Site")])

        resp = client.post("/dashboard/sites/7/delete", json={"confirmation": "my-site"})

        assert resp.status_code == 400
        backend.delete_server.assert_not_called()

        resp = client.post("/dashboard/sites/7/delete", json={"confirmation": "My-Site"})
        assert resp.status_code == 200
        assert resp.get_json()["refetch"] is True
