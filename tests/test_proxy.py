"""Tests for the /api proxy blueprint.

Covers:
- Authorization header forwarded verbatim; 401 without one
- Backend errors passed through with their status
- Input validation on routes that require ids
- Metrics ownership check
"""

from unittest.mock import patch

import requests

from conftest import response

AUTH = {"Authorization": "Bearer customer-token"}


class TestForwarding:

    def test_missing_authorization(self, client):
        resp = client.get("/api/servers")
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "message": "Authentication required"}

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_header_forwarded_verbatim(self, mock_request, client):
        mock_request.return_value = response(200, {"servers": []})

        resp = client.get("/api/servers", headers=AUTH)

        assert resp.status_code == 200
        args, kwargs = mock_request.call_args
        assert args == ("GET", "http://backend.test/api/servers")
        assert kwargs["headers"]["Authorization"] == "Bearer customer-token"
        assert kwargs["headers"]["Pragma"] == "no-cache"

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_public_status_needs_no_auth(self, mock_request, client):
        mock_request.return_value = response(200, {"status": "ok"})

        resp = client.get("/api/servers/status")

        assert resp.status_code == 200
        assert "Authorization" not in mock_request.call_args.kwargs["headers"]

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_deploy_goes_to_agent_endpoint(self, mock_request, client):
        mock_request.return_value = response(202, {"message": "queued"})

        resp = client.post("/api/servers/deploy", headers=AUTH, json={"name": "a"})

        assert resp.status_code == 202
        assert mock_request.call_args.args[1].endswith("/servers/deploy-with-agent")
        assert mock_request.call_args.kwargs["json"] == {"name": "a"}

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_json_error_passed_through(self, mock_request, client):
        mock_request.return_value = response(403, {"message": "Not your server"})

        resp = client.delete("/api/servers/5", headers=AUTH)

        assert resp.status_code == 403
        assert resp.get_json() == {"message": "Not your server"}

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_text_error_wrapped(self, mock_request, client):
        mock_request.return_value = response(500, None, text="Internal Server Error")

        resp = client.get("/api/subscription", headers=AUTH)

        assert resp.status_code == 500
        assert resp.get_json() == {
            "error": "Failed to fetch subscriptions: 500",
            "details": "Internal Server Error",
        }

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_backend_unreachable(self, mock_request, client):
        mock_request.side_effect = requests.exceptions.ConnectionError("refused")

        resp = client.get("/api/subscription/license-counts", headers=AUTH)

        assert resp.status_code == 502

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_empty_success_body(self, mock_request, client):
        mock_request.return_value = response(200, None, text="")

        resp = client.post("/api/servers/5/refresh-status", headers=AUTH)

        assert resp.get_json() == {"success": True}


class TestValidation:

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_cancel_item_requires_both_ids(self, mock_request, client):
        resp = client.delete("/api/subscription/cancel-item?subscriptionId=sub_1", headers=AUTH)

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Subscription ID and Item ID are required"
        mock_request.assert_not_called()

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_cancel_item_path(self, mock_request, client):
        mock_request.return_value = response(200, {"success": True})

        client.delete(
            "/api/subscription/cancel-item?subscriptionId=sub_1&itemId=si_2", headers=AUTH
        )

        assert mock_request.call_args.args == (
            "DELETE", "http://backend.test/api/subscription/stripe-item/sub_1/si_2"
        )

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_upsize_requires_type(self, mock_request, client):
        resp = client.post("/api/servers/5/upsize", headers=AUTH, json={})
        assert resp.status_code == 400
        mock_request.assert_not_called()

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_stripe_items_requires_subscription(self, mock_request, client):
        resp = client.get("/api/subscription/stripe-items", headers=AUTH)
        assert resp.status_code == 400


class TestMetrics:

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_foreign_server_denied(self, mock_request, client):
        mock_request.return_value = response(200, {"servers": [{"id": 1, "agent_id": "a"}]})

        resp = client.get("/api/servers/2/metrics", headers=AUTH)

        assert resp.status_code == 404
        assert mock_request.call_count == 1

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_own_server_metrics(self, mock_request, client):
        mock_request.side_effect = [
            response(200, {"servers": [{"id": 2, "agent_id": "a"}]}),
            response(200, {"metrics": {"cpu": 3}}),
        ]

        resp = client.get("/api/servers/2/metrics", headers=AUTH)

        assert resp.get_json() == {"metrics": {"cpu": 3}}
        assert mock_request.call_args.args[1].endswith("/servers/2/agent-metrics")

    @patch("hostpanel.services.proxy_service.requests.request")
    def test_agent_offline(self, mock_request, client):
        mock_request.side_effect = [
            response(200, {"servers": [{"id": 2, "agent_id": "a"}]}),
            response(404, {"error": "nope"}),
        ]

        resp = client.get("/api/servers/2/metrics", headers=AUTH)

        assert resp.status_code == 404
        assert "Agent may be offline" in resp.get_json()["error"]
