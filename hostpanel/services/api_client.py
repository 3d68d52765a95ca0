"""Backend API client — every call this app makes to the customer API.

The bearer token is an argument of each call. The client itself holds only
the base URL and timeout, so one instance can serve concurrent requests for
different users without sharing credentials.

Error mapping:
- 401 (or no token)        -> AuthenticationError, never retried
- any other non-2xx        -> BackendError with the backend's message/error
- connection failures      -> BackendError(status_code=502)
- 2xx with a non-JSON body -> InvalidResponseError
"""

import logging
import time

import requests
from flask import current_app

from hostpanel.extensions import AUTH_ERROR_MESSAGE

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Could not reach the server"
INVALID_RESPONSE_MESSAGE = "Invalid response from server"

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class BackendError(Exception):
    """A backend call failed. `message` is safe to show to the user."""

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}


class AuthenticationError(BackendError):
    """Missing or rejected bearer token."""

    def __init__(self, detail=None, status_code=401, payload=None):
        super().__init__(AUTH_ERROR_MESSAGE, status_code, payload)
        self.detail = detail


class InvalidResponseError(BackendError):
    """The backend answered 2xx but the body was not JSON."""


def cache_buster():
    """Millisecond timestamp used as a cache-busting query parameter."""
    return int(time.time() * 1000)


def error_message(payload, status_code):
    """Pick the user-facing message out of a backend error body."""
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if message:
            return str(message)
    return f"Request failed: {status_code}"


def _safe_json(response):
    try:
        return response.json()
    except ValueError:
        return {"details": response.text}


def build_headers(token=None, no_cache=False):
    """Headers for one backend request. The token is injected per call."""
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    if no_cache:
        headers.update(NO_CACHE_HEADERS)
    return headers


class BackendClient:

    def __init__(self, base_url, timeout=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config=None):
        config = config if config is not None else current_app.config
        return cls(config["API_BASE_URL"], timeout=config.get("BACKEND_TIMEOUT"))

    # ──────────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────────

    def request(self, method, path, token=None, json=None, params=None,
                no_cache=False, auth=True):
        """Send one request and return (data, status_code).

        Raises AuthenticationError, BackendError or InvalidResponseError.
        """
        if auth and not token:
            raise AuthenticationError("No authentication token found")

        url = f"{self.base_url}{path}"
        try:
            response = requests.request(
                method,
                url,
                headers=build_headers(token, no_cache=no_cache),
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise BackendError(NETWORK_ERROR_MESSAGE, status_code=502) from e

        if response.status_code == 401:
            payload = _safe_json(response)
            raise AuthenticationError(
                detail=error_message(payload, 401), payload=payload
            )

        if not response.ok:
            payload = _safe_json(response)
            message = error_message(payload, response.status_code)
            logger.info(f"{method} {path} -> {response.status_code}: {message}")
            raise BackendError(message, response.status_code, payload)

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(
                INVALID_RESPONSE_MESSAGE, status_code=response.status_code
            ) from e

        return data, response.status_code

    def _get(self, path, token, **kwargs):
        data, _ = self.request("GET", path, token=token, **kwargs)
        return data

    def _post(self, path, token, json=None, **kwargs):
        data, _ = self.request("POST", path, token=token, json=json, **kwargs)
        return data

    # ──────────────────────────────────────────────
    # Auth
    # ──────────────────────────────────────────────

    def login(self, email, password):
        """Returns {"token": ..., "user": {...}}."""
        data, _ = self.request(
            "POST", "/auth/login",
            json={"email": email, "password": password},
            auth=False,
        )
        return data

    def register(self, email, password, name):
        data, _ = self.request(
            "POST", "/auth/register",
            json={"email": email, "password": password, "name": name},
            auth=False,
        )
        return data

    # ──────────────────────────────────────────────
    # Servers
    # ──────────────────────────────────────────────

    def list_servers(self, token):
        return self._get(
            "/servers", token, params={"t": cache_buster()}, no_cache=True
        )

    def list_server_types(self, token):
        return self._get("/servers/server-types", token, no_cache=True)

    def deploy_with_agent(self, token, name, domain, server_type_id,
                          subscription_id=None):
        """Start a deployment.

        Returns (data, status_code): 200 when a local-business site was
        created on the spot, 202 when a server deployment was queued.
        """
        body = {
            "name": name,
            "domain": domain,
            "serverTypeId": server_type_id,
        }
        if subscription_id:
            body["subscriptionId"] = subscription_id
        return self.request(
            "POST", "/servers/deploy-with-agent", token=token, json=body
        )

    def upsize_server(self, token, server_id, server_type_id):
        return self._post(
            f"/servers/{server_id}/upsize", token,
            json={"serverTypeId": server_type_id},
        )

    def toggle_backups(self, token, server_id, enable):
        return self._post(
            f"/servers/{server_id}/toggle-backups", token,
            json={"enable": bool(enable)},
        )

    def list_backups(self, token, server_id):
        return self._get(f"/servers/{server_id}/backups", token, no_cache=True)

    def restore_backup(self, token, server_id, backup_id):
        return self._post(
            f"/servers/{server_id}/restore", token,
            json={"backupId": backup_id},
        )

    def delete_server(self, token, server_id):
        data, _ = self.request("DELETE", f"/servers/{server_id}", token=token)
        return data

    def server_metrics(self, token, server_id):
        return self._get(f"/servers/{server_id}/agent-metrics", token, no_cache=True)

    def refresh_server_status(self, token, server_id):
        return self._post(f"/servers/{server_id}/refresh-status", token)

    # ──────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────

    def list_subscriptions(self, token):
        return self._get("/subscription", token)

    def create_checkout(self, token, plan_type, success_url, cancel_url):
        """Create a hosted checkout session. Returns {"checkoutUrl": ...}."""
        return self._post(
            "/subscription", token,
            json={
                "planType": plan_type,
                "successUrl": success_url,
                "cancelUrl": cancel_url,
            },
        )

    def cancel_subscription(self, token, subscription_id):
        return self._post(f"/subscription/cancel/{subscription_id}", token)

    def upgrade_subscription(self, token, subscription_id, new_plan_type):
        return self._post(
            "/subscription/upgrade", token,
            json={
                "subscriptionId": subscription_id,
                "newPlanType": new_plan_type,
            },
        )

    def license_counts(self, token):
        return self._get("/subscription/license-counts", token)

    def payment_methods(self, token):
        return self._get("/subscription/customer/payment-methods", token)

    def create_with_payment_method(self, token, plan_type, payment_method_id):
        return self._post(
            "/subscription/create-with-payment-method", token,
            json={"planType": plan_type, "paymentMethodId": payment_method_id},
        )

    def add_backup_addon(self, token, server_type, server_id,
                         payment_method_id=None):
        body = {"serverType": server_type, "serverId": server_id}
        if payment_method_id:
            body["paymentMethodId"] = payment_method_id
        return self._post("/subscription/add-backup-addon", token, json=body)

    def remove_backup_addon(self, token, server_type):
        return self._post(
            "/subscription/remove-backup-addon", token,
            json={"serverType": server_type},
        )

    def stripe_items(self, token, subscription_id):
        return self._get(
            "/subscription/stripe-items", token,
            params={"subscriptionId": subscription_id},
        )

    def cancel_item(self, token, subscription_id, item_id):
        data, _ = self.request(
            "DELETE",
            f"/subscription/stripe-item/{subscription_id}/{item_id}",
            token=token,
        )
        return data
