"""Pass-through forwarding for the /api proxy and admin blueprints.

The incoming Authorization header is forwarded untouched. Backend error
bodies are passed back with the backend's status; when they are not JSON
they are wrapped as {"error": "Failed to <action>: <status>", "details": text}.
"""

import logging

import requests

from hostpanel.services.api_client import NO_CACHE_HEADERS, cache_buster

logger = logging.getLogger(__name__)


def forward(base_url, method, path, authorization=None, json=None, params=None,
            timeout=None, action="process request", no_cache=False,
            cache_bust=False):
    """Forward one request. Returns (payload, status_code)."""
    headers = {"Content-Type": "application/json"}
    if authorization:
        headers["Authorization"] = authorization
    if no_cache:
        headers.update(NO_CACHE_HEADERS)

    params = dict(params or {})
    if cache_bust:
        params["_"] = cache_buster()

    url = f"{base_url.rstrip('/')}{path}"
    try:
        response = requests.request(
            method,
            url,
            headers=headers,
            json=json,
            params=params or None,
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        logger.error(f"[proxy] {method} {path} failed: {e}")
        return {"success": False, "message": f"Failed to {action}", "details": str(e)}, 502

    if not response.ok:
        logger.info(f"[proxy] {method} {path} -> {response.status_code}")
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not payload:
            payload = {
                "error": f"Failed to {action}: {response.status_code}",
                "details": response.text,
            }
        return payload, response.status_code

    if not response.content:
        return {"success": True}, response.status_code
    try:
        return response.json(), response.status_code
    except ValueError:
        return {"error": "Invalid response from server", "details": response.text}, 502
