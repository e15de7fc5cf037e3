"""Cloudflare Workers and R2 REST clients."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from edgeship.config import Settings, get_settings
from edgeship.errors import ConfigError, ProviderAPIError

logger = logging.getLogger(__name__)

WORKER_MAIN_MODULE = "worker.js"


def auth_headers(settings: Settings) -> dict[str, str]:
    """Bearer token when present, otherwise the key + email pair."""
    token = settings.cloudflare_api_token.strip()
    if token:
        return {"Authorization": f"Bearer {token}"}
    key = settings.cloudflare_api_key.strip()
    email = settings.cloudflare_email.strip()
    if key and email:
        return {"X-Auth-Email": email, "X-Auth-Key": key}
    raise ConfigError("Cloudflare credentials missing: set CLOUDFLARE_API_TOKEN or API key + email")


def _error_message(response: httpx.Response, operation: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    messages: list[str] = []
    if isinstance(payload, dict):
        for item in payload.get("errors") or []:
            if isinstance(item, dict) and item.get("message"):
                code = item.get("code")
                message = str(item["message"])
                messages.append(f"{message} (code {code})" if code else message)
    detail = "; ".join(messages) or response.text[:300] or response.reason_phrase
    return f"{operation} failed with HTTP {response.status_code}: {detail}"


def _result(response: httpx.Response, operation: str) -> Any:
    if response.status_code >= 400:
        raise ProviderAPIError(
            _error_message(response, operation), step=operation, status_code=response.status_code
        )
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderAPIError(
            f"{operation} returned invalid JSON", step=operation, status_code=response.status_code
        ) from exc
    if isinstance(payload, dict) and payload.get("success") is False:
        raise ProviderAPIError(
            _error_message(response, operation), step=operation, status_code=response.status_code
        )
    if isinstance(payload, dict):
        return payload.get("result")
    return payload


class CloudflareClient:
    """Workers scripts, secrets, routes and subdomains."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._account_id = self._settings.cloudflare_account_id
        self._client = httpx.Client(
            base_url=self._settings.cloudflare_api_base_url.rstrip("/"),
            headers={**auth_headers(self._settings), "User-Agent": "edgeship/0.1"},
            timeout=float(self._settings.cloudflare_http_timeout_seconds),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CloudflareClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _script_path(self, name: str) -> str:
        return f"/accounts/{self._account_id}/workers/scripts/{quote(name, safe='')}"

    def upload_worker(
        self,
        name: str,
        script: str,
        *,
        bindings: list[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        """Create or replace the worker script (ES module format)."""
        metadata = {
            "main_module": WORKER_MAIN_MODULE,
            "compatibility_date": self._settings.worker_compatibility_date,
            "compatibility_flags": ["nodejs_compat"],
            "bindings": bindings or [],
            "keep_bindings": ["secret_text"],
        }
        files = {
            "metadata": ("metadata.json", json.dumps(metadata).encode("utf-8"), "application/json"),
            WORKER_MAIN_MODULE: (
                WORKER_MAIN_MODULE,
                script.encode("utf-8"),
                "application/javascript+module",
            ),
        }
        response = self._client.put(self._script_path(name), files=files)
        return _result(response, "upload_worker") or {}

    def put_secret(self, script_name: str, name: str, value: str) -> dict[str, Any]:
        response = self._client.put(
            f"{self._script_path(script_name)}/secrets",
            json={"name": name, "text": value, "type": "secret_text"},
        )
        return _result(response, "put_secret") or {}

    def list_routes(self, zone_id: str) -> list[dict[str, Any]]:
        response = self._client.get(f"/zones/{zone_id}/workers/routes")
        result = _result(response, "list_routes")
        return list(result) if isinstance(result, list) else []

    def create_route(self, zone_id: str, pattern: str, script: str) -> dict[str, Any]:
        response = self._client.post(
            f"/zones/{zone_id}/workers/routes", json={"pattern": pattern, "script": script}
        )
        return _result(response, "create_route") or {}

    def update_route(
        self, zone_id: str, route_id: str, pattern: str, script: str
    ) -> dict[str, Any]:
        response = self._client.put(
            f"/zones/{zone_id}/workers/routes/{route_id}",
            json={"pattern": pattern, "script": script},
        )
        return _result(response, "update_route") or {}

    def upsert_route(self, zone_id: str, pattern: str, script: str) -> dict[str, Any]:
        """Create the route, or point an existing route with the same pattern at ``script``."""
        for route in self.list_routes(zone_id):
            if route.get("pattern") != pattern:
                continue
            if route.get("script") == script:
                return route
            return self.update_route(zone_id, str(route.get("id", "")), pattern, script)
        return self.create_route(zone_id, pattern, script)

    def enable_subdomain(self, script_name: str) -> dict[str, Any]:
        response = self._client.post(
            f"{self._script_path(script_name)}/subdomain", json={"enabled": True}
        )
        return _result(response, "enable_subdomain") or {}


class R2ObjectStore:
    """Objects in one R2 bucket via the account-level REST API."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.bucket = self._settings.cloudflare_r2_bucket
        base = self._settings.cloudflare_api_base_url.rstrip("/")
        self._prefix = (
            f"/accounts/{self._settings.cloudflare_account_id}/r2/buckets/{self.bucket}/objects"
        )
        self._client = httpx.Client(
            base_url=base,
            headers={**auth_headers(self._settings), "User-Agent": "edgeship/0.1"},
            timeout=float(self._settings.cloudflare_http_timeout_seconds),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> R2ObjectStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _object_path(self, key: str) -> str:
        return f"{self._prefix}/{quote(key, safe='/')}"

    def put_object(
        self,
        key: str,
        content: bytes,
        *,
        content_type: str,
        cache_control: str,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": content_type, "Cache-Control": cache_control}
        for name, value in (metadata or {}).items():
            headers[f"x-amz-meta-{name}"] = value
        response = self._client.put(self._object_path(key), content=content, headers=headers)
        return _result(response, "put_object") or {}

    def list_objects(self, prefix: str) -> list[str]:
        keys: list[str] = []
        cursor = ""
        while True:
            params = {"prefix": prefix}
            if cursor:
                params["cursor"] = cursor
            response = self._client.get(self._prefix, params=params)
            if response.status_code >= 400:
                _result(response, "list_objects")
            payload = response.json()
            for item in payload.get("result") or []:
                if isinstance(item, dict) and item.get("key"):
                    keys.append(str(item["key"]))
            info = payload.get("result_info") or {}
            cursor = str(info.get("cursor") or "")
            if not cursor or not info.get("is_truncated"):
                return keys

    def delete_object(self, key: str) -> None:
        response = self._client.delete(self._object_path(key))
        if response.status_code == 404:
            return
        _result(response, "delete_object")

    def delete_prefix(self, prefix: str) -> int:
        keys = self.list_objects(prefix)
        for key in keys:
            self.delete_object(key)
        logger.info("Deleted %d objects under %s", len(keys), prefix)
        return len(keys)
