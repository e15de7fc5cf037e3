import json
import os
from pathlib import Path
from typing import Any

import httpx
import pytest

from edgeship.config import get_settings
from edgeship.preview.watchers import _reset as _reset_watchers


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path):
    os.environ["APP_ENV"] = "dev"
    os.environ["CLOUDFLARE_API_BASE_URL"] = "https://cf.test/client/v4"
    os.environ["CLOUDFLARE_ACCOUNT_ID"] = "acct123"
    os.environ["CLOUDFLARE_ZONE_ID"] = "zone456"
    os.environ["CLOUDFLARE_API_TOKEN"] = "cf-token"
    os.environ["CLOUDFLARE_API_KEY"] = ""
    os.environ["CLOUDFLARE_EMAIL"] = ""
    os.environ["CLOUDFLARE_WORKERS_SUBDOMAIN"] = "acme"
    os.environ["CLOUDFLARE_R2_BUCKET"] = "apps-bucket"
    os.environ["CLOUDFLARE_R2_PUBLIC_URL"] = ""
    os.environ["APP_BASE_DOMAIN"] = "example.dev"
    os.environ["SUPABASE_URL"] = "https://db.example.dev"
    os.environ["SUPABASE_ANON_KEY"] = "anon-key"
    os.environ["SUPABASE_SERVICE_KEY"] = "service-key"
    os.environ["ENABLE_AI_BUILD_FIXES"] = "0"
    os.environ["BUILD_MAX_ATTEMPTS"] = "2"
    os.environ["DEPLOY_RECORD_DIR"] = str(tmp_path / "deployments")
    get_settings.cache_clear()
    _reset_watchers()
    yield
    get_settings.cache_clear()
    _reset_watchers()


class FakeCloudflare:
    """In-memory Cloudflare v4 API served through ``httpx.MockTransport``.

    ``fail`` maps a fragment of ``"METHOD /path"`` to the status code returned
    for matching requests; ``fail_patterns`` rejects route creation by pattern.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.scripts: dict[str, bytes] = {}
        self.secrets: dict[str, dict[str, str]] = {}
        self.routes: list[dict[str, str]] = []
        self.objects: dict[str, dict[str, Any]] = {}
        self.subdomains: set[str] = set()
        self.fail: dict[str, int] = {}
        self.fail_patterns: set[str] = set()
        self.page_size = 1000

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, fragment: str) -> list[httpx.Request]:
        return [item for item in self.requests if fragment in f"{item.method} {item.url.path}"]

    @staticmethod
    def _ok(result: object, status: int = 200, **extra: object) -> httpx.Response:
        return httpx.Response(
            status, json={"success": True, "errors": [], "result": result, **extra}
        )

    @staticmethod
    def _error(status: int, message: str) -> httpx.Response:
        return httpx.Response(
            status,
            json={
                "success": False,
                "errors": [{"code": 10000, "message": message}],
                "result": None,
            },
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/client/v4")
        signature = f"{request.method} {path}"
        for fragment, status in self.fail.items():
            if fragment in signature:
                return self._error(status, f"forced failure for {fragment}")

        if "/r2/buckets/" in path:
            return self._objects(request, path)
        if "/workers/scripts/" in path:
            return self._scripts(request, path)
        if "/workers/routes" in path:
            return self._routes(request, path)
        return self._error(404, f"no route for {signature}")

    def _scripts(self, request: httpx.Request, path: str) -> httpx.Response:
        rest = path.split("/workers/scripts/", 1)[1]
        name, _, tail = rest.partition("/")
        if tail == "secrets" and request.method == "PUT":
            body = json.loads(request.content)
            self.secrets.setdefault(name, {})[body["name"]] = body["text"]
            return self._ok({"name": body["name"], "type": "secret_text"})
        if tail == "subdomain" and request.method == "POST":
            self.subdomains.add(name)
            return self._ok({"enabled": True})
        if not tail and request.method == "PUT":
            self.scripts[name] = request.content
            return self._ok({"id": name})
        return self._error(405, "unsupported")

    def _routes(self, request: httpx.Request, path: str) -> httpx.Response:
        if request.method == "GET":
            return self._ok(list(self.routes))
        body = json.loads(request.content)
        if body["pattern"] in self.fail_patterns:
            return self._error(409, f"route {body['pattern']} is owned by another zone")
        if request.method == "POST":
            route = {"id": f"route-{len(self.routes) + 1}", **body}
            self.routes.append(route)
            return self._ok(route)
        route_id = path.rsplit("/", 1)[1]
        for route in self.routes:
            if route["id"] == route_id:
                route.update(body)
                return self._ok(route)
        return self._error(404, "route not found")

    def _objects(self, request: httpx.Request, path: str) -> httpx.Response:
        if request.method == "GET":
            prefix = request.url.params.get("prefix", "")
            start = int(request.url.params.get("cursor") or 0)
            keys = sorted(key for key in self.objects if key.startswith(prefix))
            page = keys[start : start + self.page_size]
            more = start + self.page_size < len(keys)
            return self._ok(
                [{"key": key} for key in page],
                result_info={
                    "cursor": str(start + self.page_size) if more else "",
                    "is_truncated": more,
                },
            )
        key = path.split("/objects/", 1)[1]
        if request.method == "PUT":
            self.objects[key] = {"content": request.content, "headers": dict(request.headers)}
            return self._ok({"key": key})
        if request.method == "DELETE":
            if self.objects.pop(key, None) is None:
                return self._error(404, "object not found")
            return self._ok(None)
        return self._error(405, "unsupported")


@pytest.fixture
def cloudflare() -> FakeCloudflare:
    return FakeCloudflare()
