from pathlib import Path

import pytest

from edgeship.config import get_settings
from edgeship.deploy import records
from edgeship.deploy.cloudflare import CloudflareClient, R2ObjectStore
from edgeship.deploy.orchestrator import (
    DeploymentOrchestrator,
    DeploymentType,
    route_patterns,
    worker_name_for,
)
from edgeship.packaging.packager import PackagedArtifact, Packager


def _artifact() -> PackagedArtifact:
    return Packager("shop", "https://cdn.example.dev").package(
        {
            "index.html": b"<html><head></head><body></body></html>",
            "assets/index-a1b2c3d4.js": b"console.log('shop')",
            "assets/logo.png": b"\x89PNG logo",
            "assets/photo.jpg": b"\xff\xd8 photo",
        }
    )


def _orchestrator(cloudflare, **kwargs) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(
        "shop",
        client=CloudflareClient(transport=cloudflare.transport()),
        object_store=R2ObjectStore(transport=cloudflare.transport()),
        **kwargs,
    )


def test_names_and_routes_are_deterministic() -> None:
    assert worker_name_for("Shop", DeploymentType.PREVIEW) == "preview-app-shop"
    assert worker_name_for("Shop", DeploymentType.PRODUCTION) == "app-shop"
    patterns = route_patterns(
        "shop", "production", "example.dev", ["https://shop.com/", "shop.com"]
    )
    assert patterns == ["app-shop.example.dev/*", "shop.com/*"]
    assert route_patterns("shop", "preview", "example.dev") == ["preview-shop.example.dev/*"]


def test_preview_deployment_runs_every_step(cloudflare) -> None:
    result = _orchestrator(cloudflare).deploy(_artifact())

    assert result.success is True
    assert [step.name for step in result.steps] == [
        "upload_worker",
        "upload_assets",
        "configure_secrets",
        "configure_routes",
        "finalize",
    ]
    assert b"export default" in cloudflare.scripts["preview-app-shop"]
    assert sorted(cloudflare.objects) == ["apps/shop/assets/logo.png", "apps/shop/assets/photo.jpg"]
    assert result.uploaded_files == ["assets/logo.png", "assets/photo.jpg"]
    assert result.secrets_configured == [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "SUPABASE_ANON_KEY",
        "APP_ID",
        "ENVIRONMENT",
    ]
    assert cloudflare.secrets["preview-app-shop"]["ENVIRONMENT"] == "preview"
    assert result.configured_routes == ["preview-shop.example.dev/*"]
    assert "preview-app-shop" in cloudflare.subdomains
    assert result.urls["worker_url"] == "https://preview-app-shop.acme.workers.dev"
    assert result.urls["preview_url"] == "https://preview-shop.example.dev"
    assert result.deployment_url == "https://preview-shop.example.dev"


def test_finalize_writes_a_live_record(cloudflare) -> None:
    _orchestrator(cloudflare).deploy(_artifact())
    base = Path(get_settings().deploy_record_dir)
    record = records.read_record(base, "shop", "preview")
    assert record["status"] == records.STATUS_DEPLOYED
    assert record["worker_name"] == "preview-app-shop"
    assert set(record) == {
        "app_id",
        "deployment_type",
        "status",
        "worker_name",
        "urls",
        "updated_at",
    }
    assert records.is_live(base, "shop", "preview") is True
    assert records.is_live(base, "shop", "production") is False


def test_missing_credentials_are_all_listed_before_any_call(
    cloudflare, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CLOUDFLARE_ZONE_ID", "")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "")
    get_settings.cache_clear()

    result = _orchestrator(cloudflare).deploy(_artifact())

    assert result.success is False
    assert result.failed_step == "validate_credentials"
    assert result.missing_credentials == ["CLOUDFLARE_ZONE_ID", "SUPABASE_SERVICE_KEY"]
    assert "CLOUDFLARE_ZONE_ID" in result.error and "SUPABASE_SERVICE_KEY" in result.error
    assert cloudflare.requests == []


def test_worker_upload_failure_aborts_everything_after(cloudflare) -> None:
    cloudflare.fail["PUT /accounts/acct123/workers/scripts/preview-app-shop"] = 500

    result = _orchestrator(cloudflare).deploy(_artifact())

    assert result.success is False
    assert result.failed_step == "upload_worker"
    assert "HTTP 500" in result.error
    assert cloudflare.objects == {}
    assert cloudflare.secrets == {}
    assert cloudflare.routes == []


def test_invalid_script_is_rejected_before_upload(cloudflare) -> None:
    artifact = PackagedArtifact(app_id="shop", inline_files={}, offloaded=(), entrypoint="")
    result = _orchestrator(cloudflare).deploy(artifact)
    assert result.failed_step == "upload_worker"
    assert result.error.startswith("Invalid worker script")
    assert cloudflare.requests == []


def test_one_asset_failure_does_not_stop_the_rest(cloudflare) -> None:
    cloudflare.fail["/objects/apps/shop/assets/logo.png"] = 500

    result = _orchestrator(cloudflare).deploy(_artifact())

    assert result.success is True
    assert result.uploaded_files == ["assets/photo.jpg"]
    assert [item["path"] for item in result.failed_uploads] == ["assets/logo.png"]
    assert "HTTP 500" in result.failed_uploads[0]["error"]
    assert result.secrets_configured


def test_secret_failure_aborts_before_routes(cloudflare) -> None:
    cloudflare.fail["/secrets"] = 500

    result = _orchestrator(cloudflare).deploy(_artifact())

    assert result.success is False
    assert result.failed_step == "configure_secrets"
    assert result.error.startswith("Failed to set secret SUPABASE_URL")
    assert cloudflare.calls("/workers/routes") == []


def test_route_failure_falls_back_to_worker_url(cloudflare) -> None:
    cloudflare.fail_patterns.add("app-shop.example.dev/*")

    result = _orchestrator(
        cloudflare,
        deployment_type=DeploymentType.PRODUCTION,
        custom_domains=["shop.example.com"],
    ).deploy(_artifact())

    assert result.success is True
    assert result.configured_routes == ["shop.example.com/*"]
    assert [item["pattern"] for item in result.failed_routes] == ["app-shop.example.dev/*"]
    assert result.deployment_url == "https://app-shop.acme.workers.dev"
    assert result.urls["custom_urls"] == ["https://shop.example.com"]
    assert "production_url" not in result.urls
    routes_step = next(step for step in result.steps if step.name == "configure_routes")
    assert routes_step.success is False
    assert routes_step.critical is False


def test_subdomain_failure_is_not_critical(cloudflare) -> None:
    cloudflare.fail["/subdomain"] = 500
    result = _orchestrator(cloudflare).deploy(_artifact())
    assert result.success is True
    assert result.deployment_url == "https://preview-shop.example.dev"


def test_redeploy_is_idempotent(cloudflare) -> None:
    first = _orchestrator(cloudflare).deploy(_artifact())
    second = _orchestrator(cloudflare).deploy(_artifact())
    assert first.success and second.success
    assert len(cloudflare.routes) == 1
    assert len(cloudflare.scripts) == 1
    assert second.to_dict()["deployment_url"] == first.deployment_url


def test_app_secrets_are_uploaded_but_never_in_the_result_values(cloudflare) -> None:
    result = _orchestrator(cloudflare, app_secrets={"STRIPE_KEY": "sk_live_x"}).deploy(_artifact())
    assert "STRIPE_KEY" in result.secrets_configured
    assert cloudflare.secrets["preview-app-shop"]["STRIPE_KEY"] == "sk_live_x"
    assert "sk_live_x" not in str(result.to_dict())
