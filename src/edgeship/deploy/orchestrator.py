"""Ordered deployment sequence with per-step failure semantics.

Steps, in order:

1. upload worker code      critical: any failure aborts
2. upload offloaded assets per item, non-critical
3. configure secrets       critical: any failure aborts
4. configure routes        non-critical: falls back to the workers.dev URL
5. finalize                record resolved URLs

Every external call is an upsert keyed by the deterministic worker name, so
re-running the sequence with the same artifact is safe.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path

from edgeship.config import Settings, get_settings, missing_deploy_credentials
from edgeship.deploy import records
from edgeship.deploy.cloudflare import CloudflareClient, R2ObjectStore
from edgeship.ids import slugify
from edgeship.logging import bind_context
from edgeship.packaging.entrypoint import validate_entrypoint
from edgeship.packaging.packager import PackagedArtifact

logger = logging.getLogger(__name__)


class DeploymentType(StrEnum):
    PREVIEW = "preview"
    PRODUCTION = "production"


@dataclass(slots=True)
class StepOutcome:
    name: str
    success: bool
    critical: bool
    error: str = ""


@dataclass(slots=True)
class DeploymentResult:
    app_id: str
    deployment_type: str
    worker_name: str
    success: bool = False
    error: str = ""
    failed_step: str = ""
    missing_credentials: list[str] = field(default_factory=list)
    steps: list[StepOutcome] = field(default_factory=list)
    uploaded_files: list[str] = field(default_factory=list)
    failed_uploads: list[dict[str, str]] = field(default_factory=list)
    secrets_configured: list[str] = field(default_factory=list)
    configured_routes: list[str] = field(default_factory=list)
    failed_routes: list[dict[str, str]] = field(default_factory=list)
    urls: dict[str, object] = field(default_factory=dict)
    deployment_url: str = ""

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def worker_name_for(app_id: str, deployment_type: str) -> str:
    slug = slugify(app_id)
    if deployment_type == DeploymentType.PRODUCTION:
        return f"app-{slug}"
    return f"preview-app-{slug}"


def route_patterns(
    app_id: str,
    deployment_type: str,
    base_domain: str,
    custom_domains: Sequence[str] = (),
) -> list[str]:
    slug = slugify(app_id)
    if deployment_type == DeploymentType.PRODUCTION:
        patterns = [f"app-{slug}.{base_domain}/*"]
    else:
        patterns = [f"preview-{slug}.{base_domain}/*"]
    for domain in custom_domains:
        host = domain.strip().removeprefix("https://").removeprefix("http://").strip("/")
        if host:
            patterns.append(f"{host}/*")
    return list(dict.fromkeys(patterns))


def url_for_pattern(pattern: str) -> str:
    return "https://" + pattern.removesuffix("/*").removesuffix("*")


class DeploymentOrchestrator:
    def __init__(
        self,
        app_id: str,
        *,
        settings: Settings | None = None,
        client: CloudflareClient | None = None,
        object_store: R2ObjectStore | None = None,
        deployment_type: str = DeploymentType.PREVIEW,
        custom_domains: Sequence[str] = (),
        app_secrets: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._app_id = app_id
        self._client = client
        self._object_store = object_store
        self._deployment_type = str(deployment_type)
        self._custom_domains = tuple(custom_domains)
        self._app_secrets = dict(app_secrets or {})
        self.worker_name = worker_name_for(app_id, self._deployment_type)

    def secrets(self) -> dict[str, str]:
        """Server-side values the worker reads from its environment."""
        settings = self._settings
        values = {
            "SUPABASE_URL": settings.supabase_url,
            "SUPABASE_SERVICE_KEY": settings.supabase_service_key,
            "SUPABASE_ANON_KEY": settings.supabase_anon_key,
            "APP_ID": self._app_id,
            "ENVIRONMENT": self._deployment_type,
        }
        values.update(self._app_secrets)
        return {name: value for name, value in values.items() if value}

    def routes(self) -> list[str]:
        return route_patterns(
            self._app_id,
            self._deployment_type,
            self._settings.app_base_domain,
            self._custom_domains,
        )

    def worker_url(self) -> str:
        subdomain = (
            self._settings.cloudflare_workers_subdomain.strip()
            or self._settings.cloudflare_account_id
        )
        return f"https://{self.worker_name}.{subdomain}.workers.dev"

    def deploy(self, artifact: PackagedArtifact) -> DeploymentResult:
        result = DeploymentResult(
            app_id=self._app_id,
            deployment_type=self._deployment_type,
            worker_name=self.worker_name,
        )
        bind_context(app_id=self._app_id, worker=self.worker_name)

        missing = missing_deploy_credentials(self._settings)
        if missing:
            result.missing_credentials = missing
            result.error = "Missing required deployment credentials: " + ", ".join(missing)
            result.failed_step = "validate_credentials"
            logger.error("Deployment of %s blocked: %s", self._app_id, result.error)
            return result

        owned: list[CloudflareClient | R2ObjectStore] = []
        try:
            client = self._client
            if client is None:
                client = CloudflareClient(self._settings)
                owned.append(client)
            object_store = self._object_store
            if object_store is None:
                object_store = R2ObjectStore(self._settings)
                owned.append(object_store)
            self._run_steps(artifact, client, object_store, result)
        except Exception as exc:
            logger.exception("Deployment of %s failed unexpectedly", self._app_id)
            result.success = False
            result.error = result.error or str(exc) or type(exc).__name__
        finally:
            for resource in owned:
                resource.close()
        return result

    def _abort(self, result: DeploymentResult, step: str, error: str) -> None:
        result.steps.append(StepOutcome(name=step, success=False, critical=True, error=error))
        result.success = False
        result.failed_step = step
        result.error = error
        logger.error("Critical deployment step %s failed for %s: %s", step, self._app_id, error)

    def _run_steps(
        self,
        artifact: PackagedArtifact,
        client: CloudflareClient,
        object_store: R2ObjectStore,
        result: DeploymentResult,
    ) -> None:
        # 1. worker code
        problems = validate_entrypoint(
            artifact.entrypoint, int(self._settings.worker_script_max_bytes)
        )
        if problems:
            self._abort(result, "upload_worker", "Invalid worker script: " + "; ".join(problems))
            return
        try:
            client.upload_worker(self.worker_name, artifact.entrypoint)
        except Exception as exc:
            self._abort(result, "upload_worker", str(exc))
            return
        result.steps.append(StepOutcome(name="upload_worker", success=True, critical=True))
        logger.info(
            "Uploaded worker %s (%d bytes)", self.worker_name, artifact.entrypoint_size
        )

        # 2. offloaded assets
        for asset in artifact.offloaded:
            try:
                object_store.put_object(
                    asset.object_key,
                    asset.content,
                    content_type=asset.content_type,
                    cache_control=asset.cache_control,
                    metadata={"app-id": self._app_id, "path": asset.path, "sha256": asset.sha256},
                )
            except Exception as exc:
                logger.warning("Asset upload failed for %s: %s", asset.path, exc)
                result.failed_uploads.append({"path": asset.path, "error": str(exc)})
                continue
            result.uploaded_files.append(asset.path)
        result.steps.append(
            StepOutcome(
                name="upload_assets",
                success=not result.failed_uploads,
                critical=False,
                error=f"{len(result.failed_uploads)} asset upload(s) failed"
                if result.failed_uploads
                else "",
            )
        )

        # 3. secrets
        for name, value in self.secrets().items():
            try:
                client.put_secret(self.worker_name, name, value)
            except Exception as exc:
                self._abort(result, "configure_secrets", f"Failed to set secret {name}: {exc}")
                return
            result.secrets_configured.append(name)
        result.steps.append(StepOutcome(name="configure_secrets", success=True, critical=True))

        # 4. routes
        self._configure_routes(client, result)

        # 5. finalize
        self._finalize(result)

    def _configure_routes(self, client: CloudflareClient, result: DeploymentResult) -> None:
        zone_id = self._settings.cloudflare_zone_id
        for pattern in self.routes():
            try:
                client.upsert_route(zone_id, pattern, self.worker_name)
            except Exception as exc:
                logger.warning("Route %s failed for %s: %s", pattern, self.worker_name, exc)
                result.failed_routes.append({"pattern": pattern, "error": str(exc)})
                continue
            result.configured_routes.append(pattern)
        subdomain_error = ""
        try:
            client.enable_subdomain(self.worker_name)
        except Exception as exc:
            subdomain_error = f"enable_subdomain: {exc}"
            logger.warning(
                "Could not enable workers.dev subdomain for %s: %s", self.worker_name, exc
            )
        errors = [f"{item['pattern']}: {item['error']}" for item in result.failed_routes]
        if subdomain_error:
            errors.append(subdomain_error)
        result.steps.append(
            StepOutcome(
                name="configure_routes",
                success=not errors,
                critical=False,
                error="; ".join(errors),
            )
        )

    def resolve_urls(self, configured_routes: Sequence[str]) -> dict[str, object]:
        slug = slugify(self._app_id)
        base = self._settings.app_base_domain
        own_pattern = (
            f"app-{slug}.{base}/*"
            if self._deployment_type == DeploymentType.PRODUCTION
            else f"preview-{slug}.{base}/*"
        )
        urls: dict[str, object] = {"worker_url": self.worker_url()}
        custom: list[str] = []
        for pattern in configured_routes:
            if pattern == own_pattern:
                urls[f"{self._deployment_type}_url"] = url_for_pattern(pattern)
            else:
                custom.append(url_for_pattern(pattern))
        if custom:
            urls["custom_urls"] = custom
        return urls

    def _finalize(self, result: DeploymentResult) -> None:
        result.urls = self.resolve_urls(result.configured_routes)
        own_url = result.urls.get(f"{self._deployment_type}_url")
        result.deployment_url = str(own_url or result.urls["worker_url"])
        result.success = True
        result.steps.append(StepOutcome(name="finalize", success=True, critical=False))
        try:
            records.write_record(
                Path(self._settings.deploy_record_dir),
                self._app_id,
                self._deployment_type,
                status=records.STATUS_DEPLOYED,
                worker_name=self.worker_name,
                urls={**result.urls, "deployment_url": result.deployment_url},
            )
        except OSError as exc:
            logger.warning("Could not persist deployment record for %s: %s", self._app_id, exc)
        logger.info(
            "Deployed %s to %s (%d assets, %d failed uploads, %d failed routes)",
            self._app_id,
            result.deployment_url,
            len(result.uploaded_files),
            len(result.failed_uploads),
            len(result.failed_routes),
        )
