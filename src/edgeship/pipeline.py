"""Build, package and deploy one application."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from edgeship.build.orchestrator import BuildOrchestrator, BuildResult, FixEscalation
from edgeship.build.toolchain import BuildToolchain, NodeToolchain
from edgeship.config import Settings, get_settings, missing_deploy_credentials
from edgeship.deploy.cloudflare import CloudflareClient, R2ObjectStore
from edgeship.deploy.orchestrator import DeploymentOrchestrator, DeploymentResult, DeploymentType
from edgeship.ids import new_id
from edgeship.logging import bind_context, clear_context
from edgeship.packaging.packager import Packager
from edgeship.storage.base import FileStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ShipResult:
    app_id: str
    trace_id: str
    success: bool
    stage: str
    error: str = ""
    build: BuildResult | None = None
    deployment: DeploymentResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "app_id": self.app_id,
            "trace_id": self.trace_id,
            "success": self.success,
            "stage": self.stage,
            "error": self.error,
            "build": self.build.to_dict() if self.build is not None else None,
            "deployment": self.deployment.to_dict() if self.deployment is not None else None,
        }


def ship(
    store: FileStore,
    *,
    settings: Settings | None = None,
    toolchain: BuildToolchain | None = None,
    escalation: FixEscalation | None = None,
    deployment_type: str = DeploymentType.PREVIEW,
    custom_domains: Sequence[str] = (),
    app_secrets: Mapping[str, str] | None = None,
    client: CloudflareClient | None = None,
    object_store: R2ObjectStore | None = None,
) -> ShipResult:
    """Run the whole pipeline. Failures come back in the result, never raised."""
    settings = settings or get_settings()
    app_id = store.app_id
    trace_id = new_id("shp")
    bind_context(app_id=app_id, trace_id=trace_id, deployment_type=str(deployment_type))
    stage = "validate"
    build: BuildResult | None = None
    try:
        missing = missing_deploy_credentials(settings)
        if missing:
            error = "Missing required deployment credentials: " + ", ".join(missing)
            logger.error("Not shipping %s: %s", app_id, error)
            return ShipResult(
                app_id=app_id, trace_id=trace_id, success=False, stage=stage, error=error
            )

        stage = "build"
        build = BuildOrchestrator(
            store,
            toolchain or NodeToolchain(settings),
            settings=settings,
            escalation=escalation,
        ).run()
        if not build.success:
            return ShipResult(
                app_id=app_id,
                trace_id=trace_id,
                success=False,
                stage=stage,
                error=build.error or build.reason,
                build=build,
            )

        stage = "package"
        artifact = Packager(
            app_id,
            settings.asset_base_url,
            threshold=int(settings.offload_size_threshold_bytes),
        ).package(build.files)
        logger.info(
            "Packaged %s: %d inline files, %d offloaded assets",
            app_id,
            len(artifact.inline_files),
            len(artifact.offloaded),
        )

        stage = "deploy"
        deployment = DeploymentOrchestrator(
            app_id,
            settings=settings,
            client=client,
            object_store=object_store,
            deployment_type=deployment_type,
            custom_domains=custom_domains,
            app_secrets=app_secrets,
        ).deploy(artifact)
        return ShipResult(
            app_id=app_id,
            trace_id=trace_id,
            success=deployment.success,
            stage="done" if deployment.success else stage,
            error=deployment.error,
            build=build,
            deployment=deployment,
        )
    except Exception as exc:
        logger.exception("Shipping %s failed during %s", app_id, stage)
        return ShipResult(
            app_id=app_id,
            trace_id=trace_id,
            success=False,
            stage=stage,
            error=str(exc) or type(exc).__name__,
            build=build,
        )
    finally:
        clear_context()
