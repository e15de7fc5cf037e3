import asyncio
from pathlib import Path

import pytest

from edgeship.build.toolchain import ToolchainResult
from edgeship.config import get_settings
from edgeship.deploy import records
from edgeship.deploy.cloudflare import CloudflareClient, R2ObjectStore
from edgeship.pipeline import ship
from edgeship.preview.watchers import get_coordinator
from edgeship.runner import ShipRunner
from edgeship.storage import InMemoryFileStore
from edgeship.storage.base import FileStore


class ImportCheckingToolchain:
    """Fails while App.tsx imports './Foo' without an extension, then emits a bundle."""

    def __init__(self) -> None:
        self.calls = 0

    def build(self, store: FileStore) -> ToolchainResult:
        self.calls += 1
        app = store.get("src/App.tsx")
        assert app is not None
        if "'./Foo'" in app.text:
            return ToolchainResult(
                success=False,
                output="[vite]: Rollup failed to resolve import.\nCannot find module './Foo'",
                exit_code=1,
            )
        return ToolchainResult(
            success=True,
            output="vite v5 building for production...\n✓ built",
            exit_code=0,
            files={
                "index.html": b"<html><head></head><body><div id=root></div></body></html>",
                "assets/index-1a2b3c4d.js": b"console.log('shop')",
                "assets/hero.png": b"\x89PNG hero",
            },
        )


def _store() -> InMemoryFileStore:
    return InMemoryFileStore.from_mapping(
        "shop",
        {
            "index.html": "<div id=root></div>",
            "src/App.tsx": (
                "import Foo from './Foo';\n"
                "export default function App() { return <Foo />; }\n"
            ),
            "src/Foo.tsx": "export default function Foo() { return <p>foo</p>; }\n",
        },
    )


def _clients(cloudflare) -> dict[str, object]:
    return {
        "client": CloudflareClient(transport=cloudflare.transport()),
        "object_store": R2ObjectStore(transport=cloudflare.transport()),
    }


def test_ship_self_heals_then_deploys_preview(cloudflare) -> None:
    store = _store()
    toolchain = ImportCheckingToolchain()

    result = ship(store, toolchain=toolchain, **_clients(cloudflare))

    assert result.success is True
    assert result.stage == "done"
    assert result.trace_id.startswith("shp_")
    assert toolchain.calls == 2
    assert result.build is not None
    assert result.build.self_healed is True
    assert result.build.attempts == 2
    assert result.build.fixes_applied == [
        "Fixed import path './Foo' -> './Foo.tsx' in src/App.tsx"
    ]
    assert result.deployment is not None
    assert result.deployment.deployment_url == "https://preview-shop.example.dev"
    assert list(cloudflare.objects) == ["apps/shop/assets/hero.png"]
    script = cloudflare.scripts["preview-app-shop"].decode("utf-8", errors="replace")
    assert "https://cdn.example.dev/apps/shop/assets/hero.png" in script
    assert records.is_live(Path(get_settings().deploy_record_dir), "shop", "preview")

    payload = result.to_dict()
    assert payload["build"]["files"] == [
        "assets/hero.png",
        "assets/index-1a2b3c4d.js",
        "index.html",
    ]


def test_ship_stops_before_build_when_credentials_missing(
    cloudflare, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CLOUDFLARE_ACCOUNT_ID", "")
    get_settings.cache_clear()
    toolchain = ImportCheckingToolchain()

    result = ship(_store(), toolchain=toolchain, **_clients(cloudflare))

    assert result.success is False
    assert result.stage == "validate"
    assert "CLOUDFLARE_ACCOUNT_ID" in result.error
    assert toolchain.calls == 0
    assert cloudflare.requests == []


def test_ship_reports_build_failure_without_deploying(cloudflare) -> None:
    class Broken:
        def build(self, store: FileStore) -> ToolchainResult:
            return ToolchainResult(success=False, output="Killed: out of memory", exit_code=137)

    result = ship(_store(), toolchain=Broken(), **_clients(cloudflare))

    assert result.success is False
    assert result.stage == "build"
    assert result.error == "Killed: out of memory"
    assert cloudflare.requests == []


def test_ship_reports_failed_deploy_step(cloudflare) -> None:
    cloudflare.fail["/secrets"] = 500
    result = ship(_store(), toolchain=ImportCheckingToolchain(), **_clients(cloudflare))
    assert result.success is False
    assert result.stage == "deploy"
    assert result.deployment is not None
    assert result.deployment.failed_step == "configure_secrets"


def test_watcher_streams_edits_once_preview_is_live(cloudflare) -> None:
    class Recorder:
        def __init__(self) -> None:
            self.paths: list[str] = []

        def broadcast(self, channel: str, message: dict[str, object]) -> None:
            self.paths.append(str(message["path"]))

    store = _store()
    coordinator = get_coordinator()
    recorder = Recorder()
    coordinator.start("shop", recorder)
    store.add_listener(coordinator.file_changed)

    result = ship(store, toolchain=ImportCheckingToolchain(), **_clients(cloudflare))
    assert result.success is True
    store.upsert("src/Foo.tsx", "export default function Foo() { return <p>bar</p>; }\n")

    # The import fix happened before the preview existed and is not streamed.
    assert recorder.paths == ["src/Foo.tsx"]


@pytest.mark.asyncio
async def test_runner_ships_two_apps_independently(cloudflare) -> None:
    runner = ShipRunner(max_concurrent=2)
    shop = _store()
    blog = InMemoryFileStore.from_mapping(
        "blog", {"src/App.tsx": "export default function App() { return null; }\n"}
    )

    results = await asyncio.gather(
        *(
            runner.run(
                store.app_id,
                ship,
                store=store,
                toolchain=ImportCheckingToolchain(),
                **_clients(cloudflare),
            )
            for store in (shop, blog)
        )
    )

    assert [item.success for item in results] == [True, True]
    assert sorted(cloudflare.scripts) == ["preview-app-blog", "preview-app-shop"]
