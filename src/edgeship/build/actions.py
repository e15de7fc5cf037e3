"""Fix actions dispatched by the build orchestrator.

Configuration-level strategies (tsconfig, package.json, global declarations)
are applied here; source-level strategies are delegated to the Auto-Fix Engine.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from edgeship.build.autofix import AutoFixEngine, FileEdit, FixResult
from edgeship.build.classifier import FixAction, FixStrategy
from edgeship.errors import FixError
from edgeship.models import FileKind
from edgeship.storage.base import FileStore

logger = logging.getLogger(__name__)

KNOWN_PACKAGE_VERSIONS = {
    "clsx": "^2.1.0",
    "tailwind-merge": "^2.2.0",
    "sonner": "^1.3.1",
    "next-themes": "^0.2.1",
    "lucide-react": "^0.344.0",
    "class-variance-authority": "^0.7.0",
}

WINDOW_DECLARATIONS_PATH = "src/types/window.d.ts"

_VITE_CONFIGS = ("vite.config.ts", "vite.config.js", "vite.config.mjs")


def _load_json(store: FileStore, path: str) -> dict[str, Any] | None:
    item = store.get(path)
    if item is None:
        return None
    try:
        data = json.loads(item.text)
    except json.JSONDecodeError as exc:
        raise FixError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise FixError(f"{path} must contain a JSON object")
    return data


def _write(store: FileStore, path: str, content: str, description: str) -> FixResult:
    existing = store.get(path)
    old_content = existing.text if existing is not None else ""
    if content == old_content:
        return FixResult(success=False, description=f"{description}: already applied")
    store.upsert(path, content, FileKind.CONFIGURATION if path.endswith(".json") else None)
    return FixResult(
        success=True,
        description=description,
        edit=FileEdit(path=path, old_content=old_content, new_content=content),
    )


def _dump(data: dict[str, Any]) -> str:
    return json.dumps(data, indent=2) + "\n"


def fix_typescript_paths(store: FileStore) -> list[FixResult]:
    config = _load_json(store, "tsconfig.json") or {}
    options = config.setdefault("compilerOptions", {})
    options.setdefault("baseUrl", ".")
    paths = options.setdefault("paths", {})
    paths["@/*"] = ["./src/*"]
    results = [
        _write(
            store,
            "tsconfig.json",
            _dump(config),
            "Configured '@/*' path alias in tsconfig.json",
        )
    ]

    for name in _VITE_CONFIGS:
        item = store.get(name)
        if item is None:
            continue
        if re.search(r"\balias\b", item.text):
            break
        patched, count = re.subn(
            r"defineConfig\(\{",
            "defineConfig({\n  resolve: { alias: { '@': '/src' } },",
            item.text,
            count=1,
        )
        if count:
            results.append(_write(store, name, patched, f"Configured '@' alias in {name}"))
        break
    return results


def fix_tsconfig_composite(store: FileStore) -> list[FixResult]:
    config = _load_json(store, "tsconfig.node.json")
    if config is None:
        return [FixResult(success=False, description="tsconfig.node.json not found")]
    options = config.setdefault("compilerOptions", {})
    options["composite"] = True
    options["noEmit"] = False
    return [
        _write(
            store,
            "tsconfig.node.json",
            _dump(config),
            "Enabled composite project references in tsconfig.node.json",
        )
    ]


def install_packages(store: FileStore, packages: tuple[str, ...]) -> list[FixResult]:
    manifest = _load_json(store, "package.json")
    if manifest is None:
        manifest = {"name": store.app_id, "private": True, "type": "module"}
    dependencies: dict[str, str] = manifest.get("dependencies") or {}
    declared = set(dependencies) | set(manifest.get("devDependencies") or {})
    added = [name for name in packages if name not in declared]
    if not added:
        return [
            FixResult(
                success=False,
                description=f"Packages already declared: {', '.join(packages)}",
            )
        ]
    for name in added:
        dependencies[name] = KNOWN_PACKAGE_VERSIONS.get(name, "latest")
    manifest["dependencies"] = dict(sorted(dependencies.items()))
    return [
        _write(
            store,
            "package.json",
            _dump(manifest),
            f"Added dependencies to package.json: {', '.join(added)}",
        )
    ]


_DECLARED_PROPERTY = re.compile(r"^\s*([\w$]+)\??\s*:\s*[^;]+;", re.MULTILINE)


def add_type_declarations(store: FileStore, properties: tuple[str, ...]) -> list[FixResult]:
    existing = store.get(WINDOW_DECLARATIONS_PATH)
    declared = _DECLARED_PROPERTY.findall(existing.text) if existing is not None else []
    names = list(dict.fromkeys([*declared, *properties]))
    body = "\n".join(f"    {name}: any;" for name in names)
    content = f"declare global {{\n  interface Window {{\n{body}\n  }}\n}}\n\nexport {{}};\n"
    return [
        _write(
            store,
            WINDOW_DECLARATIONS_PATH,
            content,
            f"Declared window properties: {', '.join(properties)}",
        )
    ]


_CONFIG_ACTIONS: dict[FixAction, Callable[[FileStore, FixStrategy], list[FixResult]]] = {
    FixAction.FIX_TYPESCRIPT_PATHS: lambda store, _strategy: fix_typescript_paths(store),
    FixAction.FIX_TSCONFIG_COMPOSITE: lambda store, _strategy: fix_tsconfig_composite(store),
    FixAction.INSTALL_PACKAGES: lambda store, strategy: install_packages(store, strategy.packages),
    FixAction.ADD_TYPE_DECLARATIONS: lambda store, strategy: add_type_declarations(
        store, strategy.properties
    ),
}


def run_fix_action(
    strategy: FixStrategy, store: FileStore, engine: AutoFixEngine
) -> list[FixResult]:
    """Apply one strategy. Failures come back as results, never as exceptions."""
    if strategy.action == FixAction.PATCH_SOURCE:
        if strategy.error is None:
            return [FixResult(success=False, description="Source patch without an error")]
        return [engine.apply_fix(strategy.error)]
    action = _CONFIG_ACTIONS.get(strategy.action)
    if action is None:
        return [FixResult(success=False, description=f"Unknown fix action {strategy.action}")]
    try:
        return action(store, strategy)
    except Exception as exc:
        logger.warning("Fix action %s failed: %s", strategy.action, exc)
        return [
            FixResult(
                success=False,
                description=f"{strategy.action} failed",
                error=str(exc),
            )
        ]
