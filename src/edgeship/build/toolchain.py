"""External build-toolchain invocation.

Every build runs in its own temporary workspace. The application's files are
materialized fresh from the store for each attempt, the install and build
commands run with a wall-clock timeout, and the workspace is removed on every
exit path.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from edgeship.config import Settings, get_settings
from edgeship.errors import BuildError
from edgeship.models import SourceFile
from edgeship.storage.base import FileStore

logger = logging.getLogger(__name__)

DEFAULT_VITE_CONFIG = """import { defineConfig } from 'vite'
import react from '@vitejs/plugin-react'

export default defineConfig({
  plugins: [react()],
  resolve: { alias: { '@': '/src' } },
  build: { outDir: 'dist', sourcemap: false },
})
"""


def default_package_json(app_id: str) -> dict[str, object]:
    return {
        "name": f"app-{app_id}".lower(),
        "private": True,
        "version": "0.0.0",
        "type": "module",
        "scripts": {"dev": "vite", "build": "vite build", "preview": "vite preview"},
        "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0"},
        "devDependencies": {
            "@vitejs/plugin-react": "^4.2.1",
            "typescript": "^5.2.2",
            "vite": "^5.0.8",
        },
    }


@dataclass(slots=True)
class CommandResult:
    command: str
    exit_code: int
    ok: bool
    output: str
    duration_ms: int


@dataclass(slots=True)
class ToolchainResult:
    success: bool
    output: str
    exit_code: int
    files: dict[str, bytes] = field(default_factory=dict)
    duration_ms: int = 0
    commands: list[CommandResult] = field(default_factory=list)
    workspace: str = ""


class BuildToolchain(Protocol):
    def build(self, store: FileStore) -> ToolchainResult: ...


@contextmanager
def build_workspace(app_id: str) -> Iterator[Path]:
    """Exclusive temporary directory for one build attempt."""
    root = Path(tempfile.mkdtemp(prefix=f"edgeship-build-{app_id}-"))
    try:
        yield root
    finally:
        shutil.rmtree(root, ignore_errors=True)


def materialize(root: Path, files: list[SourceFile], app_id: str) -> None:
    root_resolved = root.resolve()
    for item in files:
        target = (root / item.path).resolve()
        if not target.is_relative_to(root_resolved):
            raise BuildError(f"refusing to write outside workspace: {item.path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(item.content, bytes):
            target.write_bytes(item.content)
        else:
            target.write_text(item.content, encoding="utf-8")
    package_json = root / "package.json"
    if not package_json.exists():
        manifest = json.dumps(default_package_json(app_id), indent=2)
        package_json.write_text(manifest, encoding="utf-8")
    if not any((root / name).exists() for name in ("vite.config.ts", "vite.config.js")):
        (root / "vite.config.ts").write_text(DEFAULT_VITE_CONFIG, encoding="utf-8")


def read_output_tree(output_dir: Path) -> dict[str, bytes]:
    built: dict[str, bytes] = {}
    if not output_dir.is_dir():
        return built
    for path in sorted(output_dir.rglob("*")):
        relative = path.relative_to(output_dir)
        if not path.is_file() or any(part.startswith(".") for part in relative.parts):
            continue
        built[relative.as_posix()] = path.read_bytes()
    return built


def _tail(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return "[output truncated]\n" + text[-limit:]


class NodeToolchain:
    """Runs the configured install and build commands (npm + vite by default)."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def build_env(self, app_id: str) -> dict[str, str]:
        settings = self._settings
        allow = {item.strip() for item in settings.build_env_allowlist.split(",") if item.strip()}
        env = {key: value for key, value in os.environ.items() if key in allow}
        env.update(
            {
                "NODE_ENV": settings.build_mode,
                "VITE_APP_ID": app_id,
                "VITE_BUILD_MODE": settings.build_mode,
                "VITE_SUPABASE_URL": settings.supabase_url,
                "VITE_SUPABASE_ANON_KEY": settings.supabase_anon_key,
            }
        )
        # devDependencies (vite, typescript) are needed even for production builds.
        env["NPM_CONFIG_PRODUCTION"] = "false"
        return env

    def _run(self, command: str, cwd: Path, env: dict[str, str]) -> CommandResult:
        started = datetime.now(UTC)
        timeout = max(1, int(self._settings.build_timeout_seconds))
        try:
            proc = subprocess.run(
                shlex.split(command),
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
            exit_code = proc.returncode
            output = (proc.stdout or "") + (proc.stderr or "")
        except subprocess.TimeoutExpired:
            exit_code = -1
            output = f"{command}: timed out after {timeout} seconds"
        except OSError as exc:
            exit_code = 127
            output = f"{command}: {exc}"
        duration_ms = int((datetime.now(UTC) - started).total_seconds() * 1000)
        return CommandResult(
            command=command,
            exit_code=exit_code,
            ok=exit_code == 0,
            output=_tail(output, int(self._settings.build_output_tail_bytes)),
            duration_ms=duration_ms,
        )

    def build(self, store: FileStore) -> ToolchainResult:
        settings = self._settings
        commands = [
            command
            for command in (settings.build_install_command, settings.build_command)
            if command.strip()
        ]
        with build_workspace(store.app_id) as root:
            materialize(root, store.list_files(), store.app_id)
            env = self.build_env(store.app_id)
            results: list[CommandResult] = []
            for command in commands:
                logger.info("Running build command: %s", command)
                result = self._run(command, root, env)
                results.append(result)
                if not result.ok:
                    logger.warning(
                        "Build command failed (exit %d): %s", result.exit_code, command
                    )
                    return ToolchainResult(
                        success=False,
                        output=result.output,
                        exit_code=result.exit_code,
                        duration_ms=sum(item.duration_ms for item in results),
                        commands=results,
                        workspace=str(root),
                    )
            output_dir = root / settings.build_output_dir
            files = read_output_tree(output_dir)
            output = "\n".join(item.output for item in results)
            if not files:
                return ToolchainResult(
                    success=False,
                    output=output + f"\nBuild produced no files in {settings.build_output_dir}/",
                    exit_code=0,
                    duration_ms=sum(item.duration_ms for item in results),
                    commands=results,
                    workspace=str(root),
                )
            return ToolchainResult(
                success=True,
                output=output,
                exit_code=0,
                files=files,
                duration_ms=sum(item.duration_ms for item in results),
                commands=results,
                workspace=str(root),
            )
