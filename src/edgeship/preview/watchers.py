"""Active preview watchers and the single "file changed" hook.

The coordinator owns an explicit map of application id -> watcher. ``start``
registers, ``stop`` unregisters, ``lookup`` reads; a watcher whose broadcast
raises is unregistered as crashed. File storage calls ``file_changed`` after
every write and the coordinator forwards the change to the app's watcher.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Protocol

from edgeship.config import get_settings
from edgeship.deploy import records
from edgeship.models import SourceFile

logger = logging.getLogger(__name__)

WATCHABLE_EXTENSIONS = frozenset(
    {".tsx", ".ts", ".jsx", ".js", ".css", ".html", ".json", ".yml", ".yaml"}
)


class Broadcaster(Protocol):
    def broadcast(self, channel: str, message: dict[str, object]) -> None: ...


def preview_channel(app_id: str) -> str:
    return f"app_preview_{app_id}"


def is_watchable(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in WATCHABLE_EXTENSIONS


@dataclass(slots=True)
class PreviewWatcher:
    app_id: str
    broadcaster: Broadcaster
    is_live: Callable[[], bool]
    started_at: str
    events_sent: int = 0

    def handle(self, item: SourceFile, change_type: str) -> bool:
        """Broadcast one change. Returns False when the change is filtered out."""
        if not is_watchable(item.path):
            return False
        if not self.is_live():
            logger.debug("Preview for %s is not live; skipping %s", self.app_id, item.path)
            return False
        message: dict[str, object] = {
            "type": "file_changed",
            "path": item.path,
            "change_type": change_type,
            "content": item.text,
            "timestamp": datetime.now(UTC).isoformat(),
            "app_id": self.app_id,
        }
        self.broadcaster.broadcast(preview_channel(self.app_id), message)
        self.events_sent += 1
        return True


class WatcherCoordinator:
    def __init__(self) -> None:
        self._watchers: dict[str, PreviewWatcher] = {}
        self._lock = threading.Lock()

    def start(
        self,
        app_id: str,
        broadcaster: Broadcaster,
        *,
        is_live: Callable[[], bool] | None = None,
    ) -> PreviewWatcher:
        if is_live is None:
            record_dir = Path(get_settings().deploy_record_dir)

            def _preview_deployed() -> bool:
                return records.is_live(record_dir, app_id, "preview")

            is_live = _preview_deployed

        watcher = PreviewWatcher(
            app_id=app_id,
            broadcaster=broadcaster,
            is_live=is_live,
            started_at=datetime.now(UTC).isoformat(),
        )
        with self._lock:
            replaced = self._watchers.get(app_id) is not None
            self._watchers[app_id] = watcher
        logger.info("Preview watcher %s for %s", "restarted" if replaced else "started", app_id)
        return watcher

    def stop(self, app_id: str) -> bool:
        with self._lock:
            removed = self._watchers.pop(app_id, None)
        if removed is not None:
            logger.info("Preview watcher stopped for %s", app_id)
        return removed is not None

    def lookup(self, app_id: str) -> PreviewWatcher | None:
        with self._lock:
            return self._watchers.get(app_id)

    def active(self) -> list[str]:
        with self._lock:
            return sorted(self._watchers)

    def stop_all(self) -> None:
        with self._lock:
            self._watchers.clear()

    def file_changed(self, app_id: str, item: SourceFile, change_type: str = "modified") -> bool:
        watcher = self.lookup(app_id)
        if watcher is None:
            return False
        try:
            return watcher.handle(item, change_type)
        except Exception:
            logger.exception("Preview watcher for %s crashed; unregistering", app_id)
            with self._lock:
                if self._watchers.get(app_id) is watcher:
                    del self._watchers[app_id]
            return False


_coordinator = WatcherCoordinator()


def get_coordinator() -> WatcherCoordinator:
    return _coordinator


def _reset() -> None:
    """Stop every watcher (for testing)."""
    _coordinator.stop_all()
