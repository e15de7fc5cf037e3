"""In-process file store with change notification."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from pathlib import PurePosixPath

from edgeship.models import FileKind, SourceFile, normalize_path
from edgeship.storage.base import ChangeListener

logger = logging.getLogger(__name__)


class InMemoryFileStore:
    """Keeps an application's files in a dict keyed by normalized path.

    Writes are synchronous, so a mutation is visible to the very next reader.
    """

    def __init__(self, app_id: str, files: Iterable[SourceFile] = ()) -> None:
        self.app_id = app_id
        self._files: dict[str, SourceFile] = {}
        self._listeners: list[ChangeListener] = []
        self._lock = threading.Lock()
        for item in files:
            self._files[normalize_path(item.path)] = SourceFile.create(
                item.path, item.content, item.kind
            )

    @classmethod
    def from_mapping(cls, app_id: str, files: dict[str, str | bytes]) -> InMemoryFileStore:
        return cls(app_id, [SourceFile.create(path, content) for path, content in files.items()])

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def list_files(self) -> list[SourceFile]:
        with self._lock:
            return [self._files[key] for key in sorted(self._files)]

    def get(self, path: str) -> SourceFile | None:
        with self._lock:
            return self._files.get(normalize_path(path))

    def find(self, path: str) -> SourceFile | None:
        """Exact path, then under ``src/``, then by filename suffix."""
        clean = normalize_path(path)
        with self._lock:
            if clean in self._files:
                return self._files[clean]
            if f"src/{clean}" in self._files:
                return self._files[f"src/{clean}"]
            name = PurePosixPath(clean).name
            if not name:
                return None
            for key in sorted(self._files):
                if key == name or key.endswith(f"/{name}"):
                    return self._files[key]
        return None

    def upsert(self, path: str, content: str | bytes, kind: FileKind | None = None) -> SourceFile:
        clean = normalize_path(path)
        with self._lock:
            existing = self._files.get(clean)
            item = SourceFile.create(clean, content, kind or (existing.kind if existing else None))
            self._files[clean] = item
        change_type = "modified" if existing is not None else "created"
        for listener in list(self._listeners):
            try:
                listener(self.app_id, item, change_type)
            except Exception:
                logger.exception("File change listener failed for %s", clean)
        return item
