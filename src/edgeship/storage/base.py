"""File storage interface consumed by the build pipeline."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from edgeship.models import FileKind, SourceFile

ChangeListener = Callable[[str, SourceFile, str], None]
"""Called with (app_id, file, change_type) after a file is written."""


class FileStore(Protocol):
    """Source files of one application."""

    app_id: str

    def list_files(self) -> list[SourceFile]: ...

    def get(self, path: str) -> SourceFile | None: ...

    def upsert(
        self, path: str, content: str | bytes, kind: FileKind | None = None
    ) -> SourceFile: ...

    def find(self, path: str) -> SourceFile | None: ...
