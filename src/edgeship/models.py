"""Shared data types for application source files."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import PurePosixPath


class FileKind(StrEnum):
    SCRIPT = "script"
    STYLESHEET = "stylesheet"
    MARKUP = "markup"
    CONFIGURATION = "configuration"
    ASSET = "asset"
    TEXT = "text"


_KIND_BY_SUFFIX: dict[str, FileKind] = {
    ".ts": FileKind.SCRIPT,
    ".tsx": FileKind.SCRIPT,
    ".js": FileKind.SCRIPT,
    ".jsx": FileKind.SCRIPT,
    ".mjs": FileKind.SCRIPT,
    ".cjs": FileKind.SCRIPT,
    ".css": FileKind.STYLESHEET,
    ".scss": FileKind.STYLESHEET,
    ".html": FileKind.MARKUP,
    ".htm": FileKind.MARKUP,
    ".svg": FileKind.ASSET,
    ".json": FileKind.CONFIGURATION,
    ".yml": FileKind.CONFIGURATION,
    ".yaml": FileKind.CONFIGURATION,
    ".toml": FileKind.CONFIGURATION,
    ".png": FileKind.ASSET,
    ".jpg": FileKind.ASSET,
    ".jpeg": FileKind.ASSET,
    ".gif": FileKind.ASSET,
    ".webp": FileKind.ASSET,
    ".ico": FileKind.ASSET,
    ".woff": FileKind.ASSET,
    ".woff2": FileKind.ASSET,
    ".ttf": FileKind.ASSET,
    ".otf": FileKind.ASSET,
    ".mp3": FileKind.ASSET,
    ".mp4": FileKind.ASSET,
}


def infer_kind(path: str) -> FileKind:
    name = PurePosixPath(path).name
    if name.startswith("tsconfig") or name.endswith(".config.ts") or name.endswith(".config.js"):
        return FileKind.CONFIGURATION
    return _KIND_BY_SUFFIX.get(PurePosixPath(path).suffix.lower(), FileKind.TEXT)


def normalize_path(path: str) -> str:
    """POSIX relative form used as the unique key within an application."""
    cleaned = str(path).replace("\\", "/").strip()
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("/")


@dataclass(slots=True)
class SourceFile:
    path: str
    content: str | bytes
    kind: FileKind = FileKind.TEXT

    @classmethod
    def create(cls, path: str, content: str | bytes, kind: FileKind | None = None) -> SourceFile:
        clean = normalize_path(path)
        return cls(path=clean, content=content, kind=kind or infer_kind(clean))

    @property
    def is_binary(self) -> bool:
        return isinstance(self.content, bytes)

    @property
    def text(self) -> str:
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8", errors="replace")
        return self.content

    def as_bytes(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")
