"""Split built output into inline bundle content and offloaded assets."""

from __future__ import annotations

import base64
import hashlib
import mimetypes
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from edgeship.errors import PackagingError
from edgeship.models import normalize_path
from edgeship.packaging.entrypoint import render_entrypoint

OFFLOAD_SIZE_THRESHOLD = 50_000

ASSET_EXTENSIONS = frozenset(
    {
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".webp",
        ".svg",
        ".ico",
        ".woff",
        ".woff2",
        ".ttf",
        ".otf",
        ".eot",
        ".mp4",
        ".webm",
        ".mp3",
        ".wav",
        ".pdf",
        ".zip",
    }
)

CACHE_IMMUTABLE = "public, max-age=31536000, immutable"
CACHE_ASSET = "public, max-age=2592000"
CACHE_CODE = "public, max-age=86400"
CACHE_DEFAULT = "public, max-age=3600"
CACHE_NONE = "no-cache, no-store, must-revalidate"

# Bundler content hash: 8 hex chars, or 8 base64url chars with a digit or capital.
_FINGERPRINTED = re.compile(
    r"(?:^|/)assets/(?:[^/]*/)*[^/]*[-.]"
    r"(?:[a-f0-9]{8}|(?=[A-Za-z0-9_-]{0,7}[0-9A-Z])[A-Za-z0-9_-]{8})"
    r"\.[A-Za-z0-9]+$"
)

_CONTENT_TYPES = {
    ".html": "text/html; charset=utf-8",
    ".htm": "text/html; charset=utf-8",
    ".js": "application/javascript; charset=utf-8",
    ".mjs": "application/javascript; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".map": "application/json; charset=utf-8",
    ".txt": "text/plain; charset=utf-8",
    ".xml": "application/xml; charset=utf-8",
    ".svg": "image/svg+xml",
    ".webmanifest": "application/manifest+json",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".wav": "audio/wav",
}


def extension_of(path: str) -> str:
    return PurePosixPath(path).suffix.lower()


def should_offload(path: str, size: int, threshold: int = OFFLOAD_SIZE_THRESHOLD) -> bool:
    """Placement depends only on the extension and the byte size."""
    return extension_of(path) in ASSET_EXTENSIONS or size > threshold


def content_type_for(path: str) -> str:
    ext = extension_of(path)
    if ext in _CONTENT_TYPES:
        return _CONTENT_TYPES[ext]
    guessed, _ = mimetypes.guess_type(PurePosixPath(path).name, strict=False)
    return guessed or "application/octet-stream"


def cache_control_for(path: str) -> str:
    ext = extension_of(path)
    if _FINGERPRINTED.search(path):
        return CACHE_IMMUTABLE
    if ext in (".html", ".htm"):
        return CACHE_NONE
    if ext in ASSET_EXTENSIONS:
        return CACHE_ASSET
    if ext in (".js", ".mjs", ".css"):
        return CACHE_CODE
    return CACHE_DEFAULT


@dataclass(slots=True, frozen=True)
class OffloadedAsset:
    path: str
    content: bytes
    content_type: str
    size: int
    object_key: str
    url: str
    cache_control: str

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


@dataclass(slots=True, frozen=True)
class PackagedArtifact:
    app_id: str
    inline_files: dict[str, str]
    offloaded: tuple[OffloadedAsset, ...]
    entrypoint: str
    inline_base64: frozenset[str] = field(default_factory=frozenset)

    @property
    def entrypoint_size(self) -> int:
        return len(self.entrypoint.encode("utf-8"))

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.entrypoint.encode("utf-8")).hexdigest()

    def asset_urls(self) -> dict[str, str]:
        return {asset.path: asset.url for asset in self.offloaded}


def object_key_for(app_id: str, path: str) -> str:
    return f"apps/{app_id}/{normalize_path(path)}"


class Packager:
    def __init__(
        self,
        app_id: str,
        asset_base_url: str,
        *,
        threshold: int = OFFLOAD_SIZE_THRESHOLD,
        public_env_keys: Sequence[str] = (),
    ) -> None:
        self._app_id = app_id
        self._asset_base_url = asset_base_url.rstrip("/")
        self._threshold = threshold
        self._public_env_keys = tuple(public_env_keys)

    def package(self, files: Mapping[str, bytes | str]) -> PackagedArtifact:
        inline: dict[str, str] = {}
        inline_base64: set[str] = set()
        offloaded: list[OffloadedAsset] = []
        for raw_path in sorted(files, key=normalize_path):
            path = normalize_path(raw_path)
            if path in inline or any(asset.path == path for asset in offloaded):
                raise PackagingError(f"duplicate output path after normalization: {raw_path}")
            value = files[raw_path]
            content = value.encode("utf-8") if isinstance(value, str) else value
            if should_offload(path, len(content), self._threshold):
                key = object_key_for(self._app_id, path)
                offloaded.append(
                    OffloadedAsset(
                        path=path,
                        content=content,
                        content_type=content_type_for(path),
                        size=len(content),
                        object_key=key,
                        url=f"{self._asset_base_url}/{key}",
                        cache_control=cache_control_for(path),
                    )
                )
                continue
            try:
                inline[path] = content.decode("utf-8")
            except UnicodeDecodeError:
                inline[path] = base64.b64encode(content).decode("ascii")
                inline_base64.add(path)

        asset_urls = {asset.path: asset.url for asset in offloaded}
        entrypoint = render_entrypoint(
            inline_files=inline,
            inline_base64=sorted(inline_base64),
            asset_urls=asset_urls,
            content_types={path: content_type_for(path) for path in inline},
            cache_control={path: cache_control_for(path) for path in inline},
            public_env_keys=self._public_env_keys,
        )
        return PackagedArtifact(
            app_id=self._app_id,
            inline_files=inline,
            offloaded=tuple(offloaded),
            entrypoint=entrypoint,
            inline_base64=frozenset(inline_base64),
        )
