import base64

import pytest

from edgeship.errors import PackagingError
from edgeship.packaging.packager import (
    CACHE_ASSET,
    CACHE_CODE,
    CACHE_IMMUTABLE,
    CACHE_NONE,
    Packager,
    cache_control_for,
    content_type_for,
    object_key_for,
    should_offload,
)


def _files() -> dict[str, bytes]:
    return {
        "index.html": b"<html><head></head><body><div id=root></div></body></html>",
        "assets/index-a1b2c3d4.js": b"console.log('app')",
        "assets/logo.png": b"\x89PNG tiny",
        "assets/vendor-9f8e7d6c.js": b"x" * 60_000,
        "favicon.bin": b"\xff\xfe\x00\x01",
    }


def test_placement_depends_on_extension_and_size() -> None:
    assert should_offload("a/logo.png", 10) is True
    assert should_offload("a/app.js", 10) is False
    assert should_offload("a/app.js", 50_001) is True
    assert should_offload("a/app.js", 50_000) is False
    assert should_offload("a/LOGO.PNG", 1) is True


def test_package_splits_inline_and_offloaded() -> None:
    artifact = Packager("app-1", "https://cdn.example.dev/").package(_files())

    assert sorted(artifact.inline_files) == [
        "assets/index-a1b2c3d4.js",
        "favicon.bin",
        "index.html",
    ]
    offloaded = {asset.path: asset for asset in artifact.offloaded}
    assert sorted(offloaded) == ["assets/logo.png", "assets/vendor-9f8e7d6c.js"]
    logo = offloaded["assets/logo.png"]
    assert logo.object_key == "apps/app-1/assets/logo.png"
    assert logo.url == "https://cdn.example.dev/apps/app-1/assets/logo.png"
    assert logo.content_type == "image/png"
    assert artifact.asset_urls()["assets/logo.png"] == logo.url


def test_packaging_is_deterministic_across_input_order() -> None:
    files = _files()
    reversed_files = dict(reversed(list(files.items())))
    first = Packager("app-1", "https://cdn.example.dev").package(files)
    second = Packager("app-1", "https://cdn.example.dev").package(reversed_files)
    assert first.entrypoint == second.entrypoint
    assert first.digest == second.digest
    assert [asset.path for asset in first.offloaded] == [asset.path for asset in second.offloaded]


def test_non_utf8_inline_files_are_base64_encoded() -> None:
    artifact = Packager("app-1", "https://cdn.example.dev").package(_files())
    assert artifact.inline_base64 == frozenset({"favicon.bin"})
    assert base64.b64decode(artifact.inline_files["favicon.bin"]) == b"\xff\xfe\x00\x01"
    assert '"favicon.bin"' in artifact.entrypoint


def test_cache_policy() -> None:
    assert cache_control_for("assets/index-a1b2c3d4.js") == CACHE_IMMUTABLE
    assert cache_control_for("index.html") == CACHE_NONE
    assert cache_control_for("img/photo.jpg") == CACHE_ASSET
    assert cache_control_for("main.css") == CACHE_CODE


def test_only_content_hashed_assets_are_immutable() -> None:
    assert cache_control_for("assets/index-BZq3Fh1x.js") == CACHE_IMMUTABLE
    assert cache_control_for("assets/vendor.0f3c9a7e.css") == CACHE_IMMUTABLE
    assert cache_control_for("assets/hero-background.jpg") == CACHE_ASSET
    assert cache_control_for("assets/team.photograph.png") == CACHE_ASSET
    assert cache_control_for("assets/my-component.js") == CACHE_CODE
    assert cache_control_for("assets/index-abc123.js") == CACHE_CODE


def test_content_types() -> None:
    assert content_type_for("index.html") == "text/html; charset=utf-8"
    assert content_type_for("app.js") == "application/javascript; charset=utf-8"
    assert content_type_for("font.woff2") == "font/woff2"
    assert content_type_for("blob.unknownext") == "application/octet-stream"


def test_object_key_normalizes_paths() -> None:
    assert object_key_for("app-1", "./assets\\img.png") == "apps/app-1/assets/img.png"


def test_colliding_paths_are_rejected() -> None:
    with pytest.raises(PackagingError):
        Packager("app-1", "https://cdn.example.dev").package({"a.js": b"1", "./a.js": b"2"})
