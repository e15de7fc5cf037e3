from edgeship.models import FileKind, SourceFile, infer_kind, normalize_path
from edgeship.storage import InMemoryFileStore


def test_paths_are_normalized_and_kinds_inferred() -> None:
    assert normalize_path("./src\\App.tsx") == "src/App.tsx"
    assert normalize_path("/index.html") == "index.html"
    assert infer_kind("tsconfig.node.json") == FileKind.CONFIGURATION
    assert infer_kind("vite.config.ts") == FileKind.CONFIGURATION
    assert infer_kind("src/main.tsx") == FileKind.SCRIPT
    assert infer_kind("README") == FileKind.TEXT


def test_write_is_visible_to_the_next_read() -> None:
    store = InMemoryFileStore("app-1")
    store.upsert("./src/App.tsx", "v1")
    assert store.get("src/App.tsx").text == "v1"
    store.upsert("src/App.tsx", "v2")
    assert store.get("src/App.tsx").text == "v2"
    assert [item.path for item in store.list_files()] == ["src/App.tsx"]


def test_upsert_keeps_existing_kind() -> None:
    store = InMemoryFileStore("app-1", [SourceFile("notes.txt", "x", FileKind.MARKUP)])
    assert store.upsert("notes.txt", "y").kind == FileKind.MARKUP


def test_find_falls_back_to_src_and_suffix() -> None:
    store = InMemoryFileStore.from_mapping(
        "app-1", {"src/components/Card.tsx": "card", "src/App.tsx": "app"}
    )
    assert store.find("App.tsx").path == "src/App.tsx"
    assert store.find("components/Card.tsx").path == "src/components/Card.tsx"
    assert store.find("Card.tsx").path == "src/components/Card.tsx"
    assert store.find("Missing.tsx") is None


def test_listeners_receive_change_type_and_failures_are_isolated() -> None:
    store = InMemoryFileStore("app-1")
    seen: list[tuple[str, str, str]] = []

    def broken(app_id: str, item: SourceFile, change_type: str) -> None:
        raise RuntimeError("listener bug")

    def record(app_id: str, item: SourceFile, change_type: str) -> None:
        seen.append((app_id, item.path, change_type))

    store.add_listener(broken)
    store.add_listener(record)
    store.upsert("src/a.ts", "1")
    store.upsert("src/a.ts", "2")
    store.remove_listener(record)
    store.upsert("src/b.ts", "3")

    assert seen == [("app-1", "src/a.ts", "created"), ("app-1", "src/a.ts", "modified")]
    assert store.get("src/b.ts").text == "3"


def test_binary_content_round_trips_as_bytes() -> None:
    item = SourceFile.create("public/logo.png", b"\x89PNG\xff")
    assert item.is_binary is True
    assert item.as_bytes() == b"\x89PNG\xff"
    assert "\ufffd" in item.text
