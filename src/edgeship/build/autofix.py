"""Targeted source patches for classified build errors.

Each error kind maps to one narrow, pattern-based handler. Handlers either
write a single file back to the store and report the edit, or decline with a
reason. Nothing here attempts semantic code repair.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import PurePosixPath

from edgeship.build.classifier import FRAMEWORK_HOOKS, ClassifiedError, ErrorKind
from edgeship.models import FileKind, SourceFile
from edgeship.storage.base import FileStore

logger = logging.getLogger(__name__)

IMPORT_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js")
_EXTENSION_BEARING = frozenset(
    {*IMPORT_EXTENSIONS, ".mjs", ".cjs", ".json", ".css", ".scss", ".svg", ".png", ".jpg"}
)
ATTRIBUTE_ALIASES = {
    "class": "className",
    "for": "htmlFor",
    "tabindex": "tabIndex",
    "readonly": "readOnly",
}

_DECLINE_REASONS: dict[ErrorKind, str] = {
    ErrorKind.PROPERTY_NOT_FOUND: "Property errors need semantic changes; not auto-fixed",
    ErrorKind.TYPE_MISMATCH: "Type mismatches need semantic changes; not auto-fixed",
    ErrorKind.INVALID_UTILITY_CLASS: (
        "Invalid utility classes need a design decision; not auto-fixed"
    ),
    ErrorKind.DEPENDENCY_CONFLICT: "Dependency conflicts need manual version resolution",
    ErrorKind.PATH_ALIAS: "Path aliases are fixed by configuration actions",
    ErrorKind.TSCONFIG_COMPOSITE: "Project references are fixed by configuration actions",
    ErrorKind.MISSING_DEPENDENCY: "Missing packages are fixed by configuration actions",
    ErrorKind.MISSING_GLOBAL_PROPERTY: "Global properties are fixed by configuration actions",
}


@dataclass(slots=True)
class FileEdit:
    path: str
    old_content: str
    new_content: str


@dataclass(slots=True)
class FixResult:
    success: bool
    description: str
    edit: FileEdit | None = None
    error: str = ""


FixHandler = Callable[[FileStore, ClassifiedError], FixResult]

_handlers: dict[ErrorKind, FixHandler] = {}


def fix_handler(kind: ErrorKind) -> Callable[[FixHandler], FixHandler]:
    def decorator(handler: FixHandler) -> FixHandler:
        _handlers[kind] = handler
        return handler

    return decorator


class AutoFixEngine:
    """Applies one fix per call to the files of a single application."""

    def __init__(self, store: FileStore) -> None:
        self._store = store

    def apply_fix(self, error: ClassifiedError) -> FixResult:
        handler = _handlers.get(error.kind)
        if handler is None:
            reason = _DECLINE_REASONS.get(error.kind, f"No automatic fix for {error.kind} errors")
            return FixResult(success=False, description=reason)
        try:
            result = handler(self._store, error)
        except Exception as exc:
            logger.exception("Auto-fix for %s raised", error.kind)
            return FixResult(
                success=False,
                description=f"Exception while fixing {error.kind}",
                error=str(exc),
            )
        if result.success:
            logger.info("Applied fix: %s", result.description)
        else:
            logger.info("Fix declined for %s: %s", error.kind, result.description)
        return result


def _fail(description: str) -> FixResult:
    return FixResult(success=False, description=description)


def _locate(store: FileStore, error: ClassifiedError) -> SourceFile | None:
    if not error.file:
        return None
    return store.find(error.file)


def _commit(store: FileStore, item: SourceFile, new_content: str, description: str) -> FixResult:
    old_content = item.text
    if new_content == old_content:
        return _fail(f"{description}: no change produced")
    store.upsert(item.path, new_content, item.kind)
    return FixResult(
        success=True,
        description=description,
        edit=FileEdit(path=item.path, old_content=old_content, new_content=new_content),
    )


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _line_index(lines: list[str], error: ClassifiedError) -> int | None:
    if error.line is None or not 1 <= error.line <= len(lines):
        return None
    return error.line - 1


@fix_handler(ErrorKind.TAG_MISMATCH)
def _fix_tag_mismatch(store: FileStore, error: ClassifiedError) -> FixResult:
    item = _locate(store, error)
    if item is None:
        return _fail(f"File not found: {error.file}")
    lines = item.text.split("\n")
    idx = _line_index(lines, error)
    if idx is None:
        return _fail(f"Line {error.line} out of range in {item.path}")
    closing = error.details.get("closing", "")
    opening = error.details.get("opening", "")
    wrong = f"</{closing}>"

    if closing != opening and wrong in lines[idx]:
        lines[idx] = lines[idx].replace(wrong, f"</{opening}>", 1)
        return _commit(
            store,
            item,
            "\n".join(lines),
            f"Fixed closing tag {wrong} -> </{opening}> in {item.path}:{error.line}",
        )

    redundant = _redundant_closing_line(lines, idx, closing)
    if redundant is None:
        return _fail(f"No mismatched or redundant {wrong} near {item.path}:{error.line}")
    del lines[redundant]
    return _commit(
        store,
        item,
        "\n".join(lines),
        f"Removed redundant {wrong} in {item.path}:{redundant + 1}",
    )


def _redundant_closing_line(lines: list[str], near: int, tag: str) -> int | None:
    """A standalone closing tag sandwiched between two closing-tag lines."""
    target = f"</{tag}>"
    candidates = [
        i
        for i in range(1, len(lines) - 1)
        if lines[i].strip() == target
        and lines[i - 1].strip().startswith("</")
        and lines[i + 1].strip().startswith("</")
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda i: abs(i - near))


@fix_handler(ErrorKind.UNCLOSED_TAG)
def _fix_unclosed_tag(store: FileStore, error: ClassifiedError) -> FixResult:
    item = _locate(store, error)
    if item is None:
        return _fail(f"File not found: {error.file}")
    lines = item.text.split("\n")
    idx = _line_index(lines, error)
    if idx is None:
        return _fail(f"Line {error.line} out of range in {item.path}")
    tag = error.details.get("tag", "")
    line = lines[idx]
    # The opening tag's attributes may continue on the following lines.
    opens = re.search(rf"<{re.escape(tag)}(?=[\s>]|$)", line)
    if opens is None or "/>" in line[opens.end() :] or f"</{tag}>" in line:
        return _fail(f"No unclosed <{tag}> on {item.path}:{error.line}")

    indent = _indent_of(line)
    closing_line = f"{indent}</{tag}>"
    for j in range(idx + 1, len(lines)):
        candidate = lines[j]
        if "</" in candidate and len(_indent_of(candidate)) <= len(indent):
            lines.insert(j, closing_line)
            return _commit(
                store,
                item,
                "\n".join(lines),
                f"Inserted missing </{tag}> in {item.path}:{j + 1}",
            )

    insert_at = len(lines)
    while insert_at > 0 and not lines[insert_at - 1].strip():
        insert_at -= 1
    lines.insert(insert_at, closing_line)
    return _commit(
        store, item, "\n".join(lines), f"Appended missing </{tag}> at end of {item.path}"
    )


@fix_handler(ErrorKind.ATTRIBUTE_SYNTAX)
def _fix_attribute_syntax(store: FileStore, error: ClassifiedError) -> FixResult:
    if "Unterminated" in error.message:
        return _fail("Unterminated JSX block requires manual intervention")
    item = _locate(store, error)
    if item is None:
        return _fail(f"File not found: {error.file}")
    wrong = error.details.get("wrong")
    right = error.details.get("right")
    aliases = {wrong: right} if wrong and right else ATTRIBUTE_ALIASES

    lines = item.text.split("\n")
    idx = _line_index(lines, error)
    targets = [idx] if idx is not None else range(len(lines))
    renamed: list[str] = []
    for i in targets:
        for bad, good in aliases.items():
            updated = re.sub(rf"(?<=\s){re.escape(bad)}=(?=[\"'{{])", f"{good}=", lines[i])
            if updated != lines[i]:
                lines[i] = updated
                renamed.append(f"{bad} -> {good}")
    if not renamed:
        return _fail(f"No known attribute alias found in {item.path}")
    summary = ", ".join(dict.fromkeys(renamed))
    return _commit(store, item, "\n".join(lines), f"Renamed attribute {summary} in {item.path}")


def _import_pattern(specifier: str) -> re.Pattern[str]:
    return re.compile(
        r"(?P<lead>\bfrom\s*|\bimport\s*\(?\s*|\brequire\(\s*)"
        r"(?P<quote>['\"])" + re.escape(specifier) + r"(?P=quote)"
    )


@fix_handler(ErrorKind.UNRESOLVED_IMPORT)
def _fix_unresolved_import(store: FileStore, error: ClassifiedError) -> FixResult:
    specifier = error.details.get("specifier", "")
    if not specifier.startswith("."):
        return _fail(f"Only relative imports are rewritten, got '{specifier}'")
    if PurePosixPath(specifier).suffix in _EXTENSION_BEARING:
        return _fail(f"Import '{specifier}' already has an extension; target file is missing")

    pattern = _import_pattern(specifier)
    if error.file:
        located = _locate(store, error)
        importers = [located] if located is not None else []
    else:
        importers = [
            item
            for item in store.list_files()
            if item.kind == FileKind.SCRIPT and pattern.search(item.text)
        ]
    if not importers:
        return _fail(f"No file imports '{specifier}'")

    for importer in importers:
        base = posixpath.dirname(importer.path)
        for extension in IMPORT_EXTENSIONS:
            target = posixpath.normpath(posixpath.join(base, specifier + extension))
            if store.get(target) is None:
                continue
            resolved = specifier + extension
            new_content = pattern.sub(
                lambda m: f"{m.group('lead')}{m.group('quote')}{resolved}{m.group('quote')}",
                importer.text,
            )
            return _commit(
                store,
                importer,
                new_content,
                f"Fixed import path '{specifier}' -> '{resolved}' in {importer.path}",
            )
    return _fail(f"No file matches '{specifier}' with extensions {', '.join(IMPORT_EXTENSIONS)}")


_REACT_DEFAULT_AND_NAMED = re.compile(
    r"import\s+React\s*,\s*\{(?P<names>[^}]*)\}\s*from\s*(?P<q>['\"])react(?P=q)"
)
_REACT_NAMED = re.compile(r"import\s*\{(?P<names>[^}]*)\}\s*from\s*(?P<q>['\"])react(?P=q)")
_REACT_DEFAULT = re.compile(r"import\s+React\s+from\s*(?P<q>['\"])react(?P=q)")


def _extend_named_import(match: re.Match[str], name: str) -> str:
    names = [item.strip() for item in match.group("names").split(",") if item.strip()]
    names.append(name)
    start = match.group(0)[: match.start("names") - match.start(0)]
    end = match.group(0)[match.end("names") - match.start(0) :]
    return f"{start} {', '.join(names)} {end}"


@fix_handler(ErrorKind.UNDEFINED_IDENTIFIER)
def _fix_undefined_identifier(store: FileStore, error: ClassifiedError) -> FixResult:
    name = error.details.get("identifier", "")
    if name not in FRAMEWORK_HOOKS:
        return _fail(f"'{name}' is not a known framework hook")
    item = _locate(store, error)
    if item is None:
        return _fail(f"File not found: {error.file}")
    content = item.text

    for pattern in (_REACT_DEFAULT_AND_NAMED, _REACT_NAMED):
        match = pattern.search(content)
        if match is None:
            continue
        existing = [part.strip() for part in match.group("names").split(",")]
        if name in existing:
            return _fail(f"{name} is already imported in {item.path}")
        new_content = (
            content[: match.start()] + _extend_named_import(match, name) + content[match.end() :]
        )
        return _commit(store, item, new_content, f"Added {name} to react import in {item.path}")

    match = _REACT_DEFAULT.search(content)
    if match is not None:
        quote = match.group("q")
        replacement = f"import React, {{ {name} }} from {quote}react{quote}"
        new_content = content[: match.start()] + replacement + content[match.end() :]
        return _commit(store, item, new_content, f"Added {name} to react import in {item.path}")

    new_content = f"import {{ {name} }} from 'react';\n" + content
    return _commit(store, item, new_content, f"Added react import for {name} in {item.path}")


@fix_handler(ErrorKind.MISSING_REACT_IMPORT)
def _fix_missing_react_import(store: FileStore, error: ClassifiedError) -> FixResult:
    item = _locate(store, error)
    if item is None:
        return _fail(f"File not found: {error.file}")
    if re.search(r"import\s+(?:\*\s+as\s+)?React\b", item.text):
        return _fail(f"React is already imported in {item.path}")
    return _commit(
        store,
        item,
        "import React from 'react';\n" + item.text,
        f"Added React import in {item.path}",
    )


@fix_handler(ErrorKind.UNTERMINATED_STRING)
def _fix_unterminated_string(store: FileStore, error: ClassifiedError) -> FixResult:
    item = _locate(store, error)
    if item is None:
        return _fail(f"File not found: {error.file}")
    lines = item.text.split("\n")
    idx = _line_index(lines, error)
    if idx is None:
        return _fail(f"Line {error.line} out of range in {item.path}")
    line = lines[idx].rstrip()
    quote = next((q for q in ("'", '"', "`") if line.count(q) % 2 == 1), None)
    if quote is None:
        return _fail(f"No unbalanced quote on {item.path}:{error.line}")
    if line.endswith(";"):
        lines[idx] = line[:-1] + quote + ";"
    else:
        lines[idx] = line + quote
    return _commit(
        store, item, "\n".join(lines), f"Closed string literal in {item.path}:{error.line}"
    )
