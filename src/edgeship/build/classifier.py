"""Build-output error classifier.

Raw compiler/bundler output is scanned line by line. Each line is first split
into an optional source location and a message, then every registered matcher
is tried against the message. Matchers are independent (pattern -> outcome)
pairs: several may fire on the same output and all of them contribute.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path, PurePosixPath

from edgeship.models import normalize_path

logger = logging.getLogger(__name__)

FRAMEWORK_HOOKS = frozenset(
    {
        "useState",
        "useEffect",
        "useContext",
        "useReducer",
        "useMemo",
        "useCallback",
        "useRef",
        "useLayoutEffect",
    }
)

SOURCE_ROOTS = ("src", "components", "pages", "lib", "utils", "app")

MAX_ERRORS_PER_FILE_IN_REPORT = 5
UNRECOGNIZED_TAIL_LINES = 20
UNRECOGNIZED_TAIL_CHARS = 2000

_ANSI = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_TSC_LOCATION = re.compile(
    r"^(?P<file>[^\s()][^()]*?)\((?P<line>\d+),(?P<col>\d+)\):"
    r"\s*error\s+(?:TS\d+:\s*)?(?P<message>.+)$"
)
_ESBUILD_LOCATION = re.compile(
    r"^(?:(?:Error|ERROR|✘ \[ERROR\]|\[plugin:[^\]]+\]):?\s+)?"
    r"(?P<file>[^\s:'\"]+\.[A-Za-z]{1,5}):(?P<line>\d+):(?P<col>\d+):?\s*"
    r"(?:(?:ERROR|error):\s*)?(?P<message>.+)$"
)


class ErrorKind(StrEnum):
    UNRESOLVED_IMPORT = "unresolved_import"
    PATH_ALIAS = "path_alias"
    MISSING_DEPENDENCY = "missing_dependency"
    TSCONFIG_COMPOSITE = "tsconfig_composite"
    MISSING_GLOBAL_PROPERTY = "missing_global_property"
    PROPERTY_NOT_FOUND = "property_not_found"
    TYPE_MISMATCH = "type_mismatch"
    TAG_MISMATCH = "tag_mismatch"
    UNCLOSED_TAG = "unclosed_tag"
    ATTRIBUTE_SYNTAX = "attribute_syntax"
    UNDEFINED_IDENTIFIER = "undefined_identifier"
    MISSING_REACT_IMPORT = "missing_react_import"
    UNTERMINATED_STRING = "unterminated_string"
    INVALID_UTILITY_CLASS = "invalid_utility_class"
    DEPENDENCY_CONFLICT = "dependency_conflict"


class FixAction(StrEnum):
    FIX_TYPESCRIPT_PATHS = "fix_typescript_paths"
    FIX_TSCONFIG_COMPOSITE = "fix_tsconfig_composite"
    INSTALL_PACKAGES = "install_packages"
    ADD_TYPE_DECLARATIONS = "add_type_declarations"
    PATCH_SOURCE = "patch_source"


@dataclass(slots=True)
class ClassifiedError:
    kind: ErrorKind
    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None
    details: dict[str, str] = field(default_factory=dict)

    def key(self) -> tuple[object, ...]:
        return (self.kind, self.file, self.line, tuple(sorted(self.details.items())))

    def summary(self) -> str:
        where = ""
        if self.file:
            where = f" {self.file}" + (f":{self.line}" if self.line else "")
        return f"[{self.kind}]{where} {self.message}".strip()


@dataclass(slots=True)
class FixStrategy:
    action: FixAction
    description: str
    priority: int
    packages: tuple[str, ...] = ()
    properties: tuple[str, ...] = ()
    error: ClassifiedError | None = None


@dataclass(slots=True)
class Location:
    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None


@dataclass(slots=True)
class MatchOutcome:
    errors: list[ClassifiedError] = field(default_factory=list)
    strategies: list[FixStrategy] = field(default_factory=list)


@dataclass(slots=True)
class Classification:
    can_auto_fix: bool
    errors_summary: list[str]
    strategies: list[FixStrategy]
    errors: list[ClassifiedError] = field(default_factory=list)

    def fix_prompt(self) -> str:
        """Remediation report handed to the escalation path."""
        lines = ["# Build errors", ""]
        if not self.errors:
            lines.append("No recognized errors in the build output.")
        by_file: dict[str, list[ClassifiedError]] = {}
        for error in self.errors:
            by_file.setdefault(error.file or "(unknown file)", []).append(error)
        for path in sorted(by_file):
            items = by_file[path]
            lines.append(f"## {path}")
            for error in items[:MAX_ERRORS_PER_FILE_IN_REPORT]:
                prefix = f"line {error.line}: " if error.line else ""
                lines.append(f"- {prefix}[{error.kind}] {error.message}")
            hidden = len(items) - MAX_ERRORS_PER_FILE_IN_REPORT
            if hidden > 0:
                lines.append(f"- ... and {hidden} more")
            lines.append("")
        if self.strategies:
            lines.append("# Suggested strategies")
            for strategy in self.strategies:
                lines.append(f"- {strategy.action}: {strategy.description}")
        return "\n".join(lines).rstrip() + "\n"


MatchBuilder = Callable[[re.Match[str], Location], MatchOutcome]


@dataclass(slots=True, frozen=True)
class Matcher:
    name: str
    pattern: re.Pattern[str]
    build: MatchBuilder

    def apply(self, location: Location) -> MatchOutcome:
        outcome = MatchOutcome()
        for match in self.pattern.finditer(location.message):
            found = self.build(match, location)
            outcome.errors.extend(found.errors)
            outcome.strategies.extend(found.strategies)
        return outcome


_matchers: dict[str, Matcher] = {}


def register_matcher(matcher: Matcher) -> None:
    """Register a matcher; later registrations with the same name replace earlier ones."""
    _matchers[matcher.name] = matcher


def get_matcher(name: str) -> Matcher | None:
    return _matchers.get(name)


def all_matchers() -> list[Matcher]:
    return list(_matchers.values())


def matcher(name: str, pattern: str, flags: int = 0) -> Callable[[MatchBuilder], MatchBuilder]:
    def decorator(build: MatchBuilder) -> MatchBuilder:
        register_matcher(Matcher(name=name, pattern=re.compile(pattern, flags), build=build))
        return build

    return decorator


def relative_source_path(path: str, workspace_root: str | Path | None = None) -> str:
    """Map a tool-reported path back to the application-relative path."""
    clean = path.replace("\\", "/").strip()
    if workspace_root is not None:
        root = str(workspace_root).replace("\\", "/").rstrip("/") + "/"
        if clean.startswith(root):
            return normalize_path(clean[len(root) :])
    parts = PurePosixPath(clean).parts
    if "workspace" in parts:
        idx = len(parts) - 1 - parts[::-1].index("workspace")
        if idx + 1 < len(parts):
            return "/".join(parts[idx + 1 :])
    if clean.startswith("/"):
        for idx, part in enumerate(parts):
            if part in SOURCE_ROOTS:
                return "/".join(parts[idx:])
    return normalize_path(clean)


def parse_location(line: str, workspace_root: str | Path | None = None) -> Location:
    text = line.strip()
    for pattern in (_TSC_LOCATION, _ESBUILD_LOCATION):
        match = pattern.match(text)
        if match:
            return Location(
                message=match.group("message").strip(),
                file=relative_source_path(match.group("file"), workspace_root),
                line=int(match.group("line")),
                column=int(match.group("col")),
            )
    return Location(message=text)


def _error(kind: ErrorKind, location: Location, **details: str) -> ClassifiedError:
    return ClassifiedError(
        kind=kind,
        message=location.message,
        file=location.file,
        line=location.line,
        column=location.column,
        details={key: value for key, value in details.items() if value},
    )


def _patch(error: ClassifiedError, description: str) -> FixStrategy:
    return FixStrategy(
        action=FixAction.PATCH_SOURCE, description=description, priority=4, error=error
    )


_RESOLVE = (
    r"(?:Cannot find module|Can't resolve|Cannot resolve module|Could not resolve"
    r"|[Ff]ailed to resolve import)\s+['\"]"
)


def package_name(specifier: str) -> str:
    """``@scope/pkg/sub`` -> ``@scope/pkg``; ``pkg/sub`` -> ``pkg``."""
    parts = specifier.split("/")
    if specifier.startswith("@") and len(parts) >= 2:
        return "/".join(parts[:2])
    return parts[0]


@matcher("path_alias", _RESOLVE + r"(?P<spec>@/[^'\"]+)['\"]")
def _path_alias(match: re.Match[str], location: Location) -> MatchOutcome:
    error = _error(ErrorKind.PATH_ALIAS, location, specifier=match.group("spec"))
    strategy = FixStrategy(
        action=FixAction.FIX_TYPESCRIPT_PATHS,
        description="Configure TypeScript path alias '@/*' -> './src/*'",
        priority=1,
    )
    return MatchOutcome(errors=[error], strategies=[strategy])


@matcher("tsconfig_composite", r'must have setting\s+"composite":\s*true')
def _tsconfig_composite(match: re.Match[str], location: Location) -> MatchOutcome:
    del match
    error = _error(ErrorKind.TSCONFIG_COMPOSITE, location)
    strategy = FixStrategy(
        action=FixAction.FIX_TSCONFIG_COMPOSITE,
        description="Enable composite project references in tsconfig.node.json",
        priority=1,
    )
    return MatchOutcome(errors=[error], strategies=[strategy])


@matcher("missing_dependency", _RESOLVE + r"(?P<spec>(?!\.{1,2}/|@/|/)[^'\"\s]+)['\"]")
def _missing_dependency(match: re.Match[str], location: Location) -> MatchOutcome:
    name = package_name(match.group("spec"))
    error = _error(ErrorKind.MISSING_DEPENDENCY, location, package=name)
    strategy = FixStrategy(
        action=FixAction.INSTALL_PACKAGES,
        description=f"Install missing package {name}",
        priority=2,
        packages=(name,),
    )
    return MatchOutcome(errors=[error], strategies=[strategy])


@matcher(
    "unresolved_import",
    _RESOLVE
    + r"(?P<spec>\.{1,2}/[^'\"]+)['\"](?:\s+from\s+['\"](?P<importer>[^'\"]+)['\"])?",
)
def _unresolved_import(match: re.Match[str], location: Location) -> MatchOutcome:
    importer = match.group("importer")
    if importer and location.file is None:
        location = Location(
            message=location.message, file=relative_source_path(importer), line=None
        )
    error = _error(ErrorKind.UNRESOLVED_IMPORT, location, specifier=match.group("spec"))
    return MatchOutcome(
        errors=[error], strategies=[_patch(error, f"Resolve import '{match.group('spec')}'")]
    )


@matcher(
    "missing_global_property",
    r"Property '(?P<prop>[\w$]+)' does not exist on type "
    r"'(?:Window & typeof globalThis|Window|typeof globalThis)'",
)
def _missing_global_property(match: re.Match[str], location: Location) -> MatchOutcome:
    prop = match.group("prop")
    error = _error(ErrorKind.MISSING_GLOBAL_PROPERTY, location, property=prop)
    strategy = FixStrategy(
        action=FixAction.ADD_TYPE_DECLARATIONS,
        description=f"Declare window.{prop}",
        priority=3,
        properties=(prop,),
    )
    return MatchOutcome(errors=[error], strategies=[strategy])


@matcher(
    "property_not_found",
    r"Property '(?P<prop>[\w$]+)' does not exist on type "
    r"'(?!Window\b|typeof globalThis)(?P<type>[^']+)'",
)
def _property_not_found(match: re.Match[str], location: Location) -> MatchOutcome:
    error = _error(
        ErrorKind.PROPERTY_NOT_FOUND,
        location,
        property=match.group("prop"),
        type=match.group("type"),
    )
    return MatchOutcome(errors=[error])


@matcher(
    "type_mismatch",
    r"Type '(?P<actual>[^']+)' is not assignable to type '(?P<expected>[^']+)'",
)
def _type_mismatch(match: re.Match[str], location: Location) -> MatchOutcome:
    error = _error(
        ErrorKind.TYPE_MISMATCH,
        location,
        actual=match.group("actual"),
        expected=match.group("expected"),
    )
    return MatchOutcome(errors=[error])


@matcher(
    "tag_mismatch",
    r"Unexpected closing ['\"]?(?P<closing>[\w.:-]+)['\"]? tag does not match "
    r"opening ['\"]?(?P<opening>[\w.:-]+)['\"]? tag",
)
def _tag_mismatch(match: re.Match[str], location: Location) -> MatchOutcome:
    error = _error(
        ErrorKind.TAG_MISMATCH,
        location,
        closing=match.group("closing"),
        opening=match.group("opening"),
    )
    if error.file is None or error.line is None:
        return MatchOutcome(errors=[error])
    description = f"Fix closing tag </{error.details['closing']}> in {error.file}"
    return MatchOutcome(errors=[error], strategies=[_patch(error, description)])


@matcher("unclosed_tag", r"Expected corresponding JSX closing tag for ['\"<]?(?P<tag>[\w.:-]+)")
def _unclosed_tag(match: re.Match[str], location: Location) -> MatchOutcome:
    error = _error(ErrorKind.UNCLOSED_TAG, location, tag=match.group("tag"))
    if error.file is None or error.line is None:
        return MatchOutcome(errors=[error])
    description = f"Close <{error.details['tag']}> in {error.file}"
    return MatchOutcome(errors=[error], strategies=[_patch(error, description)])


@matcher(
    "attribute_alias",
    r"(?i:property|attribute)\s+['`\"](?P<wrong>[\w-]+)['`\"][^\n]*?"
    r"[Dd]id you mean\s+['`\"](?P<right>[\w-]+)['`\"]",
)
def _attribute_alias(match: re.Match[str], location: Location) -> MatchOutcome:
    error = _error(
        ErrorKind.ATTRIBUTE_SYNTAX,
        location,
        wrong=match.group("wrong"),
        right=match.group("right"),
    )
    description = f"Rename attribute {error.details['wrong']} -> {error.details['right']}"
    return MatchOutcome(errors=[error], strategies=[_patch(error, description)])


@matcher("jsx_syntax", r"^(?!.*closing tag)(?P<detail>.*\bJSX\b.*)$")
def _jsx_syntax(match: re.Match[str], location: Location) -> MatchOutcome:
    error = _error(ErrorKind.ATTRIBUTE_SYNTAX, location, detail=match.group("detail"))
    if "Unterminated" in error.message or error.file is None:
        return MatchOutcome(errors=[error])
    return MatchOutcome(
        errors=[error], strategies=[_patch(error, f"Fix JSX attribute syntax in {error.file}")]
    )


@matcher(
    "undefined_identifier",
    r"(?:Cannot find name '(?P<name>[\w$]+)'|'(?P<alt>[\w$]+)' is not defined)",
)
def _undefined_identifier(match: re.Match[str], location: Location) -> MatchOutcome:
    name = match.group("name") or match.group("alt")
    error = _error(ErrorKind.UNDEFINED_IDENTIFIER, location, identifier=name)
    if name not in FRAMEWORK_HOOKS or error.file is None:
        return MatchOutcome(errors=[error])
    return MatchOutcome(errors=[error], strategies=[_patch(error, f"Import {name} from react")])


@matcher("missing_react_import", r"'React' refers to a UMD global")
def _missing_react_import(match: re.Match[str], location: Location) -> MatchOutcome:
    del match
    error = _error(ErrorKind.MISSING_REACT_IMPORT, location)
    if error.file is None:
        return MatchOutcome(errors=[error])
    return MatchOutcome(errors=[error], strategies=[_patch(error, f"Import React in {error.file}")])


@matcher("unterminated_string", r"Unterminated string (?:literal|constant)")
def _unterminated_string(match: re.Match[str], location: Location) -> MatchOutcome:
    del match
    error = _error(ErrorKind.UNTERMINATED_STRING, location)
    if error.file is None or error.line is None:
        return MatchOutcome(errors=[error])
    return MatchOutcome(
        errors=[error], strategies=[_patch(error, f"Terminate string literal in {error.file}")]
    )


@matcher(
    "invalid_utility_class",
    r"The (?:utility|class) [`'\"](?P<cls>[^`'\"]+)[`'\"] (?:is not available|does not exist)",
)
def _invalid_utility_class(match: re.Match[str], location: Location) -> MatchOutcome:
    return MatchOutcome(
        errors=[_error(ErrorKind.INVALID_UTILITY_CLASS, location, utility=match.group("cls"))]
    )


@matcher(
    "dependency_conflict",
    r"(?:ERESOLVE|[Cc](?:annot|ould not) resolve dependency|conflicting peer dependency)",
)
def _dependency_conflict(match: re.Match[str], location: Location) -> MatchOutcome:
    del match
    return MatchOutcome(errors=[_error(ErrorKind.DEPENDENCY_CONFLICT, location)])


def _merge_strategies(strategies: Iterable[FixStrategy]) -> list[FixStrategy]:
    merged: dict[tuple[object, ...], FixStrategy] = {}
    for strategy in strategies:
        if strategy.action == FixAction.INSTALL_PACKAGES:
            key: tuple[object, ...] = (strategy.action,)
        elif strategy.action == FixAction.ADD_TYPE_DECLARATIONS:
            key = (strategy.action,)
        elif strategy.action == FixAction.PATCH_SOURCE and strategy.error is not None:
            key = (strategy.action, *strategy.error.key())
        else:
            key = (strategy.action, strategy.description)
        current = merged.get(key)
        if current is None:
            merged[key] = strategy
            continue
        if strategy.packages:
            packages = tuple(sorted(set(current.packages) | set(strategy.packages)))
            current.packages = packages
            current.description = "Install missing packages " + ", ".join(packages)
        if strategy.properties:
            properties = tuple(sorted(set(current.properties) | set(strategy.properties)))
            current.properties = properties
            current.description = "Declare window properties " + ", ".join(properties)
    return sorted(merged.values(), key=lambda item: item.priority)


def output_tail(output: str) -> str:
    """Last non-empty lines of raw output, uncolored and capped in size."""
    lines = [line.rstrip() for line in _ANSI.sub("", output or "").splitlines() if line.strip()]
    tail = "\n".join(lines[-UNRECOGNIZED_TAIL_LINES:])
    return tail[-UNRECOGNIZED_TAIL_CHARS:]


def classify(output: str, *, workspace_root: str | Path | None = None) -> Classification:
    """Classify raw build output. Never raises."""
    try:
        errors: dict[tuple[object, ...], ClassifiedError] = {}
        strategies: list[FixStrategy] = []
        registered = all_matchers()
        for raw in _ANSI.sub("", output or "").splitlines():
            if not raw.strip():
                continue
            location = parse_location(raw, workspace_root)
            for item in registered:
                outcome = item.apply(location)
                for error in outcome.errors:
                    errors.setdefault(error.key(), error)
                strategies.extend(outcome.strategies)
        merged = _merge_strategies(strategies)
        found = list(errors.values())
        summary = [error.summary() for error in found]
        if not found:
            tail = output_tail(output)
            if tail:
                summary = [tail]
        return Classification(
            can_auto_fix=bool(merged),
            errors_summary=summary,
            strategies=merged,
            errors=found,
        )
    except Exception:
        logger.exception("Build output classification failed")
        return Classification(can_auto_fix=False, errors_summary=[], strategies=[])
