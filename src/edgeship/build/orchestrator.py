"""Bounded self-healing build loop.

The loop is an explicit state machine::

    ATTEMPTING -> SUCCEEDED
    ATTEMPTING -> CLASSIFYING -> FIXING -> ATTEMPTING
    ATTEMPTING | CLASSIFYING -> EXHAUSTED

The attempt counter only grows in FIXING and never passes ``max_attempts``,
so the loop runs the toolchain at most ``max_attempts`` times.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from edgeship.build.actions import run_fix_action
from edgeship.build.autofix import AutoFixEngine, FixResult
from edgeship.build.classifier import Classification, classify
from edgeship.build.toolchain import BuildToolchain, ToolchainResult
from edgeship.config import Settings, get_settings
from edgeship.logging import bind_context
from edgeship.storage.base import FileStore

logger = logging.getLogger(__name__)


class BuildState(StrEnum):
    ATTEMPTING = "attempting"
    CLASSIFYING = "classifying"
    FIXING = "fixing"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


TERMINAL_STATES = frozenset({BuildState.SUCCEEDED, BuildState.EXHAUSTED})


class FixEscalation(Protocol):
    """Higher-cost repair path tried once when no pattern fix applies.

    Returns descriptions of the changes it made; an empty list means it failed.
    """

    def __call__(self, classification: Classification, store: FileStore) -> list[str]: ...


@dataclass(slots=True)
class BuildAttempt:
    number: int
    fixes_before: list[str]
    success: bool = False
    output: str = ""


@dataclass(slots=True)
class BuildResult:
    success: bool
    state: BuildState
    attempts: int
    self_healed: bool
    output: str = ""
    error: str = ""
    files: dict[str, bytes] = field(default_factory=dict)
    fixes_applied: list[str] = field(default_factory=list)
    fix_results: list[FixResult] = field(default_factory=list)
    reason: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "state": str(self.state),
            "attempts": self.attempts,
            "self_healed": self.self_healed,
            "error": self.error,
            "reason": self.reason,
            "fixes_applied": list(self.fixes_applied),
            "files": sorted(self.files),
        }


Classifier = Callable[..., Classification]


class BuildOrchestrator:
    def __init__(
        self,
        store: FileStore,
        toolchain: BuildToolchain,
        *,
        settings: Settings | None = None,
        engine: AutoFixEngine | None = None,
        classifier: Classifier = classify,
        escalation: FixEscalation | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._toolchain = toolchain
        self._engine = engine or AutoFixEngine(store)
        self._classify = classifier
        self._escalation = escalation
        limit = max_attempts or int(self._settings.build_max_attempts)
        self._max_attempts = max(1, limit)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _escalation_enabled(self) -> bool:
        return self._escalation is not None and int(self._settings.enable_ai_build_fixes) == 1

    def run(self) -> BuildResult:
        app_id = self._store.app_id
        state = BuildState.ATTEMPTING
        attempt_number = 1
        ledger: list[str] = []
        fix_results: list[FixResult] = []
        attempts: list[BuildAttempt] = []
        last: ToolchainResult | None = None
        classification: Classification | None = None
        reason = ""

        while state not in TERMINAL_STATES:
            assert 1 <= attempt_number <= self._max_attempts

            if state == BuildState.ATTEMPTING:
                bind_context(app_id=app_id, build_attempt=attempt_number)
                attempt = BuildAttempt(number=attempt_number, fixes_before=list(ledger))
                attempts.append(attempt)
                logger.info(
                    "Build attempt %d/%d for %s", attempt_number, self._max_attempts, app_id
                )
                last = self._invoke_toolchain()
                attempt.success = last.success
                attempt.output = last.output
                if last.success:
                    state = BuildState.SUCCEEDED
                elif attempt_number >= self._max_attempts:
                    reason = f"Build failed after {attempt_number} attempts"
                    state = BuildState.EXHAUSTED
                else:
                    state = BuildState.CLASSIFYING

            elif state == BuildState.CLASSIFYING:
                assert last is not None
                try:
                    classification = self._classify(
                        last.output, workspace_root=last.workspace or None
                    )
                except Exception:
                    logger.exception("Classification step failed for %s", app_id)
                    classification = None
                if classification is not None and classification.can_auto_fix:
                    state = BuildState.FIXING
                    continue
                reason = "No auto-fixable errors found"
                if classification is not None and classification.errors_summary:
                    reason += ": " + "; ".join(classification.errors_summary[:5])
                if self._escalate(classification, attempt_number, ledger):
                    attempt_number += 1
                    state = BuildState.ATTEMPTING
                else:
                    state = BuildState.EXHAUSTED

            elif state == BuildState.FIXING:
                assert classification is not None
                applied = self._apply_strategies(classification, ledger, fix_results)
                if applied:
                    attempt_number += 1
                    state = BuildState.ATTEMPTING
                    continue
                reason = "No automatic fixes could be applied"
                if self._escalate(classification, attempt_number, ledger):
                    attempt_number += 1
                    state = BuildState.ATTEMPTING
                else:
                    state = BuildState.EXHAUSTED

        assert last is not None
        succeeded = state == BuildState.SUCCEEDED
        result = BuildResult(
            success=succeeded,
            state=state,
            attempts=len(attempts),
            self_healed=succeeded and len(attempts) > 1,
            output=last.output,
            error="" if succeeded else last.output,
            files=dict(last.files) if succeeded else {},
            fixes_applied=ledger,
            fix_results=fix_results,
            reason="" if succeeded else reason,
        )
        if succeeded:
            logger.info(
                "Build succeeded for %s after %d attempt(s), self_healed=%s",
                app_id,
                result.attempts,
                result.self_healed,
            )
        else:
            logger.warning("Build exhausted for %s: %s", app_id, reason)
        return result

    def _invoke_toolchain(self) -> ToolchainResult:
        try:
            return self._toolchain.build(self._store)
        except Exception as exc:
            logger.exception("Build toolchain raised for %s", self._store.app_id)
            output = str(exc) or type(exc).__name__
            return ToolchainResult(success=False, output=output, exit_code=-1)

    def _apply_strategies(
        self,
        classification: Classification,
        ledger: list[str],
        fix_results: list[FixResult],
    ) -> int:
        applied = 0
        for strategy in classification.strategies:
            try:
                results = run_fix_action(strategy, self._store, self._engine)
            except Exception as exc:
                logger.exception("Fix action %s raised", strategy.action)
                results = [
                    FixResult(success=False, description=strategy.description, error=str(exc))
                ]
            for result in results:
                fix_results.append(result)
                if result.success:
                    ledger.append(result.description)
                    applied += 1
        return applied

    def _escalate(
        self,
        classification: Classification | None,
        attempt_number: int,
        ledger: list[str],
    ) -> bool:
        if attempt_number != 1 or not self._escalation_enabled():
            return False
        assert self._escalation is not None
        report = classification or Classification(
            can_auto_fix=False, errors_summary=[], strategies=[]
        )
        try:
            changes = self._escalation(report, self._store)
        except Exception:
            logger.exception("Fix escalation raised for %s", self._store.app_id)
            return False
        if not changes:
            logger.info("Fix escalation made no changes for %s", self._store.app_id)
            return False
        ledger.extend(changes)
        return True
