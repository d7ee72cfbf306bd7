"""Models for test execution results."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from e2e_harness.models.case import TestCase

Outcome = Literal["passed", "failed", "skipped", "timed-out"]
ErrorKind = Literal["assertion", "environment", "timeout", "error"]
Status = Literal["expected", "flaky", "unexpected", "skipped"]

FAILING_OUTCOMES: frozenset[str] = frozenset({"failed", "timed-out"})


@dataclass(frozen=True, kw_only=True)
class AttemptError:
    """Why an attempt did not pass."""

    kind: ErrorKind
    message: str
    traceback: str | None = None


@dataclass(frozen=True, kw_only=True)
class Diagnostic:
    """Reference to an artifact captured during an attempt."""

    kind: Literal["trace", "screenshot"]
    path: Path


@dataclass(frozen=True, kw_only=True)
class RunAttempt:
    """One execution of a (test, project) pair."""

    index: int
    started_at: datetime
    duration: float
    outcome: Outcome
    error: AttemptError | None = None
    diagnostics: Sequence[Diagnostic] = ()
    log: Sequence[str] = ()
    traced: bool = False


@dataclass(frozen=True, kw_only=True)
class RunResult:
    """Final outcome of a (test, project) pair after all attempts.

    The outcome is taken from the first passing attempt, or from the last
    attempt when none passed.
    """

    test: TestCase
    project: str
    attempts: Sequence[RunAttempt]

    @property
    def final_attempt(self) -> RunAttempt:
        for attempt in self.attempts:
            if attempt.outcome == "passed":
                return attempt
        return self.attempts[-1]

    @property
    def outcome(self) -> Outcome:
        return self.final_attempt.outcome

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def duration(self) -> float:
        return sum(attempt.duration for attempt in self.attempts)

    @property
    def diagnostics(self) -> Sequence[Diagnostic]:
        return [diag for attempt in self.attempts for diag in attempt.diagnostics]

    @property
    def is_flaky(self) -> bool:
        """Failed on an early attempt, passed on a later one."""
        return self.outcome == "passed" and self.attempts[0].outcome != "passed"

    @property
    def status(self) -> Status:
        if self.outcome == "skipped":
            return "skipped"
        if self.outcome in FAILING_OUTCOMES:
            return "unexpected"
        return "flaky" if self.is_flaky else "expected"


@dataclass(frozen=True, kw_only=True)
class Report:
    """Ordered run results with run level metadata."""

    results: Sequence[RunResult]
    started_at: datetime
    duration: float
    metadata: Mapping[str, Any] = field(default_factory=dict)
    validation_errors: Sequence[str] = ()
    interrupted: bool = False

    def count(self, status: Status) -> int:
        return sum(1 for result in self.results if result.status == status)

    @property
    def exit_code(self) -> int:
        """Zero only when nothing failed, validation passed and the run completed."""
        if self.validation_errors or self.interrupted:
            return 1
        if any(result.outcome in FAILING_OUTCOMES for result in self.results):
            return 1
        return 0
