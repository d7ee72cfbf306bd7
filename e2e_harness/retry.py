"""Run execution units with a retry budget."""

import asyncio
import logging
import time
import traceback
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from e2e_harness.context import AttemptScope, ExecutionContextProvider, TestInfo
from e2e_harness.errors import SessionEnvironmentError
from e2e_harness.models.case import ExecutionUnit
from e2e_harness.models.result import AttemptError, Outcome, RunAttempt, RunResult

log = logging.getLogger(__name__)


def _never_cancelled() -> bool:
    return False


@dataclass(frozen=True, kw_only=True)
class RetryController:
    """Runs a unit until it passes or the retry budget is spent.

    Retries run on the same worker straight after the failed attempt. Once
    the run is cancelled no further retry is started.
    """

    provider: ExecutionContextProvider
    is_cancelled: Callable[[], bool] = _never_cancelled

    async def run_with_retries(
        self, unit: ExecutionUnit, retry_budget: int
    ) -> RunResult:
        """Run attempt 0 and retry failures while attempts used <= retry_budget.

        Args:
            unit: The (test, project) pair to run
            retry_budget: Number of retries allowed after the first attempt

        Returns:
            Result holding every attempt that ran

        """
        attempts: list[RunAttempt] = []

        while True:
            attempt = await self.run_attempt(unit, len(attempts))
            attempts.append(attempt)

            if attempt.outcome in {"passed", "skipped"}:
                break
            if len(attempts) > retry_budget:
                break
            if self.is_cancelled():
                log.info("Run cancelled, not retrying %s", unit.test.id)
                break

            log.info(
                "Retrying %s [%s] (retry %d of %d) after %s",
                unit.test.id,
                unit.project.name,
                len(attempts),
                retry_budget,
                attempt.outcome,
            )

        return RunResult(test=unit.test, project=unit.project.name, attempts=attempts)

    async def run_attempt(self, unit: ExecutionUnit, index: int) -> RunAttempt:
        """Run one attempt in a fresh session."""
        started_at = datetime.now(timezone.utc)
        timer = time.perf_counter()

        if unit.test.skip:
            return RunAttempt(
                index=index, started_at=started_at, duration=0.0, outcome="skipped"
            )

        info = TestInfo(
            title=unit.test.title,
            project=unit.project.name,
            attempt=index,
            output_dir=self.provider.output_dir,
        )
        scope: AttemptScope | None = None
        outcome: Outcome = "failed"
        error: AttemptError | None = None

        try:
            async with self.provider.session(unit.project, unit.test.id, index) as scope:
                info.output_dir = scope.artifacts_dir
                outcome, error = await self._run_body(unit, scope.page, info)
                scope.outcome = outcome
        except SessionEnvironmentError as e:
            if scope is not None and scope.outcome not in {None, "passed"}:
                # Keep the body's outcome when only the release failed.
                log.warning("Releasing session for %s failed: %s", unit.test.id, e)
                info.log(f"Session release failed: {e}")
            else:
                outcome = "failed"
                error = AttemptError(
                    kind="environment", message=str(e), traceback=traceback.format_exc()
                )

        return RunAttempt(
            index=index,
            started_at=started_at,
            duration=round(time.perf_counter() - timer, 3),
            outcome=outcome,
            error=error,
            diagnostics=tuple(scope.diagnostics) if scope else (),
            log=tuple(info.log_lines),
            traced=scope.handle.tracing if scope else False,
        )

    @staticmethod
    async def _run_body(
        unit: ExecutionUnit, page: Any, info: TestInfo
    ) -> tuple[Outcome, AttemptError | None]:
        """Run the test body under its timeout and classify how it ended.

        Only the attempt's own deadline counts as a timeout. A ``TimeoutError``
        raised by the body itself is an ordinary error.
        """
        limit = unit.timeout or None
        try:
            async with asyncio.timeout(limit) as deadline:
                await unit.test.invoke(page, info)
        except TimeoutError as e:
            if not deadline.expired():
                return "failed", unexpected_error(e)
            return "timed-out", AttemptError(
                kind="timeout",
                message=f"Test timeout of {limit}s exceeded",
                traceback=traceback.format_exc(),
            )
        except AssertionError as e:
            return "failed", AttemptError(
                kind="assertion",
                message=str(e) or "Assertion failed",
                traceback=traceback.format_exc(),
            )
        except Exception as e:
            return "failed", unexpected_error(e)
        return "passed", None


def unexpected_error(e: Exception) -> AttemptError:
    """Attempt error for an exception escaping a test body."""
    return AttemptError(
        kind="error",
        message=f"{type(e).__name__}: {e}",
        traceback=traceback.format_exc(),
    )
