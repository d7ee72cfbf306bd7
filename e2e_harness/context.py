"""Per-attempt automation sessions and diagnostic capture."""

import hashlib
import logging
import re
import shutil
from collections.abc import AsyncGenerator, Mapping
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from e2e_harness.engines.base import AutomationEngine, SessionHandle
from e2e_harness.engines.manifest import EngineManifest
from e2e_harness.errors import SessionEnvironmentError
from e2e_harness.models.case import ResolvedProject
from e2e_harness.models.config import DiagnosticPolicy
from e2e_harness.models.result import Diagnostic, Outcome

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class CaptureOptions:
    """Diagnostics to collect for one attempt."""

    trace: bool
    screenshot: bool
    screenshot_on_failure: bool
    retain_trace_on_pass: bool


def capture_for_attempt(policy: DiagnosticPolicy, attempt: int) -> CaptureOptions:
    """Decide what to capture for an attempt.

    With ``on-first-retry`` tracing is off for attempt 0 and on for every
    attempt from the first retry.
    """
    match policy.trace:
        case "on":
            trace, retain = True, True
        case "on-first-retry":
            trace, retain = attempt >= 1, True
        case "retain-on-failure":
            trace, retain = True, False
        case _:
            trace, retain = False, False

    return CaptureOptions(
        trace=trace,
        screenshot=policy.screenshot == "on",
        screenshot_on_failure=policy.screenshot == "only-on-failure",
        retain_trace_on_pass=retain,
    )


def artifact_dir_name(test_id: str, project: str, attempt: int) -> str:
    """Directory name for the artifacts of one attempt."""
    slug = re.sub(r"[^A-Za-z0-9]+", "-", test_id).strip("-").lower()[:60] or "test"
    digest = hashlib.sha1(test_id.encode()).hexdigest()[:6]
    name = f"{slug}-{digest}-{project}"
    return f"{name}-retry{attempt}" if attempt else name


@dataclass(kw_only=True)
class TestInfo:
    """Information about the running attempt, passed to test bodies."""

    __test__ = False

    title: str
    project: str
    attempt: int
    output_dir: Path
    log_lines: list[str] = field(default_factory=list)

    def log(self, message: str) -> None:
        """Record a line in the attempt's log."""
        self.log_lines.append(message)


@dataclass(kw_only=True)
class AttemptScope:
    """A live session and what the attempt recorded while it was open."""

    handle: SessionHandle[Any]
    capture: CaptureOptions
    artifacts_dir: Path
    outcome: Outcome | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def page(self) -> Any:
        return self.handle.page


@dataclass(kw_only=True)
class EngineSet:
    """Engines of one worker, opened on first use and closed together."""

    manifests: Mapping[str, EngineManifest[Any, Any]]
    _stack: AsyncExitStack = field(default_factory=AsyncExitStack)
    _engines: dict[str, AutomationEngine[Any, Any]] = field(default_factory=dict)

    async def __aenter__(self) -> "EngineSet":
        await self._stack.__aenter__()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._engines.clear()
        await self._stack.__aexit__(*exc_info)

    async def get(self, key: str) -> AutomationEngine[Any, Any]:
        if (engine := self._engines.get(key)) is None:
            manifest = self.manifests[key]
            engine = await self._stack.enter_async_context(manifest.engine_factory())
            self._engines[key] = engine
        return engine


@dataclass(frozen=True, kw_only=True)
class ExecutionContextProvider:
    """Opens and releases isolated sessions, one per attempt.

    Sessions are never reused: each call to ``acquire`` launches a new one,
    and ``session`` releases it on every exit path.
    """

    engines: EngineSet
    policy: DiagnosticPolicy
    output_dir: Path

    async def acquire(
        self, project: ResolvedProject, capture: CaptureOptions
    ) -> SessionHandle[Any]:
        """Launch a fresh session for the project.

        Raises:
            SessionEnvironmentError: If the engine cannot be started or the
                session cannot be launched

        """
        try:
            engine = await self.engines.get(project.engine)
            return await engine.launch_session(project.options, trace=capture.trace)
        except Exception as e:
            raise SessionEnvironmentError(
                f"Cannot launch session for project {project.name}: {e}"
            ) from e

    async def release(
        self,
        project: ResolvedProject,
        handle: SessionHandle[Any],
        *,
        trace_path: Path | None = None,
    ) -> None:
        """Close a session.

        Raises:
            SessionEnvironmentError: If the engine fails to close the session

        """
        try:
            engine = await self.engines.get(project.engine)
            await engine.close_session(handle, trace_path=trace_path)
        except Exception as e:
            raise SessionEnvironmentError(
                f"Cannot close session {handle.session_id}: {e}"
            ) from e

    @asynccontextmanager
    async def session(
        self, project: ResolvedProject, test_id: str, attempt: int
    ) -> AsyncGenerator[AttemptScope, None]:
        """Hold a session for one attempt and collect its diagnostics.

        The caller sets ``scope.outcome`` before leaving the block so that
        failure-only artifacts can be kept or dropped.
        """
        capture = capture_for_attempt(self.policy, attempt)
        artifacts_dir = self.output_dir / artifact_dir_name(test_id, project.name, attempt)
        handle = await self.acquire(project, capture)
        scope = AttemptScope(handle=handle, capture=capture, artifacts_dir=artifacts_dir)

        try:
            yield scope
        finally:
            await self._finish(project, scope)

    async def _finish(self, project: ResolvedProject, scope: AttemptScope) -> None:
        failed = scope.outcome != "passed"
        capture = scope.capture
        engine = await self.engines.get(project.engine)

        if capture.screenshot or (capture.screenshot_on_failure and failed):
            path = scope.artifacts_dir / "screenshot.png"
            scope.artifacts_dir.mkdir(parents=True, exist_ok=True)
            try:
                await engine.screenshot(scope.handle, path)
            except Exception as e:
                # The session may already be gone after a timeout.
                log.warning("Screenshot failed for %s: %s", scope.artifacts_dir, e)
            else:
                scope.diagnostics.append(Diagnostic(kind="screenshot", path=path))

        keep_trace = scope.handle.tracing and (failed or capture.retain_trace_on_pass)
        trace_path = scope.artifacts_dir / engine.trace_file if keep_trace else None
        if trace_path is not None:
            scope.artifacts_dir.mkdir(parents=True, exist_ok=True)

        await self.release(project, scope.handle, trace_path=trace_path)

        if trace_path is not None:
            scope.diagnostics.append(Diagnostic(kind="trace", path=trace_path))
        if not scope.diagnostics and scope.artifacts_dir.exists():
            shutil.rmtree(scope.artifacts_dir, ignore_errors=True)
