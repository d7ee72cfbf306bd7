"""Plan execution units and run them on a worker pool."""

import asyncio
import logging
import queue
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Self

from e2e_harness.context import EngineSet, ExecutionContextProvider
from e2e_harness.engines.manifest import EngineManifest
from e2e_harness.models.case import ExecutionUnit, ResolvedProject, TestCase
from e2e_harness.models.config import DiagnosticPolicy, WorkerMode
from e2e_harness.models.result import AttemptError, RunAttempt, RunResult
from e2e_harness.retry import RetryController

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class Schedule:
    """Ordered execution units and the number of workers to run them on."""

    units: Sequence[ExecutionUnit]
    worker_count: int


def plan(
    test_cases: Sequence[TestCase],
    projects: Sequence[ResolvedProject],
    worker_count: int,
    mode: WorkerMode,
) -> Schedule:
    """Bind every test to every project it applies to.

    Units are ordered by project, then by discovery order. Serial mode
    forces a single worker, and there are never more workers than units.
    """
    units = [
        ExecutionUnit(index=index, test=case, project=project)
        for index, (project, case) in enumerate(
            (project, case)
            for project in projects
            for case in test_cases
            if case.applies_to(project.name)
        )
    ]

    workers = 1 if mode == "serial" else max(1, worker_count)
    workers = max(1, min(workers, len(units)))
    return Schedule(units=units, worker_count=workers)


@dataclass(kw_only=True)
class RunContext:
    """Run scoped state shared by all workers.

    The queue is the only structure workers take from concurrently; results
    are stored under a lock. Created at run start and closed once the report
    has been written.
    """

    schedule: Schedule
    policy: DiagnosticPolicy
    output_dir: Path
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _queue: queue.SimpleQueue[ExecutionUnit] = field(default_factory=queue.SimpleQueue)
    _cancel: threading.Event = field(default_factory=threading.Event)
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _results: dict[int, RunResult] = field(default_factory=dict)
    _closed: bool = False

    def __post_init__(self) -> None:
        for unit in self.schedule.units:
            self._queue.put(unit)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop handing out units; attempts in flight still finish."""
        if not self._cancel.is_set():
            log.warning("Cancelling run, waiting for running attempts to finish")
        self._cancel.set()

    def claim(self) -> ExecutionUnit | None:
        """Take the next unit, or None when drained or cancelled."""
        if self._closed or self._cancel.is_set():
            return None
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def record(self, unit: ExecutionUnit, result: RunResult) -> None:
        with self._lock:
            self._results[unit.index] = result

    def results(self) -> Sequence[RunResult]:
        """Results in plan order; units never claimed are recorded as skipped."""
        with self._lock:
            for unit in self.schedule.units:
                if unit.index not in self._results:
                    self._results[unit.index] = interrupted_result(unit)
            return [self._results[unit.index] for unit in self.schedule.units]

    def close(self) -> None:
        self._closed = True
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break


def interrupted_result(unit: ExecutionUnit) -> RunResult:
    """Result for a unit that never started because the run was cancelled."""
    attempt = RunAttempt(
        index=0,
        started_at=datetime.now(timezone.utc),
        duration=0.0,
        outcome="skipped",
        error=AttemptError(kind="error", message="Run interrupted before the test started"),
    )
    return RunResult(test=unit.test, project=unit.project.name, attempts=[attempt])


@dataclass(frozen=True, kw_only=True)
class WorkerPool:
    """Fixed size pool of worker threads pulling units from the run context.

    Each worker runs its own event loop and opens its own engines, so
    sessions never cross workers. Within a worker units run one at a time in
    the order they were claimed.
    """

    context: RunContext
    manifests: Mapping[str, EngineManifest[Any, Any]]

    def run(self) -> Sequence[RunResult]:
        """Run every unit and return the results in plan order."""
        worker_count = self.context.schedule.worker_count
        log.info(
            "Running %d unit(s) on %d worker(s)",
            len(self.context.schedule.units),
            worker_count,
        )

        with ThreadPoolExecutor(
            max_workers=worker_count, thread_name_prefix="harness-worker"
        ) as executor:
            futures = [
                executor.submit(self._work, index) for index in range(worker_count)
            ]
            try:
                wait(futures)
            except KeyboardInterrupt:
                self.context.cancel()
                wait(futures)

            for future in futures:
                future.result()

        return self.context.results()

    def _work(self, worker_index: int) -> None:
        asyncio.run(self._worker_loop(worker_index))

    async def _worker_loop(self, worker_index: int) -> None:
        async with EngineSet(manifests=self.manifests) as engines:
            provider = ExecutionContextProvider(
                engines=engines,
                policy=self.context.policy,
                output_dir=self.context.output_dir,
            )
            controller = RetryController(
                provider=provider, is_cancelled=lambda: self.context.cancelled
            )

            while (unit := self.context.claim()) is not None:
                log.info(
                    "Worker %d running %s [%s]",
                    worker_index,
                    unit.test.id,
                    unit.project.name,
                )
                result = await controller.run_with_retries(unit, unit.retries)
                log.info(
                    "Test completed: test=%s project=%s outcome=%s attempts=%d",
                    unit.test.id,
                    unit.project.name,
                    result.outcome,
                    result.attempt_count,
                )
                self.context.record(unit, result)
