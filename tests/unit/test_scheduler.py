"""Tests for scheduler."""

import threading
from pathlib import Path
from typing import Any

from e2e_harness.context import TestInfo
from e2e_harness.engines.manifest import EngineManifest
from e2e_harness.models.config import DiagnosticPolicy
from e2e_harness.scheduler import RunContext, Schedule, WorkerPool, plan
from e2e_harness.testing.engine import EngineRecorder
from e2e_harness.testing.factories import TestCaseFactory

from ..conftest import MakeProjectFn


class TestPlan:
    """Tests for plan function."""

    __test__ = True

    def test_orders_units_by_project_then_test(
        self, make_project: MakeProjectFn
    ) -> None:
        """Lists every test for the first project before the second."""
        first, second = TestCaseFactory.batch(2)
        chromium, firefox = make_project("chromium"), make_project("firefox")

        schedule = plan([first, second], [chromium, firefox], 4, "parallel")

        assert [(unit.project.name, unit.test) for unit in schedule.units] == [
            ("chromium", first),
            ("chromium", second),
            ("firefox", first),
            ("firefox", second),
        ]
        assert [unit.index for unit in schedule.units] == [0, 1, 2, 3]

    def test_skips_projects_a_test_is_not_bound_to(
        self, make_project: MakeProjectFn
    ) -> None:
        """Binds a test restricted to a project only to that project."""
        everywhere = TestCaseFactory.build()
        chromium_only = TestCaseFactory.build(projects=frozenset({"chromium"}))

        schedule = plan(
            [everywhere, chromium_only],
            [make_project("chromium"), make_project("firefox")],
            2,
            "parallel",
        )

        assert [(unit.project.name, unit.test) for unit in schedule.units] == [
            ("chromium", everywhere),
            ("chromium", chromium_only),
            ("firefox", everywhere),
        ]

    def test_serial_mode_uses_one_worker(self, make_project: MakeProjectFn) -> None:
        """Forces a single worker in serial mode."""
        schedule = plan(TestCaseFactory.batch(4), [make_project()], 8, "serial")

        assert schedule.worker_count == 1

    def test_caps_workers_at_unit_count(self, make_project: MakeProjectFn) -> None:
        """Never starts more workers than there are units."""
        schedule = plan(TestCaseFactory.batch(2), [make_project()], 8, "parallel")

        assert schedule.worker_count == 2

    def test_keeps_one_worker_without_units(self, make_project: MakeProjectFn) -> None:
        """Plans one worker when nothing is selected."""
        schedule = plan([], [make_project()], 4, "parallel")

        assert schedule.units == []
        assert schedule.worker_count == 1


class TestRunContext:
    """Tests for RunContext."""

    __test__ = True

    def test_claims_each_unit_once(
        self, make_project: MakeProjectFn, tmp_path: Path
    ) -> None:
        """Hands out units in plan order and then None."""
        schedule = plan(TestCaseFactory.batch(3), [make_project()], 1, "serial")

        with RunContext(
            schedule=schedule, policy=DiagnosticPolicy(), output_dir=tmp_path
        ) as context:
            claimed = [context.claim() for _ in range(4)]

        assert claimed == [*schedule.units, None]

    def test_cancel_stops_claims_and_skips_rest(
        self, make_project: MakeProjectFn, tmp_path: Path
    ) -> None:
        """Units not claimed before a cancel are reported as skipped."""
        schedule = plan(TestCaseFactory.batch(3), [make_project()], 1, "serial")

        with RunContext(
            schedule=schedule, policy=DiagnosticPolicy(), output_dir=tmp_path
        ) as context:
            context.claim()
            context.cancel()

            assert context.cancelled is True
            assert context.claim() is None
            results = context.results()

        assert len(results) == 3
        assert [result.outcome for result in results] == ["skipped"] * 3
        assert [result.test for result in results] == [
            unit.test for unit in schedule.units
        ]

    def test_close_drains_the_queue(
        self, make_project: MakeProjectFn, tmp_path: Path
    ) -> None:
        """Nothing can be claimed after close."""
        schedule = plan(TestCaseFactory.batch(2), [make_project()], 1, "serial")
        context = RunContext(
            schedule=schedule, policy=DiagnosticPolicy(), output_dir=tmp_path
        )

        context.close()

        assert context.claim() is None


def run_pool(
    schedule: Schedule,
    manifests: dict[str, EngineManifest[Any, Any]],
    output_dir: Path,
) -> tuple[RunContext, list[Any]]:
    with RunContext(
        schedule=schedule, policy=DiagnosticPolicy(), output_dir=output_dir
    ) as context:
        results = list(WorkerPool(context=context, manifests=manifests).run())
    return context, results


def test_single_worker_runs_every_unit_in_order(
    manifests: dict[str, EngineManifest[Any, Any]],
    recorder: EngineRecorder,
    make_project: MakeProjectFn,
    tmp_path: Path,
) -> None:
    """Two tests on two projects with one worker give four ordered results."""
    schedule = plan(
        TestCaseFactory.batch(2),
        [make_project("chromium"), make_project("firefox")],
        1,
        "parallel",
    )

    _, results = run_pool(schedule, manifests, tmp_path)

    assert len(results) == 4
    assert [(result.project, result.test) for result in results] == [
        (unit.project.name, unit.test) for unit in schedule.units
    ]
    assert all(result.outcome == "passed" for result in results)
    assert len(recorder.launched) == 4
    assert recorder.engines_opened == recorder.engines_closed == 1


def test_parallel_workers_run_each_unit_exactly_once(
    manifests: dict[str, EngineManifest[Any, Any]],
    recorder: EngineRecorder,
    make_project: MakeProjectFn,
    tmp_path: Path,
) -> None:
    """Workers share the queue without running a unit twice."""
    seen: list[str] = []
    lock = threading.Lock()

    async def body(page: Any, info: TestInfo) -> None:
        with lock:
            seen.append(info.title)

    cases = [TestCaseFactory.build(title=f"test {n}", body=body) for n in range(12)]
    schedule = plan(cases, [make_project()], 4, "parallel")

    _, results = run_pool(schedule, manifests, tmp_path)

    assert schedule.worker_count == 4
    assert sorted(seen) == sorted(case.title for case in cases)
    assert [result.test for result in results] == cases
    assert len(recorder.launched) == 12
    assert recorder.engines_opened == recorder.engines_closed


def test_retries_run_on_the_same_worker(
    manifests: dict[str, EngineManifest[Any, Any]],
    make_project: MakeProjectFn,
    tmp_path: Path,
) -> None:
    """A failing unit is retried up to the project's budget."""
    threads: list[str] = []

    async def body(page: Any, info: TestInfo) -> None:
        threads.append(threading.current_thread().name)
        assert info.attempt == 2

    schedule = plan(
        [TestCaseFactory.build(body=body)], [make_project(retries=2)], 1, "parallel"
    )

    _, results = run_pool(schedule, manifests, tmp_path)

    assert results[0].outcome == "passed"
    assert results[0].attempt_count == 3
    assert results[0].status == "flaky"
    assert len(set(threads)) == 1


def test_launch_failures_do_not_stop_the_run(
    manifests: dict[str, EngineManifest[Any, Any]],
    recorder: EngineRecorder,
    make_project: MakeProjectFn,
    tmp_path: Path,
) -> None:
    """An environment failure only fails its own unit."""
    recorder.launch_failures = 1
    schedule = plan(TestCaseFactory.batch(2), [make_project()], 1, "serial")

    _, results = run_pool(schedule, manifests, tmp_path)

    assert [result.outcome for result in results] == ["failed", "passed"]
    assert results[0].final_attempt.error is not None
    assert results[0].final_attempt.error.kind == "environment"
