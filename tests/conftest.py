"""Shared fixtures."""

from collections.abc import AsyncGenerator, Iterator, Mapping
from pathlib import Path
from typing import Any, Protocol

import pytest
from aioresponses import aioresponses as aioresponses_cls

from e2e_harness.context import EngineSet, ExecutionContextProvider
from e2e_harness.engines.manifest import EngineManifest
from e2e_harness.models.case import ResolvedProject
from e2e_harness.models.config import DiagnosticPolicy
from e2e_harness.testing.engine import EngineRecorder, FakeConfig, fake_manifest


class WriteSpecFn(Protocol):
    """Protocol for test file creation function."""

    def __call__(self, name: str, source: str) -> Path:
        """Write a test file under the test directory and return its path."""


class MakeProjectFn(Protocol):
    """Protocol for project creation function."""

    def __call__(
        self, name: str = "fake", *, retries: int = 0, timeout: float = 5.0
    ) -> ResolvedProject:
        """Create a project running on the fake engine."""


@pytest.fixture
def test_dir(tmp_path: Path) -> Path:
    """Directory holding test files."""
    path = tmp_path / "e2e"
    path.mkdir()
    return path


@pytest.fixture
def write_spec(test_dir: Path) -> WriteSpecFn:
    """Return a function to write test files."""

    def _write(name: str, source: str) -> Path:
        path = test_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(source, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def recorder() -> EngineRecorder:
    """Recorder shared by the fake engines of a test."""
    return EngineRecorder()


@pytest.fixture
def manifests(recorder: EngineRecorder) -> Mapping[str, EngineManifest[Any, Any]]:
    """Engine manifests with the fake engine registered as 'fake'."""
    return {"fake": fake_manifest(recorder)}


@pytest.fixture
def make_project() -> MakeProjectFn:
    """Return a function to create projects on the fake engine."""

    def _make(
        name: str = "fake", *, retries: int = 0, timeout: float = 5.0
    ) -> ResolvedProject:
        return ResolvedProject(
            name=name,
            engine="fake",
            options=FakeConfig(label=name),
            retries=retries,
            timeout=timeout,
        )

    return _make


@pytest.fixture
async def engines(
    manifests: Mapping[str, EngineManifest[Any, Any]],
) -> AsyncGenerator[EngineSet, None]:
    """Engines of a single worker, closed after the test."""
    async with EngineSet(manifests=manifests) as engine_set:
        yield engine_set


@pytest.fixture
def provider(engines: EngineSet, tmp_path: Path) -> ExecutionContextProvider:
    """Session provider tracing from the first retry."""
    return ExecutionContextProvider(
        engines=engines,
        policy=DiagnosticPolicy(trace="on-first-retry", screenshot="off"),
        output_dir=tmp_path / "test-results",
    )


@pytest.fixture
def aioresponses() -> Iterator[aioresponses_cls]:
    """Mock aiohttp requests for the duration of a test."""
    with aioresponses_cls() as mocked:
        yield mocked
