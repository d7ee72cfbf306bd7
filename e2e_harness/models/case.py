"""Models for registered test cases."""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel

type TestBody = Callable[..., Awaitable[None]]


@dataclass(frozen=True, kw_only=True)
class TestCase:
    """A registered test, immutable once discovered."""

    __test__ = False

    id: str
    title: str
    file: Path
    body: Callable[..., Awaitable[None]]
    tags: frozenset[str] = frozenset()
    projects: frozenset[str] | None = None
    timeout: float | None = None
    skip: bool = False
    only: bool = False

    @property
    def full_title(self) -> str:
        """Title used for grep filtering: file, title and tags."""
        return " ".join([self.id, *sorted(self.tags)])

    def applies_to(self, project_name: str) -> bool:
        """Check whether the test runs against the given project."""
        return self.projects is None or project_name in self.projects

    async def invoke(self, page: Any, info: Any) -> None:
        """Call the body with the page, and the test info if it accepts one."""
        parameters = inspect.signature(self.body).parameters
        if len(parameters) >= 2:
            await self.body(page, info)
        else:
            await self.body(page)


@dataclass(frozen=True, kw_only=True)
class ResolvedProject:
    """A project whose engine options have been validated."""

    name: str
    engine: str
    options: BaseModel
    retries: int
    timeout: float
    timeouts_disabled: bool = False


@dataclass(frozen=True, kw_only=True)
class ExecutionUnit:
    """One (test, project) pairing scheduled for execution."""

    index: int
    test: TestCase
    project: ResolvedProject

    @property
    def retries(self) -> int:
        return self.project.retries

    @property
    def timeout(self) -> float:
        """Seconds the body may run; 0 disables the limit."""
        if self.project.timeouts_disabled:
            return 0.0
        if self.test.timeout is not None:
            return self.test.timeout
        return self.project.timeout
