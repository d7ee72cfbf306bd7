"""Collect test cases from test files."""

import hashlib
import importlib.util
import logging
import re
import sys
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType

from e2e_harness.errors import DiscoveryError, FocusedTestError
from e2e_harness.models.case import TestBody, TestCase

log = logging.getLogger(__name__)

MARKER_ATTRIBUTE = "__harness_test__"

type Declared = tuple[TestDeclaration, TestBody]

# Declarations made while a test file executes, innermost file last.
_collectors: list[list[Declared]] = []


@dataclass(frozen=True, kw_only=True)
class TestDeclaration:
    """Metadata attached to a test body by the ``test`` decorator."""

    __test__ = False

    title: str
    tags: frozenset[str]
    projects: frozenset[str] | None
    timeout: float | None
    skip: bool = False
    only: bool = False


class TestDeclarator:
    """Decorator used in test files to declare tests.

    Example::

        @test("adds a todo item", tags={"@smoke"})
        async def add_todo(page): ...

    ``test.only`` marks a test as exclusive-only, which fails discovery, and
    ``test.skip`` records the test as skipped without running it.
    """

    __test__ = False

    def __call__(
        self,
        title: str,
        *,
        tags: Iterable[str] = (),
        projects: Iterable[str] | None = None,
        timeout: float | None = None,
    ) -> Callable[[TestBody], TestBody]:
        return self._declare(title, tags, projects, timeout)

    def only(
        self,
        title: str,
        *,
        tags: Iterable[str] = (),
        projects: Iterable[str] | None = None,
        timeout: float | None = None,
    ) -> Callable[[TestBody], TestBody]:
        return self._declare(title, tags, projects, timeout, only=True)

    def skip(
        self,
        title: str,
        *,
        tags: Iterable[str] = (),
        projects: Iterable[str] | None = None,
        timeout: float | None = None,
    ) -> Callable[[TestBody], TestBody]:
        return self._declare(title, tags, projects, timeout, skip=True)

    @staticmethod
    def _declare(
        title: str,
        tags: Iterable[str],
        projects: Iterable[str] | None,
        timeout: float | None,
        *,
        skip: bool = False,
        only: bool = False,
    ) -> Callable[[TestBody], TestBody]:
        declaration = TestDeclaration(
            title=title,
            tags=frozenset(tags),
            projects=frozenset(projects) if projects is not None else None,
            timeout=timeout,
            skip=skip,
            only=only,
        )

        def decorator(body: TestBody) -> TestBody:
            setattr(body, MARKER_ATTRIBUTE, declaration)
            if _collectors:
                _collectors[-1].append((declaration, body))
            return body

        return decorator


test = TestDeclarator()


def discover(
    source_roots: Sequence[Path], patterns: Sequence[str] = ("*.spec.py",)
) -> Sequence[TestCase]:
    """Collect test cases from files under the source roots.

    Files are visited in sorted path order and tests keep their definition
    order within a file.

    Raises:
        DiscoveryError: If a root is missing, a test file cannot be imported
            or declares the same title twice.
        FocusedTestError: If any test is declared with ``test.only``.

    """
    cases: list[TestCase] = []
    for root in source_roots:
        if not root.is_dir():
            raise DiscoveryError(f"Test directory not found: {root}")
        for path in find_test_files(root, patterns):
            cases.extend(collect_file(path, root))

    focused = [case.id for case in cases if case.only]
    if focused:
        raise FocusedTestError(focused)

    log.info("Discovered %d test(s) in %d root(s)", len(cases), len(source_roots))
    return cases


def find_test_files(root: Path, patterns: Sequence[str]) -> Sequence[Path]:
    """Find files matching any of the patterns, sorted by path."""
    files = {path for pattern in patterns for path in root.rglob(pattern)}
    return sorted(path for path in files if path.is_file())


def collect_file(path: Path, root: Path) -> Sequence[TestCase]:
    """Import a test file and return the tests it declares, in call order.

    Tests are taken from the decorator calls made while the file executes,
    so bodies sharing a Python name are all kept and tests imported from
    other files are not collected again.
    """
    module, declared = load_module(path)
    relative = path.relative_to(root).as_posix()

    cases: list[TestCase] = []
    seen: set[str] = set()
    for declaration, body in declared:
        if getattr(body, "__module__", None) != module.__name__:
            continue
        if declaration.title in seen:
            raise DiscoveryError(
                f"Duplicate test title {declaration.title!r} in {relative}"
            )
        seen.add(declaration.title)
        cases.append(
            TestCase(
                id=f"{relative} > {declaration.title}",
                title=declaration.title,
                file=path,
                body=body,
                tags=declaration.tags,
                projects=declaration.projects,
                timeout=declaration.timeout,
                skip=declaration.skip,
                only=declaration.only,
            )
        )
    return cases


def load_module(path: Path) -> tuple[ModuleType, Sequence[Declared]]:
    """Import a test file under a private module name.

    Returns the module and the test declarations made while it executed.
    """
    digest = hashlib.sha1(str(path.resolve()).encode()).hexdigest()[:12]
    name = f"_harness_tests_{digest}"
    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise DiscoveryError(f"Cannot load test file {path}")

    module = importlib.util.module_from_spec(spec)
    declared: list[Declared] = []
    sys.modules[name] = module
    _collectors.append(declared)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        del sys.modules[name]
        raise DiscoveryError(f"Cannot load test file {path}: {e}") from e
    finally:
        _collectors.pop()
    return module, declared


def select_tests(
    cases: Sequence[TestCase],
    *,
    grep: str | None = None,
    grep_invert: str | None = None,
    paths: Sequence[str] = (),
) -> Sequence[TestCase]:
    """Filter discovered tests by title and path regular expressions."""
    try:
        include = re.compile(grep) if grep else None
        exclude = re.compile(grep_invert) if grep_invert else None
        path_patterns = [re.compile(pattern) for pattern in paths]
    except re.error as e:
        raise DiscoveryError(f"Invalid filter pattern: {e}") from e

    selected: list[TestCase] = []
    for case in cases:
        if include and not include.search(case.full_title):
            continue
        if exclude and exclude.search(case.full_title):
            continue
        if path_patterns and not any(
            pattern.search(case.file.as_posix()) for pattern in path_patterns
        ):
            continue
        selected.append(case)
    return selected
