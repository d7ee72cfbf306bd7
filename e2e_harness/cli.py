"""CLI entry point for the browser test harness."""

import argparse
import contextlib
import logging
import os
import shutil
import sys
import webbrowser
from collections.abc import Callable, MutableMapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from e2e_harness.config_loader import (
    DEFAULT_CONFIG_FILE,
    Overrides,
    load_config,
    load_env_file,
    resolve_settings,
)
from e2e_harness.engines.loading import load_engine_manifest
from e2e_harness.engines.manifest import EngineManifest
from e2e_harness.errors import DiscoveryError, HarnessError
from e2e_harness.registry import discover, select_tests
from e2e_harness.reporter import HTML_REPORT_FILE, finalize, write_report
from e2e_harness.scheduler import RunContext, WorkerPool, plan
from e2e_harness.watch import watch
from e2e_harness.web_server import web_server

log = logging.getLogger("e2e_harness")


def run(
    *,
    config_path: Path,
    paths: Sequence[str] = (),
    grep: str | None = None,
    grep_invert: str | None = None,
    overrides: Overrides = Overrides(),
    list_only: bool = False,
    environ: MutableMapping[str, str] | None = None,
    load_manifest: Callable[[str], EngineManifest[Any, Any]] = load_engine_manifest,
) -> int:
    """Discover, run and report tests, returning the exit code."""
    environ = os.environ if environ is None else environ
    root = config_path.parent

    config = load_config(config_path)
    load_env_file(config, root, environ)
    if overrides.debug:
        environ.setdefault("PWDEBUG", "1")

    settings = resolve_settings(
        config,
        root=root,
        environ=environ,
        overrides=overrides,
        load_manifest=load_manifest,
    )
    started_at = datetime.now(timezone.utc)

    try:
        cases = discover([settings.test_dir], config.test_match)
        cases = select_tests(cases, grep=grep, grep_invert=grep_invert, paths=paths)
    except DiscoveryError as e:
        log.error("Discovery failed: %s", e)
        report = finalize(
            [],
            started_at=started_at,
            metadata=settings.metadata(),
            validation_errors=[str(e)],
        )
        write_report(report, settings.report_dir, config.reporters)
        return report.exit_code

    schedule = plan(cases, settings.projects, settings.worker_count, settings.mode)

    if list_only:
        for unit in schedule.units:
            print(f"[{unit.project.name}] {unit.test.id}")
        files = {case.file for case in cases}
        print(f"Total: {len(schedule.units)} test(s) in {len(files)} file(s)")
        return 0

    log.info(
        "Running %d test(s) using %d worker(s) (mode=%s, ci=%s)",
        len(schedule.units),
        schedule.worker_count,
        settings.mode,
        settings.ci,
    )
    shutil.rmtree(settings.output_dir, ignore_errors=True)

    with web_server(config.web_server, ci=settings.ci, root=root):
        with RunContext(
            schedule=schedule,
            policy=config.diagnostics,
            output_dir=settings.output_dir,
        ) as context:
            results = WorkerPool(context=context, manifests=settings.manifests).run()
            report = finalize(
                results,
                started_at=started_at,
                metadata=settings.metadata(),
                interrupted=context.cancelled,
            )
            write_report(report, settings.report_dir, config.reporters)

    return report.exit_code


def show_report(
    report_dir: Path, open_browser: Callable[[str], Any] = webbrowser.open
) -> int:
    """Open the HTML report in a browser."""
    path = report_dir / HTML_REPORT_FILE
    if not path.is_file():
        log.error("No report found at %s, run the tests first", path)
        return 1
    log.info("Opening %s", path)
    open_browser(path.resolve().as_uri())
    return 0


def watch_and_run(run_once: Callable[[], int], roots: Sequence[Path]) -> int:
    """Run once, then again every time files under roots change."""
    exit_code = run_once()
    log.info("Waiting for file changes. Press Ctrl+C to exit.")
    try:
        with contextlib.closing(watch(roots)) as changes_iter:
            for changes in changes_iter:
                log.info(
                    "Change detected: %s", ", ".join(str(path) for path in changes)
                )
                exit_code = run_once()
    except KeyboardInterrupt:
        log.info("Watch mode stopped")
    return exit_code


def count_argument(minimum: int) -> Callable[[str], int]:
    """Argument type for an integer of at least minimum."""

    def parse(value: str) -> int:
        try:
            count = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid number: {value}") from None
        if count < minimum:
            raise argparse.ArgumentTypeError(f"must be at least {minimum}")
        return count

    return parse


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        default=Path(DEFAULT_CONFIG_FILE),
        help="Path to the harness configuration file",
    )

    parser = argparse.ArgumentParser(description="Run browser end-to-end tests")
    commands = parser.add_subparsers(dest="command", required=True)

    test = commands.add_parser("test", parents=[common], help="Run tests")
    test.add_argument(
        "paths",
        nargs="*",
        help="Only run test files whose path matches one of these patterns",
    )
    test.add_argument(
        "--project",
        action="append",
        default=[],
        help="Only run the named project (repeatable)",
    )
    test.add_argument(
        "-g", "--grep", help="Only run tests whose title matches this pattern"
    )
    test.add_argument(
        "--grep-invert", help="Skip tests whose title matches this pattern"
    )
    test.add_argument(
        "--workers", type=count_argument(1), help="Number of parallel workers"
    )
    test.add_argument(
        "--retries", type=count_argument(0), help="Retry budget for failed tests"
    )
    test.add_argument(
        "--headed", action="store_true", help="Run browsers in headed mode"
    )
    test.add_argument(
        "--debug",
        action="store_true",
        help="One headed worker, no timeout, no retries, with the inspector",
    )
    test.add_argument(
        "--ui", action="store_true", help="Interactive UI mode (not supported)"
    )
    test.add_argument(
        "--watch", action="store_true", help="Re-run tests when files change"
    )
    test.add_argument(
        "--list", action="store_true", help="List the tests without running them"
    )

    report = commands.add_parser(
        "show-report", parents=[common], help="Open the HTML report"
    )
    report.add_argument(
        "report_dir",
        nargs="?",
        type=Path,
        help="Report directory (defaults to report_dir from the configuration)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        exit_code = _dispatch(parser, args)
    except HarnessError as e:
        log.error("%s", e)
        exit_code = 1
    sys.exit(exit_code)


def _dispatch(parser: argparse.ArgumentParser, args: argparse.Namespace) -> int:
    config_path: Path = args.config

    if args.command == "show-report":
        report_dir = args.report_dir
        if report_dir is None:
            report_dir = config_path.parent / load_config(config_path).report_dir
        return show_report(report_dir)

    if args.ui:
        parser.error("--ui is not supported, use --debug or --headed instead")

    overrides = Overrides(
        projects=tuple(args.project),
        workers=args.workers,
        retries=args.retries,
        headed=args.headed,
        debug=args.debug,
    )

    def run_once() -> int:
        return run(
            config_path=config_path,
            paths=args.paths,
            grep=args.grep,
            grep_invert=args.grep_invert,
            overrides=overrides,
            list_only=args.list,
        )

    if args.watch and not args.list:
        test_dir = config_path.parent / load_config(config_path).test_dir
        return watch_and_run(run_once, [test_dir])
    return run_once()


if __name__ == "__main__":  # pragma: no cover
    main()
