"""Aggregate run results into a report and write report artifacts."""

import html
import json
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from e2e_harness.models.config import ReporterName
from e2e_harness.models.result import Report, RunResult

log = logging.getLogger(__name__)

STATUS_SYMBOLS = {
    "passed": "✓",
    "failed": "✗",
    "timed-out": "⏱",
    "skipped": "-",
}

JSON_REPORT_FILE = "report.json"
HTML_REPORT_FILE = "index.html"


def finalize(
    results: Sequence[RunResult],
    *,
    started_at: datetime,
    metadata: Mapping[str, Any] | None = None,
    validation_errors: Sequence[str] = (),
    interrupted: bool = False,
) -> Report:
    """Build the report of a run from its final results."""
    duration = (datetime.now(timezone.utc) - started_at).total_seconds()
    return Report(
        results=tuple(results),
        started_at=started_at,
        duration=round(duration, 3),
        metadata=dict(metadata or {}),
        validation_errors=tuple(validation_errors),
        interrupted=interrupted,
    )


def format_result(result: RunResult) -> dict[str, Any]:
    """Format one result for JSON output."""
    error = result.final_attempt.error
    return {
        "test": result.test.id,
        "title": result.test.title,
        "file": str(result.test.file),
        "tags": sorted(result.test.tags),
        "project": result.project,
        "outcome": result.outcome,
        "status": result.status,
        "attempts": result.attempt_count,
        "duration": round(result.duration, 3),
        "error": (
            {"kind": error.kind, "message": error.message} if error is not None else None
        ),
        "diagnostics": [
            {"attempt": attempt.index, "kind": diag.kind, "path": str(diag.path)}
            for attempt in result.attempts
            for diag in attempt.diagnostics
        ],
        "log": [line for attempt in result.attempts for line in attempt.log],
    }


def format_output(report: Report) -> dict[str, Any]:
    """Format a report as a JSON document."""
    return {
        "started_at": report.started_at.isoformat(),
        "duration": report.duration,
        "metadata": dict(report.metadata),
        "validation_errors": list(report.validation_errors),
        "interrupted": report.interrupted,
        "total": len(report.results),
        "passed": report.count("expected"),
        "flaky": report.count("flaky"),
        "failed": report.count("unexpected"),
        "skipped": report.count("skipped"),
        "exit_code": report.exit_code,
        "results": [format_result(result) for result in report.results],
    }


def log_report_summary(log: logging.Logger, report: Report) -> None:
    """Log a formatted summary of the run, flaky and failing tests last."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for error in report.validation_errors:
        log.error("Validation failed: %s", error)

    for result in report.results:
        symbol = STATUS_SYMBOLS.get(result.outcome, "?")
        log.info(
            "%s [%s] %s: %s (%.2fs, %d attempt(s))",
            symbol,
            result.project,
            result.test.id,
            result.outcome,
            result.duration,
            result.attempt_count,
        )
        error = result.final_attempt.error
        if error is not None and result.outcome != "passed":
            log.info("  Error: %s", error.message)
        for diagnostic in result.diagnostics:
            log.info("  %s: %s", diagnostic.kind.capitalize(), diagnostic.path)

    flaky = [result for result in report.results if result.status == "flaky"]
    failed = [result for result in report.results if result.status == "unexpected"]
    if flaky:
        log.warning("%d flaky:", len(flaky))
        for result in flaky:
            log.warning("  [%s] %s", result.project, result.test.id)
    if failed:
        log.error("%d failed:", len(failed))
        for result in failed:
            log.error("  [%s] %s", result.project, result.test.id)
    if report.interrupted:
        log.warning("Run was interrupted")

    log.info(
        "%d passed, %d flaky, %d failed, %d skipped (%.2fs)",
        report.count("expected"),
        report.count("flaky"),
        report.count("unexpected"),
        report.count("skipped"),
        report.duration,
    )


def write_report(
    report: Report, report_dir: Path, reporters: Sequence[ReporterName]
) -> None:
    """Write the report artifacts selected by the configured reporters."""
    if "list" in reporters:
        log_report_summary(log, report)

    if "json" in reporters or "html" in reporters:
        report_dir.mkdir(parents=True, exist_ok=True)
    if "json" in reporters:
        path = report_dir / JSON_REPORT_FILE
        path.write_text(json.dumps(format_output(report), indent=2), encoding="utf-8")
        log.info("JSON report written to %s", path)
    if "html" in reporters:
        path = report_dir / HTML_REPORT_FILE
        path.write_text(render_html(report, report_dir), encoding="utf-8")
        log.info("HTML report written to %s", path)


def _link(path: Path, base: Path) -> str:
    try:
        target = path.resolve().relative_to(base.resolve()).as_posix()
    except ValueError:
        target = path.resolve().as_uri()
    return f'<a href="{html.escape(target)}">{html.escape(path.name)}</a>'


def render_html(report: Report, report_dir: Path) -> str:
    """Render a self-contained HTML page for the report."""
    rows: list[str] = []
    for result in report.results:
        error = result.final_attempt.error
        message = error.message if error is not None and result.outcome != "passed" else ""
        links = " ".join(_link(diag.path, report_dir) for diag in result.diagnostics)
        rows.append(
            f'<tr class="{result.status}">'
            f"<td>{html.escape(result.project)}</td>"
            f"<td>{html.escape(result.test.id)}</td>"
            f"<td>{html.escape(result.outcome)}</td>"
            f"<td>{html.escape(result.status)}</td>"
            f"<td>{result.attempt_count}</td>"
            f"<td>{result.duration:.2f}s</td>"
            f"<td><pre>{html.escape(message)}</pre></td>"
            f"<td>{links}</td>"
            "</tr>"
        )

    errors = "".join(
        f'<p class="unexpected">{html.escape(error)}</p>'
        for error in report.validation_errors
    )
    summary = (
        f"{report.count('expected')} passed, {report.count('flaky')} flaky, "
        f"{report.count('unexpected')} failed, {report.count('skipped')} skipped"
    )
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Test report</title>
<style>
body {{ font-family: sans-serif; margin: 2em; }}
table {{ border-collapse: collapse; width: 100%; }}
td, th {{ border: 1px solid #ddd; padding: 4px 8px; text-align: left; }}
pre {{ margin: 0; white-space: pre-wrap; }}
.expected {{ background: #eaf7ea; }}
.flaky {{ background: #fff6db; }}
.unexpected {{ background: #fbe9e9; }}
.skipped {{ color: #777; }}
</style>
</head>
<body>
<h1>Test report</h1>
<p>Started {html.escape(report.started_at.isoformat())}, took {report.duration:.2f}s.
{html.escape(summary)}{" (interrupted)" if report.interrupted else ""}</p>
{errors}
<table>
<tr><th>Project</th><th>Test</th><th>Outcome</th><th>Status</th>
<th>Attempts</th><th>Duration</th><th>Error</th><th>Diagnostics</th></tr>
{"".join(rows)}
</table>
</body>
</html>
"""
