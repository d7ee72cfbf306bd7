"""Models for the harness configuration loaded from harness.yaml."""

from collections.abc import Mapping, Sequence
from typing import Any, Literal

from pydantic import Field, field_validator

from e2e_harness.models.base import Model

type WorkerMode = Literal["parallel", "serial"]
type TraceMode = Literal["off", "on", "on-first-retry", "retain-on-failure"]
type ScreenshotMode = Literal["off", "on", "only-on-failure"]
type ReporterName = Literal["list", "json", "html"]


class Viewport(Model):
    """Page viewport in CSS pixels."""

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class DiagnosticPolicy(Model):
    """What to capture for each attempt."""

    trace: TraceMode = Field(
        default="on-first-retry",
        description="When to record a step trace of the session",
    )
    screenshot: ScreenshotMode = Field(
        default="off", description="When to take a screenshot at the end of a test"
    )


class WebServerConfig(Model):
    """Local server started before the run and stopped after it."""

    command: str = Field(..., description="Shell command that starts the server")
    url: str = Field(..., description="URL polled until the server answers")
    timeout: float = Field(default=60.0, gt=0, description="Seconds to wait for url")
    reuse_existing_server: bool | None = Field(
        default=None,
        description="Use an already running server (defaults to true outside CI)",
    )
    cwd: str | None = Field(default=None, description="Working directory")


class ProjectConfig(Model):
    """Named execution target, e.g. a browser engine with a device profile."""

    name: str = Field(..., min_length=1, description="Project name")
    engine: str = Field(default="playwright", description="Automation engine key")
    use: Mapping[str, Any] = Field(
        default_factory=dict, description="Engine specific launch options"
    )
    retries: int | None = Field(default=None, ge=0, description="Retry budget")
    timeout: float | None = Field(
        default=None, ge=0, description="Per test timeout in seconds (0 disables)"
    )


class HarnessConfig(Model):
    """Complete harness configuration."""

    test_dir: str = Field(default="tests", description="Directory holding test files")
    test_match: Sequence[str] = Field(
        default=("*.spec.py",), description="Glob patterns of test files"
    )
    timeout: float = Field(
        default=30.0, ge=0, description="Per test timeout in seconds (0 disables)"
    )
    retries: int | None = Field(
        default=None, ge=0, description="Retry budget (defaults to 2 on CI, else 0)"
    )
    workers: int | None = Field(
        default=None, ge=1, description="Worker count (defaults to half the CPUs)"
    )
    mode: WorkerMode | None = Field(
        default=None, description="Worker mode (defaults to serial on CI)"
    )
    output_dir: str = Field(default="test-results", description="Attempt artifacts")
    report_dir: str = Field(default="harness-report", description="Report bundle")
    reporters: Sequence[ReporterName] = Field(default=("list", "html"))
    env_file: str | None = Field(default=None, description="dotenv file to load")
    diagnostics: DiagnosticPolicy = Field(default_factory=DiagnosticPolicy)
    web_server: WebServerConfig | None = None
    projects: Sequence[ProjectConfig] = Field(..., min_length=1)

    @field_validator("projects")
    @classmethod
    def _unique_project_names(
        cls, projects: Sequence[ProjectConfig]
    ) -> Sequence[ProjectConfig]:
        names = [project.name for project in projects]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate project names: {', '.join(duplicates)}")
        return projects
