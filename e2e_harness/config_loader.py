"""Load harness.yaml and resolve the settings of a run."""

import logging
import os
from collections.abc import Callable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from e2e_harness.engines.loading import load_engine_manifest
from e2e_harness.engines.manifest import EngineManifest
from e2e_harness.errors import ConfigError, EngineNotFoundError
from e2e_harness.models.case import ResolvedProject
from e2e_harness.models.config import HarnessConfig, ProjectConfig, WorkerMode

log = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "harness.yaml"
CI_RETRIES = 2
FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


def load_config(path: Path) -> HarnessConfig:
    """Load and validate a harness configuration file.

    Raises:
        ConfigError: If the file is missing, is not valid YAML, is empty or
            does not match the configuration schema

    """
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ConfigError(f"Empty config file: {path}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    try:
        return HarnessConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config schema in {path}: {e}") from e


def load_env_file(
    config: HarnessConfig, root: Path, environ: MutableMapping[str, str]
) -> None:
    """Add variables from the configured dotenv file; existing ones win."""
    if config.env_file is None:
        return
    path = root / config.env_file
    if not path.is_file():
        raise ConfigError(f"Env file not found: {path}")

    for key, value in dotenv_values(path).items():
        if value is not None:
            environ.setdefault(key, value)
    log.info("Loaded environment from %s", path)


def is_ci(environ: Mapping[str, str]) -> bool:
    """Check the CI indicator variable."""
    return environ.get("CI", "").strip().lower() not in FALSE_VALUES


def default_worker_count() -> int:
    return max(1, (os.cpu_count() or 2) // 2)


@dataclass(frozen=True, kw_only=True)
class Overrides:
    """Command line overrides of configured values."""

    projects: Sequence[str] = ()
    workers: int | None = None
    retries: int | None = None
    headed: bool = False
    debug: bool = False


@dataclass(frozen=True, kw_only=True)
class RunSettings:
    """Effective settings of one run."""

    config: HarnessConfig
    ci: bool
    mode: WorkerMode
    worker_count: int
    retries: int
    projects: Sequence[ResolvedProject]
    manifests: Mapping[str, EngineManifest[Any, Any]]
    test_dir: Path
    output_dir: Path
    report_dir: Path

    def metadata(self) -> dict[str, Any]:
        """Environment flags recorded in the report."""
        return {
            "ci": self.ci,
            "mode": self.mode,
            "workers": self.worker_count,
            "retries": self.retries,
            "projects": [project.name for project in self.projects],
        }


def resolve_settings(
    config: HarnessConfig,
    *,
    root: Path,
    environ: Mapping[str, str],
    overrides: Overrides = Overrides(),
    load_manifest: Callable[[str], EngineManifest[Any, Any]] = load_engine_manifest,
) -> RunSettings:
    """Combine configuration, CI defaults and command line overrides.

    On CI the defaults switch to serial mode and a retry budget of 2.
    Explicit configuration values and overrides win over those defaults;
    ``debug`` forces one worker, no retries, no timeout and a headed browser.

    Raises:
        ConfigError: If a selected project is unknown, its engine is not
            installed or its options are invalid

    """
    ci = is_ci(environ)

    mode: WorkerMode
    if overrides.debug:
        mode = "serial"
    elif config.mode is not None:
        mode = config.mode
    else:
        mode = "serial" if ci and overrides.workers is None else "parallel"

    workers = overrides.workers or config.workers or default_worker_count()
    if mode == "serial":
        workers = 1

    if overrides.debug:
        retries = 0
    elif overrides.retries is not None:
        retries = overrides.retries
    elif config.retries is not None:
        retries = config.retries
    else:
        retries = CI_RETRIES if ci else 0

    selected = select_projects(config, overrides.projects)
    manifests: dict[str, EngineManifest[Any, Any]] = {}
    projects: list[ResolvedProject] = []
    for project in selected:
        if project.engine not in manifests:
            try:
                manifests[project.engine] = load_manifest(project.engine)
            except EngineNotFoundError as e:
                raise ConfigError(f"Project {project.name}: {e}") from e
        manifest = manifests[project.engine]

        options = dict(project.use)
        if overrides.headed or overrides.debug:
            if "headless" in manifest.config_cls.model_fields:
                options["headless"] = False
        try:
            validated = manifest.config_cls.model_validate(options)
        except ValidationError as e:
            raise ConfigError(f"Invalid options for project {project.name}: {e}") from e

        if overrides.debug:
            project_retries, timeout = 0, 0.0
        else:
            project_retries = retries
            if overrides.retries is None and project.retries is not None:
                project_retries = project.retries
            timeout = project.timeout if project.timeout is not None else config.timeout

        projects.append(
            ResolvedProject(
                name=project.name,
                engine=project.engine,
                options=validated,
                retries=project_retries,
                timeout=timeout,
                timeouts_disabled=overrides.debug,
            )
        )

    return RunSettings(
        config=config,
        ci=ci,
        mode=mode,
        worker_count=workers,
        retries=retries,
        projects=projects,
        manifests=manifests,
        test_dir=root / config.test_dir,
        output_dir=root / config.output_dir,
        report_dir=root / config.report_dir,
    )


def select_projects(
    config: HarnessConfig, names: Sequence[str]
) -> Sequence[ProjectConfig]:
    """Return the configured projects named on the command line, or all."""
    if not names:
        return list(config.projects)

    known = {project.name for project in config.projects}
    unknown = [name for name in names if name not in known]
    if unknown:
        raise ConfigError(
            f"Unknown project(s): {', '.join(unknown)}. "
            f"Available projects: {sorted(known)}"
        )
    return [project for project in config.projects if project.name in names]
