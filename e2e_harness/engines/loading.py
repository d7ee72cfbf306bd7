"""Find automation engines installed as plugins.

An engine package registers its manifest under the ``e2e_harness.engines``
entry-point group, so third-party engines become available to
``harness.yaml`` projects just by being installed next to the harness.
"""

from importlib.metadata import entry_points
from typing import Any

from e2e_harness.engines.manifest import EngineManifest
from e2e_harness.errors import EngineNotFoundError

ENTRY_POINT_GROUP = "e2e_harness.engines"


def installed_engines() -> list[str]:
    """Keys of every installed engine, sorted."""
    return sorted({entry.name for entry in entry_points(group=ENTRY_POINT_GROUP)})


def load_engine_manifest(key: str) -> EngineManifest[Any, Any]:
    """Import the manifest a project's ``engine`` key refers to.

    Raises:
        EngineNotFoundError: If no installed engine uses the key or its entry
            point does not lead to an engine manifest

    """
    matches = entry_points(group=ENTRY_POINT_GROUP, name=key)
    if not matches:
        raise EngineNotFoundError(
            f"Engine '{key}' not found. Available engines: {installed_engines()}"
        )

    entry, *_ = matches
    manifest = entry.load()
    if not isinstance(manifest, EngineManifest):
        raise EngineNotFoundError(
            f"Engine '{key}' points at {entry.value}, which is not an engine manifest"
        )
    return manifest
