"""Engine manifest definition for the plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from pydantic import BaseModel

from e2e_harness.engines.base import AutomationEngine


@dataclass(frozen=True, kw_only=True)
class EngineManifest[ConfigT: BaseModel, S]:
    """Manifest describing an engine plugin.

    The config class validates the ``use`` options of projects running on the
    engine. The factory opens one engine per worker and closes it when the
    worker finishes.
    """

    config_cls: type[ConfigT]
    engine_factory: Callable[
        [], AbstractAsyncContextManager[AutomationEngine[ConfigT, S]]
    ]
