"""Abstract base class for browser automation engines."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from pydantic import BaseModel


@dataclass(frozen=True, kw_only=True)
class SessionHandle[S]:
    """An isolated automation session owned by one worker for one attempt.

    ``page`` is what test bodies receive; ``state`` is whatever the engine
    needs to close the session again.
    """

    session_id: str
    page: Any
    state: S
    tracing: bool = False


@dataclass(frozen=True, kw_only=True)
class AutomationEngine[ConfigT: BaseModel, S](ABC):
    """Abstract base for automation engines.

    An engine instance belongs to a single worker and is only used from that
    worker's event loop. Generic type ConfigT is the engine's project option
    model and S the per-session state.
    """

    trace_file: ClassVar[str] = "trace.zip"

    @abstractmethod
    async def launch_session(self, config: ConfigT, *, trace: bool) -> SessionHandle[S]:
        """Open a fresh session for one attempt.

        Args:
            config: Validated project options for this engine
            trace: Record a step trace until the session is closed

        Returns:
            Handle for the new session

        """

    @abstractmethod
    async def close_session(
        self, handle: SessionHandle[S], *, trace_path: Path | None = None
    ) -> None:
        """Close a session, saving its trace to trace_path when one is given."""

    @abstractmethod
    async def screenshot(self, handle: SessionHandle[S], path: Path) -> None:
        """Save a screenshot of the session's page to path."""
