"""Detect changes to test files for watch mode.

Uses watchdog to receive file system events for the test directories.
Events arriving close together are batched so that saving several files at
once triggers a single re-run.
"""

import logging
import os
import queue
from collections.abc import Callable, Generator, Sequence
from pathlib import Path
from typing import Protocol

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

log = logging.getLogger(__name__)

CHANGE_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}
)


class ObserverLike(Protocol):
    """The part of a watchdog observer used by watch mode."""

    def schedule(
        self, event_handler: FileSystemEventHandler, path: str, *, recursive: bool
    ) -> object: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def join(self, timeout: float | None = None) -> None: ...


class ChangeHandler(FileSystemEventHandler):
    """Queue the paths of changed files with the watched suffix."""

    def __init__(self, changes: "queue.SimpleQueue[Path]", suffix: str = ".py") -> None:
        super().__init__()
        self.changes = changes
        self.suffix = suffix

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in CHANGE_EVENTS:
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if not raw:
                continue
            path = Path(os.fsdecode(raw))
            if path.suffix == self.suffix:
                self.changes.put(path)


def watch(
    roots: Sequence[Path],
    *,
    suffix: str = ".py",
    debounce: float = 0.2,
    observer_factory: Callable[[], ObserverLike] = Observer,
) -> Generator[Sequence[Path], None, None]:
    """Yield the changed files each time something under the roots changes.

    The observer runs until the generator is closed.
    """
    changes: queue.SimpleQueue[Path] = queue.SimpleQueue()
    handler = ChangeHandler(changes, suffix)
    observer = observer_factory()
    for root in roots:
        if root.is_dir():
            observer.schedule(handler, str(root), recursive=True)
        else:
            log.warning("Not watching missing directory %s", root)
    observer.start()
    try:
        while True:
            batch = {wait_for_change(changes)}
            while True:
                try:
                    batch.add(changes.get(timeout=debounce))
                except queue.Empty:
                    break
            yield sorted(batch)
    finally:
        observer.stop()
        observer.join(timeout=2.0)


def wait_for_change(changes: "queue.SimpleQueue[Path]") -> Path:
    # Short timeouts keep the main thread responsive to Ctrl+C.
    while True:
        try:
            return changes.get(timeout=1.0)
        except queue.Empty:
            continue
