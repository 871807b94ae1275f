"""Change watcher.

Subscribes to filesystem notifications with watchdog, coalesces bursts of
raw events per path and emits one change-set per quiet period.

Debouncing is an explicit state machine::

    IDLE --event--> ACCUMULATING --quiet for `window`--> FLUSHING --> IDLE
                       ^    |
                       +----+ event: deadline reset to now + window

Every event resets the deadline, so a steady stream of saves keeps the
batch open until the editor goes quiet.
"""

from __future__ import annotations

import enum
import logging
import os
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class ChangeKind(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


def merge_kind(previous: ChangeKind | None, new: ChangeKind) -> ChangeKind:
    """Collapse two events for one path within a window.

    The latest kind wins, except that a modification after a creation is
    still a creation as far as the build graph is concerned.
    """
    if previous is ChangeKind.CREATED and new is ChangeKind.MODIFIED:
        return ChangeKind.CREATED
    return new


class ChangeCoalescer:
    """Accumulates path-level events into a change-set."""

    def __init__(self) -> None:
        self._changes: dict[Path, ChangeKind] = {}

    def add(self, path: Path, kind: ChangeKind) -> None:
        self._changes[path] = merge_kind(self._changes.get(path), kind)

    def update(self, changes: dict[Path, ChangeKind]) -> None:
        for path, kind in changes.items():
            self.add(path, kind)

    def drain(self) -> dict[Path, ChangeKind]:
        changes, self._changes = self._changes, {}
        return changes

    def __len__(self) -> int:
        return len(self._changes)

    def __bool__(self) -> bool:
        return bool(self._changes)


class DebounceState(enum.Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


class Debouncer:
    """Thread-safe debounce timer over a ChangeCoalescer.

    Producers call :meth:`push`; one consumer calls :meth:`next_batch`,
    which blocks until a window closes with no further events.

    Attributes:
        window: Quiet period in seconds.
        state: Current DebounceState.
    """

    def __init__(self, window: float, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.state = DebounceState.IDLE
        self._clock = clock
        self._deadline = 0.0
        self._pending = ChangeCoalescer()
        self._cond = threading.Condition()
        self._closed = False

    def push(self, path: Path, kind: ChangeKind) -> None:
        with self._cond:
            if self._closed:
                return
            self._pending.add(path, kind)
            self._deadline = self._clock() + self.window
            self.state = DebounceState.ACCUMULATING
            self._cond.notify_all()

    def next_batch(self, timeout: float | None = None) -> dict[Path, ChangeKind] | None:
        """Wait for the next coalesced change-set.

        Args:
            timeout: Give up after this many seconds while idle.

        Returns:
            The change-set, or None on timeout or after :meth:`close`.
        """
        give_up = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._closed:
                    return None
                now = self._clock()
                if self.state is DebounceState.ACCUMULATING:
                    remaining = self._deadline - now
                    if remaining <= 0:
                        self.state = DebounceState.FLUSHING
                        batch = self._pending.drain()
                        self.state = DebounceState.IDLE
                        return batch
                    self._cond.wait(remaining)
                    continue
                if give_up is not None and now >= give_up:
                    return None
                self._cond.wait(None if give_up is None else give_up - now)

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


def _inside(path: Path, roots: Iterable[Path]) -> bool:
    return any(path == root or root in path.parents for root in roots)


class _ChangeHandler(FileSystemEventHandler):
    """Translates watchdog events into path-level changes."""

    def __init__(self, watcher: ChangeWatcher):
        super().__init__()
        self.watcher = watcher

    def _accept(self, raw: str | bytes) -> Path | None:
        path = Path(os.fsdecode(raw))
        if not _inside(path, self.watcher.roots) or _inside(path, self.watcher.ignore):
            return None
        return path

    def on_any_event(self, event: FileSystemEvent) -> None:
        kind = event.event_type
        if kind == "moved":
            src = self._accept(event.src_path)
            dest = self._accept(event.dest_path)
            if src is not None:
                self.watcher.push(src, ChangeKind.DELETED)
            if dest is not None and not event.is_directory:
                self.watcher.push(dest, ChangeKind.CREATED)
            return
        if kind == "deleted":
            change = ChangeKind.DELETED
        elif event.is_directory:
            # contents of created directories arrive as their own events
            return
        elif kind == "created":
            change = ChangeKind.CREATED
        elif kind == "modified":
            change = ChangeKind.MODIFIED
        else:
            return
        path = self._accept(event.src_path)
        if path is not None:
            self.watcher.push(path, change)


class ChangeWatcher:
    """Watches source roots and yields coalesced change-sets.

    Attributes:
        roots: Directories watched recursively.
        ignore: Directories whose events are dropped (the output tree).
        debounce: Quiet period in seconds.
    """

    def __init__(
        self,
        roots: Iterable[Path],
        ignore: Iterable[Path] = (),
        debounce: float = 0.2,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        resolved = sorted({Path(os.path.abspath(r)) for r in roots})
        # a root inside another root would deliver every event twice
        self.roots = [r for r in resolved if not any(o in r.parents for o in resolved)]
        self.ignore = [Path(os.path.abspath(p)) for p in ignore]
        self.debounce = debounce
        self._observer_factory = observer_factory
        self._observer = None
        self._debouncer = Debouncer(debounce)
        self._handler = _ChangeHandler(self)

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self.is_running:
            return
        self._debouncer = Debouncer(self.debounce)
        observer = self._observer_factory()
        for root in self.roots:
            if root.is_dir():
                observer.schedule(self._handler, str(root), recursive=True)
        observer.start()
        self._observer = observer
        logger.debug("watching %s", ", ".join(str(r) for r in self.roots))

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        self._debouncer.close()
        if observer is not None:
            observer.stop()
            observer.join()

    def push(self, path: Path, kind: ChangeKind) -> None:
        self._debouncer.push(path, kind)

    def changes(self, poll: float = 0.5) -> Iterator[dict[Path, ChangeKind]]:
        """Yield one change-set per quiet period until the watcher stops."""
        debouncer = self._debouncer
        while self.is_running:
            batch = debouncer.next_batch(timeout=poll)
            if batch:
                yield batch
