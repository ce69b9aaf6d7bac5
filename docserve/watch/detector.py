"""Filesystem change detection backed by watchdog observers."""

from __future__ import annotations

import os
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..logging import get_logger
from ..models import ChangeEvent, ChangeKind
from .root import WatchError, WatchRoot

_KIND_BY_EVENT_TYPE = {
    "created": ChangeKind.CREATED,
    "modified": ChangeKind.MODIFIED,
    "deleted": ChangeKind.REMOVED,
    "moved": ChangeKind.RENAMED,
}

_STOP = object()

_QueueItem = Union[ChangeEvent, WatchError, object]


class _ForwardingHandler(FileSystemEventHandler):
    """Hands every watchdog event to the owning detector."""

    def __init__(self, detector: "ChangeDetector") -> None:
        super().__init__()
        self._detector = detector

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._detector._dispatch(event)


class ChangeDetector:
    """Produces a lazy, non-restartable stream of ``ChangeEvent`` for a watch root.

    Events are queued by watchdog's observer thread and consumed by a single reader
    through ``poll`` or iteration. Subdirectories created after startup are covered
    by the recursive watch. When the root disappears or the observer dies, the
    stream ends by raising ``WatchError``.
    """

    def __init__(
        self,
        root: WatchRoot,
        *,
        observer_factory: Callable[[], object] = Observer,
        clock: Callable[[], float] = time.time,
        health_interval: float = 1.0,
    ) -> None:
        self.root = root
        self.logger = get_logger("watch")
        self._observer_factory = observer_factory
        self._clock = clock
        self._health_interval = health_interval
        self._queue: "queue.Queue[_QueueItem]" = queue.Queue()
        self._observer: Optional[object] = None
        self._started = False
        self._stopped = threading.Event()
        self._error: Optional[WatchError] = None

    def start(self) -> None:
        """Schedule watches for every root and start the observer thread."""
        if self._started:
            raise RuntimeError("ChangeDetector cannot be restarted")
        self._started = True

        observer = self._observer_factory()
        handler = _ForwardingHandler(self)
        for base in self.root.roots():
            # watchdog watches directories; single files are watched through their parent.
            recursive = base.is_dir()
            target = base if recursive else base.parent
            try:
                observer.schedule(handler, str(target), recursive=recursive)
            except OSError as exc:
                raise WatchError(f"Error watching {base}: {exc}") from exc
            self.logger.info("Watching %s", base)
        for excluded in self.root.excluded_dirs:
            self.logger.debug("Ignoring changes under %s", excluded)

        try:
            observer.start()
        except OSError as exc:
            raise WatchError(f"Error starting file watcher: {exc}") from exc
        self._observer = observer

    def stop(self) -> None:
        """Stop the observer and end the event stream."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._queue.put(_STOP)
        observer = self._observer
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
        self.logger.info("Stopped watching %s", self.root.path)

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def poll(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Return the next event, or None on timeout or once stopped.

        Raises ``WatchError`` when watching has failed irrecoverably.
        """
        if self._error is not None:
            raise self._error
        if self._stopped.is_set():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            self._check_health()
            return None
        if item is _STOP:
            return None
        if isinstance(item, WatchError):
            self._error = item
            raise item
        return item  # type: ignore[return-value]

    def __iter__(self) -> Iterator[ChangeEvent]:
        while not self._stopped.is_set():
            event = self.poll(self._health_interval)
            if event is not None:
                yield event

    def _check_health(self) -> None:
        if self._stopped.is_set() or not self._started:
            return
        if not self.root.path.is_dir():
            self._fail(WatchError(f"Watch root was removed: {self.root.path}"))
        observer = self._observer
        is_alive = getattr(observer, "is_alive", None)
        if observer is not None and callable(is_alive) and not is_alive():
            self._fail(WatchError("File watcher stopped unexpectedly"))

    def _fail(self, error: WatchError) -> None:
        self._error = error
        raise error

    def _dispatch(self, event: FileSystemEvent) -> None:
        kind = _KIND_BY_EVENT_TYPE.get(event.event_type)
        if kind is None:
            return
        src_path = os.fsdecode(event.src_path)
        is_dir = bool(event.is_directory)

        if is_dir and kind is ChangeKind.REMOVED and Path(src_path) == self.root.path:
            self._queue.put(WatchError(f"Watch root was removed: {self.root.path}"))
            return
        # Directory mtime updates accompany every child change.
        if is_dir and kind is ChangeKind.MODIFIED:
            return

        path = src_path
        if kind is ChangeKind.RENAMED:
            dest_path = os.fsdecode(getattr(event, "dest_path", "") or "")
            src_relevant = self._relevant(src_path, is_dir)
            dest_relevant = bool(dest_path) and self._relevant(dest_path, is_dir)
            if not src_relevant and not dest_relevant:
                return
            if dest_relevant:
                path = dest_path
            else:
                kind = ChangeKind.REMOVED
        elif not self._relevant(src_path, is_dir):
            return

        change = ChangeEvent(path=path, kind=kind, timestamp=self._clock())
        self.logger.debug("%s %s", change.kind.value, change.path)
        self._queue.put(change)

    def _relevant(self, path: str, is_dir: bool) -> bool:
        target = Path(os.path.abspath(path))
        inside = False
        for base in self.root.roots():
            if target == base or base in target.parents:
                inside = True
                break
        if not inside:
            return False
        return not self.root.is_excluded(target, is_dir=is_dir)


__all__ = ["ChangeDetector"]
