"""Background pipeline: change detection, debouncing and rebuild submission."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from .logging import get_logger, log_exception
from .models import RebuildRequest
from .watch import ChangeDetector, Debouncer, WatchError


class WatchLoop:
    """Runs ``ChangeDetector`` -> ``Debouncer`` on a single background thread.

    Each coalesced ``RebuildRequest`` goes to ``submit``. A ``WatchError`` from the
    detector ends the loop, is kept in ``error`` and is handed to ``on_fatal``.
    """

    def __init__(
        self,
        detector: ChangeDetector,
        debouncer: Debouncer,
        submit: Callable[[RebuildRequest], object],
        *,
        on_fatal: Callable[[WatchError], None] | None = None,
    ) -> None:
        self.detector = detector
        self.debouncer = debouncer
        self.logger = get_logger("loop")
        self._submit = submit
        self._on_fatal = on_fatal
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[WatchError] = None

    def start(self) -> None:
        """Start watching. Raises ``WatchError`` if the watch cannot be set up."""
        if self._thread is not None:
            raise RuntimeError("WatchLoop already started")
        self.detector.start()
        self._thread = threading.Thread(target=self._run, name="docserve-watch", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the detector and abandon any pending debounce deadline."""
        self._stop.set()
        self.detector.stop()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        try:
            self.debouncer.run(self.detector, self._submit, self._stop)
        except WatchError as exc:
            self.error = exc
            self.logger.error("Watching stopped: %s", exc)
            self.detector.stop()
            if self._on_fatal is not None:
                self._on_fatal(exc)
        except Exception as exc:
            log_exception(self.logger, "Watch loop crashed", exc)
            self.error = WatchError(f"watch loop crashed: {exc}")
            self.detector.stop()
            if self._on_fatal is not None:
                self._on_fatal(self.error)


__all__ = ["WatchLoop"]
