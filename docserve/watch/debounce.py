"""Debounce stage turning bursts of change events into rebuild requests."""

from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional, Protocol

from ..logging import get_logger
from ..models import ChangeEvent, RebuildRequest

_IDLE_POLL_SECONDS = 0.5
_MAX_TRACKED_PATHS = 20


class ChangeSource(Protocol):
    def poll(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]: ...


class Debouncer:
    """Restartable quiet-period deadline.

    Every pushed event moves the deadline to ``now + quiet_period``. Once the clock
    passes the deadline without further events, ``due`` hands out exactly one
    ``RebuildRequest`` for the whole burst. An unbroken stream of events keeps
    deferring the request.
    """

    def __init__(
        self,
        quiet_period: float = 0.3,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if quiet_period < 0:
            raise ValueError("quiet_period must not be negative")
        self.quiet_period = quiet_period
        self._clock = clock
        self._deadline: Optional[float] = None
        self._count = 0
        self._paths: List[str] = []
        self._last_timestamp = 0.0

    @property
    def pending(self) -> bool:
        return self._deadline is not None

    def push(self, event: ChangeEvent) -> None:
        self._deadline = self._clock() + self.quiet_period
        self._count += 1
        self._last_timestamp = event.timestamp
        if event.path not in self._paths and len(self._paths) < _MAX_TRACKED_PATHS:
            self._paths.append(event.path)

    def time_remaining(self) -> Optional[float]:
        """Seconds until the pending deadline, or None when nothing is pending."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def due(self) -> Optional[RebuildRequest]:
        """Return the coalesced request once the quiet period has elapsed."""
        if self._deadline is None or self._clock() < self._deadline:
            return None
        request = RebuildRequest(
            burst_end=self._last_timestamp,
            event_count=self._count,
            paths=tuple(self._paths),
        )
        self._reset()
        return request

    def cancel(self) -> bool:
        """Drop the pending request, returning True if one was pending."""
        was_pending = self.pending
        self._reset()
        return was_pending

    def run(
        self,
        source: ChangeSource,
        submit: Callable[[RebuildRequest], None],
        stop: threading.Event,
    ) -> None:
        """Consume ``source`` until ``stop`` is set, submitting requests as they fall due.

        A request still pending at shutdown is dropped, not flushed.
        """
        logger = get_logger("debounce")
        while not stop.is_set():
            remaining = self.time_remaining()
            timeout = _IDLE_POLL_SECONDS if remaining is None else remaining
            event = source.poll(timeout)
            if stop.is_set():
                break
            if event is not None:
                self.push(event)
                continue
            request = self.due()
            if request is not None:
                logger.debug(
                    "Rebuild requested after %d change(s): %s",
                    request.event_count,
                    ", ".join(request.paths[:3]),
                )
                submit(request)
        if self.cancel():
            logger.debug("Dropped pending rebuild request on shutdown")

    def _reset(self) -> None:
        self._deadline = None
        self._count = 0
        self._paths = []


__all__ = ["ChangeSource", "Debouncer"]
