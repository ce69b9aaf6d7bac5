"""Fan-out of build state changes to connected viewer sessions."""

from __future__ import annotations

import itertools
import threading
from typing import Callable, Dict, List, Optional, Tuple

from .logging import get_logger
from .models import BuildState

Sink = Callable[[BuildState], None]


class SessionClosed(RuntimeError):
    """Raised by a sink whose viewer connection has gone away."""


class ViewerSession:
    """A live-update subscription for one connected viewer.

    ``sink`` pushes a state to the viewer and must not block; raising any
    exception marks the session as disconnected. States older than one already
    delivered are skipped so a viewer never moves backwards.
    """

    def __init__(self, session_id: int, sink: Sink) -> None:
        self.session_id = session_id
        self.last_generation = 0
        self.closed = False
        self._sink = sink
        self._lock = threading.Lock()
        self._last_sequence: Tuple[int, int] = (-1, -1)

    def deliver(self, state: BuildState) -> bool:
        """Push ``state`` unless it is stale. Returns True when pushed."""
        with self._lock:
            if self.closed:
                raise SessionClosed(f"viewer session {self.session_id} is closed")
            if state.sequence < self._last_sequence:
                return False
            self._sink(state)
            self._last_sequence = state.sequence
            self.last_generation = state.generation
            return True

    def __repr__(self) -> str:
        return f"ViewerSession(id={self.session_id}, last_generation={self.last_generation})"


class NotificationHub:
    """Registry of viewer sessions with best-effort broadcast.

    The hub remembers the latest broadcast state and pushes it to every new
    subscriber, so a freshly opened page reflects the current build without
    waiting for the next change.
    """

    def __init__(self, initial: Optional[BuildState] = None) -> None:
        self.logger = get_logger("hub")
        self._lock = threading.Lock()
        self._sessions: Dict[int, ViewerSession] = {}
        self._ids = itertools.count(1)
        self._latest = initial or BuildState()

    @property
    def latest(self) -> BuildState:
        with self._lock:
            return self._latest

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def subscribe(self, sink: Sink) -> ViewerSession:
        """Register a session and immediately push the current state to it."""
        with self._lock:
            session = ViewerSession(next(self._ids), sink)
            self._sessions[session.session_id] = session
            latest = self._latest
            # Catch-up happens under the lock so a concurrent broadcast cannot slip in between.
            try:
                session.deliver(latest)
            except Exception as exc:  # best effort; the viewer is already gone
                self._sessions.pop(session.session_id, None)
                session.closed = True
                self.logger.debug("Viewer %s dropped during catch-up: %s", session.session_id, exc)
                return session
        self.logger.debug(
            "Viewer %s subscribed at generation %s (%s)",
            session.session_id,
            latest.generation,
            latest.status.value,
        )
        return session

    def unsubscribe(self, session: ViewerSession) -> None:
        with self._lock:
            removed = self._sessions.pop(session.session_id, None)
        session.closed = True
        if removed is not None:
            self.logger.debug("Viewer %s unsubscribed", session.session_id)

    def broadcast(self, state: BuildState) -> int:
        """Push ``state`` to every registered session; returns how many received it.

        A failing push removes that session and does not affect the others.
        """
        with self._lock:
            if state.sequence < self._latest.sequence:
                self.logger.debug(
                    "Skipping stale broadcast for generation %s (%s)",
                    state.generation,
                    state.status.value,
                )
                return 0
            self._latest = state
            sessions: List[ViewerSession] = list(self._sessions.values())

        delivered = 0
        for session in sessions:
            try:
                if session.deliver(state):
                    delivered += 1
            except Exception as exc:  # best effort; drop the disconnected viewer
                self.logger.debug("Dropping viewer %s: %s", session.session_id, exc)
                self.unsubscribe(session)
        return delivered


__all__ = ["NotificationHub", "SessionClosed", "Sink", "ViewerSession"]
