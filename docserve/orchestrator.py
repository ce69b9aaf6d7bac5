"""Build state machine serializing documentation rebuilds."""

from __future__ import annotations

import threading
from typing import Callable, Iterable, List, Optional

from .executor import BuildExecutor
from .logging import get_logger, log_exception
from .models import BuildInvocation, BuildResult, BuildState, BuildStatus, RebuildRequest

Listener = Callable[[BuildState], None]

_FAILURE_TAIL_LINES = 20


class BuildOrchestrator:
    """Owns the Idle/Building/Succeeded/Failed state machine.

    At most one builder invocation runs at a time. Requests that arrive while a
    build is running set a single "owed" flag; when the running build concludes a
    follow-up build starts immediately, however many requests arrived meanwhile.
    Generations are assigned when a build starts and are strictly increasing.

    Every transition is published to the listeners while the state lock is held,
    so listeners observe transitions in order and must not block.
    """

    def __init__(
        self,
        executor: BuildExecutor,
        invocation: BuildInvocation,
        *,
        listeners: Iterable[Listener] = (),
    ) -> None:
        self.executor = executor
        self.invocation = invocation
        self.logger = get_logger("orchestrator")
        self._output_logger = get_logger("builder")
        self._listeners: List[Listener] = list(listeners)
        self._cond = threading.Condition(threading.Lock())
        self._state = BuildState()
        self._owed = False
        self._closed = False
        self._worker: Optional[threading.Thread] = None

    @property
    def state(self) -> BuildState:
        with self._cond:
            return self._state

    @property
    def rebuild_owed(self) -> bool:
        with self._cond:
            return self._owed

    def add_listener(self, listener: Listener) -> None:
        with self._cond:
            self._listeners.append(listener)

    def submit(self, request: RebuildRequest | None = None) -> bool:
        """Ask for a rebuild. Returns True if a build started now.

        While a build is running the request is coalesced into the owed flag.
        """
        with self._cond:
            if self._closed:
                return False
            if self._state.status is BuildStatus.BUILDING:
                if not self._owed:
                    self.logger.debug(
                        "Build %d in progress; another build will follow", self._state.generation
                    )
                self._owed = True
                return False
            generation = self._begin_locked()

        worker = threading.Thread(
            target=self._build_loop,
            args=(generation,),
            name="docserve-build",
            daemon=True,
        )
        with self._cond:
            self._worker = worker
        worker.start()
        return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no build is running or owed. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._state.status is not BuildStatus.BUILDING and not self._owed,
                timeout=timeout,
            )

    def close(self) -> None:
        """Refuse new requests, forget any owed build and stop the running builder."""
        with self._cond:
            self._closed = True
            self._owed = False
            self._cond.notify_all()
        self.executor.terminate()

    def _build_loop(self, generation: int) -> None:
        while True:
            self.logger.info(
                "Building docs (generation %d): %s", generation, self.invocation.describe()
            )
            result = self._execute()
            with self._cond:
                self._set_state_locked(self._finished_state(generation, result))
                self._log_result(generation, result)
                if not self._owed or self._closed:
                    return
                self._owed = False
                generation = self._begin_locked()

    def _execute(self) -> BuildResult:
        try:
            return self.executor.run(self.invocation)
        except Exception as exc:  # executor defects must not kill the watch loop
            log_exception(self.logger, "Build executor raised", exc)
            return BuildResult(success=False, exit_code=None, spawn_error=f"unexpected error: {exc}")

    def _begin_locked(self) -> int:
        generation = self._state.generation + 1
        self._set_state_locked(
            BuildState(
                status=BuildStatus.BUILDING,
                generation=generation,
                summary="rebuilding documentation",
                last_success=self._state.last_success,
            )
        )
        return generation

    def _finished_state(self, generation: int, result: BuildResult) -> BuildState:
        previous = self._state
        if result.success:
            return BuildState(
                status=BuildStatus.SUCCEEDED,
                generation=generation,
                summary=result.summary,
                output=result.output,
                last_success=generation,
            )
        return BuildState(
            status=BuildStatus.FAILED,
            generation=generation,
            summary=result.summary,
            output=result.output,
            last_success=previous.last_success,
        )

    def _set_state_locked(self, state: BuildState) -> None:
        self._state = state
        self._cond.notify_all()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:  # notification problems never reach the build loop
                log_exception(self.logger, "Build listener failed", exc)

    def _log_result(self, generation: int, result: BuildResult) -> None:
        if result.success:
            self.logger.info("Build %d succeeded in %.1fs", generation, result.duration)
            return
        if result.spawn_failed:
            self.logger.error("Build %d %s", generation, result.summary)
            return
        self.logger.error("Build %d failed: %s", generation, result.summary)
        for line in result.output.splitlines()[-_FAILURE_TAIL_LINES:]:
            self._output_logger.error("%s", line)


__all__ = ["BuildOrchestrator", "Listener"]
