"""Tests for docserve.orchestrator."""

from __future__ import annotations

import queue
import threading
from typing import List, Optional

import pytest

from docserve.hub import NotificationHub
from docserve.models import BuildInvocation, BuildResult, BuildState, BuildStatus, RebuildRequest
from docserve.orchestrator import BuildOrchestrator

INVOCATION = BuildInvocation(command=("cargo", "doc"), cwd=".")


class GatedExecutor:
    """Executor double whose builds finish only when a test releases them."""

    def __init__(self, outcomes: Optional[List[BuildResult]] = None) -> None:
        self.outcomes = list(outcomes or [])
        self.started: "queue.Queue[int]" = queue.Queue()
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.terminated = False
        self._gates: dict[int, threading.Event] = {}
        self._lock = threading.Lock()

    def run(self, invocation: BuildInvocation) -> BuildResult:
        with self._lock:
            self.calls += 1
            call = self.calls
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            gate = self._gates.setdefault(call, threading.Event())
        self.started.put(call)
        gate.wait(timeout=10)
        with self._lock:
            self.active -= 1
        if call <= len(self.outcomes):
            return self.outcomes[call - 1]
        return BuildResult(success=True, exit_code=0, output=f"build {call}")

    def release(self, call: int) -> None:
        with self._lock:
            self._gates.setdefault(call, threading.Event()).set()

    def wait_started(self, call: int) -> None:
        assert self.started.get(timeout=5) == call

    def terminate(self) -> None:
        self.terminated = True
        with self._lock:
            for gate in self._gates.values():
                gate.set()


class RaisingExecutor:
    def run(self, invocation: BuildInvocation) -> BuildResult:
        raise ValueError("boom")

    def terminate(self) -> None:
        return None


def _request() -> RebuildRequest:
    return RebuildRequest(burst_end=0.0)


def _failure(code: int = 1) -> BuildResult:
    return BuildResult(success=False, exit_code=code, output="error: unresolved import")


def test_initial_state_is_idle() -> None:
    orchestrator = BuildOrchestrator(GatedExecutor(), INVOCATION)

    assert orchestrator.state == BuildState(status=BuildStatus.IDLE, generation=0)


def test_request_from_idle_starts_build() -> None:
    executor = GatedExecutor()
    orchestrator = BuildOrchestrator(executor, INVOCATION)

    assert orchestrator.submit(_request()) is True
    executor.wait_started(1)
    assert orchestrator.state.status is BuildStatus.BUILDING
    assert orchestrator.state.generation == 1

    executor.release(1)
    assert orchestrator.wait_idle(timeout=5)

    state = orchestrator.state
    assert state.status is BuildStatus.SUCCEEDED
    assert state.generation == 1
    assert state.last_success == 1
    assert state.output == "build 1"


def test_requests_during_build_coalesce_into_one_follow_up() -> None:
    executor = GatedExecutor()
    seen: List[BuildState] = []
    orchestrator = BuildOrchestrator(executor, INVOCATION, listeners=[seen.append])

    orchestrator.submit(_request())
    executor.wait_started(1)
    assert [orchestrator.submit(_request()) for _ in range(5)] == [False] * 5
    assert orchestrator.rebuild_owed is True

    executor.release(1)
    executor.wait_started(2)
    for _ in range(3):
        orchestrator.submit(_request())

    executor.release(2)
    executor.wait_started(3)
    executor.release(3)
    assert orchestrator.wait_idle(timeout=5)

    assert executor.calls == 3
    assert executor.max_active == 1
    assert [(state.status, state.generation) for state in seen] == [
        (BuildStatus.BUILDING, 1),
        (BuildStatus.SUCCEEDED, 1),
        (BuildStatus.BUILDING, 2),
        (BuildStatus.SUCCEEDED, 2),
        (BuildStatus.BUILDING, 3),
        (BuildStatus.SUCCEEDED, 3),
    ]


def test_no_follow_up_without_requests_during_build() -> None:
    executor = GatedExecutor()
    orchestrator = BuildOrchestrator(executor, INVOCATION)

    orchestrator.submit(_request())
    executor.wait_started(1)
    executor.release(1)
    assert orchestrator.wait_idle(timeout=5)

    assert executor.calls == 1
    assert orchestrator.rebuild_owed is False


def test_generations_strictly_increase_across_failures() -> None:
    executor = GatedExecutor(outcomes=[_failure(), BuildResult(success=True, exit_code=0), _failure(101)])
    seen: List[BuildState] = []
    orchestrator = BuildOrchestrator(executor, INVOCATION, listeners=[seen.append])

    for call in (1, 2, 3):
        executor.release(call)
        orchestrator.submit(_request())
        assert orchestrator.wait_idle(timeout=5)

    finished = [state for state in seen if state.status.finished]
    assert [state.generation for state in finished] == [1, 2, 3]
    assert [state.status for state in finished] == [
        BuildStatus.FAILED,
        BuildStatus.SUCCEEDED,
        BuildStatus.FAILED,
    ]
    assert finished[0].summary == "builder exited with status 1"
    assert finished[0].last_success == 0
    assert finished[2].last_success == 2
    assert "unresolved import" in finished[2].output


def test_spawn_failure_is_recorded_as_failed_build() -> None:
    executor = GatedExecutor(
        outcomes=[BuildResult(success=False, exit_code=None, spawn_error="'cargo' was not found on PATH")]
    )
    executor.release(1)
    orchestrator = BuildOrchestrator(executor, INVOCATION)

    orchestrator.submit(_request())
    assert orchestrator.wait_idle(timeout=5)

    state = orchestrator.state
    assert state.status is BuildStatus.FAILED
    assert state.summary == "could not start builder: 'cargo' was not found on PATH"


def test_executor_exception_becomes_failed_state() -> None:
    orchestrator = BuildOrchestrator(RaisingExecutor(), INVOCATION)

    orchestrator.submit(_request())
    assert orchestrator.wait_idle(timeout=5)

    state = orchestrator.state
    assert state.status is BuildStatus.FAILED
    assert "unexpected error: boom" in state.summary


def test_failing_listener_does_not_stop_builds() -> None:
    executor = GatedExecutor()
    executor.release(1)

    def broken(state: BuildState) -> None:
        raise RuntimeError("listener exploded")

    seen: List[BuildState] = []
    orchestrator = BuildOrchestrator(executor, INVOCATION, listeners=[broken, seen.append])

    orchestrator.submit(_request())
    assert orchestrator.wait_idle(timeout=5)

    assert orchestrator.state.status is BuildStatus.SUCCEEDED
    assert [state.status for state in seen] == [BuildStatus.BUILDING, BuildStatus.SUCCEEDED]


def test_close_forgets_owed_build_and_terminates_executor() -> None:
    executor = GatedExecutor()
    orchestrator = BuildOrchestrator(executor, INVOCATION)

    orchestrator.submit(_request())
    executor.wait_started(1)
    orchestrator.submit(_request())

    orchestrator.close()
    assert orchestrator.wait_idle(timeout=5)

    assert executor.terminated is True
    assert executor.calls == 1
    assert orchestrator.submit(_request()) is False


def test_viewers_see_each_transition_through_the_hub() -> None:
    executor = GatedExecutor(outcomes=[_failure()])
    hub = NotificationHub()
    orchestrator = BuildOrchestrator(executor, INVOCATION, listeners=[hub.broadcast])
    received: List[BuildState] = []
    hub.subscribe(received.append)

    orchestrator.submit(_request())
    executor.wait_started(1)
    executor.release(1)
    assert orchestrator.wait_idle(timeout=5)

    assert [(state.status, state.generation) for state in received] == [
        (BuildStatus.IDLE, 0),
        (BuildStatus.BUILDING, 1),
        (BuildStatus.FAILED, 1),
    ]
    assert hub.latest.status is BuildStatus.FAILED


@pytest.mark.parametrize("requests_during_build", [1, 7])
def test_owed_flag_is_not_a_queue(requests_during_build: int) -> None:
    executor = GatedExecutor()
    orchestrator = BuildOrchestrator(executor, INVOCATION)

    orchestrator.submit(_request())
    executor.wait_started(1)
    for _ in range(requests_during_build):
        orchestrator.submit(_request())
    executor.release(1)
    executor.wait_started(2)
    executor.release(2)
    assert orchestrator.wait_idle(timeout=5)

    assert executor.calls == 2
    assert orchestrator.state.generation == 2
