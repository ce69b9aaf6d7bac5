"""Tests for the debounce/coalesce stage."""

from __future__ import annotations

import threading
from typing import List, Optional

import pytest

from docserve.models import ChangeEvent, ChangeKind, RebuildRequest
from docserve.watch import Debouncer


def _event(path: str, timestamp: float = 0.0) -> ChangeEvent:
    return ChangeEvent(path=path, kind=ChangeKind.MODIFIED, timestamp=timestamp)


def test_burst_within_quiet_period_emits_one_request(clock) -> None:
    debouncer = Debouncer(0.2, clock=clock)

    for index in range(3):
        debouncer.push(_event(f"src/{index}.rs", timestamp=float(index)))
        clock.advance(0.05)
        assert debouncer.due() is None

    clock.advance(0.1)
    assert debouncer.due() is None

    clock.advance(0.06)
    request = debouncer.due()

    assert request is not None
    assert request.event_count == 3
    assert request.burst_end == 2.0
    assert request.paths == ("src/0.rs", "src/1.rs", "src/2.rs")
    assert debouncer.due() is None
    assert debouncer.pending is False


def test_unbroken_stream_defers_request(clock) -> None:
    debouncer = Debouncer(0.2, clock=clock)

    for _ in range(50):
        debouncer.push(_event("src/lib.rs"))
        clock.advance(0.19)
        assert debouncer.due() is None

    clock.advance(0.02)
    request = debouncer.due()
    assert request is not None
    assert request.event_count == 50
    assert request.paths == ("src/lib.rs",)


def test_time_remaining_tracks_latest_event(clock) -> None:
    debouncer = Debouncer(0.5, clock=clock)
    assert debouncer.time_remaining() is None

    debouncer.push(_event("a"))
    clock.advance(0.3)
    assert debouncer.time_remaining() == pytest.approx(0.2)

    debouncer.push(_event("b"))
    assert debouncer.time_remaining() == pytest.approx(0.5)


def test_cancel_drops_pending_request(clock) -> None:
    debouncer = Debouncer(0.2, clock=clock)
    debouncer.push(_event("a"))

    assert debouncer.cancel() is True
    clock.advance(1.0)
    assert debouncer.due() is None
    assert debouncer.cancel() is False


def test_negative_quiet_period_is_rejected() -> None:
    with pytest.raises(ValueError):
        Debouncer(-0.1)


class ScriptedSource:
    """Change source replaying events, then stopping the loop once drained."""

    def __init__(self, clock, script: List[tuple[float, Optional[ChangeEvent]]], stop: threading.Event) -> None:
        self.clock = clock
        self.script = list(script)
        self.stop = stop
        self.timeouts: List[Optional[float]] = []

    def poll(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        self.timeouts.append(timeout)
        if not self.script:
            self.stop.set()
            return None
        delay, event = self.script.pop(0)
        self.clock.advance(delay)
        return event


def test_run_submits_one_request_per_burst(clock) -> None:
    stop = threading.Event()
    script = [
        (0.0, _event("a")),
        (0.05, _event("b")),
        (0.05, _event("c")),
        (0.2, None),
        (1.0, None),
        (0.0, _event("d")),
        (0.25, None),
    ]
    source = ScriptedSource(clock, script, stop)
    submitted: List[RebuildRequest] = []

    Debouncer(0.2, clock=clock).run(source, submitted.append, stop)

    assert [request.event_count for request in submitted] == [3, 1]
    assert submitted[0].paths == ("a", "b", "c")
    assert submitted[1].paths == ("d",)
    # Idle polls wait for a bounded interval; pending polls wait for the deadline.
    assert source.timeouts[0] == pytest.approx(0.5)
    assert source.timeouts[3] == pytest.approx(0.2)


def test_run_drops_pending_request_on_shutdown(clock) -> None:
    stop = threading.Event()
    source = ScriptedSource(clock, [(0.0, _event("a")), (0.05, _event("b"))], stop)
    submitted: List[RebuildRequest] = []
    debouncer = Debouncer(0.2, clock=clock)

    debouncer.run(source, submitted.append, stop)

    assert submitted == []
    assert debouncer.pending is False
