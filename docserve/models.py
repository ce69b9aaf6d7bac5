"""Core data models shared across docserve components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ChangeKind(str, Enum):
    """Kind of filesystem change reported by the detector."""

    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


@dataclass(frozen=True)
class ChangeEvent:
    """A single filesystem notification for a path under the watch root."""

    path: str
    kind: ChangeKind
    timestamp: float


@dataclass(frozen=True)
class RebuildRequest:
    """Coalesced intent to rebuild, stamped with the end of the triggering burst."""

    burst_end: float
    event_count: int = 1
    paths: Tuple[str, ...] = ()


class BuildStatus(str, Enum):
    """Phase of the build state machine."""

    IDLE = "idle"
    BUILDING = "building"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def finished(self) -> bool:
        return self in (BuildStatus.SUCCEEDED, BuildStatus.FAILED)


@dataclass(frozen=True)
class BuildState:
    """Snapshot of the build state machine.

    ``generation`` is the generation in progress while ``BUILDING`` and the
    generation that concluded for ``SUCCEEDED``/``FAILED``. ``last_success`` is the
    newest generation whose output is known to be good (``0`` if none).
    """

    status: BuildStatus = BuildStatus.IDLE
    generation: int = 0
    summary: str = ""
    output: str = ""
    last_success: int = 0

    @property
    def sequence(self) -> Tuple[int, int]:
        """Ordering key: later generations first, then finished after building."""
        return (self.generation, 0 if self.status is BuildStatus.BUILDING else 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generation": self.generation,
            "status": self.status.value,
            "summary": self.summary,
            "output": self.output,
            "last_success": self.last_success,
        }


@dataclass(frozen=True)
class BuildInvocation:
    """Command line, working directory and environment for one builder run."""

    command: Tuple[str, ...]
    cwd: str
    env: Dict[str, str] = field(default_factory=dict)

    def describe(self) -> str:
        return " ".join(self.command)


@dataclass(frozen=True)
class BuildResult:
    """Outcome of running the documentation builder once."""

    success: bool
    exit_code: Optional[int]
    output: str = ""
    duration: float = 0.0
    spawn_error: Optional[str] = None

    @property
    def spawn_failed(self) -> bool:
        return self.spawn_error is not None

    @property
    def summary(self) -> str:
        if self.spawn_error is not None:
            return f"could not start builder: {self.spawn_error}"
        if self.success:
            return f"build finished in {self.duration:.1f}s"
        return f"builder exited with status {self.exit_code}"
