"""Runs the external documentation builder as a child process."""

from __future__ import annotations

import os
import subprocess
import threading
import time
from collections import deque
from typing import Callable, Deque, Optional

from .logging import get_logger
from .models import BuildInvocation, BuildResult

DEFAULT_TAIL_LINES = 200


class BuildExecutor:
    """Spawns the builder, streams its output and classifies the outcome.

    Exit code zero is success; a non-zero exit code or a process that could not be
    spawned is failure. Only the last ``tail_lines`` lines of combined
    stdout/stderr are kept.
    """

    def __init__(
        self,
        *,
        tail_lines: int = DEFAULT_TAIL_LINES,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.tail_lines = tail_lines
        self.logger = get_logger("executor")
        self.output_logger = get_logger("builder")
        self._popen = popen
        self._clock = clock
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None

    def run(self, invocation: BuildInvocation) -> BuildResult:
        """Run ``invocation`` to completion and return its result."""
        started = self._clock()
        if not invocation.command:
            return BuildResult(success=False, exit_code=None, spawn_error="build command is empty")
        env = os.environ.copy()
        env.update(invocation.env)
        self.logger.debug("Running `%s` in %s", invocation.describe(), invocation.cwd)
        try:
            process = self._popen(
                list(invocation.command),
                cwd=invocation.cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            message = _describe_spawn_error(invocation, exc)
            return BuildResult(
                success=False,
                exit_code=None,
                duration=self._clock() - started,
                spawn_error=message,
            )

        with self._lock:
            self._process = process
        tail: Deque[str] = deque(maxlen=self.tail_lines)
        try:
            if process.stdout is not None:
                for raw_line in process.stdout:
                    line = raw_line.rstrip("\r\n")
                    tail.append(line)
                    self.output_logger.debug("%s", line)
            exit_code = process.wait()
        finally:
            if process.stdout is not None:
                process.stdout.close()
            with self._lock:
                self._process = None

        return BuildResult(
            success=exit_code == 0,
            exit_code=exit_code,
            output="\n".join(tail),
            duration=self._clock() - started,
        )

    @property
    def running(self) -> bool:
        with self._lock:
            return self._process is not None

    def terminate(self, timeout: float = 5.0) -> None:
        """Stop the running builder, if any. Best effort."""
        with self._lock:
            process = self._process
        if process is None or process.poll() is not None:
            return
        self.logger.debug("Terminating builder process %s", process.pid)
        try:
            process.terminate()
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                process.kill()
        except ProcessLookupError:
            pass
        except OSError as exc:
            self.logger.debug("Could not terminate builder process: %s", exc)


def _describe_spawn_error(invocation: BuildInvocation, exc: OSError) -> str:
    executable = invocation.command[0] if invocation.command else "<empty command>"
    if isinstance(exc, FileNotFoundError):
        if not os.path.isdir(invocation.cwd):
            return f"working directory '{invocation.cwd}' does not exist"
        return f"'{executable}' was not found on PATH"
    if isinstance(exc, PermissionError):
        return f"'{executable}' is not executable"
    return f"'{executable}': {exc}"


__all__ = ["BuildExecutor", "DEFAULT_TAIL_LINES"]
