"""Job execution boundary.

The orchestrator never provisions environments itself; an executor does. The
local executor below runs a job's command in a subprocess on this host and is
what the `run` command uses. Remote engines report results through
`RunTracker` instead.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .expansion import Job
from .state_machine import JobState

logger = logging.getLogger(__name__)

OUTPUT_TAIL_CHARS = 4000
_POSIX = os.name == "posix"

# Runner label prefix -> sys.platform prefix of a host able to run it.
TARGET_PLATFORMS: dict[str, str] = {
    "ubuntu": "linux",
    "macos": "darwin",
    "windows": "win32",
}


class CancellationToken:
    """Cooperative cancellation shared by every job of a run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


@dataclass(frozen=True, slots=True)
class JobResult:
    state: JobState
    exit_code: int | None = None
    output: str = ""
    message: str = ""
    duration_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.state not in {
            JobState.SUCCEEDED,
            JobState.FAILED,
            JobState.INFRA_ERROR,
            JobState.ABORTED,
        }:
            raise ValueError(f"Job result must be terminal, got {self.state.value}")


class JobExecutor(Protocol):
    """Runs one job to a terminal result.

    Implementations must check `cancel` at safe points and return an
    `aborted` result once it is set. Raising is treated as an infrastructure
    error.
    """

    def execute(self, job: Job, cancel: CancellationToken) -> JobResult: ...


def host_supports(target: str, platform: str | None = None) -> bool:
    """Whether a runner label can execute on the given `sys.platform`.

    Labels without a known OS prefix (self-hosted runners) are assumed to be
    compatible.
    """

    platform = platform or sys.platform
    for prefix, required in TARGET_PLATFORMS.items():
        if target.startswith(prefix):
            return platform.startswith(required)
    return True


def _shell_command(script: str) -> str | list[str]:
    # `sh -e` stops a multi-line script at its first failing command.
    if _POSIX:
        return ["/bin/sh", "-e", "-c", script]
    return script


def _tail(text: str | None) -> str:
    if not text:
        return ""
    return text[-OUTPUT_TAIL_CHARS:]


@dataclass
class LocalProcessExecutor:
    """Run jobs as shell commands on the current host."""

    workdir: Path = Path(".")
    poll_seconds: float = 0.2
    timeout_seconds: float = 0.0
    base_env: Mapping[str, str] | None = None
    platform: str | None = None

    def execute(self, job: Job, cancel: CancellationToken) -> JobResult:
        if cancel.cancelled:
            return JobResult(state=JobState.ABORTED, message="Cancelled before start")

        host = self.platform or sys.platform
        if not host_supports(job.target, host):
            return JobResult(
                state=JobState.INFRA_ERROR,
                message=f"Target {job.target!r} is not available on {host}",
            )

        env = dict(os.environ if self.base_env is None else self.base_env)
        env.update(job.env)

        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                _shell_command(job.command),
                shell=not _POSIX,
                cwd=str(self.workdir),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
                start_new_session=_POSIX,
            )
        except OSError as e:
            return JobResult(state=JobState.INFRA_ERROR, message=f"Could not start job: {e}")

        logger.debug("Job process started", extra={"job": job.name, "pid": proc.pid})
        chunks: list[str] = []
        while True:
            try:
                out, _ = proc.communicate(timeout=self.poll_seconds)
                if out:
                    chunks.append(out)
                break
            except subprocess.TimeoutExpired:
                pass

            elapsed = time.monotonic() - started
            if cancel.cancelled:
                self._stop(proc, chunks)
                return JobResult(
                    state=JobState.ABORTED,
                    output=_tail("".join(chunks)),
                    message="Cancelled",
                    duration_seconds=elapsed,
                )
            if self.timeout_seconds > 0 and elapsed >= self.timeout_seconds:
                self._stop(proc, chunks)
                return JobResult(
                    state=JobState.FAILED,
                    exit_code=proc.returncode,
                    output=_tail("".join(chunks)),
                    message=f"Timed out after {self.timeout_seconds:g}s",
                    duration_seconds=elapsed,
                )

        duration = time.monotonic() - started
        output = _tail("".join(chunks))
        if proc.returncode == 0:
            return JobResult(
                state=JobState.SUCCEEDED, exit_code=0, output=output, duration_seconds=duration
            )
        return JobResult(
            state=JobState.FAILED,
            exit_code=proc.returncode,
            output=output,
            message=f"Command exited with {proc.returncode}",
            duration_seconds=duration,
        )

    @staticmethod
    def _stop(proc: subprocess.Popen[str], chunks: list[str]) -> None:
        # The shell may have forked; take down the whole process group.
        if _POSIX:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        else:
            proc.kill()
        out, _ = proc.communicate()
        if out:
            chunks.append(out)
