"""Aggregate per-job results into the run's state.

The tracker is the run's result accumulator: one slot per job, written exactly
once, guarded by a lock so concurrent jobs (or concurrent reports from an
external engine) cannot interleave. It also applies the fail-fast policy.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from .evaluator import Run
from .executor import CancellationToken, JobResult
from .state_machine import (
    TERMINAL_JOB_STATES,
    TERMINAL_RUN_STATES,
    JobState,
    RunState,
    resolve_terminal_state,
    transition_job,
    transition_run,
)

logger = logging.getLogger(__name__)


class ResultAlreadyRecordedError(ValueError):
    pass


class JobReport(BaseModel):
    index: int
    name: str
    target: str
    state: JobState
    exit_code: int | None = None
    message: str = ""
    output: str = ""
    duration_seconds: float | None = None


class RunReport(BaseModel):
    run_id: str
    workflow: str
    event: dict[str, object]
    fail_fast: bool
    state: RunState
    created_at: str
    updated_at: str
    jobs: list[JobReport] = Field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_RUN_STATES

    @property
    def ok(self) -> bool:
        return self.state is RunState.COMPLETED

    @property
    def failed_jobs(self) -> list[JobReport]:
        """Jobs whose test command failed."""

        return [j for j in self.jobs if j.state is JobState.FAILED]

    @property
    def infra_failures(self) -> list[JobReport]:
        """Jobs that never got a working environment."""

        return [j for j in self.jobs if j.state is JobState.INFRA_ERROR]

    @property
    def aborted_jobs(self) -> list[JobReport]:
        return [j for j in self.jobs if j.state is JobState.ABORTED]


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class RunTracker:
    def __init__(self, run: Run, *, cancel: CancellationToken | None = None) -> None:
        self._run = run
        self._cancel = cancel or CancellationToken()
        self._lock = threading.Lock()
        self._state = RunState.PENDING
        self._job_states: list[JobState] = [JobState.PENDING] * len(run.jobs)
        self._results: list[JobResult | None] = [None] * len(run.jobs)
        self._created_at = _utc_iso_now()
        self._updated_at = self._created_at

    @property
    def run(self) -> Run:
        return self._run

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_RUN_STATES

    def job_state(self, index: int) -> JobState:
        with self._lock:
            return self._job_states[self._check_index(index)]

    def start(self) -> None:
        with self._lock:
            self._state = transition_run(current=self._state, to=RunState.RUNNING)
            self._touch()

    def job_started(self, index: int) -> bool:
        """Mark a job as running.

        Returns False when the job must not start because the run was aborted.
        """

        with self._lock:
            self._check_index(index)
            if self._job_states[index] is JobState.ABORTED or self._state is RunState.ABORTED:
                return False
            if self._state is RunState.PENDING:
                self._state = transition_run(current=self._state, to=RunState.RUNNING)
            self._job_states[index] = transition_job(
                current=self._job_states[index], to=JobState.RUNNING
            )
            self._touch()
            return True

    def record(self, index: int, result: JobResult) -> bool:
        """Store a job's terminal result.

        Returns False when the result arrived after a fail-fast abort already
        settled the job; such late results are discarded.
        """

        with self._lock:
            self._check_index(index)
            job = self._run.jobs[index]
            if self._results[index] is not None:
                raise ResultAlreadyRecordedError(f"Result for job {job.name!r} already recorded")
            current = self._job_states[index]
            if current is JobState.ABORTED:
                logger.debug(
                    "Discarding late job result",
                    extra={
                        "run_id": self._run.run_id,
                        "job": job.name,
                        "state": result.state.value,
                    },
                )
                return False

            if self._state is RunState.PENDING:
                self._state = transition_run(current=self._state, to=RunState.RUNNING)
            if current is JobState.PENDING and result.state is not JobState.ABORTED:
                current = transition_job(current=current, to=JobState.RUNNING)
            self._job_states[index] = transition_job(current=current, to=result.state)
            self._results[index] = result
            self._touch()

            logger.info(
                "Job finished",
                extra={
                    "run_id": self._run.run_id,
                    "job": job.name,
                    "target": job.target,
                    "state": result.state.value,
                    "exit_code": result.exit_code,
                },
            )

            if self._run.fail_fast and result.state in {JobState.FAILED, JobState.INFRA_ERROR}:
                self._abort_locked(reason=f"{job.name} {result.state.value}")
            elif all(s in TERMINAL_JOB_STATES for s in self._job_states):
                self._state = transition_run(
                    current=self._state, to=resolve_terminal_state(self._job_states)
                )
                logger.info(
                    "Run finished",
                    extra={"run_id": self._run.run_id, "state": self._state.value},
                )
            return True

    def abort(self, reason: str) -> None:
        with self._lock:
            self._abort_locked(reason=reason)

    def _abort_locked(self, *, reason: str) -> None:
        self._state = transition_run(current=self._state, to=RunState.ABORTED)
        for idx, state in enumerate(self._job_states):
            if state not in TERMINAL_JOB_STATES:
                self._job_states[idx] = transition_job(current=state, to=JobState.ABORTED)
        self._cancel.cancel()
        self._touch()
        logger.warning("Run aborted", extra={"run_id": self._run.run_id, "reason": reason})

    def _check_index(self, index: int) -> int:
        if not 0 <= index < len(self._run.jobs):
            raise IndexError(f"Run {self._run.run_id} has no job {index}")
        return index

    def _touch(self) -> None:
        self._updated_at = _utc_iso_now()

    def report(self) -> RunReport:
        with self._lock:
            jobs = []
            for job, state, result in zip(
                self._run.jobs, self._job_states, self._results, strict=True
            ):
                jobs.append(
                    JobReport(
                        index=job.index,
                        name=job.name,
                        target=job.target,
                        state=state,
                        exit_code=result.exit_code if result else None,
                        message=result.message if result else "",
                        output=result.output if result else "",
                        duration_seconds=result.duration_seconds if result else None,
                    )
                )
            return RunReport(
                run_id=self._run.run_id,
                workflow=self._run.workflow,
                event=self._run.event.to_json(),
                fail_fast=self._run.fail_fast,
                state=self._state,
                created_at=self._created_at,
                updated_at=self._updated_at,
                jobs=jobs,
            )
