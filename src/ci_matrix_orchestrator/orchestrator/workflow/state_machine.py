from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    ABORTED = "aborted"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INFRA_ERROR = "infra_error"
    ABORTED = "aborted"


RUN_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.PENDING: {RunState.RUNNING, RunState.ABORTED},
    RunState.RUNNING: {
        RunState.COMPLETED,
        RunState.PARTIALLY_FAILED,
        RunState.FAILED,
        RunState.ABORTED,
    },
    RunState.COMPLETED: set(),
    RunState.PARTIALLY_FAILED: set(),
    RunState.FAILED: set(),
    RunState.ABORTED: set(),
}

JOB_TRANSITIONS: dict[JobState, set[JobState]] = {
    JobState.PENDING: {JobState.RUNNING, JobState.ABORTED},
    JobState.RUNNING: {
        JobState.SUCCEEDED,
        JobState.FAILED,
        JobState.INFRA_ERROR,
        JobState.ABORTED,
    },
    JobState.SUCCEEDED: set(),
    JobState.FAILED: set(),
    JobState.INFRA_ERROR: set(),
    JobState.ABORTED: set(),
}

TERMINAL_RUN_STATES = frozenset(s for s, nxt in RUN_TRANSITIONS.items() if not nxt)
TERMINAL_JOB_STATES = frozenset(s for s, nxt in JOB_TRANSITIONS.items() if not nxt)


class IllegalTransitionError(ValueError):
    pass


def transition_run(*, current: RunState, to: RunState) -> RunState:
    if to not in RUN_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal run transition: {current.value} -> {to.value}")
    return to


def transition_job(*, current: JobState, to: JobState) -> JobState:
    if to not in JOB_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal job transition: {current.value} -> {to.value}")
    return to


def resolve_terminal_state(job_states: Iterable[JobState]) -> RunState:
    """Terminal run state once every job finished without a fail-fast abort.

    Infrastructure errors count as "did not succeed" here; they are reported
    separately from test failures but still fail the run.
    """

    states = list(job_states)
    if not states or any(s not in TERMINAL_JOB_STATES for s in states):
        raise IllegalTransitionError("Run cannot finish while jobs are still pending")
    succeeded = sum(1 for s in states if s is JobState.SUCCEEDED)
    if succeeded == len(states):
        return RunState.COMPLETED
    if succeeded == 0:
        return RunState.FAILED
    return RunState.PARTIALLY_FAILED
