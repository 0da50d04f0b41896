"""Test configuration and fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from ci_matrix_orchestrator.orchestrator.workflow.definition import WorkflowDefinition
from ci_matrix_orchestrator.orchestrator.workflow.evaluator import Run, TriggerEvaluator
from ci_matrix_orchestrator.orchestrator.workflow.events import (
    EventKind,
    RefKind,
    RepositoryEvent,
)
from ci_matrix_orchestrator.orchestrator.workflow.executor import CancellationToken, JobResult
from ci_matrix_orchestrator.orchestrator.workflow.expansion import Job
from ci_matrix_orchestrator.orchestrator.workflow.loader import default_workflow
from ci_matrix_orchestrator.orchestrator.workflow.state_machine import JobState

SETTINGS_ENV_VARS = (
    "LOG_LEVEL",
    "ORCHESTRATOR_WORKFLOW_PATH",
    "ORCHESTRATOR_WORKFLOW_JOB",
    "ORCHESTRATOR_EXTRA_TARGETS",
    "ORCHESTRATOR_RUNS_STATE_PATH",
    "ORCHESTRATOR_MAX_WORKERS",
    "ORCHESTRATOR_POLL_SECONDS",
    "ORCHESTRATOR_JOB_TIMEOUT_SECONDS",
)


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run in an empty directory with no orchestrator settings in the environment."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def definition() -> WorkflowDefinition:
    """Provide the built-in workflow definition."""
    return default_workflow()


@pytest.fixture
def evaluator(definition: WorkflowDefinition) -> TriggerEvaluator:
    return TriggerEvaluator(definition)


@pytest.fixture
def push_master() -> RepositoryEvent:
    return RepositoryEvent(kind=EventKind.PUSH, ref_name="master", ref_kind=RefKind.BRANCH)


@pytest.fixture
def make_run(evaluator: TriggerEvaluator, push_master: RepositoryEvent) -> Callable[..., Run]:
    """Build a run for `push master`, optionally overriding fail-fast."""

    def _make(*, fail_fast: bool | None = None) -> Run:
        run = evaluator.evaluate(push_master)
        assert run is not None
        if fail_fast is None:
            return run
        return Run(
            run_id=run.run_id,
            workflow=run.workflow,
            event=run.event,
            matched_rule=run.matched_rule,
            jobs=run.jobs,
            fail_fast=fail_fast,
        )

    return _make


@dataclass
class ScriptedExecutor:
    """Executor returning a fixed state per target; unknown targets succeed.

    Targets listed in `wait_for_cancel` block until the run is cancelled (or
    `wait_seconds` passes) and then report `aborted` / `succeeded`.
    """

    outcomes: dict[str, JobState] = field(default_factory=dict)
    raises: dict[str, Exception] = field(default_factory=dict)
    wait_for_cancel: set[str] = field(default_factory=set)
    wait_seconds: float = 5.0
    executed: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def execute(self, job: Job, cancel: CancellationToken) -> JobResult:
        with self._lock:
            self.executed.append(job.target)
        if job.target in self.raises:
            raise self.raises[job.target]
        if job.target in self.wait_for_cancel:
            if cancel.wait(self.wait_seconds):
                return JobResult(state=JobState.ABORTED, message="Cancelled")
            return JobResult(state=JobState.SUCCEEDED, exit_code=0)
        state = self.outcomes.get(job.target, JobState.SUCCEEDED)
        exit_code = {JobState.SUCCEEDED: 0, JobState.FAILED: 101}.get(state)
        return JobResult(state=state, exit_code=exit_code)


@pytest.fixture
def scripted_executor() -> Callable[..., ScriptedExecutor]:
    return ScriptedExecutor
