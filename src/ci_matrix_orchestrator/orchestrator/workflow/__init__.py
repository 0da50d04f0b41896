"""Workflow domain: events, trigger rules, matrix expansion and run state.

Evaluation is pure (event -> run descriptor). Execution is delegated to a
`JobExecutor`, and results are folded back into an explicit run state machine
by `RunTracker`.
"""

from ci_matrix_orchestrator.orchestrator.workflow.coordinator import execute_run
from ci_matrix_orchestrator.orchestrator.workflow.definition import (
    MatrixAxis,
    TriggerRule,
    WorkflowDefinition,
)
from ci_matrix_orchestrator.orchestrator.workflow.errors import ConfigurationError
from ci_matrix_orchestrator.orchestrator.workflow.evaluator import Run, TriggerEvaluator
from ci_matrix_orchestrator.orchestrator.workflow.events import (
    EventKind,
    RefKind,
    RepositoryEvent,
)
from ci_matrix_orchestrator.orchestrator.workflow.expansion import Job, expand_jobs
from ci_matrix_orchestrator.orchestrator.workflow.tracker import RunReport, RunTracker

__all__ = [
    "ConfigurationError",
    "EventKind",
    "Job",
    "MatrixAxis",
    "RefKind",
    "RepositoryEvent",
    "Run",
    "RunReport",
    "RunTracker",
    "TriggerEvaluator",
    "TriggerRule",
    "WorkflowDefinition",
    "execute_run",
    "expand_jobs",
]
