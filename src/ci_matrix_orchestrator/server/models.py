"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ci_matrix_orchestrator.orchestrator.workflow.events import EventKind, RefKind
from ci_matrix_orchestrator.orchestrator.workflow.state_machine import JobState
from ci_matrix_orchestrator.orchestrator.workflow.tracker import RunReport


class EventRequest(BaseModel):
    kind: EventKind
    ref_name: str = Field(min_length=1)
    ref_kind: RefKind = RefKind.BRANCH


class EvaluationResponse(BaseModel):
    triggered: bool
    reason: str = ""
    run: dict[str, object] | None = None


class JobResultRequest(BaseModel):
    """Result reported by the execution engine for one job."""

    state: JobState
    exit_code: int | None = None
    output: str = ""
    message: str = ""
    duration_seconds: float | None = Field(default=None, ge=0)


class JobStartedResponse(BaseModel):
    started: bool
    run: RunReport


class JobResultResponse(BaseModel):
    accepted: bool
    run: RunReport
