"""FastAPI app factory.

The server is the collaborator boundary with an external execution engine:
events come in, run descriptors go out, and the engine reports per-job status
back so the run can be settled. It never executes jobs itself.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from fastapi import Body, FastAPI, Header, HTTPException

from ci_matrix_orchestrator import __version__
from ci_matrix_orchestrator.orchestrator.config import OrchestratorSettings
from ci_matrix_orchestrator.orchestrator.run_store import RunStore
from ci_matrix_orchestrator.orchestrator.workflow.evaluator import TriggerEvaluator
from ci_matrix_orchestrator.orchestrator.workflow.events import (
    RepositoryEvent,
    UnsupportedEventError,
    event_from_github,
)
from ci_matrix_orchestrator.orchestrator.workflow.executor import JobResult
from ci_matrix_orchestrator.orchestrator.workflow.loader import definition_from_settings
from ci_matrix_orchestrator.orchestrator.workflow.state_machine import IllegalTransitionError
from ci_matrix_orchestrator.orchestrator.workflow.tracker import (
    ResultAlreadyRecordedError,
    RunReport,
    RunTracker,
)
from ci_matrix_orchestrator.server.models import (
    EvaluationResponse,
    EventRequest,
    JobResultRequest,
    JobResultResponse,
    JobStartedResponse,
)

logger = logging.getLogger(__name__)


T = TypeVar("T")


class RunNotActiveError(LookupError):
    pass


class RunRegistry:
    """Live trackers for runs created by this process, mirrored to the store.

    Changes to one run and the snapshot saved after them are serialised by a
    per-run lock, so the store never regresses to an older snapshot. A run is
    dropped from memory once it is settled and saved; reads fall back to the
    store.
    """

    def __init__(self, store: RunStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._trackers: dict[str, tuple[RunTracker, threading.Lock]] = {}

    def add(self, tracker: RunTracker) -> RunReport:
        run_lock = threading.Lock()
        with run_lock:
            with self._lock:
                self._trackers[tracker.run.run_id] = (tracker, run_lock)
            return self._store.save(tracker.report())

    def get(self, run_id: str) -> RunTracker | None:
        with self._lock:
            entry = self._trackers.get(run_id)
        return entry[0] if entry else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._trackers)

    def update(self, run_id: str, change: Callable[[RunTracker], T]) -> tuple[T, RunReport]:
        """Apply `change` to a live run and persist the resulting snapshot."""

        with self._lock:
            entry = self._trackers.get(run_id)
        if entry is None:
            raise RunNotActiveError(run_id)

        tracker, run_lock = entry
        with run_lock:
            value = change(tracker)
            report = self._store.save(tracker.report())
            if tracker.finished:
                with self._lock:
                    self._trackers.pop(run_id, None)
                logger.info(
                    "Run settled", extra={"run_id": run_id, "state": report.state.value}
                )
        return value, report


def create_app(settings: OrchestratorSettings | None = None) -> FastAPI:
    settings = settings or OrchestratorSettings()

    # An invalid definition must stop the server from starting.
    definition = definition_from_settings(settings)
    evaluator = TriggerEvaluator(definition)
    store = RunStore(settings.runs_state_path)
    registry = RunRegistry(store)

    app = FastAPI(
        title="CI Matrix Orchestrator",
        version=__version__,
        description="Trigger evaluation and run tracking for cross-platform test matrices.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Expose settings and live runs for request handlers and tests.
    app.state.settings = settings
    app.state.definition = definition
    app.state.runs = registry

    def _launch(event: RepositoryEvent) -> EvaluationResponse:
        run = evaluator.evaluate(event)
        if run is None:
            return EvaluationResponse(triggered=False, reason="No trigger rule matched")
        registry.add(RunTracker(run))
        return EvaluationResponse(triggered=True, run=run.to_json())

    def _update(run_id: str, change: Callable[[RunTracker], T]) -> tuple[T, RunReport]:
        try:
            return registry.update(run_id, change)
        except RunNotActiveError as e:
            if store.get(run_id) is not None:
                raise HTTPException(
                    status_code=409, detail=f"Run {run_id} is already finished"
                ) from e
            raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}") from e
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except (ResultAlreadyRecordedError, IllegalTransitionError) as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__, "workflow": definition.name}

    @app.get("/api/v1/workflow")
    def workflow() -> dict[str, object]:
        return definition.to_json()

    @app.post("/api/v1/events", response_model=EvaluationResponse)
    def evaluate_event(payload: EventRequest) -> EvaluationResponse:
        try:
            event = RepositoryEvent(
                kind=payload.kind, ref_name=payload.ref_name, ref_kind=payload.ref_kind
            )
        except UnsupportedEventError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return _launch(event)

    @app.post("/api/v1/webhooks/github", response_model=EvaluationResponse)
    def github_webhook(
        payload: dict[str, Any] = Body(...),
        x_github_event: str = Header(...),
    ) -> EvaluationResponse:
        try:
            event = event_from_github(x_github_event, payload)
        except UnsupportedEventError as e:
            logger.info("Ignoring webhook", extra={"github_event": x_github_event})
            return EvaluationResponse(triggered=False, reason=str(e))
        return _launch(event)

    @app.get("/api/v1/runs", response_model=list[RunReport])
    def list_runs() -> list[RunReport]:
        return store.list()

    @app.get("/api/v1/runs/{run_id}", response_model=RunReport)
    def get_run(run_id: str) -> RunReport:
        tracker = registry.get(run_id)
        if tracker is not None:
            return tracker.report()
        report = store.get(run_id)
        if report is None:
            raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")
        return report

    @app.post("/api/v1/runs/{run_id}/jobs/{index}/started", response_model=JobStartedResponse)
    def job_started(run_id: str, index: int) -> JobStartedResponse:
        started, report = _update(run_id, lambda tracker: tracker.job_started(index))
        return JobStartedResponse(started=started, run=report)

    @app.post("/api/v1/runs/{run_id}/jobs/{index}/result", response_model=JobResultResponse)
    def job_result(run_id: str, index: int, payload: JobResultRequest) -> JobResultResponse:
        try:
            result = JobResult(
                state=payload.state,
                exit_code=payload.exit_code,
                output=payload.output,
                message=payload.message,
                duration_seconds=payload.duration_seconds,
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

        accepted, report = _update(run_id, lambda tracker: tracker.record(index, result))
        return JobResultResponse(accepted=accepted, run=report)

    return app
