from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from .definition import TriggerRule, WorkflowDefinition
from .events import RepositoryEvent
from .expansion import Job, expand_jobs

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Run:
    """One triggered test execution spanning every matrix job.

    A run owns its jobs; two runs never share job instances or state.
    """

    run_id: str
    workflow: str
    event: RepositoryEvent
    matched_rule: TriggerRule
    jobs: tuple[Job, ...]
    fail_fast: bool

    def to_json(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "workflow": self.workflow,
            "event": self.event.to_json(),
            "matched_rule": self.matched_rule.to_json(),
            "fail_fast": self.fail_fast,
            "jobs": [job.to_json() for job in self.jobs],
        }


class TriggerEvaluator:
    """Decide whether an event launches a run.

    Pure: evaluating an event never executes anything. Rules are tried in
    declared order and the first match is recorded on the run.
    """

    def __init__(self, definition: WorkflowDefinition) -> None:
        self._definition = definition

    @property
    def definition(self) -> WorkflowDefinition:
        return self._definition

    def match(self, event: RepositoryEvent) -> TriggerRule | None:
        for rule in self._definition.rules:
            if rule.matches(event):
                return rule
        return None

    def evaluate(self, event: RepositoryEvent) -> Run | None:
        rule = self.match(event)
        if rule is None:
            logger.info("No trigger rule matched", extra={"event": event.to_json()})
            return None

        run = Run(
            run_id=uuid.uuid4().hex,
            workflow=self._definition.name,
            event=event,
            matched_rule=rule,
            jobs=expand_jobs(self._definition),
            fail_fast=self._definition.fail_fast,
        )
        logger.info(
            "Run created",
            extra={
                "run_id": run.run_id,
                "event": event.to_json(),
                "job_count": len(run.jobs),
                "fail_fast": run.fail_fast,
            },
        )
        return run
