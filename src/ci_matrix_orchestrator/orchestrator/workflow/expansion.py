from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from .definition import WorkflowDefinition, matrix_combinations, render_template


@dataclass(frozen=True, slots=True)
class Job:
    """One target-specific unit of work inside a run.

    Jobs never reference each other; `index` is the job's position in the
    expansion order and doubles as its result slot.
    """

    index: int
    name: str
    target: str
    matrix: Mapping[str, str]
    command: str
    env: Mapping[str, str] = field(default_factory=dict)

    def to_json(self) -> dict[str, object]:
        return {
            "index": self.index,
            "name": self.name,
            "target": self.target,
            "matrix": dict(self.matrix),
            "command": self.command,
            "env": dict(self.env),
        }


def expand_jobs(definition: WorkflowDefinition) -> tuple[Job, ...]:
    """Expand the definition's matrix into jobs, in declared order."""

    jobs: list[Job] = []
    for index, combo in enumerate(matrix_combinations(definition.matrix)):
        jobs.append(
            Job(
                index=index,
                name=f"{definition.job_id} ({', '.join(combo.values())})",
                target=render_template(definition.runs_on, combo),
                matrix=combo,
                command=render_template(definition.command, combo),
                env={k: render_template(v, combo) for k, v in definition.env.items()},
            )
        )
    return tuple(jobs)
