"""Immutable workflow definition: trigger rules, matrix and job template.

A definition is validated once when it is constructed. Anything that would make
evaluation ambiguous (bad patterns, an empty matrix, unknown runner labels,
template expressions we cannot resolve) is a `ConfigurationError`.
"""

from __future__ import annotations

import itertools
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .errors import ConfigurationError
from .events import EventKind, RefKind, RepositoryEvent
from .patterns import RefPattern, filter_matches

# GitHub-hosted runner labels. Self-hosted labels are added via configuration.
KNOWN_TARGETS: frozenset[str] = frozenset(
    {
        "ubuntu-latest",
        "ubuntu-24.04",
        "ubuntu-22.04",
        "ubuntu-20.04",
        "macos-latest",
        "macos-15",
        "macos-14",
        "macos-13",
        "windows-latest",
        "windows-2025",
        "windows-2022",
        "windows-2019",
    }
)

_EXPRESSION = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
_MATRIX_REF = re.compile(r"matrix\.([A-Za-z_][A-Za-z0-9_-]*)")


def template_references(template: str) -> list[str]:
    """Return the matrix axes a template refers to, in order of appearance."""

    axes: list[str] = []
    for expr in _EXPRESSION.findall(template):
        m = _MATRIX_REF.fullmatch(expr)
        if m is None:
            raise ConfigurationError(
                f"Unsupported expression '${{{{ {expr} }}}}' in {template!r}; "
                "only matrix.<axis> is available"
            )
        axes.append(m.group(1))
    return axes


def matrix_combinations(axes: Iterable[MatrixAxis]) -> list[dict[str, str]]:
    """Cross product of the axes in declared order, first axis outermost."""

    axes = list(axes)
    names = [axis.name for axis in axes]
    return [dict(zip(names, values)) for values in itertools.product(*(a.values for a in axes))]


def render_template(template: str, values: Mapping[str, str]) -> str:
    def _sub(m: re.Match[str]) -> str:
        ref = _MATRIX_REF.fullmatch(m.group(1))
        if ref is None or ref.group(1) not in values:
            raise ConfigurationError(f"Cannot resolve {m.group(0)!r}")
        return values[ref.group(1)]

    return _EXPRESSION.sub(_sub, template)


@dataclass(frozen=True, slots=True)
class TriggerRule:
    """Predicate over repository events.

    `branches` / `tags` follow GitHub filter semantics: a rule with neither
    matches every ref; a rule with only one of them never matches refs of the
    other kind. Pull requests are matched on their base branch only.
    """

    event_kind: EventKind
    branches: tuple[RefPattern, ...] | None = None
    tags: tuple[RefPattern, ...] | None = None

    def __post_init__(self) -> None:
        if self.event_kind is EventKind.PULL_REQUEST and self.tags is not None:
            raise ConfigurationError("pull_request rules cannot filter on tags")

    @property
    def ref_patterns(self) -> tuple[RefPattern, ...]:
        return (self.branches or ()) + (self.tags or ())

    def matches(self, event: RepositoryEvent) -> bool:
        if event.kind is not self.event_kind:
            return False
        if self.branches is None and self.tags is None:
            return True
        patterns = self.branches if event.ref_kind is RefKind.BRANCH else self.tags
        if patterns is None:
            return False
        return filter_matches(patterns, event.ref_name)

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"event_kind": self.event_kind.value}
        if self.branches is not None:
            out["branches"] = [str(p) for p in self.branches]
        if self.tags is not None:
            out["tags"] = [str(p) for p in self.tags]
        return out


@dataclass(frozen=True, slots=True)
class MatrixAxis:
    """A named, ordered set of identifiers."""

    name: str
    values: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Matrix axis name must not be empty")
        if not self.values:
            raise ConfigurationError(f"Matrix axis {self.name!r} has no values")
        seen: set[str] = set()
        for value in self.values:
            if not isinstance(value, str) or not value:
                raise ConfigurationError(
                    f"Matrix axis {self.name!r} has an invalid value: {value!r}"
                )
            if value in seen:
                raise ConfigurationError(f"Matrix axis {self.name!r} repeats value {value!r}")
            seen.add(value)

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """Everything needed to turn a matching event into jobs.

    `runs_on`, `command` and `env` values are templates that may refer to
    matrix axes as `${{ matrix.<axis> }}`.
    """

    name: str
    rules: tuple[TriggerRule, ...]
    job_id: str
    matrix: tuple[MatrixAxis, ...]
    runs_on: str
    command: str
    env: Mapping[str, str] = field(default_factory=dict)
    fail_fast: bool = True
    known_targets: frozenset[str] = field(default=KNOWN_TARGETS, repr=False)

    def __post_init__(self) -> None:
        if not self.rules:
            raise ConfigurationError(f"Workflow {self.name!r} has no trigger rules")
        if not self.matrix:
            raise ConfigurationError(f"Workflow {self.name!r} has an empty matrix")
        if not self.command.strip():
            raise ConfigurationError(f"Workflow {self.name!r} has no command")

        axis_names = [axis.name for axis in self.matrix]
        if len(set(axis_names)) != len(axis_names):
            raise ConfigurationError(f"Duplicate matrix axes: {axis_names}")

        templates = [self.runs_on, self.command, *self.env.values()]
        for template in templates:
            for ref in template_references(template):
                if ref not in axis_names:
                    raise ConfigurationError(
                        f"Template {template!r} refers to unknown matrix axis {ref!r}"
                    )

        unknown = sorted(set(self.targets()) - self.known_targets)
        if unknown:
            raise ConfigurationError(f"Unknown target identifiers: {unknown}")

    @property
    def target_axis(self) -> MatrixAxis | None:
        """The axis `runs_on` is drawn from, if it is matrix-driven."""

        refs = template_references(self.runs_on)
        if not refs:
            return None
        by_name = {axis.name: axis for axis in self.matrix}
        return by_name[refs[0]]

    def targets(self) -> list[str]:
        """Every distinct runner label a run can be expanded onto."""

        if not template_references(self.runs_on):
            return [self.runs_on]

        seen: dict[str, None] = {}
        for combo in matrix_combinations(self.matrix):
            seen.setdefault(render_template(self.runs_on, combo), None)
        return list(seen)

    def to_json(self) -> dict[str, object]:
        return {
            "name": self.name,
            "job_id": self.job_id,
            "rules": [rule.to_json() for rule in self.rules],
            "matrix": {axis.name: list(axis.values) for axis in self.matrix},
            "runs_on": self.runs_on,
            "command": self.command,
            "env": dict(self.env),
            "fail_fast": self.fail_fast,
        }


def with_extra_targets(targets: Iterable[str]) -> frozenset[str]:
    return KNOWN_TARGETS | {t.strip() for t in targets if t.strip()}
