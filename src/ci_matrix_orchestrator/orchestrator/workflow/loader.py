"""Load a workflow definition from a GitHub Actions style YAML file.

Only the subset the orchestrator acts on is read:

- `on.push` / `on.pull_request` with `branches`, `tags` and their `-ignore` forms
- top-level and job-level `env`
- one job's `runs-on`, `strategy.fail-fast`, `strategy.matrix` and `run` steps

`uses` steps provision the environment and are the executor's business, so
they are skipped. Other trigger kinds are ignored with a warning.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

import yaml

from ci_matrix_orchestrator.orchestrator.config import OrchestratorSettings

from .definition import (
    KNOWN_TARGETS,
    MatrixAxis,
    TriggerRule,
    WorkflowDefinition,
    with_extra_targets,
)
from .errors import ConfigurationError
from .events import EventKind
from .patterns import RefPattern, compile_filter

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_YAML = """\
name: Tests

on:
  push:
    branches:
      - master
    tags:
      - 'v[0-9]+.*'
  pull_request:
    branches:
      - master
      - develop
      - 'v[0-9]+.?*'

env:
  CARGO_TERM_COLOR: always

jobs:
  testing:
    runs-on: ${{ matrix.os }}
    strategy:
      fail-fast: false
      matrix:
        os: [ ubuntu-latest, macos-13, macos-latest, windows-latest ]
    steps:
      - uses: actions/checkout@v4
      - uses: dtolnay/rust-toolchain@stable
      - name: Test ${{matrix.os}}
        run: cargo test --workspace --all-features --no-fail-fast
"""


def _scalar(value: object, *, where: str) -> str:
    # YAML booleans are spelled the way GitHub renders them.
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigurationError(f"{where} must be a scalar, got {type(value).__name__}")


def _string_list(value: object, *, where: str) -> list[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigurationError(f"{where} must be a list")
    return [_scalar(v, where=where) for v in value]


def _ref_filter(options: Mapping[str, object], key: str) -> tuple[RefPattern, ...] | None:
    include = options.get(key)
    ignore = options.get(f"{key}-ignore")
    if include is not None and ignore is not None:
        raise ConfigurationError(f"'{key}' and '{key}-ignore' cannot be used together")
    if include is not None:
        return compile_filter(_string_list(include, where=f"on.{key}"))
    if ignore is not None:
        excluded = _string_list(ignore, where=f"on.{key}-ignore")
        return compile_filter(["**", *(f"!{p}" for p in excluded)])
    return None


def _parse_rules(triggers: object) -> tuple[TriggerRule, ...]:
    if isinstance(triggers, str):
        triggers = {triggers: None}
    elif isinstance(triggers, list):
        triggers = {name: None for name in triggers}
    if not isinstance(triggers, Mapping):
        raise ConfigurationError("Workflow 'on' must be a string, list or mapping")

    kinds = {k.value: k for k in EventKind}
    rules: list[TriggerRule] = []
    for name, options in triggers.items():
        kind = kinds.get(str(name))
        if kind is None:
            logger.warning("Ignoring unsupported trigger", extra={"trigger": str(name)})
            continue
        if options is None:
            rules.append(TriggerRule(event_kind=kind))
            continue
        if not isinstance(options, Mapping):
            raise ConfigurationError(f"Trigger {name!r} must be a mapping")
        for key in ("paths", "paths-ignore", "types"):
            if key in options:
                logger.warning(
                    "Ignoring unsupported trigger filter", extra={"trigger": name, "filter": key}
                )
        rules.append(
            TriggerRule(
                event_kind=kind,
                branches=_ref_filter(options, "branches"),
                tags=_ref_filter(options, "tags"),
            )
        )
    return tuple(rules)


def _parse_env(value: object, *, where: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{where} must be a mapping")
    return {str(k): _scalar(v, where=f"{where}.{k}") for k, v in value.items()}


def _parse_matrix(strategy: Mapping[str, object]) -> tuple[MatrixAxis, ...]:
    matrix = strategy.get("matrix")
    if not matrix:
        raise ConfigurationError("Job has an empty matrix")
    if not isinstance(matrix, Mapping):
        raise ConfigurationError("strategy.matrix must be a mapping")
    for key in ("include", "exclude"):
        if key in matrix:
            raise ConfigurationError(f"strategy.matrix.{key} is not supported")
    return tuple(
        MatrixAxis(
            name=str(name),
            values=tuple(_string_list(values, where=f"strategy.matrix.{name}")),
        )
        for name, values in matrix.items()
    )


def _parse_command(steps: object) -> str:
    """Concatenate the job's `run` scripts, one after the other.

    Scripts are kept verbatim so compound statements, line continuations and
    heredocs survive; the executor stops at the first failing command.
    """

    if not isinstance(steps, list):
        raise ConfigurationError("Job steps must be a list")
    scripts: list[str] = []
    for step in steps:
        if not isinstance(step, Mapping):
            raise ConfigurationError("Each step must be a mapping")
        run = step.get("run")
        if run is None:
            continue
        script = _scalar(run, where="step.run").strip("\n")
        if script.strip():
            scripts.append(script)
    if not scripts:
        raise ConfigurationError("Job has no 'run' steps")
    return "\n".join(scripts)


def parse_workflow(
    raw: Mapping[object, object],
    *,
    job_id: str | None = None,
    known_targets: frozenset[str] = KNOWN_TARGETS,
    default_name: str = "workflow",
) -> WorkflowDefinition:
    # PyYAML follows YAML 1.1 and reads a bare `on` key as the boolean True.
    triggers = raw.get("on", raw.get(True))
    if triggers is None:
        raise ConfigurationError("Workflow has no 'on' section")

    jobs = raw.get("jobs")
    if not isinstance(jobs, Mapping) or not jobs:
        raise ConfigurationError("Workflow has no jobs")
    if job_id is None:
        job_id = str(next(iter(jobs)))
    job = jobs.get(job_id)
    if not isinstance(job, Mapping):
        raise ConfigurationError(f"Job {job_id!r} not found; known jobs: {list(jobs)}")

    runs_on = job.get("runs-on")
    if not isinstance(runs_on, str) or not runs_on.strip():
        raise ConfigurationError(f"Job {job_id!r} needs a single 'runs-on' label")

    strategy = job.get("strategy") or {}
    if not isinstance(strategy, Mapping):
        raise ConfigurationError(f"Job {job_id!r} strategy must be a mapping")
    fail_fast = strategy.get("fail-fast", True)
    if not isinstance(fail_fast, bool):
        raise ConfigurationError("strategy.fail-fast must be a boolean")

    env = _parse_env(raw.get("env"), where="env")
    env.update(_parse_env(job.get("env"), where=f"jobs.{job_id}.env"))

    return WorkflowDefinition(
        name=str(raw.get("name") or default_name),
        rules=_parse_rules(triggers),
        job_id=job_id,
        matrix=_parse_matrix(strategy),
        runs_on=runs_on.strip(),
        command=_parse_command(job.get("steps")),
        env=env,
        fail_fast=fail_fast,
        known_targets=known_targets,
    )


def load_workflow_file(
    path: Path,
    *,
    job_id: str | None = None,
    known_targets: frozenset[str] = KNOWN_TARGETS,
) -> WorkflowDefinition:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Workflow file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Workflow file is not valid YAML: {path}: {e}") from e
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Workflow file must contain a mapping: {path}")
    return parse_workflow(raw, job_id=job_id, known_targets=known_targets, default_name=path.stem)


def default_workflow(*, known_targets: frozenset[str] = KNOWN_TARGETS) -> WorkflowDefinition:
    return parse_workflow(
        yaml.safe_load(DEFAULT_WORKFLOW_YAML), known_targets=known_targets, default_name="Tests"
    )


def definition_from_settings(settings: OrchestratorSettings) -> WorkflowDefinition:
    known = with_extra_targets(settings.parsed_extra_targets())
    if settings.workflow_path is None:
        return default_workflow(known_targets=known)
    return load_workflow_file(
        settings.workflow_path, job_id=settings.workflow_job, known_targets=known
    )
