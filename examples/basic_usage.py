#!/usr/bin/env python3
"""Programmatic run example.

This demonstrates using the orchestrator components directly:

* load settings from `.env`
* evaluate a repository event against the workflow definition
* execute the resulting jobs on this host and persist the report

The event is passed as arguments, e.g. `--event push --ref refs/tags/v1.2.0`.
"""

from __future__ import annotations

import argparse
from typing import Sequence

from ci_matrix_orchestrator.orchestrator.config import OrchestratorSettings
from ci_matrix_orchestrator.orchestrator.logging import configure_logging
from ci_matrix_orchestrator.orchestrator.run_store import RunStore
from ci_matrix_orchestrator.orchestrator.workflow import (
    TriggerEvaluator,
    execute_run,
)
from ci_matrix_orchestrator.orchestrator.workflow.events import event_from_ref
from ci_matrix_orchestrator.orchestrator.workflow.executor import LocalProcessExecutor
from ci_matrix_orchestrator.orchestrator.workflow.loader import definition_from_settings


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate and run a test matrix (example).")
    parser.add_argument("--event", required=True, choices=["push", "pull_request"])
    parser.add_argument("--ref", required=True, help="Git ref or bare branch name")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = OrchestratorSettings()
    configure_logging(settings.log_level)

    run = TriggerEvaluator(definition_from_settings(settings)).evaluate(
        event_from_ref(args.event, args.ref)
    )
    if run is None:
        print("Event does not trigger a run")
        return 0

    print(f"Run {run.run_id}: {len(run.jobs)} job(s)")
    executor = LocalProcessExecutor(timeout_seconds=settings.job_timeout_seconds)
    report = execute_run(run, executor, max_workers=settings.max_workers)
    RunStore(settings.runs_state_path).save(report)

    for job in report.jobs:
        print(f"  {job.name}: {job.state.value}")
    print(f"Result: {report.state.value}")
    print(f"Persisted to: {settings.runs_state_path}")
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
