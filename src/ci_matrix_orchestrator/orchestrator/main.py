"""CLI entrypoint for the CI matrix orchestrator.

Commands:
- `validate`: load the workflow definition and print what it triggers on
- `evaluate`: print the run an event would launch (as JSON)
- `run`: evaluate an event and execute the run's jobs on this host
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from pydantic import ValidationError

from ci_matrix_orchestrator import __version__
from ci_matrix_orchestrator.orchestrator.config import OrchestratorSettings
from ci_matrix_orchestrator.orchestrator.logging import configure_logging
from ci_matrix_orchestrator.orchestrator.run_store import RunStore
from ci_matrix_orchestrator.orchestrator.workflow.coordinator import execute_run
from ci_matrix_orchestrator.orchestrator.workflow.definition import WorkflowDefinition
from ci_matrix_orchestrator.orchestrator.workflow.errors import ConfigurationError
from ci_matrix_orchestrator.orchestrator.workflow.evaluator import TriggerEvaluator
from ci_matrix_orchestrator.orchestrator.workflow.events import (
    EventKind,
    RepositoryEvent,
    UnsupportedEventError,
    event_from_environment,
    event_from_ref,
)
from ci_matrix_orchestrator.orchestrator.workflow.executor import LocalProcessExecutor
from ci_matrix_orchestrator.orchestrator.workflow.loader import definition_from_settings
from ci_matrix_orchestrator.orchestrator.workflow.state_machine import RunState
from ci_matrix_orchestrator.orchestrator.workflow.tracker import RunReport

logger = logging.getLogger(__name__)

# Exit codes are designed to be CI-friendly.
EXIT_OK = 0
EXIT_TEST_FAILURES = 1
EXIT_CONFIG_ERROR = 2
EXIT_NOT_TRIGGERED = 3
EXIT_ABORTED = 4
EXIT_INFRA_ERRORS = 5
EXIT_INTERNAL_ERROR = 6


def _add_event_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--event",
        choices=[k.value for k in EventKind],
        default=None,
        help="Event kind",
    )
    parser.add_argument(
        "--ref",
        default=None,
        help=(
            "Git ref, e.g. 'refs/heads/master' or 'refs/tags/v1.0.0' (a bare name is a branch). "
            "For pull requests this is the base branch."
        ),
    )
    parser.add_argument(
        "--from-env",
        action="store_true",
        help="Read the event from GITHUB_EVENT_NAME / GITHUB_REF / GITHUB_BASE_REF",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ci-matrix-orchestrator",
        description="Decide and run cross-platform test matrices for repository events",
    )
    parser.add_argument(
        "--version", action="version", version=f"ci-matrix-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate", help="Validate the workflow definition")

    evaluate = subparsers.add_parser(
        "evaluate", help="Print the run an event would launch, without executing it"
    )
    _add_event_args(evaluate)

    run = subparsers.add_parser("run", help="Evaluate an event and execute its jobs locally")
    _add_event_args(run)
    run.add_argument(
        "--workdir",
        default=".",
        help="Directory the job commands run in",
    )

    return parser


def _event_from_args(args: argparse.Namespace) -> RepositoryEvent:
    if args.from_env:
        return event_from_environment(os.environ)
    if args.event is None or args.ref is None:
        raise UnsupportedEventError("Either --from-env or both --event and --ref are required")
    return event_from_ref(args.event, args.ref)


def _print_definition(definition: WorkflowDefinition) -> None:
    print(f"Workflow: {definition.name} (job '{definition.job_id}')")
    for rule in definition.rules:
        filters = [
            f"{label}={[str(p) for p in patterns]}"
            for label, patterns in (("branches", rule.branches), ("tags", rule.tags))
            if patterns is not None
        ]
        print(f"  on {rule.event_kind.value}: {', '.join(filters) or 'all refs'}")
    for axis in definition.matrix:
        print(f"  matrix {axis.name}: {list(axis.values)}")
    print(f"  fail-fast: {str(definition.fail_fast).lower()}")
    print(f"  command: {definition.command}")


def _print_report(report: RunReport) -> None:
    print(f"Run {report.run_id}: {report.state.value}")
    for job in report.jobs:
        detail = f" (exit={job.exit_code})" if job.exit_code is not None else ""
        note = f": {job.message}" if job.message else ""
        print(f"  {job.name}: {job.state.value}{detail}{note}")
    if report.infra_failures:
        names = ", ".join(j.name for j in report.infra_failures)
        print(f"Environment problems (not test failures): {names}")


def exit_code_for(report: RunReport) -> int:
    if report.state is RunState.COMPLETED:
        return EXIT_OK
    if report.state is RunState.ABORTED:
        return EXIT_ABORTED
    if report.failed_jobs:
        return EXIT_TEST_FAILURES
    if report.infra_failures:
        return EXIT_INFRA_ERRORS
    return EXIT_TEST_FAILURES


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(settings.log_level)

    try:
        definition = definition_from_settings(settings)
    except ConfigurationError as e:
        logger.error("Invalid workflow definition", extra={"error": str(e)})
        print(f"Workflow configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        if args.command == "validate":
            _print_definition(definition)
            return EXIT_OK

        try:
            event = _event_from_args(args)
        except UnsupportedEventError as e:
            print(f"Invalid event: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR

        run = TriggerEvaluator(definition).evaluate(event)
        if run is None:
            print(
                f"No trigger rule matches {event.kind.value} to "
                f"{event.ref_kind.value} '{event.ref_name}'"
            )
            return EXIT_NOT_TRIGGERED

        if args.command == "evaluate":
            print(json.dumps(run.to_json(), indent=2, ensure_ascii=False))
            return EXIT_OK

        if args.command == "run":
            executor = LocalProcessExecutor(
                workdir=Path(args.workdir),
                poll_seconds=settings.poll_seconds,
                timeout_seconds=settings.job_timeout_seconds,
            )
            report = execute_run(run, executor, max_workers=settings.max_workers)
            RunStore(settings.runs_state_path).save(report)
            logger.info(
                "Run persisted",
                extra={"path": str(settings.runs_state_path), "run_id": report.run_id},
            )
            _print_report(report)
            return exit_code_for(report)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_CONFIG_ERROR

    except Exception:
        # Never report an orchestrator crash as a test failure.
        logger.exception("Command failed")
        print("Internal error; see the log for details", file=sys.stderr)
        return EXIT_INTERNAL_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
