"""Unit tests for the CLI entrypoint."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from ci_matrix_orchestrator.orchestrator import main as main_module
from ci_matrix_orchestrator.orchestrator.main import (
    EXIT_CONFIG_ERROR,
    EXIT_INTERNAL_ERROR,
    EXIT_NOT_TRIGGERED,
    EXIT_OK,
    EXIT_TEST_FAILURES,
    main,
)


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch: pytest.MonkeyPatch, clean_env: Path) -> None:
    monkeypatch.setattr(main_module, "configure_logging", lambda level: None)


def test_validate_builtin_workflow(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["validate"]) == EXIT_OK
    out = capsys.readouterr().out
    assert "Workflow: Tests (job 'testing')" in out
    assert "on push: branches=['master'], tags=['v[0-9]+.*']" in out
    assert "fail-fast: false" in out


def test_evaluate_push_to_master(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["evaluate", "--event", "push", "--ref", "refs/heads/master"]) == EXIT_OK
    run = json.loads(capsys.readouterr().out)
    assert [j["target"] for j in run["jobs"]] == [
        "ubuntu-latest",
        "macos-13",
        "macos-latest",
        "windows-latest",
    ]


def test_evaluate_from_github_environment(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("GITHUB_EVENT_NAME", "push")
    monkeypatch.setenv("GITHUB_REF", "refs/tags/v2.3.1")
    assert main(["evaluate", "--from-env"]) == EXIT_OK
    run = json.loads(capsys.readouterr().out)
    assert run["event"] == {"kind": "push", "ref_name": "v2.3.1", "ref_kind": "tag"}


def test_unmatched_event_is_not_triggered(capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["evaluate", "--event", "pull_request", "--ref", "feature/x"])
    assert code == EXIT_NOT_TRIGGERED
    assert "No trigger rule matches" in capsys.readouterr().out


def test_missing_event_arguments() -> None:
    assert main(["evaluate", "--event", "push"]) == EXIT_CONFIG_ERROR


def test_invalid_workflow_file(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (clean_env / "ci.yml").write_text("on: push\njobs: {}\n", encoding="utf-8")
    monkeypatch.setenv("ORCHESTRATOR_WORKFLOW_PATH", str(clean_env / "ci.yml"))
    assert main(["validate"]) == EXIT_CONFIG_ERROR


def test_invalid_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ORCHESTRATOR_POLL_SECONDS", "-1")
    assert main(["validate"]) == EXIT_CONFIG_ERROR


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
def test_run_executes_jobs_and_persists_the_report(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    (clean_env / "ci.yml").write_text(
        "on:\n"
        "  push:\n"
        "    branches: [main]\n"
        "jobs:\n"
        "  check:\n"
        "    runs-on: self-hosted\n"
        "    strategy:\n"
        "      fail-fast: false\n"
        "      matrix:\n"
        "        variant: [ok, bad]\n"
        "    steps:\n"
        "      - run: test ${{ matrix.variant }} = ok\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("ORCHESTRATOR_WORKFLOW_PATH", "ci.yml")
    monkeypatch.setenv("ORCHESTRATOR_EXTRA_TARGETS", "self-hosted")
    monkeypatch.setenv("ORCHESTRATOR_POLL_SECONDS", "0.05")

    code = main(["run", "--event", "push", "--ref", "main", "--workdir", str(clean_env)])

    assert code == EXIT_TEST_FAILURES
    out = capsys.readouterr().out
    assert "partially_failed" in out
    assert "check (ok): succeeded" in out
    assert "check (bad): failed (exit=1)" in out

    runs = json.loads((clean_env / "ci_state" / "runs.json").read_text(encoding="utf-8"))
    assert len(runs) == 1
    assert runs[0]["state"] == "partially_failed"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
def test_orchestrator_crash_is_not_reported_as_test_failure(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    (clean_env / "ci.yml").write_text(
        "on: push\n"
        "jobs:\n"
        "  check:\n"
        "    runs-on: self-hosted\n"
        "    strategy:\n"
        "      matrix:\n"
        "        variant: [ok]\n"
        "    steps:\n"
        "      - run: 'true'\n",
        encoding="utf-8",
    )
    (clean_env / "runs.json").write_text('{"not": "a list"}', encoding="utf-8")
    monkeypatch.setenv("ORCHESTRATOR_WORKFLOW_PATH", "ci.yml")
    monkeypatch.setenv("ORCHESTRATOR_EXTRA_TARGETS", "self-hosted")
    monkeypatch.setenv("ORCHESTRATOR_RUNS_STATE_PATH", "runs.json")
    monkeypatch.setenv("ORCHESTRATOR_POLL_SECONDS", "0.05")

    code = main(["run", "--event", "push", "--ref", "main", "--workdir", str(clean_env)])

    assert code == EXIT_INTERNAL_ERROR
    assert "Internal error" in capsys.readouterr().err
