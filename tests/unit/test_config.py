"""Unit tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from ci_matrix_orchestrator.orchestrator.config import OrchestratorSettings
from ci_matrix_orchestrator.orchestrator.workflow.errors import ConfigurationError
from ci_matrix_orchestrator.orchestrator.workflow.loader import definition_from_settings


def test_settings_defaults(clean_env: Path) -> None:
    settings = OrchestratorSettings()

    assert settings.log_level == "INFO"
    assert settings.workflow_path is None
    assert settings.runs_state_path == Path("ci_state/runs.json")
    assert settings.max_workers is None
    assert settings.job_timeout_seconds == 0.0
    assert settings.parsed_extra_targets() == []


def test_settings_loads_from_dotenv(clean_env: Path) -> None:
    (clean_env / ".env").write_text(
        "\n".join(
            [
                "LOG_LEVEL=debug",
                "ORCHESTRATOR_EXTRA_TARGETS=self-hosted, gpu-box ,",
                "ORCHESTRATOR_MAX_WORKERS=2",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = OrchestratorSettings()

    assert settings.log_level == "DEBUG"
    assert settings.parsed_extra_targets() == ["self-hosted", "gpu-box"]
    assert settings.max_workers == 2


def test_invalid_settings_are_rejected(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ORCHESTRATOR_MAX_WORKERS", "0")
    with pytest.raises(ValidationError):
        OrchestratorSettings()


def test_definition_from_settings_uses_builtin_workflow(clean_env: Path) -> None:
    definition = definition_from_settings(OrchestratorSettings())
    assert definition.name == "Tests"
    assert len(definition.targets()) == 4


def test_definition_from_settings_reads_workflow_file(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    (clean_env / "ci.yml").write_text(
        "on: push\n"
        "jobs:\n"
        "  gpu:\n"
        "    runs-on: ${{ matrix.runner }}\n"
        "    strategy:\n"
        "      matrix:\n"
        "        runner: [gpu-box]\n"
        "    steps:\n"
        "      - run: make test\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("ORCHESTRATOR_WORKFLOW_PATH", "ci.yml")

    with pytest.raises(ConfigurationError):
        definition_from_settings(OrchestratorSettings())

    monkeypatch.setenv("ORCHESTRATOR_EXTRA_TARGETS", "gpu-box")
    definition = definition_from_settings(OrchestratorSettings())
    assert definition.targets() == ["gpu-box"]
