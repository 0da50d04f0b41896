"""Configuration for the orchestrator process.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

The workflow definition itself (rules, matrix, command) is not a setting: it
is loaded from `ORCHESTRATOR_WORKFLOW_PATH`, or the built-in default workflow
when that is unset.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorSettings(BaseSettings):
    """Settings for the orchestrator.

    Environment variables:
    - LOG_LEVEL                          (optional)
    - ORCHESTRATOR_WORKFLOW_PATH         (optional)
    - ORCHESTRATOR_WORKFLOW_JOB          (optional)
    - ORCHESTRATOR_EXTRA_TARGETS         (optional)
    - ORCHESTRATOR_RUNS_STATE_PATH       (optional)
    - ORCHESTRATOR_MAX_WORKERS           (optional)
    - ORCHESTRATOR_POLL_SECONDS          (optional)
    - ORCHESTRATOR_JOB_TIMEOUT_SECONDS   (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    workflow_path: Path | None = Field(
        default=None,
        validation_alias="ORCHESTRATOR_WORKFLOW_PATH",
        description="YAML workflow file; the built-in default workflow is used when unset",
    )
    workflow_job: str | None = Field(
        default=None,
        validation_alias="ORCHESTRATOR_WORKFLOW_JOB",
        description="Job id to expand from the workflow file (defaults to the first job)",
    )
    extra_targets: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_EXTRA_TARGETS",
        description="Comma-separated runner labels accepted in addition to GitHub-hosted ones",
    )

    runs_state_path: Path = Field(
        default=Path("ci_state/runs.json"),
        validation_alias="ORCHESTRATOR_RUNS_STATE_PATH",
        description="Path where run reports are persisted",
    )

    max_workers: int | None = Field(
        default=None,
        gt=0,
        validation_alias="ORCHESTRATOR_MAX_WORKERS",
        description="Upper bound on parallel jobs (defaults to one worker per job)",
    )
    poll_seconds: float = Field(
        default=0.2,
        gt=0,
        validation_alias="ORCHESTRATOR_POLL_SECONDS",
        description="How often running jobs check for cancellation",
    )
    job_timeout_seconds: float = Field(
        default=0.0,
        ge=0,
        validation_alias="ORCHESTRATOR_JOB_TIMEOUT_SECONDS",
        description="Per-job timeout in seconds (0 means no timeout)",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    def parsed_extra_targets(self) -> list[str]:
        return [t.strip() for t in self.extra_targets.split(",") if t.strip()]
