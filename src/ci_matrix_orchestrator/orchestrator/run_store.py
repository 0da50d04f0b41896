"""Persisted run reports.

Reports are kept as a JSON list next to the rest of the local state so that
finished runs survive restarts and can be listed by the CLI and the API.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path

from ci_matrix_orchestrator.orchestrator.workflow.tracker import RunReport


@dataclass
class RunStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[RunReport]:
        if not self.path.exists():
            return []
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError(f"Run store is corrupted (expected a list): {self.path}")
        return [RunReport.model_validate(item) for item in raw]

    def _save_unlocked(self, reports: list[RunReport]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in reports]
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def list(self) -> list[RunReport]:
        with self._lock:
            return self._load_unlocked()

    def get(self, run_id: str) -> RunReport | None:
        with self._lock:
            for report in self._load_unlocked():
                if report.run_id == run_id:
                    return report
            return None

    def save(self, report: RunReport) -> RunReport:
        """Insert or replace the report with the same run id."""

        with self._lock:
            reports = self._load_unlocked()
            for idx, existing in enumerate(reports):
                if existing.run_id == report.run_id:
                    reports[idx] = report
                    break
            else:
                reports.append(report)
            self._save_unlocked(reports)
            return report
