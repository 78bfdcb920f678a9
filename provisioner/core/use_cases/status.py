"""
Status use case — the last persisted run report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from provisioner.core.models.run import ProvisioningRun
from provisioner.core.persistence.audit import AuditWriter
from provisioner.core.persistence.report_file import default_state_dir, load_report, report_path


@dataclass
class StatusResult:
    """Last run plus a short history."""

    run: ProvisioningRun | None = None
    summary: dict[str, Any] = field(default_factory=dict)
    history: list[dict[str, Any]] = field(default_factory=list)
    state_dir: Path | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.error:
            return {"error": self.error, "state_dir": str(self.state_dir)}
        return {
            "state_dir": str(self.state_dir),
            "run": self.run.model_dump(mode="json") if self.run else None,
            "summary": self.summary,
            "history": self.history,
        }


def get_status(state_dir: Path | None = None, history: int = 5) -> StatusResult:
    """Read the last run report and the most recent ledger entries."""
    state_dir = state_dir or default_state_dir()
    result = StatusResult(state_dir=state_dir)

    loaded = load_report(state_dir)
    if loaded is None:
        result.error = f"No run report found at {report_path(state_dir)}"
        return result

    result.run, result.summary = loaded
    result.history = [
        {
            "timestamp": e.timestamp,
            "run_id": e.run_id,
            "descriptor_set": e.descriptor_set,
            "outcome": e.outcome,
        }
        for e in AuditWriter(state_dir).read_recent(history)
    ]
    return result
