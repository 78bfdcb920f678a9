"""
Summary reporter — turn a finished run into an outcome and exit code (pure).

Outcome rules:
    success          every service healthy (an empty set counts)
    partial_success  at least one healthy, none failed
    failure          anything else

Exit codes: 0 success, 1 partial_success, 2 failure, 3 pre-flight error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from provisioner.core.models.run import ProvisioningRun, ServiceStatus

EXIT_SUCCESS = 0
EXIT_PARTIAL = 1
EXIT_FAILURE = 2
EXIT_PREFLIGHT = 3

_EXIT_CODES = {
    "success": EXIT_SUCCESS,
    "partial_success": EXIT_PARTIAL,
    "failure": EXIT_FAILURE,
}


@dataclass
class RunReport:
    """What the operator sees at the end of a run."""

    run_id: str = ""
    descriptor_set: str = ""
    dry_run: bool = False
    outcome: str = "success"
    healthy: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)
    endpoints: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self.outcome]

    @property
    def total(self) -> int:
        return len(self.healthy) + len(self.failed) + len(self.skipped) + len(self.pending)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "descriptor_set": self.descriptor_set,
            "dry_run": self.dry_run,
            "outcome": self.outcome,
            "exit_code": self.exit_code,
            "healthy": self.healthy,
            "failed": self.failed,
            "skipped": self.skipped,
            "pending": self.pending,
            "reasons": self.reasons,
            "endpoints": self.endpoints,
            "warnings": self.warnings,
        }


def outcome_of(healthy: int, failed: int, total: int) -> str:
    if healthy == total:
        return "success"
    if healthy >= 1 and failed == 0:
        return "partial_success"
    return "failure"


def summarize(run: ProvisioningRun) -> RunReport:
    """Categorize results in plan order and compute the outcome.

    A dry run only plans, so its outcome is success whenever planning
    succeeded.
    """
    report = RunReport(
        run_id=run.run_id,
        descriptor_set=run.descriptor_set,
        dry_run=run.dry_run,
        warnings=list(run.target.warnings) if run.target else [],
    )

    for sid in run.plan:
        result = run.results[sid]
        if result.status == ServiceStatus.HEALTHY:
            report.healthy.append(sid)
            if result.endpoint:
                report.endpoints[sid] = result.endpoint
        elif result.status == ServiceStatus.FAILED:
            report.failed.append(sid)
        elif result.status == ServiceStatus.SKIPPED:
            report.skipped.append(sid)
        else:
            report.pending.append(sid)
        if result.reason and result.status != ServiceStatus.HEALTHY:
            report.reasons[sid] = result.reason

    if run.dry_run:
        report.outcome = "success"
    else:
        report.outcome = outcome_of(len(report.healthy), len(report.failed), len(run.plan))
    return report
