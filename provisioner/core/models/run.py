"""
ProvisioningRun — the state of one end-to-end execution.

A run is created fresh per invocation and owns its ``results`` map
exclusively. After the reporter consumes it, it is serialized to the
state directory as the machine-readable run report.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class CheckResult(BaseModel):
    """Outcome of one pre-flight check."""

    model_config = ConfigDict(frozen=True)

    name: str
    ok: bool
    hard: bool = True
    observed: str = ""
    required: str = ""
    message: str = ""


class TargetInfo(BaseModel):
    """Immutable snapshot of what the target probe found."""

    model_config = ConfigDict(frozen=True)

    os_id: str = ""
    os_version: str = ""
    os_name: str = ""
    ram_gb: float = 0.0
    disk_free_gb: float = 0.0
    cpu_count: int = 0
    network_reachable: bool | None = None   # None = not checked
    is_root: bool = False
    checks: list[CheckResult] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ServiceStatus(StrEnum):
    """Lifecycle of a service within a run."""

    PENDING = "pending"
    INSTALLING = "installing"
    VERIFYING = "verifying"
    HEALTHY = "healthy"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (ServiceStatus.HEALTHY, ServiceStatus.FAILED, ServiceStatus.SKIPPED)


class ServiceResult(BaseModel):
    """Per-service result inside a run."""

    service_id: str
    status: ServiceStatus = ServiceStatus.PENDING
    reason: str = ""
    error_kind: str | None = None   # install, health_timeout, cancelled, upstream
    installed: bool = False         # an install action actually ran
    attempts: int = 0               # health probes performed
    endpoint: str | None = None
    started_at: str | None = None
    ended_at: str | None = None


class ProvisioningRun(BaseModel):
    """One end-to-end execution of a descriptor set."""

    schema_version: int = 1

    run_id: str = ""
    descriptor_set: str = ""
    backend: str = ""
    dry_run: bool = False

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str | None = None

    target: TargetInfo | None = None
    plan: list[str] = Field(default_factory=list)
    results: dict[str, ServiceResult] = Field(default_factory=dict)

    metadata: dict[str, Any] = Field(default_factory=dict)

    def init_results(self, plan: list[str], endpoints: dict[str, str | None]) -> None:
        """Record the plan and start every service as pending."""
        self.plan = list(plan)
        self.results = {
            sid: ServiceResult(service_id=sid, endpoint=endpoints.get(sid))
            for sid in plan
        }

    def mark(
        self,
        service_id: str,
        status: ServiceStatus,
        reason: str = "",
        error_kind: str | None = None,
        **kwargs: Any,
    ) -> ServiceResult:
        """Move a service to a new status, stamping timestamps."""
        result = self.results[service_id]
        if status == ServiceStatus.INSTALLING and result.started_at is None:
            result.started_at = _now_iso()
        result.status = status
        if reason:
            result.reason = reason
        if error_kind is not None:
            result.error_kind = error_kind
        for key, value in kwargs.items():
            setattr(result, key, value)
        if status.terminal:
            result.ended_at = _now_iso()
        return result

    def status_of(self, service_id: str) -> ServiceStatus:
        return self.results[service_id].status

    def finish(self) -> None:
        self.ended_at = _now_iso()
