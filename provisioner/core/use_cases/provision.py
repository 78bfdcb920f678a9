"""
Provision use case — the full vertical slice of one run.

    load → plan → probe → lock → execute → summarize → persist

Pre-flight and planning problems end the run before anything on the
host changes. Everything after the lock is recorded in the run report,
including an operator interrupt.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from provisioner.backends.base import InstallerBackend
from provisioner.backends.registry import create_backend
from provisioner.core.config.loader import load_descriptor_set
from provisioner.core.engine.cancellation import cancel_on_signals
from provisioner.core.engine.executor import Executor, new_run
from provisioner.core.engine.probe import HostFacts, probe
from provisioner.core.engine.reporter import EXIT_FAILURE, EXIT_PREFLIGHT, RunReport, summarize
from provisioner.core.engine.scheduler import plan
from provisioner.core.engine.verifier import HealthVerifier, Prober
from provisioner.core.errors import ConfigError, LockError, PlanError, TargetEnvironmentError
from provisioner.core.models.descriptor import DescriptorSet
from provisioner.core.models.run import CheckResult, ProvisioningRun
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.lock import host_lock
from provisioner.core.persistence.report_file import default_state_dir, save_report
from provisioner.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Result of a provision invocation."""

    descriptor_set: DescriptorSet | None = None
    run: ProvisioningRun | None = None
    report: RunReport | None = None
    report_path: Path | None = None
    error: str | None = None
    error_kind: str | None = None      # config, plan, preflight, lock
    failures: list[dict[str, Any]] = field(default_factory=list)
    health_budgets: dict[str, dict[str, Any]] = field(default_factory=dict)
    exit_code: int = 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"exit_code": self.exit_code}
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            if self.failures:
                result["failures"] = self.failures
            return result

        if self.report:
            result["report"] = self.report.to_dict()
        if self.run:
            result["plan"] = self.run.plan
            if self.health_budgets:
                result["health_budgets"] = self.health_budgets
            result["results"] = {
                sid: r.model_dump(mode="json") for sid, r in self.run.results.items()
            }
        if self.report_path:
            result["report_path"] = str(self.report_path)
        return result


def _fail(result: ProvisionResult, kind: str, error: Exception, exit_code: int) -> ProvisionResult:
    logger.error("%s", error)
    result.error = str(error)
    result.error_kind = kind
    result.exit_code = exit_code
    return result


def provision(
    source: str | Path,
    dry_run: bool = False,
    timeout_scale: float = 1.0,
    mock: bool = False,
    state_dir: Path | None = None,
    skip_probe: bool = False,
    backend: InstallerBackend | None = None,
    policy: RetryPolicy | None = None,
    facts: HostFacts | None = None,
    cancel_event: threading.Event | None = None,
) -> ProvisionResult:
    """Provision a descriptor set onto this host.

    Args:
        source: Descriptor file path or built-in profile name.
        dry_run: Validate and plan only; touch nothing, write nothing.
        timeout_scale: Multiplier on every health-check attempt budget.
        mock: Use the in-memory backend instead of the real one.
        state_dir: Engine state directory (report, ledger, lock, stamps).
        skip_probe: Do not check the host against target requirements.
        backend: Pre-built backend (tests inject a MockBackend).
        policy: Health retry policy overriding every descriptor's own.
        facts: Pre-collected host facts for the target probe.
        cancel_event: Externally owned cancel event.

    Returns:
        ProvisionResult; ``exit_code`` is what the CLI should exit with.
    """
    result = ProvisionResult()
    state_dir = state_dir or default_state_dir()

    # ── Load and plan ────────────────────────────────────────────
    try:
        descriptor_set = load_descriptor_set(source)
        result.descriptor_set = descriptor_set
        order = plan(descriptor_set.descriptors())
    except ConfigError as e:
        return _fail(result, "config", e, EXIT_FAILURE)
    except PlanError as e:
        return _fail(result, "plan", e, EXIT_FAILURE)

    logger.info("Plan: %s", " → ".join(order) or "(empty)")

    if dry_run:
        backend_name = backend.name if backend else descriptor_set.backend.name
        run = new_run(descriptor_set, order, backend_name, dry_run=True)
        run.finish()
        verifier = HealthVerifier(Prober(), timeout_scale=timeout_scale, policy=policy)
        for sid in order:
            budget = verifier.policy_for(descriptor_set.services[sid])
            result.health_budgets[sid] = {
                "attempts": budget.max_attempts,
                "max_wait_seconds": round(budget.budget_seconds, 1),
            }
        result.run = run
        result.report = summarize(run)
        result.exit_code = result.report.exit_code
        return result

    # ── Pre-flight ───────────────────────────────────────────────
    target = None
    if not skip_probe:
        try:
            target = probe(descriptor_set.target, facts)
        except TargetEnvironmentError as e:
            result.failures = e.failures
            return _fail(result, "preflight", e, EXIT_PREFLIGHT)
        for warning in target.warnings:
            logger.warning("%s", warning)

    try:
        backend = backend or create_backend(descriptor_set.backend, state_dir, mock)
    except ConfigError as e:
        return _fail(result, "config", e, EXIT_FAILURE)

    if not mock and not backend.is_available():
        check = CheckResult(
            name="backend",
            ok=False,
            observed="tooling not found",
            required=f"{backend.name} tooling on PATH",
            message=f"Backend '{backend.name}' cannot run on this host",
        )
        error = TargetEnvironmentError(check.name, check.observed, check.required, [check.model_dump()])
        result.failures = error.failures
        return _fail(result, "preflight", error, EXIT_PREFLIGHT)

    # ── Execute under the host lock ──────────────────────────────
    cancel_event = cancel_event or threading.Event()
    start = time.monotonic()
    try:
        with host_lock(state_dir), cancel_on_signals(cancel_event):
            verifier = HealthVerifier(
                Prober(is_active=backend.is_active, simulate=mock),
                cancel_event=cancel_event,
                timeout_scale=timeout_scale,
                policy=policy,
            )
            run = new_run(descriptor_set, order, backend.name, target=target)
            if mock:
                run.metadata["mock"] = True
            Executor(descriptor_set, backend, verifier, cancel_event).execute(run)
    except LockError as e:
        return _fail(result, "lock", e, EXIT_PREFLIGHT)
    except OSError as e:
        return _fail(result, "lock", ConfigError(f"Cannot use state directory {state_dir}: {e}"), EXIT_PREFLIGHT)

    if cancel_event.is_set():
        run.metadata["cancelled"] = True

    report = summarize(run)
    result.run = run
    result.report = report
    result.exit_code = report.exit_code

    # ── Persist ──────────────────────────────────────────────────
    try:
        result.report_path = save_report(run, state_dir, report.to_dict())
    except OSError as e:
        logger.error("Failed to save run report: %s", e)

    AuditWriter(state_dir).write(AuditEntry(
        run_id=run.run_id,
        descriptor_set=run.descriptor_set,
        backend=run.backend,
        outcome=report.outcome,
        exit_code=report.exit_code,
        services_total=len(run.plan),
        healthy=report.healthy,
        failed=report.failed,
        skipped=report.skipped,
        duration_ms=int((time.monotonic() - start) * 1000),
        errors=[report.reasons[sid] for sid in report.failed if sid in report.reasons],
        context={"cancelled": cancel_event.is_set(), "mock": mock},
    ))

    return result
