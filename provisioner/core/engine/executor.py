"""
Engine executor — the central orchestration loop.

Takes a planned descriptor set, drives each service through the
backend and the health verifier in dependency order, and records every
transition on the ProvisioningRun.

Flow (imperative backend):
    for each service in plan order:
        upstream not healthy → skipped
        apply → verify → healthy | failed

Flow (deferred backend):
    stage every service → converge once → verify in plan order

A failure never stops the run; it only skips the services that depend
on the failed one. An operator interrupt marks the in-flight service
failed and everything not started as skipped.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import UTC, datetime

from provisioner.backends.base import InstallerBackend
from provisioner.core.errors import HealthTimeoutError, InstallError, ProvisionCancelled
from provisioner.core.engine.scheduler import dependents_of
from provisioner.core.engine.verifier import HealthVerifier
from provisioner.core.models.descriptor import DescriptorSet, ServiceDescriptor
from provisioner.core.models.receipt import Receipt
from provisioner.core.models.run import ProvisioningRun, ServiceStatus, TargetInfo

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"
UPSTREAM_FAILED = "upstream failed"


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


def new_run(
    descriptor_set: DescriptorSet,
    plan: list[str],
    backend_name: str,
    target: TargetInfo | None = None,
    dry_run: bool = False,
) -> ProvisioningRun:
    """A fresh run with every planned service pending."""
    run = ProvisioningRun(
        run_id=generate_run_id(),
        descriptor_set=descriptor_set.name,
        backend=backend_name,
        dry_run=dry_run,
        target=target,
    )
    run.init_results(
        plan,
        {sid: descriptor_set.services[sid].endpoint for sid in plan},
    )
    return run


class Executor:
    """Drives one run to completion.

    Args:
        descriptor_set: The validated set being provisioned.
        backend: Installer backend for the target host.
        verifier: Health verifier, sharing ``cancel_event``.
        cancel_event: Set by the signal handler on operator interrupt.
    """

    def __init__(
        self,
        descriptor_set: DescriptorSet,
        backend: InstallerBackend,
        verifier: HealthVerifier,
        cancel_event: threading.Event | None = None,
    ):
        self._set = descriptor_set
        self._backend = backend
        self._verifier = verifier
        self._cancel = cancel_event or threading.Event()
        self.receipts: list[Receipt] = []

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def execute(self, run: ProvisioningRun) -> ProvisioningRun:
        """Run every planned service; returns the same run, filled in."""
        logger.info(
            "Provisioning '%s' with %s: %s",
            run.descriptor_set, self._backend.name, " → ".join(run.plan) or "(empty)",
        )
        if self._backend.deferred:
            self._execute_deferred(run)
        else:
            self._execute_imperative(run)
        run.finish()
        return run

    # ── Helpers ──────────────────────────────────────────────────

    def _descriptor(self, service_id: str) -> ServiceDescriptor:
        return self._set.services[service_id]

    def _blocked_by(self, descriptor: ServiceDescriptor, ok: set[str]) -> str | None:
        """First dependency that is not in ``ok``."""
        for dep in descriptor.depends_on:
            if dep not in ok:
                return dep
        return None

    def _skip_remaining(self, run: ProvisioningRun, reason: str, error_kind: str | None) -> None:
        for sid in run.plan:
            if not run.status_of(sid).terminal:
                run.mark(sid, ServiceStatus.SKIPPED, reason, error_kind=error_kind)

    def _apply(self, run: ProvisioningRun, descriptor: ServiceDescriptor) -> Receipt:
        run.mark(descriptor.id, ServiceStatus.INSTALLING)
        receipt = self._backend.apply(descriptor, run.target)
        self.receipts.append(receipt)
        return receipt

    def _record_install_failure(self, run: ProvisioningRun, service_id: str, cause: str) -> None:
        error = InstallError(service_id, cause)
        logger.error("✗ %s", error)
        run.mark(service_id, ServiceStatus.FAILED, str(error), error_kind="install")

    def _verify(self, run: ProvisioningRun, descriptor: ServiceDescriptor) -> bool:
        """Poll health; records the terminal status. Returns True if healthy.

        Raises:
            ProvisionCancelled: Interrupted while polling.
        """
        run.mark(descriptor.id, ServiceStatus.VERIFYING)
        try:
            attempts = self._verifier.verify(descriptor)
        except HealthTimeoutError as e:
            logger.error("✗ %s", e)
            run.mark(
                descriptor.id, ServiceStatus.FAILED, str(e),
                error_kind="health_timeout", attempts=e.attempts,
            )
            return False
        run.mark(descriptor.id, ServiceStatus.HEALTHY, "healthy", attempts=attempts)
        return True

    def _cancel_in_flight(self, run: ProvisioningRun, service_id: str) -> None:
        logger.warning("Interrupted while provisioning '%s'", service_id)
        run.mark(service_id, ServiceStatus.FAILED, CANCELLED, error_kind=CANCELLED)
        self._skip_remaining(run, CANCELLED, CANCELLED)

    def _fail_staged(
        self,
        run: ProvisioningRun,
        staged: set[str],
        cause: str,
        cancelled: bool = False,
    ) -> None:
        """Record a converge that failed or was interrupted.

        Staged services with no dependency take the failure; everything
        downstream of them is skipped.
        """
        descriptors = [self._descriptor(sid) for sid in staged]
        downstream: set[str] = set()
        for d in descriptors:
            if not d.depends_on:
                downstream |= dependents_of(d.id, descriptors)

        for sid in run.plan:
            if sid not in staged:
                continue
            if sid in downstream:
                if cancelled:
                    run.mark(sid, ServiceStatus.SKIPPED, CANCELLED, error_kind=CANCELLED)
                else:
                    run.mark(sid, ServiceStatus.SKIPPED, UPSTREAM_FAILED, error_kind="upstream")
            elif cancelled:
                run.mark(sid, ServiceStatus.FAILED, CANCELLED, error_kind=CANCELLED)
            else:
                self._record_install_failure(run, sid, cause)

    # ── Imperative ───────────────────────────────────────────────

    def _execute_imperative(self, run: ProvisioningRun) -> None:
        healthy: set[str] = set()

        for sid in run.plan:
            descriptor = self._descriptor(sid)

            if self.cancelled:
                self._skip_remaining(run, CANCELLED, CANCELLED)
                return

            blocker = self._blocked_by(descriptor, healthy)
            if blocker is not None:
                logger.warning("⊘ %s skipped: dependency '%s' is not healthy", sid, blocker)
                run.mark(sid, ServiceStatus.SKIPPED, UPSTREAM_FAILED, error_kind="upstream")
                continue

            logger.info("→ %s", sid)
            receipt = self._apply(run, descriptor)
            if self.cancelled:
                self._cancel_in_flight(run, sid)
                return
            if receipt.failed:
                self._record_install_failure(run, sid, receipt.error or "unknown error")
                continue
            run.mark(sid, ServiceStatus.INSTALLING, installed=receipt.ok)
            if receipt.skipped:
                logger.info("  %s: %s", sid, receipt.output)

            try:
                if self._verify(run, descriptor):
                    healthy.add(sid)
            except ProvisionCancelled:
                self._cancel_in_flight(run, sid)
                return

    # ── Deferred ─────────────────────────────────────────────────

    def _execute_deferred(self, run: ProvisioningRun) -> None:
        staged: set[str] = set()
        changed: set[str] = set()

        # Stage
        for sid in run.plan:
            descriptor = self._descriptor(sid)
            if self.cancelled:
                self._skip_remaining(run, CANCELLED, CANCELLED)
                return

            blocker = self._blocked_by(descriptor, staged)
            if blocker is not None:
                logger.warning("⊘ %s skipped: dependency '%s' was not staged", sid, blocker)
                run.mark(sid, ServiceStatus.SKIPPED, UPSTREAM_FAILED, error_kind="upstream")
                continue

            receipt = self._apply(run, descriptor)
            if self.cancelled:
                self._cancel_in_flight(run, sid)
                return
            if receipt.failed:
                self._record_install_failure(run, sid, receipt.error or "unknown error")
                continue
            staged.add(sid)
            if receipt.ok:
                changed.add(sid)

        if not staged:
            return

        if self.cancelled:
            self._skip_remaining(run, CANCELLED, CANCELLED)
            return

        # Converge
        logger.info("Converging %d staged service(s) with %s", len(staged), self._backend.name)
        receipt = self._backend.converge()
        self.receipts.append(receipt)
        if self.cancelled:
            logger.warning("Interrupted while converging %d staged service(s)", len(staged))
            self._fail_staged(run, staged, CANCELLED, cancelled=True)
            self._skip_remaining(run, CANCELLED, CANCELLED)
            return
        if receipt.failed:
            self._fail_staged(run, staged, receipt.error or "converge failed")
            return
        for sid in changed:
            run.mark(sid, ServiceStatus.INSTALLING, installed=receipt.ok)

        # Verify
        healthy: set[str] = set()
        for sid in run.plan:
            if sid not in staged:
                continue
            descriptor = self._descriptor(sid)

            if self.cancelled:
                self._skip_remaining(run, CANCELLED, CANCELLED)
                return

            blocker = self._blocked_by(descriptor, healthy)
            if blocker is not None:
                logger.warning("⊘ %s skipped: dependency '%s' is not healthy", sid, blocker)
                run.mark(sid, ServiceStatus.SKIPPED, UPSTREAM_FAILED, error_kind="upstream")
                continue

            try:
                if self._verify(run, descriptor):
                    healthy.add(sid)
            except ProvisionCancelled:
                self._cancel_in_flight(run, sid)
                return
