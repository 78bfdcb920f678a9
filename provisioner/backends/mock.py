"""
Mock backend — in-memory target host for tests and ``--mock`` runs.

Keeps installed fingerprints and active units in memory, so the
idempotency and dependency rules of the engine can be exercised without
touching the machine. Failures are configurable per service.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from provisioner.backends.base import ALREADY_CURRENT, InstallerBackend, fingerprint
from provisioner.core.models.descriptor import ServiceDescriptor
from provisioner.core.models.receipt import Receipt
from provisioner.core.models.run import TargetInfo


class MockBackend(InstallerBackend):
    """Universal test double.

    By default every apply succeeds and the service becomes active.

    Args:
        deferred: Behave like a declarative backend (stage, then converge).
        backend_name: Name reported in receipts.
        options: Backend options; ``deferred`` is also read from here.
    """

    def __init__(
        self,
        state_dir: Path | None = None,
        options: dict[str, Any] | None = None,
        deferred: bool | None = None,
        backend_name: str = "mock",
        available: bool = True,
    ):
        # Stamps stay in memory even when a state dir is configured.
        super().__init__(None, options)
        self._name = backend_name
        self._available = available
        self.deferred = bool(self.options.get("deferred", False)) if deferred is None else deferred
        self.installed: dict[str, str] = {}
        self.active: set[str] = set()
        self._failures: dict[str, str] = {}
        self._inactive: set[str] = set()
        self._converge_error: str | None = None
        self._staged: list[ServiceDescriptor] = []
        self._pending: list[str] = []
        self._call_log: list[str] = []
        self.converge_count = 0
        self.rollback_log: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[str]:
        """Service ids that were actually installed, in order."""
        return self._call_log

    @property
    def apply_count(self) -> int:
        return len(self._call_log)

    def is_available(self) -> bool:
        return self._available

    # ── Configuration ────────────────────────────────────────────

    def set_failure(self, service_id: str, error: str = "Mock failure") -> None:
        """Make the install of ``service_id`` fail."""
        self._failures[service_id] = error

    def set_inactive(self, unit: str) -> None:
        """Install succeeds but the unit never reports active."""
        self._inactive.add(unit)

    def set_converge_failure(self, error: str = "Mock converge failure") -> None:
        self._converge_error = error

    def reset(self) -> None:
        """Clear call log and configured failures. Installed state stays."""
        self._call_log.clear()
        self._failures.clear()
        self._inactive.clear()
        self._converge_error = None
        self._staged.clear()
        self._pending.clear()
        self.converge_count = 0

    # ── Backend contract ─────────────────────────────────────────

    def apply(self, descriptor: ServiceDescriptor, target: TargetInfo | None = None) -> Receipt:
        if descriptor.id in self._failures:
            return Receipt.failure(self.name, descriptor.id, error=self._failures[descriptor.id])

        fp = fingerprint(descriptor)
        current = self.installed.get(descriptor.id) == fp
        if current and (descriptor.install.unit is None or descriptor.unit_name in self.active):
            if self.deferred:
                self._staged.append(descriptor)
                return Receipt.skip(self.name, descriptor.id, ALREADY_CURRENT, metadata={"staged": True})
            return Receipt.skip(self.name, descriptor.id, ALREADY_CURRENT)

        if self.deferred:
            self._staged.append(descriptor)
            self._pending.append(descriptor.id)
            self._call_log.append(descriptor.id)
            return Receipt.success(
                self.name,
                descriptor.id,
                output=f"[mock] {descriptor.id} staged",
                metadata={"staged": True, "changed": True},
            )

        self._realize(descriptor)
        return Receipt.success(
            self.name,
            descriptor.id,
            output=f"[mock] {descriptor.id} installed",
            metadata={"mock": True, "installed": True},
        )

    def converge(self) -> Receipt:
        if not self.deferred:
            return super().converge()
        staged, self._staged = self._staged, []
        if not self._pending:
            return Receipt.skip(self.name, "*", ALREADY_CURRENT)
        self.converge_count += 1
        if self._converge_error:
            self._pending.clear()
            return Receipt.failure(self.name, "*", error=self._converge_error)
        for descriptor in staged:
            self._realize(descriptor)
        self._pending.clear()
        return Receipt.success(self.name, "*", output=f"[mock] converged {len(staged)} service(s)")

    def is_active(self, unit: str) -> bool:
        if unit in self._inactive:
            return False
        return unit in self.active or unit in self.installed

    def rollback(self, descriptor: ServiceDescriptor) -> Receipt:
        self.installed.pop(descriptor.id, None)
        self.active.discard(descriptor.unit_name)
        self.rollback_log.append(descriptor.id)
        return Receipt.success(self.name, descriptor.id, output=f"[mock] {descriptor.id} rolled back")

    def _realize(self, descriptor: ServiceDescriptor) -> None:
        if not self.deferred:
            self._call_log.append(descriptor.id)
        self.installed[descriptor.id] = fingerprint(descriptor)
        if descriptor.install.unit is not None and descriptor.unit_name not in self._inactive:
            self.active.add(descriptor.unit_name)
