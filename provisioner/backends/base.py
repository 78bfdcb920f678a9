"""
Installer backend base — the contract between engine and target host.

The engine only talks to backends through this interface. It never
branches on which backend it is driving: imperative backends install and
start each service in ``apply``; declarative ones (``deferred = True``)
only stage in ``apply`` and make everything real in one ``converge``.

Backends NEVER raise. Failures are captured in the Receipt.
"""

from __future__ import annotations

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from provisioner.core.models.descriptor import ServiceDescriptor
from provisioner.core.models.receipt import Receipt
from provisioner.core.models.run import TargetInfo

logger = logging.getLogger(__name__)

ALREADY_CURRENT = "already current"


def fingerprint(descriptor: ServiceDescriptor) -> str:
    """Content hash of everything that changes what gets installed.

    Covers the install action, config payload, restart policy and
    dependency list (dependencies end up in unit ordering).
    """
    payload = {
        "install": descriptor.install.model_dump(mode="json"),
        "config": descriptor.config,
        "restart": descriptor.restart.model_dump(mode="json"),
        "depends_on": descriptor.depends_on,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class StampStore:
    """Per-service fingerprints of the last successful apply.

    With a directory, stamps are small files under it and survive
    between runs. Without one they live in memory only.
    """

    def __init__(self, directory: Path | None = None):
        self._dir = directory
        self._memory: dict[str, str] = {}

    def get(self, service_id: str) -> str | None:
        if self._dir is None:
            return self._memory.get(service_id)
        path = self._dir / f"{service_id}.sha256"
        try:
            return path.read_text(encoding="utf-8").strip() or None
        except OSError:
            return None

    def put(self, service_id: str, value: str) -> None:
        if self._dir is None:
            self._memory[service_id] = value
            return
        self._dir.mkdir(parents=True, exist_ok=True)
        (self._dir / f"{service_id}.sha256").write_text(value + "\n", encoding="utf-8")

    def clear(self, service_id: str) -> None:
        if self._dir is None:
            self._memory.pop(service_id, None)
            return
        (self._dir / f"{service_id}.sha256").unlink(missing_ok=True)


class InstallerBackend(ABC):
    """Abstract base class for all installer backends.

    To create a new backend:
        1. Subclass InstallerBackend
        2. Implement name, is_available, apply, is_active
        3. Register it in the BackendRegistry
    """

    #: True when ``apply`` only stages and ``converge`` does the work.
    deferred: bool = False

    def __init__(
        self,
        state_dir: Path | None = None,
        options: dict[str, Any] | None = None,
    ):
        self.options = dict(options or {})
        self.stamps = StampStore(state_dir / "stamps" if state_dir else None)

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier (e.g. 'apt-systemd')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether this backend's tooling exists on the host.

        Should be fast and never raise.
        """

    @abstractmethod
    def apply(self, descriptor: ServiceDescriptor, target: TargetInfo | None = None) -> Receipt:
        """Bring the host in line with one descriptor.

        MUST never raise. Returns a skip receipt when the host already
        matches, so nothing is reinstalled or restarted.
        """

    def converge(self) -> Receipt:
        """Realize everything staged by ``apply`` (declarative backends)."""
        return Receipt.skip(self.name, "*", "nothing to converge")

    @abstractmethod
    def is_active(self, unit: str) -> bool:
        """Whether the service manager reports the unit as running."""

    def rollback(self, descriptor: ServiceDescriptor) -> Receipt:
        """Undo an apply. Optional."""
        return Receipt.skip(self.name, descriptor.id, f"rollback not supported by {self.name}")

    def is_current(self, descriptor: ServiceDescriptor) -> bool:
        """Whether the stamp matches the descriptor as declared now."""
        return self.stamps.get(descriptor.id) == fingerprint(descriptor)

    def mark_current(self, descriptor: ServiceDescriptor) -> None:
        try:
            self.stamps.put(descriptor.id, fingerprint(descriptor))
        except OSError as e:
            # Next run will re-apply; not a failure of this one.
            logger.warning("Cannot write stamp for %s: %s", descriptor.id, e)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
