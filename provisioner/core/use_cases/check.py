"""
Check use cases — look at the host without changing it.

    check_services()   one live probe per service
    check_target()     only the pre-flight target probe
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from provisioner.backends.registry import create_backend
from provisioner.core.config.loader import load_descriptor_set
from provisioner.core.engine.probe import HostFacts, probe
from provisioner.core.engine.verifier import Prober
from provisioner.core.errors import ConfigError, TargetEnvironmentError
from provisioner.core.models.run import TargetInfo
from provisioner.core.observability.health import SystemHealth, check_system_health


@dataclass
class ServiceCheckResult:
    """Live health of every service in a set."""

    descriptor_set: str = ""
    health: SystemHealth | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.error:
            return {"error": self.error}
        result: dict[str, Any] = {"descriptor_set": self.descriptor_set}
        if self.health:
            result.update(self.health.to_dict())
        return result


@dataclass
class TargetCheckResult:
    """Outcome of the pre-flight probe alone."""

    descriptor_set: str = ""
    target: TargetInfo | None = None
    failures: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"descriptor_set": self.descriptor_set, "ok": self.ok}
        if self.error:
            result["error"] = self.error
            result["failures"] = self.failures
        if self.target:
            result["target"] = self.target.model_dump(mode="json")
        return result


def check_services(source: str | Path, mock: bool = False, prober: Prober | None = None) -> ServiceCheckResult:
    """Probe every service once, no retries, no installs."""
    result = ServiceCheckResult()
    try:
        descriptor_set = load_descriptor_set(source)
        result.descriptor_set = descriptor_set.name
        if prober is None:
            backend = create_backend(descriptor_set.backend, mock=mock)
            prober = Prober(is_active=backend.is_active, simulate=mock)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.health = check_system_health(descriptor_set, prober)
    return result


def check_target(source: str | Path, facts: HostFacts | None = None) -> TargetCheckResult:
    """Run the target probe against a set's requirements."""
    result = TargetCheckResult()
    try:
        descriptor_set = load_descriptor_set(source)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.descriptor_set = descriptor_set.name
    try:
        result.target = probe(descriptor_set.target, facts)
    except TargetEnvironmentError as e:
        result.error = str(e)
        result.failures = e.failures
    return result
