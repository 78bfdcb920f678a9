"""
Error taxonomy for a provisioning run.

Scope of each error:

    TargetEnvironmentError  pre-flight, fatal, run never starts
    ConfigError             descriptor file unreadable or invalid
    PlanError               planning, fatal, run never starts
      CycleError
      UnknownDependencyError
    InstallError            per-service, fatal to the service and its dependents
    HealthTimeoutError      per-service, same scope as InstallError
    ProvisionCancelled      run-wide, operator interrupt only
    LockError               another run holds the host lock (pre-flight)
"""

from __future__ import annotations

from typing import Any


class ProvisionError(Exception):
    """Base class for all provisioning errors."""


class ConfigError(ProvisionError):
    """Raised when a descriptor set is missing or invalid."""


class TargetEnvironmentError(ProvisionError):
    """A hard pre-flight requirement is not met by the host.

    Attributes:
        check: Name of the first failed check (``os``, ``ram``, ...).
        observed: What the probe saw.
        required: What the descriptor set requires.
        failures: Every failed hard check, as dicts.
    """

    def __init__(
        self,
        check: str,
        observed: Any,
        required: Any,
        failures: list[dict[str, Any]] | None = None,
    ):
        self.check = check
        self.observed = observed
        self.required = required
        self.failures = failures or []
        super().__init__(
            f"Pre-flight check '{check}' failed: observed {observed}, required {required}"
        )


class PlanError(ProvisionError):
    """The dependency graph cannot be ordered."""


class CycleError(PlanError):
    """The ``depends_on`` graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Dependency cycle detected: " + " -> ".join(cycle + cycle[:1]))


class UnknownDependencyError(PlanError):
    """A service depends on an id that is not declared."""

    def __init__(self, service_id: str, missing: list[str]):
        self.service_id = service_id
        self.missing = missing
        super().__init__(
            f"Service '{service_id}' depends on unknown service(s): {', '.join(missing)}"
        )


class InstallError(ProvisionError):
    """An install step failed for one service. Never retried."""

    def __init__(self, service_id: str, cause: str):
        self.service_id = service_id
        self.cause = cause
        super().__init__(f"Install of '{service_id}' failed: {cause}")


class HealthTimeoutError(ProvisionError):
    """A service installed but did not become healthy within its budget."""

    def __init__(self, service_id: str, attempts: int, last_detail: str = ""):
        self.service_id = service_id
        self.attempts = attempts
        self.last_detail = last_detail
        msg = f"'{service_id}' not healthy after {attempts} attempt(s)"
        if last_detail:
            msg += f" (last probe: {last_detail})"
        super().__init__(msg)


class ProvisionCancelled(ProvisionError):
    """The operator interrupted the run."""


class LockError(ProvisionError):
    """Another provisioning run holds the host lock."""
