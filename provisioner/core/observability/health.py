"""
Live health — one-shot probe of every service in a descriptor set.

Backs the ``check`` command: no installs, no retries, just the current
answer of each service's health probe rolled up into a system status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from provisioner.core.engine.verifier import Prober
from provisioner.core.models.descriptor import DescriptorSet

logger = logging.getLogger(__name__)


@dataclass
class ComponentHealth:
    """Health of a single service."""

    name: str
    status: str = "unknown"  # healthy, unhealthy, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate health of a descriptor set."""

    status: str = "healthy"
    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        self._recalculate()

    def _recalculate(self) -> None:
        statuses = [c.status for c in self.components]
        if all(s == "healthy" for s in statuses):
            self.status = "healthy"
        elif any(s == "healthy" for s in statuses):
            self.status = "degraded"
        else:
            self.status = "unhealthy"

    @property
    def healthy_count(self) -> int:
        return sum(1 for c in self.components if c.status == "healthy")

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def check_system_health(descriptor_set: DescriptorSet, prober: Prober) -> SystemHealth:
    """Probe every service once, in declaration order."""
    health = SystemHealth()
    for descriptor in descriptor_set.descriptors():
        result = prober.probe(descriptor)
        details: dict[str, Any] = {"probe": descriptor.health.kind}
        if descriptor.endpoint:
            details["endpoint"] = descriptor.endpoint
        health.add(ComponentHealth(
            name=descriptor.id,
            status="healthy" if result.ok else "unhealthy",
            message=result.detail,
            details=details,
        ))
        logger.debug("%s: %s", descriptor.id, result.detail)
    return health
