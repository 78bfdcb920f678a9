"""
Backend registry — name → installer backend factory.

A descriptor set names its backend (``apt-systemd``, ``nix-declarative``);
the registry turns that name plus options into an instance. ``--mock``
swaps whatever was named for the in-memory backend, keeping the
declarative/imperative shape of the original.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from provisioner.backends.apt_systemd import AptSystemdBackend
from provisioner.backends.base import InstallerBackend
from provisioner.backends.mock import MockBackend
from provisioner.backends.nix_declarative import NixDeclarativeBackend
from provisioner.core.errors import ConfigError
from provisioner.core.models.descriptor import BackendSpec

logger = logging.getLogger(__name__)

BackendFactory = Callable[[Path | None, dict[str, Any]], InstallerBackend]


class BackendRegistry:
    """Central registry of backend factories.

    Features:
        - Register factories by name
        - Create configured instances
    """

    def __init__(self) -> None:
        self._factories: dict[str, BackendFactory] = {}

    def register(self, name: str, factory: BackendFactory) -> None:
        if name in self._factories:
            logger.warning("Overwriting existing backend: %s", name)
        self._factories[name] = factory
        logger.debug("Registered backend: %s", name)

    def list_backends(self) -> list[str]:
        return list(self._factories.keys())

    def create(
        self,
        name: str,
        state_dir: Path | None = None,
        options: dict[str, Any] | None = None,
    ) -> InstallerBackend:
        """Instantiate a backend.

        Raises:
            ConfigError: Unknown backend name.
        """
        factory = self._factories.get(name)
        if factory is None:
            known = ", ".join(self.list_backends())
            raise ConfigError(f"Unknown backend '{name}' (known: {known})")
        return factory(state_dir, dict(options or {}))


def default_registry() -> BackendRegistry:
    """Registry with every built-in backend."""
    registry = BackendRegistry()
    registry.register("apt-systemd", lambda state_dir, options: AptSystemdBackend(state_dir, options))
    registry.register("nix-declarative", lambda state_dir, options: NixDeclarativeBackend(state_dir, options))
    registry.register("mock", lambda state_dir, options: MockBackend(state_dir, options))
    return registry


def create_backend(
    spec: BackendSpec,
    state_dir: Path | None = None,
    mock: bool = False,
    registry: BackendRegistry | None = None,
) -> InstallerBackend:
    """Build the backend a descriptor set asks for.

    With ``mock`` the in-memory backend stands in, deferred when the
    requested one is.
    """
    registry = registry or default_registry()
    backend = registry.create(spec.name, state_dir, spec.options)
    if mock and not isinstance(backend, MockBackend):
        logger.info("Mock mode: replacing %s with in-memory backend", spec.name)
        return MockBackend(deferred=backend.deferred, backend_name=f"mock:{spec.name}")
    return backend
