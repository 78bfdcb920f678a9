"""Installer backends — everything that touches the target host."""

from provisioner.backends.base import InstallerBackend, fingerprint
from provisioner.backends.mock import MockBackend
from provisioner.backends.registry import BackendRegistry, create_backend, default_registry

__all__ = [
    "BackendRegistry",
    "InstallerBackend",
    "MockBackend",
    "create_backend",
    "default_registry",
    "fingerprint",
]
