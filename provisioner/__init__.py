"""Provisioner — declarative service provisioning with health verification."""

__version__ = "0.1.0"
