"""
Configuration loader — reads a descriptor set file into domain models.

A descriptor set is a YAML document validated against the Pydantic
schemas in ``provisioner.core.models.descriptor``. A source can be a
path to such a file or the name of a built-in profile shipped in
``provisioner/profiles/``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from provisioner.core.errors import ConfigError
from provisioner.core.models.descriptor import DescriptorSet

logger = logging.getLogger(__name__)

# Built-in profiles live next to the package
PROFILES_DIR = Path(__file__).resolve().parent.parent.parent / "profiles"


def list_profiles() -> list[str]:
    """Names of the built-in descriptor sets."""
    if not PROFILES_DIR.is_dir():
        return []
    return sorted(p.stem for p in PROFILES_DIR.glob("*.yml"))


def resolve_source(source: str | Path) -> Path:
    """Resolve a CLI source argument to a descriptor file path.

    Existing paths win; otherwise the name is looked up among the
    built-in profiles.

    Raises:
        ConfigError: If neither a file nor a profile matches.
    """
    path = Path(source)
    if path.is_file():
        return path

    profile = PROFILES_DIR / f"{source}.yml"
    if profile.is_file():
        return profile

    available = ", ".join(list_profiles()) or "none"
    raise ConfigError(
        f"Descriptor file not found: {source} (built-in profiles: {available})"
    )


def load_descriptor_set(source: str | Path) -> DescriptorSet:
    """Load and validate a descriptor set.

    Args:
        source: Path to a YAML file, or a built-in profile name.

    Returns:
        Validated DescriptorSet model.

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid.
    """
    path = resolve_source(source)
    logger.debug("Loading descriptor set from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    if "name" not in data:
        data["name"] = path.stem

    try:
        descriptor_set = DescriptorSet.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid descriptor set {path}: {e}") from e

    logger.info(
        "Loaded descriptor set '%s' with %d services (backend=%s)",
        descriptor_set.name,
        len(descriptor_set.services),
        descriptor_set.backend.name,
    )
    return descriptor_set
