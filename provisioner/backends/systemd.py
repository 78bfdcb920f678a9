"""
systemd helpers — unit rendering and unit-state queries.

Shared by the imperative backend; the declarative backend expresses the
same fields as Nix attributes instead.
"""

from __future__ import annotations

from provisioner.backends.runner import CommandRunner
from provisioner.core.models.descriptor import ServiceDescriptor

UNIT_DIR = "/etc/systemd/system"


def _env_assignment(key: str, value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{key}={escaped}"'


def render_unit(
    descriptor: ServiceDescriptor,
    env_file: str | None = None,
) -> str:
    """Render a ``.service`` unit for a descriptor with a unit spec.

    Dependencies become ``After=`` and ``Requires=`` on their units.
    """
    unit = descriptor.install.unit
    if unit is None:
        raise ValueError(f"service '{descriptor.id}' declares no unit")

    after = ["network-online.target"]
    after += [f"{dep}.service" for dep in descriptor.depends_on]
    after += [a for a in unit.after if a not in after]
    requires = [f"{dep}.service" for dep in descriptor.depends_on]

    lines = [
        "# Managed by provisioner. Local edits are overwritten.",
        "[Unit]",
        f"Description={unit.description or descriptor.description or descriptor.id}",
        f"After={' '.join(after)}",
        "Wants=network-online.target",
    ]
    if requires:
        lines.append(f"Requires={' '.join(requires)}")

    lines += [
        "",
        "[Service]",
        f"Type={unit.type}",
        f"User={unit.user}",
    ]
    if unit.working_directory:
        lines.append(f"WorkingDirectory={unit.working_directory}")
    if env_file:
        lines.append(f"EnvironmentFile={env_file}")
    for key, value in unit.environment.items():
        lines.append(f"Environment={_env_assignment(key, value)}")
    lines += [
        f"ExecStart={unit.exec_start}",
        f"Restart={descriptor.restart.systemd_value}",
        f"RestartSec={descriptor.restart.backoff:g}",
        "",
        "[Install]",
        f"WantedBy={unit.wanted_by}",
        "",
    ]
    return "\n".join(lines)


def render_env_file(config: dict[str, str]) -> str:
    """``KEY="value"`` lines readable by ``EnvironmentFile=``."""
    lines = ["# Managed by provisioner."]
    for key, value in config.items():
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        lines.append(f'{key}="{escaped}"')
    return "\n".join(lines) + "\n"


def is_active(runner: CommandRunner, unit: str) -> bool:
    """``systemctl is-active --quiet`` exit status."""
    return runner.run(["systemctl", "is-active", "--quiet", unit], timeout=10).ok
