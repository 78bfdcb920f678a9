"""
Target probe — inspect the host and gate the run.

Two halves:
    collect_host_facts()   read-only probes: /etc/os-release, /proc/meminfo,
                           disk usage, CPU count, one TCP reachability check
    evaluate_target()      pure: compare facts against requirements

``probe()`` runs both. Hard violations raise TargetEnvironmentError
before anything is installed; soft ones become warnings.
"""

from __future__ import annotations

import logging
import os
import shutil
import socket
from dataclasses import dataclass
from pathlib import Path

from provisioner.core.errors import TargetEnvironmentError
from provisioner.core.models.descriptor import (
    NetworkCheck,
    OsRequirement,
    TargetRequirements,
)
from provisioner.core.models.run import CheckResult, TargetInfo

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")
MEMINFO = Path("/proc/meminfo")


@dataclass(frozen=True)
class HostFacts:
    """Raw observations about the host."""

    os_id: str = ""
    os_version: str = ""
    os_name: str = ""
    ram_gb: float = 0.0
    disk_free_gb: float = 0.0
    cpu_count: int = 0
    network_reachable: bool | None = None
    is_root: bool = False


# ── Read-only probes ────────────────────────────────────────────────


def read_os_release(path: Path = OS_RELEASE) -> dict[str, str]:
    """Parse an os-release file into a dict (keys as written)."""
    values: dict[str, str] = {}
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, _, val = line.partition("=")
                values[key] = val.strip().strip('"').strip("'")
    except (FileNotFoundError, OSError):
        pass
    return values


def _read_total_ram_gb(path: Path = MEMINFO) -> float:
    """Read total RAM in GB from /proc/meminfo."""
    try:
        with open(path) as f:
            for line in f:
                if line.startswith("MemTotal:"):
                    return int(line.split()[1]) / (1024 * 1024)
    except (FileNotFoundError, ValueError, OSError):
        pass
    return 0.0


def _read_disk_free_gb(path: str = "/") -> float:
    """Read free disk space in GB."""
    try:
        return shutil.disk_usage(path).free / (1024 ** 3)
    except OSError:
        return 0.0


def check_network(check: NetworkCheck) -> bool:
    """One TCP connection attempt to a known-good address."""
    try:
        with socket.create_connection((check.host, check.port), timeout=check.timeout):
            return True
    except OSError as e:
        logger.debug("Network check %s:%d failed: %s", check.host, check.port, e)
        return False


def collect_host_facts(requirements: TargetRequirements) -> HostFacts:
    """Gather the observations ``requirements`` will be checked against."""
    release = read_os_release()
    network = check_network(requirements.network) if requirements.network else None
    return HostFacts(
        os_id=release.get("ID", ""),
        os_version=release.get("VERSION_ID", ""),
        os_name=release.get("PRETTY_NAME", release.get("NAME", "")),
        ram_gb=_read_total_ram_gb(),
        disk_free_gb=_read_disk_free_gb(requirements.disk_path),
        cpu_count=os.cpu_count() or 0,
        network_reachable=network,
        is_root=os.geteuid() == 0,
    )


# ── Evaluation (pure) ───────────────────────────────────────────────


def _version_tuple(version: str) -> tuple[int, ...]:
    parts: list[int] = []
    for piece in version.split("."):
        digits = "".join(ch for ch in piece if ch.isdigit())
        if not digits:
            break
        parts.append(int(digits))
    return tuple(parts)


def os_matches(req: OsRequirement, os_id: str, os_version: str) -> bool:
    """Whether an observed OS satisfies one accepted-OS entry."""
    if req.id != os_id:
        return False
    if req.version:
        want = req.version.split(".")
        have = os_version.split(".")
        if have[: len(want)] != want:
            return False
    if req.min_version:
        have_t = _version_tuple(os_version)
        if not have_t or have_t < _version_tuple(req.min_version):
            return False
    return True


def _describe_os(req: OsRequirement) -> str:
    label = req.id
    if req.version:
        label += f" {req.version}"
    if req.min_version:
        label += f" >= {req.min_version}"
    return label


def evaluate_target(requirements: TargetRequirements, facts: HostFacts) -> TargetInfo:
    """Check host facts against requirements.

    Returns:
        TargetInfo carrying every check result and soft warnings.

    Raises:
        TargetEnvironmentError: If any hard check fails. The first failed
            check names the error; all failures are attached.
    """
    checks: list[CheckResult] = []
    warnings: list[str] = []
    observed_os = f"{facts.os_id} {facts.os_version}".strip() or "unknown"

    if requirements.require_root:
        checks.append(CheckResult(
            name="root",
            ok=facts.is_root,
            observed="root" if facts.is_root else "non-root",
            required="root",
            message="Running as root" if facts.is_root else "Must run as root",
        ))

    if requirements.os:
        ok = any(os_matches(r, facts.os_id, facts.os_version) for r in requirements.os)
        required = " | ".join(_describe_os(r) for r in requirements.os)
        checks.append(CheckResult(
            name="os",
            ok=ok,
            observed=observed_os,
            required=required,
            message=f"{facts.os_name or observed_os} detected",
        ))

    if requirements.min_ram_gb:
        ok = facts.ram_gb >= requirements.min_ram_gb
        checks.append(CheckResult(
            name="ram",
            ok=ok,
            observed=f"{facts.ram_gb:.1f}GB",
            required=f">= {requirements.min_ram_gb:g}GB",
            message=f"RAM: {facts.ram_gb:.1f}GB",
        ))

    if requirements.min_disk_gb:
        ok = facts.disk_free_gb >= requirements.min_disk_gb
        checks.append(CheckResult(
            name="disk",
            ok=ok,
            observed=f"{facts.disk_free_gb:.1f}GB free on {requirements.disk_path}",
            required=f">= {requirements.min_disk_gb:g}GB",
            message=f"Disk space: {facts.disk_free_gb:.1f}GB available",
        ))

    if requirements.soft_min_cpus:
        ok = facts.cpu_count >= requirements.soft_min_cpus
        checks.append(CheckResult(
            name="cpu",
            ok=ok,
            hard=False,
            observed=str(facts.cpu_count),
            required=f">= {requirements.soft_min_cpus}",
            message=f"CPU cores: {facts.cpu_count}",
        ))
        if not ok:
            warnings.append(
                f"Only {facts.cpu_count} CPU cores detected "
                f"(recommended: {requirements.soft_min_cpus}+)"
            )

    if requirements.network is not None:
        target = f"{requirements.network.host}:{requirements.network.port}"
        ok = bool(facts.network_reachable)
        checks.append(CheckResult(
            name="network",
            ok=ok,
            observed="reachable" if ok else "unreachable",
            required=f"reachable ({target})",
            message="Internet connection OK" if ok else "No internet connection",
        ))

    failures = [c for c in checks if c.hard and not c.ok]
    for c in checks:
        level = logging.INFO if c.ok else (logging.ERROR if c.hard else logging.WARNING)
        logger.log(level, "Pre-flight %s: %s (required %s)", c.name, c.observed, c.required)

    if failures:
        first = failures[0]
        raise TargetEnvironmentError(
            check=first.name,
            observed=first.observed,
            required=first.required,
            failures=[c.model_dump() for c in failures],
        )

    return TargetInfo(
        os_id=facts.os_id,
        os_version=facts.os_version,
        os_name=facts.os_name,
        ram_gb=round(facts.ram_gb, 2),
        disk_free_gb=round(facts.disk_free_gb, 2),
        cpu_count=facts.cpu_count,
        network_reachable=facts.network_reachable,
        is_root=facts.is_root,
        checks=checks,
        warnings=warnings,
    )


def probe(requirements: TargetRequirements, facts: HostFacts | None = None) -> TargetInfo:
    """Probe the host and evaluate it against ``requirements``.

    Args:
        requirements: What the descriptor set needs.
        facts: Pre-collected observations (tests inject these).

    Raises:
        TargetEnvironmentError: On any hard-minimum violation.
    """
    if facts is None:
        facts = collect_host_facts(requirements)
    return evaluate_target(requirements, facts)
