"""
apt + systemd backend — imperative installs on Debian-family hosts.

Per service, in order:
    1. environment file from the config payload
    2. ``apt-get install`` for packages dpkg reports missing
    3. ``check`` / ``command`` install step
    4. declared files
    5. systemd unit, ``daemon-reload``, ``enable``, ``restart``

A fingerprint stamp plus an active unit means the service is current
and nothing is touched.
"""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Any

from provisioner.backends import systemd
from provisioner.backends.base import ALREADY_CURRENT, InstallerBackend
from provisioner.backends.runner import CommandResult, CommandRunner
from provisioner.core.models.descriptor import ServiceDescriptor
from provisioner.core.models.receipt import Receipt
from provisioner.core.models.run import TargetInfo

logger = logging.getLogger(__name__)

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class _StepFailed(Exception):
    """Internal: aborts an apply; always converted into a failure receipt."""


class AptSystemdBackend(InstallerBackend):
    """Install with apt, supervise with systemd.

    Options:
        env_dir: Where per-service environment files go
            (default ``/etc/provisioner``).
        unit_dir: systemd unit directory (default ``/etc/systemd/system``).
        apt_update: Run ``apt-get update`` before the first install
            (default true).
    """

    def __init__(
        self,
        state_dir: Path | None = None,
        options: dict[str, Any] | None = None,
        runner: CommandRunner | None = None,
        root: str | Path = "/",
    ):
        super().__init__(state_dir, options)
        self._runner = runner or CommandRunner()
        self._root = Path(root)
        self._env_dir = self.options.get("env_dir", "/etc/provisioner")
        self._unit_dir = self.options.get("unit_dir", systemd.UNIT_DIR)
        self._apt_update = bool(self.options.get("apt_update", True))
        self._apt_updated = False

    @property
    def name(self) -> str:
        return "apt-systemd"

    def is_available(self) -> bool:
        return shutil.which("apt-get") is not None and shutil.which("systemctl") is not None

    def is_active(self, unit: str) -> bool:
        return systemd.is_active(self._runner, unit)

    # ── Paths ────────────────────────────────────────────────────

    def _host_path(self, path: str) -> Path:
        """Map an absolute host path under the configured root."""
        return self._root / path.lstrip("/")

    def env_file(self, descriptor: ServiceDescriptor) -> str:
        return f"{self._env_dir.rstrip('/')}/{descriptor.id}.env"

    def unit_file(self, descriptor: ServiceDescriptor) -> str:
        return f"{self._unit_dir.rstrip('/')}/{descriptor.unit_name}.service"

    # ── Apply ────────────────────────────────────────────────────

    def apply(self, descriptor: ServiceDescriptor, target: TargetInfo | None = None) -> Receipt:
        unit = descriptor.install.unit
        if self.is_current(descriptor) and (unit is None or self.is_active(descriptor.unit_name)):
            logger.debug("%s: fingerprint matches, nothing to do", descriptor.id)
            return Receipt.skip(self.name, descriptor.id, ALREADY_CURRENT)

        start = time.monotonic()
        commands: list[str] = []
        try:
            if descriptor.config:
                self._write(
                    self.env_file(descriptor),
                    systemd.render_env_file(descriptor.config),
                    mode=0o600,
                )
            self._install_packages(descriptor, commands)
            self._install_step(descriptor, commands)
            for path, content in descriptor.install.files.items():
                mode = 0o755 if path in descriptor.install.executable else None
                self._write(path, content, mode=mode)
            if unit is not None:
                self._install_unit(descriptor, commands)
        except _StepFailed as e:
            return Receipt.failure(
                self.name,
                descriptor.id,
                error=str(e),
                commands=commands,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        self.mark_current(descriptor)
        return Receipt.success(
            self.name,
            descriptor.id,
            output=f"{descriptor.id} installed",
            commands=commands,
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata={"installed": True},
        )

    def _run(
        self,
        cmd: list[str] | str,
        commands: list[str],
        timeout: float = 120,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        result = self._runner.run(cmd, timeout=timeout, env=env)
        commands.append(result.command)
        return result

    def _require(self, result: CommandResult) -> None:
        if not result.ok:
            raise _StepFailed(result.summary)

    def _write(self, path: str, content: str, mode: int | None = None) -> None:
        dest = self._host_path(path)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text(content, encoding="utf-8")
            if mode is not None:
                dest.chmod(mode)
        except OSError as e:
            raise _StepFailed(f"Cannot write {path}: {e}") from e

    def _missing_packages(self, packages: list[str], version: str | None) -> list[str]:
        """Packages dpkg does not report as installed (at the pinned version)."""
        missing = []
        for pkg in packages:
            result = self._runner.run(
                ["dpkg-query", "-W", "-f=${Status} ${Version}", pkg], timeout=15,
            )
            out = result.stdout.strip()
            installed = result.ok and out.startswith("install ok installed")
            if installed and version:
                installed = out.split()[-1].startswith(version)
            if not installed:
                missing.append(pkg)
        return missing

    def _install_packages(self, descriptor: ServiceDescriptor, commands: list[str]) -> None:
        action = descriptor.install
        missing = self._missing_packages(action.packages, action.version)
        if not missing:
            return

        if self._apt_update and not self._apt_updated:
            self._require(self._run(["apt-get", "update"], commands, timeout=600, env=_APT_ENV))
            self._apt_updated = True

        pinned = [f"{pkg}={action.version}" if action.version else pkg for pkg in missing]
        logger.info("%s: installing packages %s", descriptor.id, ", ".join(pinned))
        self._require(self._run(
            ["apt-get", "install", "-y", *pinned],
            commands,
            timeout=action.timeout,
            env=_APT_ENV,
        ))

    def _install_step(self, descriptor: ServiceDescriptor, commands: list[str]) -> None:
        action = descriptor.install
        if action.check and self._run(action.check, commands, timeout=60).ok:
            logger.debug("%s: install check passed, skipping command", descriptor.id)
            return
        if action.command:
            logger.info("%s: running install command", descriptor.id)
            self._require(self._run(action.command, commands, timeout=action.timeout))

    def _install_unit(self, descriptor: ServiceDescriptor, commands: list[str]) -> None:
        env_file = self.env_file(descriptor) if descriptor.config else None
        self._write(self.unit_file(descriptor), systemd.render_unit(descriptor, env_file))

        unit = descriptor.unit_name
        self._require(self._run(["systemctl", "daemon-reload"], commands))
        self._require(self._run(["systemctl", "enable", unit], commands))
        self._require(self._run(["systemctl", "restart", unit], commands))

    # ── Rollback ─────────────────────────────────────────────────

    def rollback(self, descriptor: ServiceDescriptor) -> Receipt:
        """Stop and remove the unit, forget the stamp. Packages stay."""
        commands: list[str] = []
        if descriptor.install.unit is not None:
            unit = descriptor.unit_name
            self._run(["systemctl", "disable", "--now", unit], commands)
            try:
                self._host_path(self.unit_file(descriptor)).unlink(missing_ok=True)
                self.stamps.clear(descriptor.id)
            except OSError as e:
                return Receipt.failure(self.name, descriptor.id, error=str(e), commands=commands)
            self._run(["systemctl", "daemon-reload"], commands)
        else:
            self.stamps.clear(descriptor.id)
        return Receipt.success(
            self.name, descriptor.id, output=f"{descriptor.id} rolled back", commands=commands,
        )
