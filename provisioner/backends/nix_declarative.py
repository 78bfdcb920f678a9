"""
NixOS declarative backend — stage every service, rebuild once.

``apply`` does not touch the host. Each descriptor contributes a nested
Nix document (its ``nix`` options, a systemd service for its unit, its
config as service environment, its packages) which is deep-merged into
one module. ``converge`` then:

    1. renders the module to ``/etc/nixos/provisioner.nix``
    2. backs up ``configuration.nix`` and adds the module to its imports
    3. runs ``nixos-rebuild switch`` once

A failed rebuild restores the previous files. The user's
``configuration.nix`` only ever gains one import line.
"""

from __future__ import annotations

import logging
import re
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from provisioner.backends import systemd
from provisioner.backends.base import ALREADY_CURRENT, InstallerBackend
from provisioner.backends.nix_expr import MergeConflict, NixExpr, merge, normalize, render_module, set_path
from provisioner.backends.runner import CommandRunner
from provisioner.core.models.descriptor import ServiceDescriptor
from provisioner.core.models.receipt import Receipt
from provisioner.core.models.run import TargetInfo

logger = logging.getLogger(__name__)

CONVERGE_ID = "*"


def ensure_import(config_text: str, import_path: str) -> str:
    """Return ``config_text`` with ``import_path`` in its ``imports`` list.

    Idempotent: text that already mentions the import comes back
    unchanged. An existing ``imports = [`` list is extended; otherwise a
    new ``imports`` attribute goes before the last closing brace.

    Raises:
        ValueError: No closing brace to anchor the insertion.
    """
    if re.search(rf"(^|[\s\[]){re.escape(import_path)}(?=[\s\]]|$)", config_text, re.M):
        return config_text

    match = re.search(r"\bimports\s*=\s*\[", config_text)
    if match:
        at = match.end()
        return config_text[:at] + f"\n    {import_path}" + config_text[at:]

    brace = config_text.rfind("\n}")
    brace = brace + 1 if brace != -1 else config_text.rfind("}")
    if brace == -1:
        raise ValueError("cannot find closing brace in configuration.nix")
    block = f"  # Added by provisioner\n  imports = [ {import_path} ];\n"
    return config_text[:brace] + block + config_text[brace:]


class NixDeclarativeBackend(InstallerBackend):
    """Generate a NixOS module and switch to it.

    Options:
        config_dir: NixOS configuration directory (default ``/etc/nixos``).
        module_name: File name of the generated module
            (default ``provisioner.nix``).
        channel_update: Run ``nix-channel --update`` first (default false).
        upgrade: Pass ``--upgrade`` to ``nixos-rebuild`` (default false).
        rebuild_timeout: Seconds allowed for the rebuild (default 3600).
    """

    deferred = True

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
        self._config_dir = self.options.get("config_dir", "/etc/nixos")
        self._module_name = self.options.get("module_name", "provisioner.nix")
        self._document: dict[str, Any] = {}
        self._staged: list[ServiceDescriptor] = []
        self._changed: list[str] = []

    @property
    def name(self) -> str:
        return "nix-declarative"

    def is_available(self) -> bool:
        return shutil.which("nixos-rebuild") is not None

    def is_active(self, unit: str) -> bool:
        return systemd.is_active(self._runner, unit)

    @property
    def document(self) -> dict[str, Any]:
        """The merged document staged so far."""
        return self._document

    @property
    def module_path(self) -> Path:
        return self._root / self._config_dir.lstrip("/") / self._module_name

    @property
    def configuration_path(self) -> Path:
        return self._root / self._config_dir.lstrip("/") / "configuration.nix"

    # ── Staging ──────────────────────────────────────────────────

    def contribution(self, descriptor: ServiceDescriptor) -> dict[str, Any]:
        """The document fragment one descriptor adds to the module."""
        action = descriptor.install
        doc = normalize(action.nix)
        unit_name = descriptor.unit_name

        if action.unit is not None:
            unit = action.unit
            after = ["network-online.target"]
            after += [f"{dep}.service" for dep in descriptor.depends_on]
            after += [a for a in unit.after if a not in after]
            service_config: dict[str, Any] = {
                "Type": unit.type,
                "User": unit.user,
                "ExecStart": unit.exec_start,
                "Restart": descriptor.restart.systemd_value,
                "RestartSec": f"{descriptor.restart.backoff:g}",
            }
            if unit.working_directory:
                service_config["WorkingDirectory"] = unit.working_directory
            service: dict[str, Any] = {
                "description": unit.description or descriptor.description or descriptor.id,
                "after": after,
                "wants": ["network-online.target"],
                "wantedBy": [unit.wanted_by],
                "serviceConfig": service_config,
            }
            if descriptor.depends_on:
                service["requires"] = [f"{dep}.service" for dep in descriptor.depends_on]
            if unit.environment:
                service["environment"] = dict(unit.environment)
            doc = set_path(doc, ["systemd", "services", unit_name], service)

        if descriptor.config:
            doc = set_path(doc, ["systemd", "services", unit_name, "environment"], dict(descriptor.config))

        if action.packages:
            doc = set_path(
                doc,
                ["environment", "systemPackages"],
                [NixExpr(f"pkgs.{pkg}") for pkg in action.packages],
            )
        return doc

    def apply(self, descriptor: ServiceDescriptor, target: TargetInfo | None = None) -> Receipt:
        """Stage a descriptor into the module document."""
        try:
            self._document = merge(self._document, self.contribution(descriptor))
        except MergeConflict as e:
            return Receipt.failure(self.name, descriptor.id, error=str(e))
        except (TypeError, ValueError) as e:
            return Receipt.failure(self.name, descriptor.id, error=f"invalid nix options: {e}")

        self._staged.append(descriptor)
        if self.is_current(descriptor):
            return Receipt.skip(self.name, descriptor.id, ALREADY_CURRENT, metadata={"staged": True})

        self._changed.append(descriptor.id)
        return Receipt.success(
            self.name,
            descriptor.id,
            output=f"{descriptor.id} staged",
            metadata={"staged": True, "changed": True},
        )

    # ── Converge ─────────────────────────────────────────────────

    def render(self) -> str:
        services = ", ".join(d.id for d in self._staged) or "none"
        header = (
            "Generated by provisioner. Do not edit: rewritten on every run.\n"
            f"Services: {services}"
        )
        return render_module(self._document, header=header)

    def converge(self) -> Receipt:
        """Write the module, wire it into configuration.nix, rebuild once."""
        start = time.monotonic()
        commands: list[str] = []
        module_text = self.render()
        import_path = f"./{self._module_name}"

        try:
            config_text = self.configuration_path.read_text(encoding="utf-8")
        except OSError as e:
            return Receipt.failure(self.name, CONVERGE_ID, error=f"Cannot read configuration.nix: {e}")

        try:
            patched = ensure_import(config_text, import_path)
        except ValueError as e:
            return Receipt.failure(self.name, CONVERGE_ID, error=str(e))

        previous_module = self._read_module()
        if previous_module == module_text and patched == config_text and not self._changed:
            logger.info("NixOS module unchanged, skipping rebuild")
            return Receipt.skip(self.name, CONVERGE_ID, ALREADY_CURRENT)

        try:
            if patched != config_text:
                backup = self._backup_configuration()
                logger.info("Backed up configuration to %s", backup)
            self.module_path.write_text(module_text, encoding="utf-8")
            self.configuration_path.write_text(patched, encoding="utf-8")
        except OSError as e:
            self._restore(previous_module, config_text)
            return Receipt.failure(self.name, CONVERGE_ID, error=f"Cannot write NixOS config: {e}")

        if self.options.get("channel_update"):
            result = self._runner.run(["nix-channel", "--update"], timeout=900)
            commands.append(result.command)
            if not result.ok:
                logger.warning("nix-channel --update failed, continuing: %s", result.summary)

        rebuild = ["nixos-rebuild", "switch"]
        if self.options.get("upgrade"):
            rebuild.append("--upgrade")
        logger.info("Rebuilding NixOS (%s)", " ".join(rebuild))
        result = self._runner.run(rebuild, timeout=float(self.options.get("rebuild_timeout", 3600)))
        commands.append(result.command)

        if not result.ok:
            self._restore(previous_module, config_text)
            return Receipt.failure(
                self.name,
                CONVERGE_ID,
                error=f"nixos-rebuild failed, previous configuration restored: {result.summary}",
                commands=commands,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        for descriptor in self._staged:
            self.mark_current(descriptor)

        return Receipt.success(
            self.name,
            CONVERGE_ID,
            output=f"switched to configuration with {len(self._staged)} service(s)",
            commands=commands,
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata={"changed": list(self._changed)},
        )

    def _read_module(self) -> str | None:
        try:
            return self.module_path.read_text(encoding="utf-8")
        except OSError:
            return None

    def _backup_configuration(self) -> Path:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        backup = self.configuration_path.with_name(f"configuration.nix.backup-{stamp}")
        shutil.copy2(self.configuration_path, backup)
        return backup

    def _restore(self, previous_module: str | None, config_text: str) -> None:
        try:
            if previous_module is None:
                self.module_path.unlink(missing_ok=True)
            else:
                self.module_path.write_text(previous_module, encoding="utf-8")
            self.configuration_path.write_text(config_text, encoding="utf-8")
            logger.warning("Restored previous NixOS configuration")
        except OSError as e:
            logger.error("Could not restore NixOS configuration: %s", e)
