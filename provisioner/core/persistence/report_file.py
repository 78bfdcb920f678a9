"""
Run report persistence — atomic read/write of the last ProvisioningRun.

Stored as JSON in ``<state_dir>/last-run.json`` and superseded by every
run. Writes go to a temp file that is renamed into place, so a crash
mid-write leaves the previous report intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from provisioner.core.models.run import ProvisioningRun

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "/var/lib/provisioner"
STATE_DIR_ENV = "PROV_STATE_DIR"
REPORT_FILE = "last-run.json"


def default_state_dir() -> Path:
    """``$PROV_STATE_DIR`` or ``/var/lib/provisioner``."""
    return Path(os.environ.get(STATE_DIR_ENV) or DEFAULT_STATE_DIR)


def report_path(state_dir: Path) -> Path:
    return state_dir / REPORT_FILE


def save_report(
    run: ProvisioningRun,
    state_dir: Path,
    summary: dict[str, Any] | None = None,
) -> Path:
    """Write the run report (atomic).

    Args:
        run: The finished run.
        state_dir: Directory holding engine state.
        summary: Reporter output stored alongside the run.

    Returns:
        Path of the written report.
    """
    path = report_path(state_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {"run": run.model_dump(mode="json"), "summary": summary or {}}
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".last-run_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
    logger.debug("Run report saved to %s", path)
    return path


def load_report(state_dir: Path) -> tuple[ProvisioningRun, dict[str, Any]] | None:
    """Read the last run report.

    Returns:
        ``(run, summary)``, or None when there is no readable report.
    """
    path = report_path(state_dir)
    if not path.is_file():
        logger.info("No run report at %s", path)
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        run = ProvisioningRun.model_validate(data.get("run", {}))
    except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as e:
        logger.warning("Cannot load run report %s: %s", path, e)
        return None
    return run, data.get("summary", {})
