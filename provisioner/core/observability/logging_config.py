"""
Logging configuration for provisioning runs.

main.py calls ``setup_logging`` once per invocation; every module logs
through ``logging.getLogger(__name__)``.

Console level, highest precedence first:
    --debug / -v / -q  >  PROV_LOG_LEVEL  >  WARNING

A full install can take an hour on a headless appliance, usually over
SSH. PROV_LOG_FILE keeps a persistent, append-only transcript of every
run (one banner line per invocation) at PROV_LOG_FILE_LEVEL, which may
be more detailed than the console. Its directory is created on demand,
so ``/var/log/aurora-rag/provisioner.log`` works on a fresh host.

Console lines carry the engine component (``engine.executor``,
``backends.apt_systemd``) rather than the full dotted module path.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from provisioner import __version__

LOG_LEVEL_ENV = "PROV_LOG_LEVEL"
LOG_FILE_ENV = "PROV_LOG_FILE"
LOG_FILE_LEVEL_ENV = "PROV_LOG_FILE_LEVEL"

_PACKAGE_PREFIX = "provisioner."

# ── Formats ─────────────────────────────────────────────────────────

# WARNING: bare messages, the CLI renders its own report
_FMT_CONSOLE = "%(message)s"

# INFO: progress of each service as it moves through the plan
_FMT_PROGRESS = "%(asctime)s [%(component)s] %(message)s"

# DEBUG: subprocess commands and probe details
_FMT_TRACE = "%(asctime)s %(levelname)-5s %(component)s:%(lineno)d  %(message)s"

_FMT_TRANSCRIPT = "%(asctime)s %(process)d %(levelname)-5s %(component)s  %(message)s"
_DATEFMT_CLOCK = "%H:%M:%S"
_DATEFMT_TRANSCRIPT = "%Y-%m-%d %H:%M:%S"


class _ComponentFilter(logging.Filter):
    """Adds ``record.component``: the logger name without the package prefix."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        record.component = name[len(_PACKAGE_PREFIX):] if name.startswith(_PACKAGE_PREFIX) else name
        return True


def resolve_level(cli_level: str | None) -> str:
    """CLI flag wins, then the environment, then WARNING."""
    return cli_level or os.environ.get(LOG_LEVEL_ENV) or "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure logging for one CLI invocation.

    Args:
        level: Console level name.
        log_file: Transcript path. Falls back to PROV_LOG_FILE.
        log_file_level: Transcript level. Falls back to
            PROV_LOG_FILE_LEVEL, then ``level``.
    """
    numeric_level = _parse_level(level)
    log_file = log_file or os.environ.get(LOG_FILE_ENV)
    log_file_level = log_file_level or os.environ.get(LOG_FILE_LEVEL_ENV)
    component = _ComponentFilter()

    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_TRACE, _DATEFMT_CLOCK
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_PROGRESS, _DATEFMT_CLOCK
    else:
        fmt, datefmt = _FMT_CONSOLE, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.addFilter(component)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    effective_level = numeric_level

    transcript = None
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)
        transcript = _transcript_handler(Path(log_file), file_level)
        if transcript is not None:
            transcript.addFilter(component)
            root.addHandler(transcript)

    root.setLevel(effective_level)
    logging.raiseExceptions = False

    if transcript is not None:
        transcript.handle(logging.makeLogRecord({
            "name": __name__,
            "levelno": logging.CRITICAL,
            "levelname": "START",
            "msg": "provisioner %s: %s",
            "args": (__version__, " ".join(sys.argv[1:]) or "(no arguments)"),
        }))


def _transcript_handler(path: Path, level: int) -> logging.FileHandler | None:
    """Append-mode handler, or None (with a console warning) if unwritable."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        logging.getLogger(__name__).warning("Cannot open log file %s: %s", path, e)
        return None
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FMT_TRANSCRIPT, datefmt=_DATEFMT_TRANSCRIPT))
    return handler


def _parse_level(level: str | None) -> int:
    """Level name to its numeric constant; unknown names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
