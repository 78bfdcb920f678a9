"""
Host lock — one provisioning run per host at a time.

An advisory ``fcntl.flock`` on ``<state_dir>/provision.lock``. The lock
is released when the file descriptor closes, so a crashed run never
leaves it held.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from provisioner.core.errors import LockError

logger = logging.getLogger(__name__)

LOCK_FILE = "provision.lock"


@contextmanager
def host_lock(state_dir: Path, timeout: float = 0.0, poll: float = 0.1) -> Iterator[Path]:
    """Hold the host lock for the duration of the block.

    Args:
        state_dir: Directory holding engine state.
        timeout: Seconds to wait for a held lock (0 = fail at once).
        poll: Seconds between attempts while waiting.

    Raises:
        LockError: The lock is held by another run.
    """
    state_dir.mkdir(parents=True, exist_ok=True)
    path = state_dir / LOCK_FILE
    deadline = time.monotonic() + timeout

    with open(path, "a+", encoding="utf-8") as handle:
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.seek(0)
                    holder = handle.read().strip() or "unknown"
                    raise LockError(
                        f"Another provisioning run holds {path} (pid {holder})"
                    ) from None
                time.sleep(poll)

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        logger.debug("Acquired host lock %s", path)
        try:
            yield path
        finally:
            handle.seek(0)
            handle.truncate()
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            logger.debug("Released host lock %s", path)
