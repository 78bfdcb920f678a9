"""
Operator interrupt — SIGINT/SIGTERM set a cancel event instead of killing.

The executor and verifier poll the event, so an interrupt lets the run
record what happened and still write its report.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextmanager
def cancel_on_signals(event: threading.Event) -> Iterator[threading.Event]:
    """Route SIGINT/SIGTERM to ``event`` for the duration of the block.

    Previous handlers are restored on exit. Outside the main thread
    signals cannot be caught, so the block runs without handlers.
    """
    if threading.current_thread() is not threading.main_thread():
        yield event
        return

    def _handler(signum: int, _frame: object) -> None:
        if event.is_set():
            return
        logger.warning("Received %s, cancelling after the current step", signal.Signals(signum).name)
        event.set()

    previous = {sig: signal.getsignal(sig) for sig in _SIGNALS}
    for sig in _SIGNALS:
        signal.signal(sig, _handler)
    try:
        yield event
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
