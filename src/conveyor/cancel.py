from __future__ import annotations

"""Cancellation.

CONTRACT
- CancelToken is set once (by a signal handler, a timer, or the caller) and
  stays set.
- handle_signals() routes SIGINT/SIGTERM to the token for the duration of a
  run and restores the previous handlers on exit.
- Signal handlers can only be installed from the main thread; elsewhere the
  context manager is a no-op.
"""

import signal
import threading
from contextlib import contextmanager
from typing import Iterator

from loguru import logger


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()


@contextmanager
def handle_signals(token: CancelToken) -> Iterator[CancelToken]:
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _signal_handler(signum, frame):
        name = signal.Signals(signum).name
        logger.warning(f"Received {name}, cancelling pipeline")
        token.cancel(f"received {name}")

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _signal_handler)
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
