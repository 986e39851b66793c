"""Background housekeeping on a fixed interval.

Runs a callable on a daemon thread, independent of request handling and of
any event loop, so synchronous constructors (cache adapters, the rate
limiter) can own their sweep without an ``await``.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Invoke ``func`` every ``interval_seconds`` until stopped.

    The first run happens one interval after ``start()``. Exceptions raised
    by ``func`` are logged and the schedule continues.
    """

    def __init__(self, name: str, interval_seconds: float, func: Callable[[], object]) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

        self._name = name
        self._interval = interval_seconds
        self._func = func
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread (no-op when already running)."""

        if self.running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.debug(
            "periodic.started",
            extra={"task": self._name, "interval_s": self._interval},
        )

    def stop(self, timeout: float = 2.0) -> None:
        """Signal the thread to exit and wait for it. Safe to call repeatedly."""

        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            logger.debug("periodic.stopped", extra={"task": self._name})

    def _run(self) -> None:
        # Event.wait returns True once stop() is called
        while not self._stop_event.wait(self._interval):
            try:
                self._func()
            except Exception:
                logger.exception("periodic.failed", extra={"task": self._name})
