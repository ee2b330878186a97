"""
Background periodic tasks.

Each task runs its function immediately and then every `interval_seconds` on
a daemon thread. A run that is still going when the next one is due is not
doubled up: the overlapping trigger is dropped.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run a function on a fixed interval in a background thread."""

    def __init__(self, name: str, interval_seconds: float, func: Callable[[], Any]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func

        self._shutdown = threading.Event()
        self._thread: threading.Thread | None = None
        self._run_lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        """True while func is executing."""
        return self._running

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        """
        Run func once in the calling thread.

        Returns:
            False if a run was already in progress (trigger dropped)
        """
        with self._run_lock:
            if self._running:
                logger.debug("%s: previous run still in progress, skipping", self.name)
                return False
            self._running = True

        try:
            self.func()
        except Exception as e:
            logger.error("Error in %s: %s", self.name, e, exc_info=True)
        finally:
            with self._run_lock:
                self._running = False
        return True

    def _loop(self) -> None:
        logger.info("%s started (every %ss)", self.name, self.interval_seconds)
        while not self._shutdown.is_set():
            self.run_once()
            self._shutdown.wait(self.interval_seconds)
        logger.info("%s stopped", self.name)

    def start(self) -> None:
        if self.is_alive:
            return
        self._shutdown.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal shutdown and wait for the current run to finish."""
        self._shutdown.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
