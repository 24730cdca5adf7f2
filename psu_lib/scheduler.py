"""Cancellable repeating background task."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTask:
    """Runs tick() every interval_s on a daemon thread.

    The cadence is fixed-delay, not fixed-rate: the wait of interval_s starts
    after each tick returns, so a tick that blocks on a reply timeout
    stretches that period by its own duration.

    stop() cancels future ticks and waits for a tick already in progress to
    finish; it never interrupts one. A tick that raises is logged and the
    loop carries on.
    """

    def __init__(self, name: str, tick: Callable[[], None], interval_s: float) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")

        self._name = name
        self._tick = tick
        self._interval_s = interval_s
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def interval_s(self) -> float:
        return self._interval_s

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the loop thread. The first tick fires after one interval."""
        if self.is_running():
            raise RuntimeError(f"{self._name} already running")

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.debug(f"Started {self._name} every {self._interval_s}s")

    def stop(self, join_timeout: float = 5.0) -> None:
        """Cancel future ticks. Safe to call when not running."""
        thread = self._thread
        if thread is None:
            return

        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=join_timeout)
            if thread.is_alive():
                logger.warning(f"{self._name} did not stop cleanly")

        self._thread = None
        logger.debug(f"Stopped {self._name}")

    def _run(self) -> None:
        logger.info(f"{self._name} loop started (thread {threading.get_ident()})")

        while not self._stop_event.wait(timeout=self._interval_s):
            try:
                self._tick()
            except Exception as e:
                logger.error(f"Error in {self._name} tick: {e}", exc_info=True)

        logger.info(f"{self._name} loop stopped")
