"""
Shutdown coordination.

Owns the one-way cancellation flag read by every tick, and sequences the
graceful stop: cancel, stop ticking, wait for running commands.
"""

import logging
import threading
from typing import Optional

from cronx.ticker import TickSource
from cronx.tracker import ExecutionTracker


class ShutdownCoordinator:
    """
    One-shot cancellation signal.

    Once activated it stays active; there is no way to reset
    it. Ticks check ``is_active()`` before starting work.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._event = threading.Event()
        self._lock = threading.Lock()

    def activate(self) -> bool:
        """
        Activate cancellation.

        Returns:
            True for the call that activated it, False if already active
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    def is_active(self) -> bool:
        """Check whether cancellation has been activated."""
        return self._event.is_set()

    def shutdown(self, tick_source: Optional[TickSource], tracker: ExecutionTracker):
        """
        Stop the scheduler and wait for running jobs to complete.

        Args:
            tick_source: Tick source to stop (None if it was never built)
            tracker: Tracker to drain
        """
        self.activate()

        if tick_source is not None:
            self.logger.info("stopping scheduler")
            tick_source.stop()

        self.logger.info(
            "waiting for running jobs to complete",
            extra={"in_flight": tracker.in_flight},
        )
        tracker.drain()
        self.logger.info("scheduler stopped successfully")
