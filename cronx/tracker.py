"""In-flight execution tracking for graceful shutdown."""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class ExecutionTracker:
    """
    Counts running tick invocations so shutdown can wait for them.

    Every ``enter()`` must be paired with exactly one ``exit()``; use
    ``track()`` so the pair survives exceptions. ``drain()`` is meant to be
    called once, after new dispatch has been stopped.
    """

    def __init__(self):
        self._condition = threading.Condition()
        self._count = 0

    @property
    def in_flight(self) -> int:
        """Number of ``enter()`` calls not yet matched by ``exit()``."""
        with self._condition:
            return self._count

    def enter(self):
        """Register the start of an invocation."""
        with self._condition:
            self._count += 1

    def exit(self):
        """Register the end of an invocation."""
        with self._condition:
            if self._count == 0:
                raise RuntimeError("exit() called without a matching enter()")
            self._count -= 1
            if self._count == 0:
                self._condition.notify_all()

    @contextmanager
    def track(self) -> Iterator[None]:
        """Context manager wrapping ``enter()``/``exit()``."""
        self.enter()
        try:
            yield
        finally:
            self.exit()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no invocation is in flight.

        Args:
            timeout: Give up after this many seconds (None = wait forever)

        Returns:
            True once the count is zero, False if the timeout expired first
        """
        with self._condition:
            return self._condition.wait_for(lambda: self._count == 0, timeout=timeout)
