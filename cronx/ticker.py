"""
Tick source backed by APScheduler.

A BackgroundScheduler thread computes the next matching instant, sleeps
until it and hands the tick callback to a thread pool. The scheduler
thread never waits for the callback, so a slow command does not delay the
next tick and runs may overlap.
"""

import logging
import sys
import threading
from datetime import datetime
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from cronx.schedule import Schedule

JOB_ID = "cronx"

# concurrent.futures starts pool threads lazily, so an unbounded pool runs
# every overlapping tick on a thread of its own
UNBOUNDED_POOL_SIZE = sys.maxsize


class TickSource:
    """
    Invokes one callback at every instant matched by one schedule.

    The callback is armed at construction time; ticking begins with
    ``start()`` and ends with ``stop()``.
    """

    def __init__(
        self,
        schedule: Schedule,
        on_tick: Callable[[], None],
        max_instances: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize tick source.

        Args:
            schedule: Validated schedule
            on_tick: Zero-argument callback run on a pool thread per tick
            max_instances: Maximum overlapping runs (None = unbounded). Also
                sizes the thread pool, so ticks never queue behind busy
                workers.
            logger: Logger for scheduler events
        """
        self.schedule = schedule
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._stopped = False

        executors = {
            'default': ThreadPoolExecutor(max_instances or UNBOUNDED_POOL_SIZE)
        }

        job_defaults = {
            'coalesce': True,  # Combine late runs into one
            'max_instances': max_instances or sys.maxsize,
            'misfire_grace_time': None  # Run late ticks however late they are
        }

        self._scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults,
            timezone=schedule.timezone,
        )
        self._scheduler.add_job(
            on_tick,
            trigger=schedule.trigger,
            id=JOB_ID,
            name=schedule.expression,
        )

        self._setup_event_listeners()

    def _setup_event_listeners(self):
        """Setup APScheduler event listeners for logging."""

        def job_error_listener(event):
            self.logger.error(
                "tick raised an exception",
                extra={"schedule": self.schedule.expression, "error": repr(event.exception)},
            )

        def job_max_instances_listener(event):
            self.logger.warning(
                "skipping tick, maximum number of running instances reached",
                extra={"schedule": self.schedule.expression},
            )

        self._scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self._scheduler.add_listener(job_max_instances_listener, EVENT_JOB_MAX_INSTANCES)

    @property
    def running(self) -> bool:
        """Check if ticks are being dispatched."""
        return self._scheduler.running

    @property
    def next_run_time(self) -> Optional[datetime]:
        """Next planned tick, or None when not running."""
        if not self._scheduler.running:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    def start(self):
        """
        Start dispatching ticks.

        Raises:
            RuntimeError: If the tick source was already stopped
        """
        with self._lock:
            if self._stopped:
                raise RuntimeError("tick source has been stopped")
            if not self._scheduler.running:
                self._scheduler.start()

    def stop(self):
        """
        Stop dispatching ticks.

        Safe to call more than once. Returns once no new tick will be
        dispatched; does not wait for ticks that are already running.
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
