"""
Scheduler service lifecycle.

Wires the schedule, tick source, command runner, execution tracker and
shutdown coordinator together and sequences

    STARTING -> VALIDATING -> RUNNING -> SHUTTING_DOWN -> STOPPED

A validation or construction failure jumps straight to STOPPED with exit
status 1. A termination signal (or ``request_shutdown()``) moves a running
service to SHUTTING_DOWN, which waits for in-flight commands before the
service reports exit status 0.
"""

import logging
import signal
import threading
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from cronx.config import CronxConfig
from cronx.errors import CommandExecutionError, ScheduleValidationError
from cronx.jobs import CommandRunner
from cronx.schedule import Schedule, parse_schedule
from cronx.shutdown import ShutdownCoordinator
from cronx.ticker import TickSource
from cronx.tracker import ExecutionTracker

EXIT_OK = 0
EXIT_FAILURE = 1

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServiceState(Enum):
    """Lifecycle states, in the only order they can occur."""
    STARTING = "starting"
    VALIDATING = "validating"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class CronxService:
    """
    Runs one command on one schedule until asked to stop.

    The logger is passed in by the caller; nothing in the service touches
    global logging configuration.
    """

    def __init__(
        self,
        schedule: str,
        command: str,
        args: Sequence[str] = (),
        config: Optional[CronxConfig] = None,
        logger: Optional[logging.Logger] = None,
        runner: Optional[CommandRunner] = None,
        handle_signals: bool = True,
        poll_interval: float = 0.2,
    ):
        """
        Initialize scheduler service.

        Args:
            schedule: Schedule expression as given by the user
            command: Command to run at each tick
            args: Arguments for the command
            config: Runtime configuration (defaults if None)
            logger: Logger shared by every component
            runner: Command runner (built from config if None)
            handle_signals: Install SIGINT/SIGTERM handlers while running
                (only possible from the main thread)
            poll_interval: How often the main thread checks for a shutdown
                request, in seconds
        """
        self.expression = schedule
        self.command = command
        self.args: List[str] = list(args)
        self.config = config or CronxConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.runner = runner or CommandRunner(timeout=self.config.timeout, logger=self.logger)
        self.handle_signals = handle_signals
        self.poll_interval = poll_interval

        self.tracker = ExecutionTracker()
        self.coordinator = ShutdownCoordinator(logger=self.logger)
        self.schedule: Optional[Schedule] = None
        self.tick_source: Optional[TickSource] = None

        self._state = ServiceState.STARTING
        self._state_lock = threading.Lock()
        self._shutdown_requested = threading.Event()
        self._shutdown_reason: Optional[str] = None
        self._shutdown_signal: Optional[str] = None

    @property
    def state(self) -> ServiceState:
        """Current lifecycle state."""
        return self._state

    def _transition(self, new_state: ServiceState):
        with self._state_lock:
            self.logger.debug(
                "state transition",
                extra={"from": self._state.value, "to": new_state.value},
            )
            self._state = new_state

    def request_shutdown(self, reason: str = "requested"):
        """
        Ask the service to shut down.

        Safe to call from signal handlers and other threads, and before
        ``run()`` (the service then shuts down as soon as it is running).
        """
        if self._shutdown_reason is None:
            self._shutdown_reason = reason
        self._shutdown_requested.set()

    def _on_tick(self):
        """Tick callback: run the command unless shutdown has begun."""
        if self.coordinator.is_active():
            self.logger.debug("skipping tick, shutdown in progress")
            return

        with self.tracker.track():
            # Re-check so no command starts after drain() has returned
            if self.coordinator.is_active():
                return
            try:
                self.runner.run(self.command, self.args)
            except CommandExecutionError as e:
                self.logger.error(
                    "command execution error",
                    extra={
                        "command": e.command,
                        "returncode": e.returncode,
                        "error": str(e),
                        "cause": repr(e.__cause__) if e.__cause__ else None,
                    },
                )

    def _install_signal_handlers(self) -> Dict[int, Callable]:
        """Install shutdown signal handlers, returning the previous ones."""
        if not self.handle_signals or threading.current_thread() is not threading.main_thread():
            return {}

        def signal_handler(signum, frame):
            name = signal.Signals(signum).name
            if self._shutdown_signal is None:
                self._shutdown_signal = name
            self.request_shutdown(name)

        previous = {}
        for signum in SHUTDOWN_SIGNALS:
            previous[signum] = signal.signal(signum, signal_handler)
        return previous

    def _restore_signal_handlers(self, previous: Dict[int, Callable]):
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def run(self) -> int:
        """
        Run the service until shutdown.

        Returns:
            Process exit status (0 after a graceful shutdown, 1 when the
            schedule is invalid or the scheduler could not be created)

        Raises:
            RuntimeError: If the service has already been run
        """
        if self._state is not ServiceState.STARTING:
            raise RuntimeError(f"service cannot be run from state '{self._state.value}'")

        self._transition(ServiceState.VALIDATING)
        try:
            self.schedule = parse_schedule(self.expression, timezone=self.config.timezone)
        except ScheduleValidationError as e:
            self.logger.error(
                "failed to create scheduler",
                extra={"schedule": e.expression, "error": e.reason},
            )
            self._transition(ServiceState.STOPPED)
            return EXIT_FAILURE

        previous_handlers = self._install_signal_handlers()
        try:
            self.tick_source = TickSource(
                self.schedule,
                self._on_tick,
                max_instances=self.config.max_instances,
                logger=self.logger,
            )
            self.tick_source.start()
        except Exception as e:
            self._restore_signal_handlers(previous_handlers)
            self.logger.error(
                "failed to create scheduler",
                extra={"schedule": self.expression, "error": str(e)},
                exc_info=True,
            )
            self.coordinator.shutdown(self.tick_source, self.tracker)
            self._transition(ServiceState.STOPPED)
            return EXIT_FAILURE

        self._transition(ServiceState.RUNNING)
        next_run = self.tick_source.next_run_time
        self.logger.info(
            "new cron scheduled",
            extra={
                "schedule": self.expression,
                "command": self.command,
                "command_args": self.args,
                "next_run": next_run.isoformat() if next_run else None,
            },
        )

        try:
            # Signal handlers only set a flag; polling keeps the main
            # thread free of locks a handler might need.
            while not self._shutdown_requested.is_set():
                time.sleep(self.poll_interval)

            if self._shutdown_signal is not None:
                self.logger.info("received signal", extra={"signal": self._shutdown_signal})
            else:
                self.logger.info("shutdown requested", extra={"reason": self._shutdown_reason})
            self._transition(ServiceState.SHUTTING_DOWN)
            # Handlers stay installed while draining; repeated signals
            # only set the flag again.
            self.coordinator.shutdown(self.tick_source, self.tracker)
        finally:
            self._restore_signal_handlers(previous_handlers)

        self._transition(ServiceState.STOPPED)
        return EXIT_OK
