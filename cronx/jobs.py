"""
Command execution for scheduled ticks.

Runs the configured command to completion with its output connected to
the scheduler's own stdout/stderr. The runner knows nothing about
scheduling - it just runs whatever command it is given and reports how
it went.
"""

import logging
import subprocess
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence

from cronx.errors import CommandExecutionError


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a successful command run."""
    command: str
    args: List[str]
    run_id: str
    returncode: int
    duration_seconds: float


class CommandRunner:
    """
    Executes a command synchronously.

    Failures (command not found, permission denied, non-zero exit,
    timeout) are raised as CommandExecutionError so the caller can log
    them and carry on.
    """

    def __init__(self, timeout: Optional[float] = None, logger: Optional[logging.Logger] = None):
        """
        Initialize command runner.

        Args:
            timeout: Kill the command after this many seconds (None = no limit)
            logger: Logger for run events
        """
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def run(self, command: str, args: Sequence[str] = ()) -> CommandResult:
        """
        Run a command and wait for it to finish.

        Args:
            command: Executable name or path (looked up on PATH, no shell)
            args: Arguments passed to the command verbatim

        Returns:
            CommandResult for a zero exit status

        Raises:
            CommandExecutionError: If the command cannot be started, times
                out or exits with a non-zero status
        """
        args = list(args)
        run_id = str(uuid.uuid4())[:8]
        log_prefix = f"[{command}:{run_id}]"
        context = {"command": command, "command_args": args, "run_id": run_id}

        self.logger.info("executing command", extra=context)
        start_time = time.monotonic()

        try:
            # stdout/stderr are inherited from this process
            process = subprocess.Popen([command, *args])
        except OSError as e:
            self.logger.debug(f"{log_prefix} Failed to start: {e}")
            raise CommandExecutionError(command, str(e)) from e

        try:
            returncode = process.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            self.logger.warning(f"{log_prefix} Timed out after {self.timeout}s, killing process")
            process.kill()
            process.wait()
            raise CommandExecutionError(
                command, f"timed out after {self.timeout}s"
            ) from e

        duration = time.monotonic() - start_time

        if returncode != 0:
            if returncode < 0:
                reason = f"terminated by signal {-returncode}"
            else:
                reason = f"exit status {returncode}"
            raise CommandExecutionError(command, reason, returncode=returncode)

        self.logger.info(
            "command completed",
            extra={**context, "duration_seconds": round(duration, 3)},
        )
        return CommandResult(
            command=command,
            args=args,
            run_id=run_id,
            returncode=returncode,
            duration_seconds=duration,
        )
