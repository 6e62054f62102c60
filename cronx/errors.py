"""
Exception types raised by cronx.

Configuration and schedule errors are fatal at startup. Command execution
errors are reported per run and never stop the scheduler.
"""

from typing import Optional


class CronxError(Exception):
    """Base class for all cronx errors."""
    pass


class ConfigurationError(CronxError):
    """Raised when configuration values (environment or CLI) are invalid."""
    pass


class ScheduleValidationError(CronxError, ValueError):
    """
    Raised when a schedule expression cannot be parsed.

    Attributes:
        expression: The expression exactly as the user supplied it
        reason: Why it was rejected
    """

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"invalid schedule '{expression}': {reason}")


class CommandExecutionError(CronxError):
    """
    Raised when a command cannot be started or exits with a failure status.

    The underlying OS error (if any) is chained as ``__cause__``.
    """

    def __init__(self, command: str, message: str, returncode: Optional[int] = None):
        self.command = command
        self.returncode = returncode
        super().__init__(f"command execution failed: {message}")
