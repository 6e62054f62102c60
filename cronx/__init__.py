"""
cronx - Cron Command Scheduler

Runs a single command on a cron schedule and shuts down gracefully on
SIGINT/SIGTERM, waiting for a running command to finish before exiting.

Main Components:
- parse_schedule / Schedule: Cron expression validation and evaluation
- TickSource: Dispatches a callback at each matching instant (APScheduler)
- CommandRunner: Runs the command with inherited stdout/stderr
- ExecutionTracker: Counts in-flight runs for shutdown
- ShutdownCoordinator: One-way cancellation and graceful stop
- CronxService: Ties it all together
"""

from cronx.config import CronxConfig
from cronx.errors import (
    CommandExecutionError,
    ConfigurationError,
    CronxError,
    ScheduleValidationError,
)
from cronx.jobs import CommandResult, CommandRunner
from cronx.schedule import Schedule, parse_schedule
from cronx.service import CronxService, ServiceState
from cronx.shutdown import ShutdownCoordinator
from cronx.ticker import TickSource
from cronx.tracker import ExecutionTracker

__version__ = "0.1.0"
# Stamped by the release build
__commit__ = "none"
__date__ = "unknown"
__built_by__ = "unknown"

__all__ = [
    # Schedule
    "Schedule",
    "parse_schedule",
    # Execution
    "CommandRunner",
    "CommandResult",
    "TickSource",
    "ExecutionTracker",
    "ShutdownCoordinator",
    # Service
    "CronxService",
    "ServiceState",
    "CronxConfig",
    # Errors
    "CronxError",
    "ConfigurationError",
    "ScheduleValidationError",
    "CommandExecutionError",
]
