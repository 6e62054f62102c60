"""
Command-line interface.

Usage:
    cronx [options] <schedule> <command> [args ...]
    cronx version

Everything after <command> is passed to the command untouched, so options
for cronx itself must come before the schedule.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog

import cronx
from cronx.config import LOG_FORMATS, LOG_LEVELS, CronxConfig
from cronx.errors import ConfigurationError
from cronx.service import EXIT_FAILURE, CronxService

USAGE = (
    "%(prog)s [options] schedule command [args ...]\n"
    "       %(prog)s version"
)

# Handlers installed by setup_logging, removed again on reconfiguration
_installed_handlers: List[logging.Handler] = []


def build_formatter(log_format: str) -> logging.Formatter:
    """
    Build a formatter for stdlib log records.

    'json' renders one JSON object per line with every ``extra=`` field as
    a key; 'text' renders a human-readable line with the fields appended.
    """
    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", key="time"),
    ]

    if log_format == "json":
        processors = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("msg"),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False, timestamp_key="time"),
        ]

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=processors,
    )


def setup_logging(config: CronxConfig) -> logging.Logger:
    """
    Setup logging configuration.

    Returns:
        The logger handed to the scheduler service
    """
    level = getattr(logging, config.log_level.upper())
    formatter = build_formatter(config.log_format)

    root_logger = logging.getLogger()
    for handler in _installed_handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    _installed_handlers.append(console_handler)

    # File handler
    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(build_formatter("json"))
        _installed_handlers.append(file_handler)

    root_logger.setLevel(level)
    for handler in _installed_handlers:
        root_logger.addHandler(handler)

    # APScheduler logs every run at INFO; keep it quiet unless debugging
    logging.getLogger("apscheduler").setLevel(
        logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    )

    return logging.getLogger("cronx")


def show_version():
    """Print version and build information."""
    print(f"cronx version {cronx.__version__}")
    print(f"commit: {cronx.__commit__}")
    print(f"built: {cronx.__date__}")
    print(f"built by: {cronx.__built_by__}")


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that exits with status 1 on usage errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = _ArgumentParser(
        prog="cronx",
        usage=USAGE,
        description="Run a command on a cron schedule, shutting down gracefully on SIGINT/SIGTERM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        epilog=(
            "examples:\n"
            "  cronx '*/5 * * * *' /usr/local/bin/backup --full\n"
            "  cronx '*/10 * * * * *' curl -fsS http://localhost/health\n"
            "  cronx @daily logrotate /etc/logrotate.conf\n"
            "  cronx '@every 1h30m' ./sync.sh"
        ),
    )

    parser.add_argument(
        '--log-level',
        type=str.upper,
        choices=LOG_LEVELS,
        help='Log level (default: $CRONX_LOG_LEVEL or INFO)'
    )
    parser.add_argument(
        '--log-format',
        type=str.lower,
        choices=LOG_FORMATS,
        help='Log output format (default: $CRONX_LOG_FORMAT or json)'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        help='Also write JSON logs to this file'
    )
    parser.add_argument(
        '--max-instances',
        type=int,
        help='Maximum overlapping runs of the command (default: unbounded)'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        help='Kill the command after this many seconds (default: no limit)'
    )
    parser.add_argument(
        '--timezone',
        type=str,
        help='Time zone for the schedule (default: local time)'
    )

    parser.add_argument('schedule', help='Cron expression, e.g. "0 2 * * *", "@hourly" or "@every 5m"')
    parser.add_argument('command', help='Command to execute')
    parser.add_argument('args', nargs=argparse.REMAINDER, help='Arguments for the command')

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "version":
        show_version()
        return

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = CronxConfig.from_env().merge(
            log_level=args.log_level,
            log_format=args.log_format,
            log_file=args.log_file,
            max_instances=args.max_instances,
            timeout=args.timeout,
            timezone=args.timezone,
        )
    except ConfigurationError as e:
        print(f"cronx: configuration error: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    logger = setup_logging(config)

    service = CronxService(
        schedule=args.schedule,
        command=args.command,
        args=args.args,
        config=config,
        logger=logger,
    )
    sys.exit(service.run())


if __name__ == '__main__':
    main()
