"""
Runtime configuration.

Settings come from ``CRONX_*`` environment variables (a ``.env`` file in
the working directory is loaded first) and can be overridden by command
line options.

Environment variables:
    CRONX_LOG_LEVEL      Log level (default: INFO)
    CRONX_LOG_FORMAT     'json' or 'text' (default: json)
    CRONX_LOG_FILE       Also write logs to this file
    CRONX_MAX_INSTANCES  Cap on overlapping runs (default: unbounded)
    CRONX_TIMEOUT        Kill a command after this many seconds
    CRONX_TIMEZONE       Time zone for schedules (default: local)
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, List, Mapping, Optional

from dotenv import load_dotenv

from cronx.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CRONX_"
LOG_FORMATS = ("json", "text")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class CronxConfig:
    """Scheduler settings not given on the command line positionally."""
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None
    max_instances: Optional[int] = None  # None = unbounded overlap
    timeout: Optional[float] = None  # None = no command timeout
    timezone: Optional[str] = None  # None = local time zone

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CronxConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (no .env loading)

        Raises:
            ConfigurationError: If a value cannot be parsed or is invalid
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        converters: Mapping[str, Callable[[str], Any]] = {
            "log_level": str.upper,
            "log_format": str.lower,
            "log_file": str,
            "max_instances": int,
            "timeout": float,
            "timezone": str,
        }

        values = {}
        for name, convert in converters.items():
            key = ENV_PREFIX + name.upper()
            raw = environ.get(key)
            if raw is None or raw.strip() == "":
                continue
            try:
                values[name] = convert(raw.strip())
            except ValueError as e:
                raise ConfigurationError(f"{key}: invalid value '{raw}'") from e

        config = cls(**values)
        config.check()
        return config

    def merge(self, **overrides) -> "CronxConfig":
        """Return a copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

        config = replace(self, **{k: v for k, v in overrides.items() if v is not None})
        config.check()
        return config

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{self.log_level}'")
        if self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {', '.join(LOG_FORMATS)}, got '{self.log_format}'")
        if self.max_instances is not None and self.max_instances <= 0:
            errors.append("max_instances must be positive")
        if self.timeout is not None and self.timeout <= 0:
            errors.append("timeout must be positive")

        return errors

    def check(self):
        """Raise ConfigurationError listing every validation error."""
        errors = self.validate()
        if errors:
            for error in errors:
                logger.debug(f"Configuration error: {error}")
            raise ConfigurationError("; ".join(errors))
