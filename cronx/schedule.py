"""
Schedule expression parsing.

Translates a cron expression into an APScheduler trigger. Supported forms:

- Five fields: ``minute hour day-of-month month day-of-week``
- Six fields: a leading ``second`` field followed by the five above
- Descriptors: ``@yearly``, ``@annually``, ``@monthly``, ``@weekly``,
  ``@daily``, ``@midnight``, ``@hourly``
- ``@every <duration>`` with Go-style durations such as ``1h30m`` or ``90s``
- An optional ``TZ=<zone>`` or ``CRON_TZ=<zone>`` prefix

Day-of-week follows cron numbering (0 = Sunday). APScheduler counts from
Monday, so weekday fields are expanded and renumbered before the trigger
is built. When both day-of-month and day-of-week are restricted, either
one matching is enough, as in crontab(5).
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Dict, List, Optional, Tuple, Union

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from cronx.errors import ScheduleValidationError

FIELD_NAMES = ("second", "minute", "hour", "day", "month", "day_of_week")

DESCRIPTORS = {
    "@yearly": "0 0 0 1 1 *",
    "@annually": "0 0 0 1 1 *",
    "@monthly": "0 0 0 1 * *",
    "@weekly": "0 0 0 * * 0",
    "@daily": "0 0 0 * * *",
    "@midnight": "0 0 0 * * *",
    "@hourly": "0 0 * * * *",
}

MONTHS = {
    name: number
    for number, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun",
         "jul", "aug", "sep", "oct", "nov", "dec"],
        start=1,
    )
}
WEEKDAYS = {
    name: number
    for number, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])
}

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"(?:{_DURATION_PART})+")
_DURATION_PART_RE = re.compile(_DURATION_PART)

_NUMERIC_TERM_RE = re.compile(r"^(\*|\d+(?:-\d+)?)(?:/(\d+))?$")
_NAMED_TERM_RE = re.compile(r"^(\*|[0-9a-z]+(?:-[0-9a-z]+)?)(?:/(\d+))?$")

TimezoneLike = Union[str, tzinfo, None]


@dataclass(frozen=True)
class Schedule:
    """
    A validated schedule.

    Holds the expression as the user wrote it and the APScheduler trigger
    that evaluates it, along with the time zone it is evaluated in.
    Instances are immutable; the trigger is only ever asked for fire
    times, never modified.
    """
    expression: str
    trigger: BaseTrigger = field(repr=False, compare=False)
    timezone: tzinfo = field(repr=False, compare=False)

    def next(self, from_time: Optional[datetime] = None) -> Optional[datetime]:
        """
        Get the first matching instant strictly after ``from_time``.

        Args:
            from_time: Reference time (defaults to now). Naive datetimes are
                taken as local time.

        Returns:
            The next fire time, or None if the schedule never fires again
        """
        if from_time is None:
            from_time = datetime.now(self.timezone)
        else:
            # Naive datetimes are interpreted as local time by astimezone()
            from_time = from_time.astimezone(self.timezone)

        return self.trigger.get_next_fire_time(
            from_time, from_time + timedelta(microseconds=1)
        )


def parse_duration(text: str) -> int:
    """
    Parse a Go-style duration into whole seconds.

    Fractions of a second are dropped and anything shorter than one second
    is rounded up to one second.

    Raises:
        ValueError: If the text is not a valid duration
    """
    if text == "0":
        return 1
    if not _DURATION_RE.fullmatch(text):
        raise ValueError(f"invalid duration '{text}'")

    total = sum(
        float(amount) * _DURATION_UNITS[unit]
        for amount, unit in _DURATION_PART_RE.findall(text)
    )
    return max(1, int(total))


def _split_timezone(text: str) -> Tuple[Optional[str], str]:
    """Split an optional ``TZ=``/``CRON_TZ=`` prefix off the expression."""
    if not text.startswith(("TZ=", "CRON_TZ=")):
        return None, text

    prefix, _, rest = text.partition(" ")
    return prefix.split("=", 1)[1], rest.strip()


def _replace_names(value: str, names: Dict[str, int]) -> str:
    def lookup(match):
        word = match.group(0)
        if word not in names:
            raise ValueError(f"unknown name '{word}'")
        return str(names[word])

    return re.sub(r"[a-z]+", lookup, value)


def _convert_terms(name: str, value: str) -> str:
    """Check the syntax of every list item in a field and normalize it."""
    allow_names = name in ("month", "day_of_week")
    term_re = _NAMED_TERM_RE if allow_names else _NUMERIC_TERM_RE

    terms = []
    for term in value.split(","):
        if term == "?" and name in ("day", "day_of_week"):
            term = "*"
        if not term_re.match(term):
            raise ValueError(f"malformed {name} field '{value}'")
        if name == "month":
            term = _replace_names(term, MONTHS)
        elif name == "day_of_week":
            term = _replace_names(term, WEEKDAYS)
        terms.append(term)
    return ",".join(terms)


def _convert_day_of_week(value: str) -> str:
    """Expand a cron weekday field (0 = Sunday) into APScheduler numbering."""
    if value == "*":
        return value

    days = set()
    for term in value.split(","):
        span, _, step_text = term.partition("/")
        step = int(step_text) if step_text else 1
        if step == 0:
            raise ValueError(f"step of day_of_week '{term}' must be positive")

        if span == "*":
            first, last = 0, 6
        elif "-" in span:
            first, last = (int(part) for part in span.split("-", 1))
        else:
            first = int(span)
            last = 6 if step_text else first

        for number in (first, last):
            if not 0 <= number <= 6:
                raise ValueError(f"day_of_week value {number} out of range 0-6")
        if first > last:
            raise ValueError(f"beginning of range ({first}) beyond end of range ({last})")

        days.update(range(first, last + 1, step))

    return ",".join(str((day - 1) % 7) for day in sorted(days, key=lambda d: (d - 1) % 7))


def _cron_triggers(text: str, timezone: TimezoneLike) -> List[CronTrigger]:
    """
    Build the cron trigger(s) for a five- or six-field expression.

    When both day-of-month and day-of-week are restricted, a time matches
    if either of them does (crontab(5) semantics), which takes one trigger
    per field.
    """
    parts = text.split()
    if len(parts) == 5:
        parts = ["0"] + parts
    elif len(parts) != 6:
        raise ValueError(f"expected 5 or 6 fields, found {len(parts)}")

    fields = {}
    starred = set()
    for name, value in zip(FIELD_NAMES, parts):
        value = _convert_terms(name, value)
        if any(term.startswith("*") for term in value.split(",")):
            starred.add(name)
        if name == "day_of_week":
            value = _convert_day_of_week(value)
        fields[name] = value

    if starred & {"day", "day_of_week"}:
        return [CronTrigger(timezone=timezone, **fields)]

    return [
        CronTrigger(timezone=timezone, **dict(fields, day_of_week="*")),
        CronTrigger(timezone=timezone, **dict(fields, day="*")),
    ]


def parse_schedule(expression: str, timezone: TimezoneLike = None) -> Schedule:
    """
    Validate a schedule expression and build its trigger.

    Args:
        expression: Cron expression, descriptor or ``@every`` duration
        timezone: Default time zone (a ``TZ=`` prefix takes precedence).
            None means the local zone.

    Returns:
        Schedule

    Raises:
        ScheduleValidationError: If the expression is malformed or refers
            to an unknown time zone
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ScheduleValidationError(str(expression), "empty schedule")

    zone, text = _split_timezone(expression.strip())
    if zone is not None:
        timezone = zone
    if not text:
        raise ScheduleValidationError(expression, "missing fields after time zone")

    try:
        keyword = text.split(" ", 1)[0].lower()
        if keyword == "@every":
            # Durations keep their case; units are lowercase only
            seconds = parse_duration(text[len(keyword):].strip())
            trigger = IntervalTrigger(seconds=seconds, timezone=timezone)
            return Schedule(expression=expression, trigger=trigger, timezone=trigger.timezone)

        text = text.lower()
        if text.startswith("@"):
            if text not in DESCRIPTORS:
                raise ValueError(f"unrecognized descriptor '{text}'")
            text = DESCRIPTORS[text]
        triggers = _cron_triggers(text, timezone)
    except (ValueError, LookupError) as e:
        # Unknown zones surface as KeyError subclasses from pytz/zoneinfo
        reason = str(e.args[0]) if e.args else str(e)
        raise ScheduleValidationError(expression, reason) from e

    trigger = triggers[0] if len(triggers) == 1 else OrTrigger(triggers)
    return Schedule(expression=expression, trigger=trigger, timezone=triggers[0].timezone)
