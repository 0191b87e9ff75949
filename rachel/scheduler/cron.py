"""Five-field cron evaluator.

Supports ``*``, single integers, comma-separated lists, and ``*/step``
strides in each of the minute, hour, day-of-month, month and day-of-week
fields. All arithmetic is in UTC; converting to a local timezone for display
is up to the caller.

Day matching follows Vixie cron: when both day-of-month and day-of-week are
restricted, a day matches if *either* does. When only one is restricted it
alone decides, and when both are ``*`` every day matches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache

from rachel.scheduler.models import TaskValidationError

logger = logging.getLogger(__name__)

# (name, low, high) for each position in the pattern
_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day-of-month", 1, 31),
    ("month", 1, 12),
    ("day-of-week", 0, 6),
)

MAX_SEARCH_MINUTES = 366 * 24 * 60
FALLBACK_MS = 60 * 60 * 1000

_MINUTE_MS = 60_000
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class InvalidCronError(TaskValidationError):
    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid cron pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


@dataclass(frozen=True)
class CronSpec:
    """Accepted values per field, expanded from a pattern."""

    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    day_restricted: bool
    weekday_restricted: bool

    def matches_day(self, moment: datetime) -> bool:
        if moment.month not in self.months:
            return False
        # Python's Monday=0; cron's Sunday=0
        weekday = (moment.weekday() + 1) % 7
        if self.day_restricted and self.weekday_restricted:
            return moment.day in self.days or weekday in self.weekdays
        if self.day_restricted:
            return moment.day in self.days
        if self.weekday_restricted:
            return weekday in self.weekdays
        return True

    def matches(self, moment: datetime) -> bool:
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and self.matches_day(moment)
        )


def _parse_int(pattern: str, name: str, token: str) -> int:
    if not (token.isascii() and token.isdigit()):
        raise InvalidCronError(pattern, f"{name} field has non-numeric value {token!r}")
    return int(token)


def _parse_field(pattern: str, token: str, name: str, low: int, high: int) -> frozenset[int]:
    if token == "*":
        return frozenset(range(low, high + 1))

    if token.startswith("*/"):
        step = _parse_int(pattern, name, token[2:])
        if step == 0:
            raise InvalidCronError(pattern, f"{name} step must be positive")
        return frozenset(range(low, high + 1, step))

    values = set()
    for item in token.split(","):
        value = _parse_int(pattern, name, item)
        if not low <= value <= high:
            raise InvalidCronError(
                pattern, f"{name} value {value} outside {low}-{high}"
            )
        values.add(value)
    return frozenset(values)


@lru_cache(maxsize=256)
def parse_cron(pattern: str) -> CronSpec:
    """Expand *pattern* into a CronSpec. Raises InvalidCronError if malformed."""
    tokens = pattern.split()
    if len(tokens) != len(_FIELDS):
        raise InvalidCronError(pattern, f"expected 5 fields, got {len(tokens)}")

    sets = [
        _parse_field(pattern, token, name, low, high)
        for token, (name, low, high) in zip(tokens, _FIELDS, strict=True)
    ]
    return CronSpec(
        minutes=sets[0],
        hours=sets[1],
        days=sets[2],
        months=sets[3],
        weekdays=sets[4],
        day_restricted=tokens[2] != "*",
        weekday_restricted=tokens[4] != "*",
    )


def validate_cron(pattern: str) -> None:
    """Raise InvalidCronError unless *pattern* parses."""
    parse_cron(pattern)


def _to_ms(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def next_occurrence(pattern: str, after: int) -> int:
    """Return the first matching instant strictly after *after* (epoch ms).

    The search starts at ``after + 1 minute`` with seconds dropped and gives
    up after a year of candidates, in which case ``after + 1 hour`` is
    returned.
    """
    parsed = parse_cron(pattern)
    start = (after + _MINUTE_MS) // _MINUTE_MS * _MINUTE_MS
    candidate = _EPOCH + timedelta(milliseconds=start)
    limit = candidate + timedelta(minutes=MAX_SEARCH_MINUTES)

    # Whole days and hours that cannot match are skipped in one step; this
    # visits the same candidates as a minute-by-minute scan would accept.
    while candidate < limit:
        if not parsed.matches_day(candidate):
            candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
            continue
        if candidate.hour not in parsed.hours:
            candidate = (candidate + timedelta(hours=1)).replace(minute=0)
            continue
        if candidate.minute in parsed.minutes:
            return _to_ms(candidate)
        candidate += timedelta(minutes=1)

    logger.warning("No match for cron pattern %r within a year; retrying in 1h", pattern)
    return after + FALLBACK_MS
