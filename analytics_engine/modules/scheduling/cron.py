"""Five-field cron expressions: parsing and next-run computation.

Supported field syntax is ``*`` (any), ``N`` (a single value) and ``*/N``
(every N units, i.e. values divisible by N). Fields are minute (0-59),
hour (0-23), day-of-month (1-31), month (1-12) and day-of-week (0-6,
0 = Sunday). All five fields must match; day-of-month and day-of-week
are ANDed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from analytics_engine.exceptions import CronParseError, ValidationError
from analytics_engine.utils.timeutils import ensure_utc, isoformat, utcnow

# Upper bound of the forward search; combinations such as Feb 30 never match.
SEARCH_HORIZON = timedelta(days=4 * 366)

FIELD_SPECS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day_of_month", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 6),
)


class CronFieldKind(str, Enum):
    WILDCARD = "wildcard"
    VALUE = "value"
    INTERVAL = "interval"


@dataclass(frozen=True)
class CronField:
    kind: CronFieldKind
    value: Optional[int] = None
    interval: Optional[int] = None

    def matches(self, number: int) -> bool:
        if self.kind is CronFieldKind.WILDCARD:
            return True
        if self.kind is CronFieldKind.VALUE:
            return number == self.value
        return number % self.interval == 0


@dataclass(frozen=True)
class CronExpression:
    minute: CronField
    hour: CronField
    day_of_month: CronField
    month: CronField
    day_of_week: CronField
    expression: str = ""

    def matches(self, moment: datetime) -> bool:
        return (
            self.minute.matches(moment.minute)
            and self.hour.matches(moment.hour)
            and self.matches_day(moment)
            and self.month.matches(moment.month)
        )

    def matches_day(self, moment: datetime) -> bool:
        return self.day_of_month.matches(moment.day) and self.day_of_week.matches(
            cron_weekday(moment)
        )


def cron_weekday(moment: datetime) -> int:
    """Weekday in cron numbering (Sunday = 0)."""
    return moment.isoweekday() % 7


def _parse_field(token: str, name: str, low: int, high: int, expression: str) -> CronField:
    if token == "*":
        return CronField(CronFieldKind.WILDCARD)
    if token.startswith("*/"):
        step = token[2:]
        if not step.isdecimal() or int(step) <= 0:
            raise CronParseError(
                f"Invalid cron interval for {name}: {token!r}", expression
            )
        return CronField(CronFieldKind.INTERVAL, interval=int(step))
    if not token.isdecimal():
        raise CronParseError(f"Invalid cron {name} field: {token!r}", expression)
    number = int(token)
    if number < low or number > high:
        raise CronParseError(
            f"Invalid cron {name} value: {number} (expected {low}-{high})", expression
        )
    return CronField(CronFieldKind.VALUE, value=number)


def parse_cron(expression: str) -> CronExpression:
    """Parse ``minute hour day-of-month month day-of-week``.

    Raises:
        CronParseError: wrong number of fields or an invalid/out-of-range value.
    """
    if not isinstance(expression, str):
        raise CronParseError(f"Cron expression must be a string, got {expression!r}")
    parts = expression.split()
    if len(parts) != 5:
        raise CronParseError(
            f"Invalid cron expression: expected 5 fields, got {len(parts)}", expression
        )
    fields = {
        name: _parse_field(token, name, low, high, expression)
        for token, (name, low, high) in zip(parts, FIELD_SPECS)
    }
    return CronExpression(expression=expression.strip(), **fields)


def next_run_after(
    cron: Union[str, CronExpression], start: Optional[datetime] = None
) -> datetime:
    """First whole minute strictly after ``start`` (default now) matching ``cron``.

    Steps a minute at a time, skipping whole months, days and hours that
    cannot match.

    Raises:
        ValidationError: nothing matches within ``SEARCH_HORIZON``.
    """
    parsed = parse_cron(cron) if isinstance(cron, str) else cron
    start = ensure_utc(start) if start is not None else utcnow()
    candidate = start.replace(second=0, microsecond=0) + timedelta(minutes=1)
    limit = start + SEARCH_HORIZON

    while candidate <= limit:
        if not parsed.month.matches(candidate.month):
            if candidate.month == 12:
                candidate = candidate.replace(
                    year=candidate.year + 1, month=1, day=1, hour=0, minute=0
                )
            else:
                candidate = candidate.replace(
                    month=candidate.month + 1, day=1, hour=0, minute=0
                )
            continue
        if not parsed.matches_day(candidate):
            candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
            continue
        if not parsed.hour.matches(candidate.hour):
            candidate = candidate.replace(minute=0) + timedelta(hours=1)
            continue
        if not parsed.minute.matches(candidate.minute):
            candidate += timedelta(minutes=1)
            continue
        return candidate

    raise ValidationError(
        f'Cron expression "{parsed.expression}" does not match any time '
        f"within {SEARCH_HORIZON.days} days"
    )


def get_next_run(cron: Union[str, CronExpression], start: Optional[datetime] = None) -> str:
    """ISO-8601 form of :func:`next_run_after`."""
    return isoformat(next_run_after(cron, start))
