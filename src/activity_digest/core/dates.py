"""
Calendar-day helpers used by the aggregator and adapters.

Day boundaries are always computed in a single reference timezone: a day spans
``00:00:00.000`` to ``23:59:59.999`` inclusive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigurationError, ValidationError

END_OF_DAY = time(23, 59, 59, 999000)
PERIODS = ("today", "week", "month")


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return a tzinfo for ``name``; ``None``/``UTC`` map to :data:`datetime.UTC`."""

    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown timezone '{name}'.", section="general", field="timezone") from exc


@dataclass(frozen=True, slots=True)
class DateRange:
    """
    Inclusive range of calendar dates.

    Iterating yields each date lazily in ascending order; the range can be
    iterated any number of times.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValidationError(
                f"Start date {self.start.isoformat()} is after end date {self.end.isoformat()}.",
                field="start_date",
                value=self.start.isoformat(),
            )

    def __iter__(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def __len__(self) -> int:
        return (self.end - self.start).days + 1

    def __contains__(self, item: object) -> bool:
        return isinstance(item, date) and self.start <= item <= self.end

    def bounds(self, tz: tzinfo = UTC) -> Tuple[datetime, datetime]:
        return range_bounds(self.start, self.end, tz)

    def describe(self) -> str:
        return describe_date_range(self.start, self.end)

    def __str__(self) -> str:
        return format_date_range(self.start, self.end)


def day_bounds(day: date, tz: tzinfo = UTC) -> Tuple[datetime, datetime]:
    """Return the first and last instant of ``day`` in ``tz``."""

    return datetime.combine(day, time.min, tzinfo=tz), datetime.combine(day, END_OF_DAY, tzinfo=tz)


def local_date(instant: datetime, tz: tzinfo = UTC) -> date:
    """Calendar date of ``instant`` in the reference timezone."""

    return instant.astimezone(tz).date()


def parse_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string."""

    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"Invalid date '{value}'. Expected YYYY-MM-DD.", field="date", value=value) from exc


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are treated as UTC."""

    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid timestamp '{value}'.", field="timestamp", value=value) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def range_bounds(start: date, end: date, tz: tzinfo = UTC) -> Tuple[datetime, datetime]:
    """First instant of ``start`` and last instant of ``end`` in ``tz``."""

    return day_bounds(start, tz)[0], day_bounds(end, tz)[1]


def days_in_range(start: date, end: date) -> int:
    if end < start:
        return 0
    return (end - start).days + 1


def format_date_range(start: date, end: date) -> str:
    if start == end:
        return start.isoformat()
    return f"{start.isoformat()} to {end.isoformat()}"


def describe_date_range(start: date, end: date) -> str:
    """Human-readable span such as ``3 days`` or ``2 weeks``."""

    days = days_in_range(start, end)
    if days == 1:
        return f"single day ({start.isoformat()})"
    if days <= 7:
        return f"{days} days"
    if days <= 31:
        weeks = -(-days // 7)
        return f"{weeks} week{'s' if weeks > 1 else ''}"
    months = -(-days // 30)
    return f"{months} month{'s' if months > 1 else ''}"


def resolve_period(period: str, today: date) -> DateRange:
    """Translate ``today``/``week``/``month`` into a date range ending on ``today``."""

    lowered = period.strip().lower()
    if lowered == "today":
        return DateRange(today, today)
    if lowered == "week":
        return DateRange(today - timedelta(days=7), today)
    if lowered == "month":
        return DateRange(today - timedelta(days=30), today)
    raise ValidationError(f"Invalid period '{period}'. Use one of: {', '.join(PERIODS)}.", field="period", value=period)
