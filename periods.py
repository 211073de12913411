from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def previous(self) -> "Period":
        """The equal-length window that ends the day before this one starts."""
        length = timedelta(days=self.days)
        return Period(self.start - length, self.end - length)

    def each_day(self) -> Iterator[date]:
        for offset in range(self.days):
            yield self.start + timedelta(days=offset)


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    value = value.strip()
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def resolve_period(
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
    default_days: Optional[int] = None,
    max_days: Optional[int] = None,
) -> Period:
    """
    Turn raw ``from``/``to`` query values into an inclusive window.

    Missing or unparseable values fall back to a trailing ``default_days``
    window ending today, a reversed range is swapped, and a window longer
    than ``max_days`` keeps its end and is shortened from the start. Windows
    whose previous period would fall before ``date.min`` use the default.
    """
    settings = get_settings()
    today = today or local_today()
    if default_days is None:
        default_days = settings.summary_days
    if max_days is None:
        max_days = settings.max_range_days
    fallback = Period(today - timedelta(days=default_days), today)

    end_date = _parse_day(end) or today
    start_date = _parse_day(start)
    if start_date is None:
        if (end_date - date.min).days < default_days:
            return fallback
        start_date = end_date - timedelta(days=default_days)
    if start_date > end_date:
        start_date, end_date = end_date, start_date
    if (end_date - start_date).days + 1 > max_days:
        start_date = end_date - timedelta(days=max_days - 1)

    period = Period(start_date, end_date)
    if (period.start - date.min).days < period.days:
        return fallback
    return period
