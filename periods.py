from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_at(self) -> datetime:
        # inclusive: the whole of the last day counts
        return datetime.combine(self.end, time.max)


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def current_month(today: Optional[date] = None) -> Period:
    today = today or local_today()
    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    end_this = next_month - date.resolution
    return Period("this_month", first, end_this)


def resolve_period(
    start: Optional[date],
    end: Optional[date],
    *,
    today: Optional[date] = None,
) -> Period:
    default = current_month(today)
    if start is None and end is None:
        return default
    start_date = start or default.start
    end_date = end or default.end
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    return Period("custom", start_date, end_date)


def parse_period_params(
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    start_date = date.fromisoformat(start[:10]) if start else None
    end_date = date.fromisoformat(end[:10]) if end else None
    return resolve_period(start_date, end_date, today=today)
