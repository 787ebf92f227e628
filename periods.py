import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime


def local_now() -> datetime:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def to_local_naive(value: datetime) -> datetime:
    """Store every timestamp as naive local time in the configured zone."""
    if value.tzinfo is None:
        return value
    tz = ZoneInfo(get_settings().timezone)
    return value.astimezone(tz).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    return date(month_index // 12, (month_index % 12) + 1, 1)


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def parse_month_key(value: str) -> tuple[int, int]:
    if not MONTH_KEY_RE.match(value or ""):
        raise ValueError("Month must be formatted as YYYY-MM")
    year_str, month_str = value.split("-", 1)
    return int(year_str), int(month_str)


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    start = datetime(year, month, 1)
    last = date(year, month, days_in_month(year, month))
    return Period(start, datetime.combine(last, time.max))


def year_period(year: int) -> Period:
    return Period(
        datetime(year, 1, 1), datetime.combine(date(year, 12, 31), time.max)
    )


def elapsed_days_in_month(
    year: int, month: int, *, today: Optional[date] = None
) -> int:
    today = today or local_today()
    if today.year == year and today.month == month:
        return today.day
    return days_in_month(year, month)
