from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


@dataclass(frozen=True)
class Window:
    """Inclusive date range; either bound may be open."""

    start: Optional[date] = None
    end: Optional[date] = None


def today_local() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def trailing_months(today: date, count: int) -> list[date]:
    """First days of the last ``count`` calendar months, oldest first.

    The final entry is the month containing ``today``.
    """
    current = month_start(today)
    return [add_months(current, -offset) for offset in range(count - 1, -1, -1)]
