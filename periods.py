from dataclasses import dataclass
from datetime import date
from typing import Optional

from recurrence import add_months


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    end = add_months(first, 1) - date.resolution
    return Period(f"{year:04d}-{month:02d}", first, end)


def resolve_month(month: Optional[str], *, today: Optional[date] = None) -> Period:
    today = today or date.today()
    first_this = today.replace(day=1)
    if not month or month == "this_month":
        return month_period(first_this.year, first_this.month)
    if month == "last_month":
        first = add_months(first_this, -1)
        return month_period(first.year, first.month)
    if month == "next_month":
        first = add_months(first_this, 1)
        return month_period(first.year, first.month)

    try:
        year_raw, month_raw = month.split("-")
        year, month_num = int(year_raw), int(month_raw)
    except ValueError as exc:
        raise ValueError("Month must be formatted as YYYY-MM") from exc
    if not 1 <= month_num <= 12:
        raise ValueError("Month must be between 01 and 12")
    return month_period(year, month_num)
