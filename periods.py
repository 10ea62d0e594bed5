from dataclasses import dataclass
from datetime import date
from typing import Optional

from recurrence import add_months


PRESETS = ("this-month", "last-3-months", "this-year", "last-year", "all-time")


@dataclass(frozen=True)
class Period:
    slug: str
    start: Optional[date]
    end: Optional[date]


def resolve_period(
    preset: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if start or end:
        start_date = date.fromisoformat(start) if start else None
        end_date = date.fromisoformat(end) if end else None
        if start_date and end_date and start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if not preset or preset == "all-time":
        return Period("all-time", None, None)
    if preset == "this-month":
        return Period("this-month", today.replace(day=1), today)
    if preset == "last-3-months":
        return Period("last-3-months", add_months(today.replace(day=1), -2), today)
    if preset == "this-year":
        return Period("this-year", date(today.year, 1, 1), today)
    if preset == "last-year":
        year = today.year - 1
        return Period("last-year", date(year, 1, 1), date(year, 12, 31))
    raise ValueError(f"Unknown date range preset: {preset}")
