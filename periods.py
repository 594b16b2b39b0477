from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import InvalidInput


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def _month_end(first: date) -> date:
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    if today is None:
        from recurrence import local_today

        today = local_today()
    if not period or period == "all":
        # open-ended so planned and future-dated rows are included
        return Period("all", date(1970, 1, 1), date.max)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return Period("last_month", last_month_end.replace(day=1), last_month_end)
    if period == "this_year":
        return Period("this_year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "custom":
        if not start or not end:
            raise InvalidInput("Custom period requires start and end dates")
        try:
            start_date = date.fromisoformat(start)
            end_date = date.fromisoformat(end)
        except ValueError as exc:
            raise InvalidInput(f"Malformed date: {exc}") from exc
        if start_date > end_date:
            raise InvalidInput("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise InvalidInput(f"Unknown period '{period}'")

    first = today.replace(day=1)
    return Period("this_month", first, _month_end(first))
