from dataclasses import dataclass
from datetime import date, datetime
from itertools import count, islice
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import InvalidInput


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    """Calendar month addition; the day is clamped to the target month's end."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


@dataclass(frozen=True)
class Occurrence:
    installment: int
    date: date


def iter_monthly_occurrences(start: date, *, first: int = 1) -> Iterator[Occurrence]:
    """Unbounded monthly schedule anchored on ``start``.

    Each date is computed from the anchor rather than from the previous
    occurrence, so a series starting on the 31st returns to the 31st in long
    months after being clamped in short ones.
    """
    for offset in count(first - 1):
        yield Occurrence(installment=offset + 1, date=add_months(start, offset))


@dataclass(frozen=True)
class SeriesPlan:
    occurrences: list[Occurrence]
    installment_total: Optional[int]
    grouped: bool


def plan_series(
    start: date,
    installments: int = 1,
    *,
    fixed: bool = False,
    horizon: Optional[int] = None,
) -> SeriesPlan:
    """Decide which dated occurrences one forecast request expands into.

    Bounded requests yield exactly ``installments`` occurrences. Fixed monthly
    requests are open-ended: the caller chooses how many months to materialize
    through ``horizon`` and the series is marked with an installment total of 0.
    """
    if installments < 1:
        raise InvalidInput("Installment count must be at least 1")
    if not fixed and installments == 1:
        return SeriesPlan(
            occurrences=[Occurrence(installment=1, date=start)],
            installment_total=None,
            grouped=False,
        )
    if fixed:
        if horizon is None:
            horizon = get_settings().fixed_series_months
        if horizon < 1:
            raise InvalidInput("Fixed series horizon must be at least 1 month")
        size = horizon
        total = 0
    else:
        size = installments
        total = installments
    return SeriesPlan(
        occurrences=list(islice(iter_monthly_occurrences(start), size)),
        installment_total=total,
        grouped=True,
    )


def installment_suffix(
    group_id: Optional[str],
    installment_current: Optional[int],
    installment_total: Optional[int],
) -> str:
    if not group_id or installment_current is None:
        return ""
    if installment_total:
        return f" ({installment_current}/{installment_total})"
    return " (recurring)"
