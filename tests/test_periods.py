from datetime import date

import pytest

from errors import InvalidInput
from periods import resolve_period


TODAY = date(2024, 3, 14)


def test_this_month_spans_calendar_month():
    period = resolve_period("this_month", None, None, today=TODAY)
    assert (period.start, period.end) == (date(2024, 3, 1), date(2024, 3, 31))


def test_last_month_crosses_year_boundary():
    period = resolve_period("last_month", None, None, today=date(2024, 1, 10))
    assert (period.start, period.end) == (date(2023, 12, 1), date(2023, 12, 31))


def test_all_and_this_year():
    assert resolve_period(None, None, None, today=TODAY).end == date.max
    year = resolve_period("this_year", None, None, today=TODAY)
    assert (year.start, year.end) == (date(2024, 1, 1), date(2024, 12, 31))


def test_custom_period():
    period = resolve_period("custom", "2024-02-01", "2024-02-29", today=TODAY)
    assert period.slug == "custom"
    assert (period.start, period.end) == (date(2024, 2, 1), date(2024, 2, 29))


@pytest.mark.parametrize(
    "slug,start,end",
    [
        ("custom", None, "2024-01-01"),
        ("custom", "2024-13-01", "2024-12-31"),
        ("custom", "2024-02-01", "2024-01-01"),
        ("fortnight", None, None),
    ],
)
def test_invalid_periods(slug, start, end):
    with pytest.raises(InvalidInput):
        resolve_period(slug, start, end, today=TODAY)
