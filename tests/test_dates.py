from datetime import date

import pytest

from needle_api.dates import default_date_window, parse_date_range, resolve_files
from needle_api.errors import InvalidDateRange


def test_resolve_three_days():
    assert resolve_files("2024-01-01", "2024-01-03") == ["2024-01-01", "2024-01-02", "2024-01-03"]


def test_resolve_single_day():
    assert resolve_files("2024-01-05", "2024-01-05") == ["2024-01-05"]


def test_resolve_crosses_leap_day_and_month():
    assert resolve_files("2024-02-28", "2024-03-01") == ["2024-02-28", "2024-02-29", "2024-03-01"]


@pytest.mark.parametrize("start,end", [
    (None, None),
    ("", ""),
    ("2024-01-05", "2024-01-01"),   # start after end
    ("2024-13-01", "2024-12-31"),   # not a date
    ("01/01/2024", "2024-01-02"),   # wrong format
    ("2024-01-01", None),           # one side missing
])
def test_resolve_invalid_is_empty(start, end):
    assert resolve_files(start, end) == []


def test_parse_date_range_raises():
    with pytest.raises(InvalidDateRange):
        parse_date_range("2024-01-05", "2024-01-01")
    with pytest.raises(InvalidDateRange):
        parse_date_range(None, "2024-01-01")
    with pytest.raises(ValueError):  # also a ValueError
        parse_date_range("nope", "2024-01-01")


def test_parse_date_range_ok():
    assert parse_date_range("2024-01-01", "2024-01-31") == (date(2024, 1, 1), date(2024, 1, 31))


def test_default_window_is_bounded():
    assert default_date_window(today=date(2024, 1, 10)) == ("2024-01-03", "2024-01-10")
    assert default_date_window(today=date(2024, 3, 2), lookback_days=2) == ("2024-02-29", "2024-03-02")
    start, end = default_date_window()
    assert len(resolve_files(start, end)) == 8


def test_resolve_reaches_last_calendar_day():
    assert resolve_files("9999-12-30", "9999-12-31") == ["9999-12-30", "9999-12-31"]
