"""Unit tests for date helpers"""

from datetime import datetime, timezone
from lending_gateway.utils.date_utils import add_months, as_utc, days_between


def test_add_months_clamps_to_month_end():
    start = datetime(2026, 1, 31, tzinfo=timezone.utc)
    assert add_months(start, 1) == datetime(2026, 2, 28, tzinfo=timezone.utc)


def test_add_months_across_year():
    start = datetime(2026, 11, 15, 9, 30, tzinfo=timezone.utc)
    assert add_months(start, 3) == datetime(2027, 2, 15, 9, 30, tzinfo=timezone.utc)


def test_as_utc_marks_naive_values():
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive).tzinfo == timezone.utc


def test_days_between_fractional_and_signed():
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    end = datetime(2026, 1, 2, 12, 0, tzinfo=timezone.utc)

    assert days_between(start, end) == 1.5
    assert days_between(end, start) == -1.5
