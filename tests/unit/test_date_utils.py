"""Unit tests for date helpers and clocks"""

import pytest
from datetime import date, datetime, timezone

from koperasi_workflow.utils.date_utils import (
    DeterministicClock,
    activation_dates,
    add_months,
    months_elapsed,
)


def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)


def test_activation_before_cutoff_uses_this_month():
    activation, maturity = activation_dates(date(2024, 3, 10), 12)

    assert activation == date(2024, 3, 27)
    assert maturity == date(2025, 3, 27)


def test_activation_on_cutoff_day_uses_this_month():
    activation, _ = activation_dates(date(2024, 3, 15), 6)
    assert activation == date(2024, 3, 27)


def test_activation_after_cutoff_moves_to_next_month():
    activation, maturity = activation_dates(date(2024, 12, 20), 6)

    assert activation == date(2025, 1, 27)
    assert maturity == date(2025, 7, 27)


def test_activation_payroll_day_clamped_in_short_month():
    activation, _ = activation_dates(date(2024, 2, 1), 12, cutoff_day=15, payroll_day=31)
    assert activation == date(2024, 2, 29)


def test_activation_requires_positive_tenor():
    with pytest.raises(ValueError):
        activation_dates(date(2024, 3, 1), 0)


def test_months_elapsed():
    assert months_elapsed(date(2024, 3, 27), date(2024, 3, 27)) == 0
    assert months_elapsed(date(2024, 3, 27), date(2024, 4, 26)) == 0
    assert months_elapsed(date(2024, 3, 27), date(2024, 6, 27)) == 3
    assert months_elapsed(date(2024, 3, 27), date(2024, 1, 1)) == 0


def test_deterministic_clock_advances_only_on_request():
    clock = DeterministicClock(datetime(2024, 3, 10, 9, 0))

    assert clock.now().tzinfo == timezone.utc
    assert clock.today() == date(2024, 3, 10)

    clock.advance(days=30)
    assert clock.today() == date(2024, 4, 9)
