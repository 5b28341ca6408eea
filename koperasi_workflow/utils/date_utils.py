"""Date manipulation utilities and the engine clock"""

import calendar
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Tuple


class Clock(ABC):
    """Source of the current time; injected so tests can pin it"""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Fixed clock that only moves when told to"""

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **delta) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        with self._lock:
            self._now = value


def add_months(from_date: date, months: int) -> date:
    """Add calendar months, clamping to the last day of a shorter month (Jan 31 + 1 → Feb 28)"""
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(from_date.day, last_day))


def activation_dates(
    approved_on: date,
    tenor_months: int,
    cutoff_day: int = 15,
    payroll_day: int = 27,
) -> Tuple[date, date]:
    """
    Compute deposit activation and maturity dates.

    Members start paying on the payroll day. Approvals after the cutoff day
    miss this month's payroll run and activate on the next one.

    Example:
        approved 2024-03-10, tenor 12 → (2024-03-27, 2025-03-27)
        approved 2024-03-20, tenor 12 → (2024-04-27, 2025-04-27)
    """
    if tenor_months <= 0:
        raise ValueError("tenor_months must be positive")

    month_start = approved_on.replace(day=1)
    if approved_on.day > cutoff_day:
        month_start = add_months(month_start, 1)

    last_day = calendar.monthrange(month_start.year, month_start.month)[1]
    activation = month_start.replace(day=min(payroll_day, last_day))
    maturity = add_months(activation, tenor_months)
    return activation, maturity


def months_elapsed(start: date, on: date) -> int:
    """Whole calendar months from start to on (0 if on precedes start)"""
    if on < start:
        return 0
    months = (on.year - start.year) * 12 + (on.month - start.month)
    if on.day < start.day:
        months -= 1
    return max(months, 0)
