"""
Pay calendar (``stipend_kernel.domain.calendar``).

Responsibility
--------------
Pure period arithmetic for fixed-length pay periods: period keys, their
ordering, next/previous, inclusive ranges across year boundaries, the date
window of a period and the period containing a date.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  The Pay Period Registry service
persists what this module computes.

Invariants enforced
-------------------
* Periods are numbered 1..N per year (N = 26 by default) and never wrap
  within a year; after PP N of year Y comes PP1 of year Y+1.
* Periods are contiguous and non-overlapping: PP1 of year Y+1 starts the
  day after PP N of year Y ends.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Mapping

from stipend_kernel.exceptions import ValidationError


@dataclass(frozen=True, order=True)
class PeriodKey:
    """(year, number) identity of a pay period; orders chronologically."""

    year: int
    number: int

    def __str__(self) -> str:
        return f"PP{self.number}'{self.year}"


class PayCalendar:
    """
    Fixed-cadence calendar anchored on configured PP1 start dates.

    Years without an explicit anchor continue the cadence from the nearest
    configured year, so the whole timeline stays contiguous.
    """

    def __init__(
        self,
        year_anchors: Mapping[int, date],
        period_length_days: int = 14,
        periods_per_year: int = 26,
    ):
        if not year_anchors:
            raise ValueError("PayCalendar needs at least one year anchor")
        self._anchors = dict(year_anchors)
        self.period_length_days = period_length_days
        self.periods_per_year = periods_per_year

    @classmethod
    def from_settings(cls, settings) -> PayCalendar:
        """Build from any object exposing the calendar settings attributes."""
        return cls(
            settings.year_anchors,
            period_length_days=settings.period_length_days,
            periods_per_year=settings.periods_per_year,
        )

    @property
    def year_length_days(self) -> int:
        return self.period_length_days * self.periods_per_year

    def validate(self, key: PeriodKey) -> PeriodKey:
        if not 1 <= key.number <= self.periods_per_year:
            raise ValidationError(
                f"Pay period must be between 1 and {self.periods_per_year}, got {key.number}",
                field="pay_period",
            )
        return key

    def year_start(self, year: int) -> date:
        """First day of PP1 for ``year``."""
        if year in self._anchors:
            return self._anchors[year]
        nearest = min(self._anchors, key=lambda y: abs(y - year))
        offset = (year - nearest) * self.year_length_days
        try:
            return self._anchors[nearest] + timedelta(days=offset)
        except OverflowError:
            raise _out_of_range(year) from None

    def period_dates(self, key: PeriodKey) -> tuple[date, date]:
        """Inclusive (start, end) dates of a period."""
        self.validate(key)
        try:
            start = self.year_start(key.year) + timedelta(
                days=(key.number - 1) * self.period_length_days
            )
            return start, start + timedelta(days=self.period_length_days - 1)
        except OverflowError:
            raise _out_of_range(key.year) from None

    def key_for_date(self, d: date) -> PeriodKey:
        year = d.year
        # The cadence drifts against the civil calendar, so the owning
        # pay year can be either neighbour of the civil year.
        for candidate in (year, year - 1, year + 1):
            start = self.year_start(candidate)
            delta = (d - start).days
            if 0 <= delta < self.year_length_days:
                return PeriodKey(candidate, delta // self.period_length_days + 1)
        raise ValidationError(f"Date {d.isoformat()} falls outside the pay calendar")

    def next(self, key: PeriodKey) -> PeriodKey:
        self.validate(key)
        if key.number == self.periods_per_year:
            return PeriodKey(key.year + 1, 1)
        return PeriodKey(key.year, key.number + 1)

    def previous(self, key: PeriodKey) -> PeriodKey:
        self.validate(key)
        if key.number == 1:
            return PeriodKey(key.year - 1, self.periods_per_year)
        return PeriodKey(key.year, key.number - 1)

    def keys_in_range(self, start: PeriodKey, end: PeriodKey) -> tuple[PeriodKey, ...]:
        """Every period from ``start`` through ``end`` inclusive, in order."""
        self.validate(start)
        self.validate(end)
        if end < start:
            raise ValidationError(f"Range end {end} is before start {start}")
        keys = [start]
        while keys[-1] < end:
            keys.append(self.next(keys[-1]))
        return tuple(keys)

    def keys_for_year(self, year: int) -> tuple[PeriodKey, ...]:
        return tuple(PeriodKey(year, n) for n in range(1, self.periods_per_year + 1))

    def remaining_periods(self, key: PeriodKey) -> int:
        """Periods from ``key`` through the last period of its year, inclusive."""
        self.validate(key)
        return self.periods_per_year - key.number + 1


def _out_of_range(year: int) -> ValidationError:
    return ValidationError(f"Year {year} falls outside the pay calendar", field="year")
