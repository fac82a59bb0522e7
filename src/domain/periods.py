from __future__ import annotations

import calendar
from datetime import date, datetime, time, timezone
from enum import StrEnum

from pydantic import BaseModel, model_validator


class PeriodType(StrEnum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class ReportingWindow(BaseModel):
    """Time range with explicit boundary semantics.

    The defaults (start exclusive, end inclusive) pair with a ledger snapshot
    taken at ``start``: the snapshot holds every event at or before ``start``,
    the window holds everything after it.
    """

    start: datetime
    end: datetime
    start_inclusive: bool = False
    end_inclusive: bool = True

    @model_validator(mode="after")
    def _validate_bounds(self) -> ReportingWindow:
        if self.end < self.start:
            raise ValueError("ReportingWindow.end must not precede start")
        return self

    def contains(self, timestamp: datetime) -> bool:
        after_start = timestamp >= self.start if self.start_inclusive else timestamp > self.start
        before_end = timestamp <= self.end if self.end_inclusive else timestamp < self.end
        return after_start and before_end


def end_of_day(day: date) -> datetime:
    """Last representable instant of ``day`` in UTC, used as an inclusive cutoff."""
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def period_bounds(period_type: PeriodType | str, year: int, period_number: int | None = None) -> tuple[date, date]:
    period_type = PeriodType(period_type)
    if period_type == PeriodType.MONTHLY:
        month = period_number or 1
        if not 1 <= month <= 12:
            raise ValueError(f"Month must be 1-12, got {month}")
        return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])

    if period_type == PeriodType.QUARTERLY:
        quarter = period_number or 1
        if not 1 <= quarter <= 4:
            raise ValueError(f"Quarter must be 1-4, got {quarter}")
        start_month = (quarter - 1) * 3 + 1
        end_month = start_month + 2
        return date(year, start_month, 1), date(year, end_month, calendar.monthrange(year, end_month)[1])

    return date(year, 1, 1), date(year, 12, 31)


def period_label(period_type: PeriodType | str, year: int, period_number: int | None = None) -> str:
    period_type = PeriodType(period_type)
    if period_type == PeriodType.MONTHLY:
        return f"{calendar.month_name[period_number or 1]} {year}"
    if period_type == PeriodType.QUARTERLY:
        return f"Q{period_number or 1} {year}"
    return f"Year {year}"
