"""Reporting period resolution.

A monthly run archives the data of one calendar month. From the 10th of a
month onwards the previous month is targeted; before the 10th the upstream
data is not final yet, so the run targets the month before that.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Union

MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

CUTOFF_DAY = 10


@dataclass(frozen=True)
class ReportingPeriod:
    """Calendar month a run is responsible for archiving."""

    start: date
    key: str
    archived: bool = False

    @classmethod
    def for_month(cls, year: int, month: int) -> "ReportingPeriod":
        start = date(year, month, 1)
        return cls(start=start, key=period_key(start))

    @classmethod
    def from_key(cls, key: str) -> "ReportingPeriod":
        start = parse_period_key(key)
        return cls(start=start, key=period_key(start))


def period_key(value: Union[date, datetime]) -> str:
    """Return the archive key for the month containing ``value`` (e.g. ``Apr-2025``)."""
    return f"{MONTH_ABBREVIATIONS[value.month - 1]}-{value.year:04d}"


def parse_period_key(key: str) -> date:
    """Parse ``Mon-YYYY`` or ``YYYY-MM`` into the first day of that month."""
    text = key.strip()
    if "-" not in text:
        raise ValueError(f"Invalid period key: {key!r}")
    head, tail = text.split("-", 1)
    if head.isdigit():
        year, month = int(head), int(tail)
    else:
        abbreviations = [name.lower() for name in MONTH_ABBREVIATIONS]
        try:
            month = abbreviations.index(head[:3].lower()) + 1
        except ValueError:
            raise ValueError(f"Invalid period key: {key!r}") from None
        year = int(tail)
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid period key: {key!r}")
    return date(year, month, 1)


def shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    """Move ``offset`` months backwards (negative) or forwards, rolling the year."""
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def resolve_reporting_period(current_date: Union[date, datetime]) -> ReportingPeriod:
    """Resolve the target reporting period for a run started on ``current_date``."""
    offset = -1 if current_date.day >= CUTOFF_DAY else -2
    year, month = shift_month(current_date.year, current_date.month, offset)
    return ReportingPeriod.for_month(year, month)
