"""
Date presets offered by the global filter bar.
"""
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Optional


class DatePreset(str, Enum):
    ALL = "all"
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_7 = "last7"
    LAST_30 = "last30"
    THIS_MONTH = "thisMonth"
    LAST_MONTH = "lastMonth"
    THIS_YEAR = "thisYear"
    CUSTOM = "custom"


DEFAULT_PRESET = DatePreset.THIS_MONTH


@dataclass(frozen=True)
class DateWindow:
    """Inclusive calendar date range."""
    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"window start {self.start} is after end {self.end}")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def resolve_preset(preset: DatePreset, today: date) -> Optional[DateWindow]:
    """
    Resolve a preset into a concrete window relative to ``today``.

    Returns None for ``all`` (no date restriction). ``custom`` has no
    window of its own; callers keep their explicit start/end.
    """
    if preset == DatePreset.ALL:
        return None
    if preset == DatePreset.TODAY:
        return DateWindow(today, today)
    if preset == DatePreset.YESTERDAY:
        yesterday = today - timedelta(days=1)
        return DateWindow(yesterday, yesterday)
    if preset == DatePreset.LAST_7:
        return DateWindow(today - timedelta(days=7), today)
    if preset == DatePreset.LAST_30:
        return DateWindow(today - timedelta(days=30), today)
    if preset == DatePreset.THIS_MONTH:
        return DateWindow(month_start(today), today)
    if preset == DatePreset.LAST_MONTH:
        last_month = month_start(today) - timedelta(days=1)
        return DateWindow(month_start(last_month), month_end(last_month))
    if preset == DatePreset.THIS_YEAR:
        return DateWindow(today.replace(month=1, day=1), today)
    raise ValueError(f"preset {preset.value!r} has no implicit window")
