"""
Calendar period shifting for period-over-period comparisons.

Shifts move calendar dates, not fixed day counts: a month back from
March 31 is February 28/29, a year back from February 29 is February 28.
"""
import calendar
from datetime import date, timedelta
from typing import Optional

from cockpit.filters.presets import DateWindow
from cockpit.metrics.models import ComparisonType

DEFAULT_LABELS = {
    ComparisonType.YOY: "vs last year",
    ComparisonType.MOM: "vs last month",
    ComparisonType.WOW: "vs last week",
    ComparisonType.YTD: "YTD vs last year",
    ComparisonType.LFL: "LFL vs last year",
}


def shift_months(day: date, months: int) -> date:
    """Move ``day`` by whole months, clamping to the last valid day of the target month."""
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last))


def shift_years(day: date, years: int) -> date:
    return shift_months(day, years * 12)


def shift_date(day: date, comparison_type: ComparisonType) -> date:
    """One period back for the plain shift types (YTD and LFL shift by a year)."""
    comparison_type = ComparisonType(comparison_type)
    if comparison_type == ComparisonType.WOW:
        return day - timedelta(days=7)
    if comparison_type == ComparisonType.MOM:
        return shift_months(day, -1)
    return shift_years(day, -1)


def shift_window(window: DateWindow, comparison_type: ComparisonType) -> DateWindow:
    return DateWindow(shift_date(window.start, comparison_type), shift_date(window.end, comparison_type))


def year_to_date(reference: date) -> DateWindow:
    return DateWindow(reference.replace(month=1, day=1), reference)


def comparison_windows(
    comparison_type: ComparisonType,
    window: Optional[DateWindow],
    today: date,
) -> Optional[tuple]:
    """
    (primary, comparison) windows for YoY/MoM/WoW/YTD, or None when there is
    no primary window to shift. YTD always runs from January 1 of the
    reference date (the window end, or today).
    """
    comparison_type = ComparisonType(comparison_type)
    if comparison_type == ComparisonType.YTD:
        reference = window.end if window else today
        primary = year_to_date(reference)
        return primary, shift_window(primary, comparison_type)
    if window is None:
        return None
    return window, shift_window(window, comparison_type)


def default_label(comparison_type: Optional[ComparisonType]) -> Optional[str]:
    if comparison_type is None:
        return None
    return DEFAULT_LABELS[ComparisonType(comparison_type)]


def compute_trend(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    """Signed percentage change; None unless both values exist and ``previous > 0``."""
    if current is None or previous is None:
        return None
    if previous <= 0:
        return None
    return (current - previous) / previous * 100
