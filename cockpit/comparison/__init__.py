"""Period-over-period comparison planning and trend math."""
from .periods import (
    comparison_windows,
    compute_trend,
    default_label,
    shift_date,
    shift_months,
    shift_window,
    shift_years,
    year_to_date,
)
from .engine import (
    ComparisonEngine,
    ComparisonOutcome,
    ComparisonPlan,
    RowTrendPlan,
    has_sql_trend,
    merge_row_trends,
)

__all__ = [
    "comparison_windows",
    "compute_trend",
    "default_label",
    "shift_date",
    "shift_months",
    "shift_window",
    "shift_years",
    "year_to_date",
    "ComparisonEngine",
    "ComparisonOutcome",
    "ComparisonPlan",
    "RowTrendPlan",
    "has_sql_trend",
    "merge_row_trends",
]
