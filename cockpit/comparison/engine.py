"""
Comparison Engine - prior-period planning and trend math.

Provides:
- plan_comparison: primary + comparison QuerySpecs for YoY/MoM/WoW/YTD/LFL
- plan_row_trend: prior-period grouped query for ranking-list trends
- merge_row_trends: merge per-row trend values into list rows by label

LFL (like-for-like) restricts BOTH sides to dates listed in a calendar
dataset whose current/prior columns pair each comparable day with its
prior-year counterpart, and only days that carry data on both sides count.
When the dataset declares a store column the match is per (store, day), so
new and closed stores drop out of both sides. Missing calendar
configuration fails closed.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cockpit.compiler.predicates import check_identifier, date_range
from cockpit.compiler.sql import QueryCompiler, QueryPurpose, QuerySpec, render
from cockpit.core.errors import ComparisonError, ComparisonErrorKind
from cockpit.filters.context import FilterContext, RowLevelScope
from cockpit.filters.presets import DateWindow
from cockpit.metrics.models import Aggregation, ComparisonType, MetricDefinition
from cockpit.utils.log_utils import get_logger

from .periods import comparison_windows, compute_trend, default_label, shift_window, year_to_date

logger = get_logger(__name__)

# Column names that already carry a trend computed by the metric's own SQL.
_SQL_TREND_MARKERS = ("trend", "growth", "change")

_GROUP_BY_RE = re.compile(r"\bGROUP\s+BY\s+([A-Za-z_][A-Za-z0-9_.]*)", re.IGNORECASE)
_AGGREGATE_RE = re.compile(r"\b(SUM|AVG|MIN|MAX|COUNT)\s*\(\s*([A-Za-z_][A-Za-z0-9_.]*|\*)\s*\)", re.IGNORECASE)


@dataclass(frozen=True)
class ComparisonPlan:
    comparison_type: ComparisonType
    primary: QuerySpec
    comparison: QuerySpec
    label: Optional[str] = None
    primary_window: Optional[DateWindow] = None
    comparison_window: Optional[DateWindow] = None
    comparable_days: Optional[QuerySpec] = None  # LFL only

    def resolve_label(self, days: Optional[int] = None) -> Optional[str]:
        if self.comparison_type == ComparisonType.LFL and days is not None and self.label is None:
            return f"LFL ({days} days)"
        return self.label or default_label(self.comparison_type)


@dataclass(frozen=True)
class RowTrendPlan:
    query: QuerySpec
    label_column: str
    comparison_type: ComparisonType
    window: Optional[DateWindow] = None


@dataclass
class ComparisonOutcome:
    previous_value: Optional[float] = None
    trend: Optional[float] = None
    label: Optional[str] = None


class ComparisonEngine:
    """Plans comparison queries through the shared QueryCompiler."""

    def __init__(self, compiler: QueryCompiler):
        self.compiler = compiler

    # =========================================================================
    # Scalar comparison
    # =========================================================================

    def plan_comparison(
        self,
        metric: MetricDefinition,
        context: FilterContext,
        *,
        scope: Optional[RowLevelScope] = None,
        cross_filters: Optional[Sequence[Tuple[str, Any]]] = None,
    ) -> Optional[ComparisonPlan]:
        """Returns None when comparison is disabled; raises ComparisonError when it cannot be planned."""
        if not metric.comparison_enabled:
            return None
        comparison_type = ComparisonType(metric.comparison_type or ComparisonType.YOY)

        if metric.use_raw_query:
            raise ComparisonError(
                ComparisonErrorKind.INVALID_PERIOD_SHIFT,
                f"metric {metric.id!r} uses a SQL override; its period cannot be shifted",
            )
        if metric.is_list or metric.group_by_column:
            raise ComparisonError(
                ComparisonErrorKind.INVALID_PERIOD_SHIFT,
                f"metric {metric.id!r} is not a single value; use row trends instead",
            )

        dataset = self.compiler.resolve_dataset(metric.dataset_id)
        if not self.compiler.date_column(metric, dataset):
            raise ComparisonError(
                ComparisonErrorKind.INVALID_PERIOD_SHIFT,
                f"metric {metric.id!r} has no comparison date column",
            )

        if comparison_type == ComparisonType.LFL:
            return self._plan_lfl(metric, context, scope=scope, cross_filters=cross_filters)

        windows = comparison_windows(comparison_type, context.date_window(), context.today())
        if windows is None:
            raise ComparisonError(
                ComparisonErrorKind.INVALID_PERIOD_SHIFT,
                f"{comparison_type.value} comparison needs a date window; the context is all-time",
            )
        primary_window, comparison_window = windows
        primary = self.compiler.compile_for_window(
            metric, context, primary_window, scope=scope, cross_filters=cross_filters,
        )
        comparison = self.compiler.compile_for_window(
            metric, context, comparison_window,
            purpose=QueryPurpose.COMPARISON, scope=scope, cross_filters=cross_filters,
        )
        logger.debug(
            f"Planned {comparison_type.value} for {metric.id}: "
            f"{primary_window.to_dict()} vs {comparison_window.to_dict()}"
        )
        return ComparisonPlan(
            comparison_type=comparison_type,
            primary=primary,
            comparison=comparison,
            label=metric.comparison_label,
            primary_window=primary_window,
            comparison_window=comparison_window,
        )

    def _plan_lfl(self, metric, context, *, scope, cross_filters) -> ComparisonPlan:
        calendar = self.compiler.catalog.get_dataset(metric.lfl_calendar_dataset_id)
        current_col = metric.lfl_current_period_column
        prior_col = metric.lfl_prior_period_column
        if calendar is None or not current_col or not prior_col:
            raise ComparisonError(
                ComparisonErrorKind.LFL_CONFIG_MISSING,
                f"metric {metric.id!r} has no usable LFL calendar configuration",
                {
                    "lflCalendarDatasetId": metric.lfl_calendar_dataset_id,
                    "lflCurrentPeriodColumn": current_col,
                    "lflPriorPeriodColumn": prior_col,
                },
            )
        check_identifier(current_col, "LFL current period column")
        check_identifier(prior_col, "LFL prior period column")

        dataset = self.compiler.resolve_dataset(metric.dataset_id)
        date_col = self.compiler.date_column(metric, dataset)
        window = context.date_window() or year_to_date(context.today())

        # Rows that carry data under the non-date filters.
        scoped = self.compiler.where_conditions(
            metric, dataset, context, None, scope=scope, cross_filters=cross_filters,
        )
        if dataset.store_column:
            current_match, prior_match, days_sql = self._store_matched_days(
                dataset, date_col, calendar, current_col, prior_col, window, scoped,
            )
        else:
            current_match, prior_match, days_sql = self._matched_days(
                dataset, date_col, calendar, current_col, prior_col, window, scoped,
            )

        primary = self.compiler.compile_for_window(
            metric, context, None,
            scope=scope, cross_filters=cross_filters, date_condition=current_match,
        )
        comparison = self.compiler.compile_for_window(
            metric, context, None,
            purpose=QueryPurpose.COMPARISON, scope=scope, cross_filters=cross_filters,
            date_condition=prior_match,
        )
        days = QuerySpec(sql=days_sql, metric_id=metric.id, purpose=QueryPurpose.COMPARABLE_DAYS)
        return ComparisonPlan(
            comparison_type=ComparisonType.LFL,
            primary=primary,
            comparison=comparison,
            label=metric.comparison_label,
            primary_window=window,
            comparable_days=days,
        )

    @staticmethod
    def _matched_days(dataset, date_col, calendar, current_col, prior_col, window, scoped):
        """Calendar days with data on both sides, across all stores."""
        data_days = render(date_col, dataset.table, scoped)
        conditions = [
            date_range(f"cal.{current_col}", window),
            f"cal.{current_col} IN ({data_days})",
            f"cal.{prior_col} IN ({data_days})",
        ]
        calendar_from = f"{calendar.table} cal"
        current_days = render(f"cal.{current_col}", calendar_from, conditions)
        prior_days = render(f"cal.{prior_col}", calendar_from, conditions)
        return (
            f"{date_col} IN ({current_days})",
            f"{date_col} IN ({prior_days})",
            render(f"count(DISTINCT cal.{current_col}) AS value", calendar_from, conditions),
        )

    @staticmethod
    def _store_matched_days(dataset, date_col, calendar, current_col, prior_col, window, scoped):
        """
        (store, day) pairs with data on both sides. A store that opened or
        closed between the two periods contributes to neither.
        """
        store_col = check_identifier(dataset.store_column, "store column")
        pairs = render(f"DISTINCT {store_col} AS store_key, {date_col} AS day_key", dataset.table, scoped)
        matched_from = (
            f"{calendar.table} cal"
            f" JOIN ({pairs}) cur ON cur.day_key = cal.{current_col}"
            f" JOIN ({pairs}) prev ON prev.store_key = cur.store_key AND prev.day_key = cal.{prior_col}"
        )
        conditions = [date_range(f"cal.{current_col}", window)]
        current_pairs = render(f"cur.store_key, cal.{current_col}", matched_from, conditions)
        prior_pairs = render(f"prev.store_key, cal.{prior_col}", matched_from, conditions)
        return (
            f"({store_col}, {date_col}) IN ({current_pairs})",
            f"({store_col}, {date_col}) IN ({prior_pairs})",
            render(f"count(DISTINCT cal.{current_col}) AS value", matched_from, conditions),
        )

    @staticmethod
    def outcome(
        plan: ComparisonPlan,
        current: Optional[float],
        previous: Optional[float],
        days: Optional[int] = None,
    ) -> ComparisonOutcome:
        return ComparisonOutcome(
            previous_value=previous,
            trend=compute_trend(current, previous),
            label=plan.resolve_label(days),
        )

    # =========================================================================
    # Ranking-list row trends
    # =========================================================================

    def plan_row_trend(
        self,
        metric: MetricDefinition,
        context: FilterContext,
        *,
        scope: Optional[RowLevelScope] = None,
    ) -> Optional[RowTrendPlan]:
        """
        Prior-period grouped query keyed by the list's label dimension, or
        None when the metric has no label dimension or no window to shift.
        """
        if not metric.auto_calculate_trend:
            return None
        window = context.date_window()
        if window is None:
            logger.debug(f"Row trend for {metric.id} skipped: all-time context")
            return None
        comparison_type = ComparisonType(metric.trend_comparison_type)
        prior_window = shift_window(window, comparison_type)

        if metric.use_raw_query:
            trend_metric = self._override_trend_metric(metric)
            if trend_metric is None:
                logger.debug(f"Row trend for {metric.id} skipped: override has no GROUP BY aggregate")
                return None
        elif metric.group_by_column and not metric.is_list:
            trend_metric = metric
        else:
            return None

        dataset = self.compiler.resolve_dataset(trend_metric.dataset_id)
        if not self.compiler.date_column(trend_metric, dataset):
            return None
        query = self.compiler.compile_for_window(
            trend_metric, context, prior_window,
            purpose=QueryPurpose.ROW_TREND, scope=scope, apply_limit=False,
        )
        return RowTrendPlan(
            query=query,
            label_column=trend_metric.group_by_column,
            comparison_type=comparison_type,
            window=prior_window,
        )

    @staticmethod
    def _override_trend_metric(metric: MetricDefinition) -> Optional[MetricDefinition]:
        """Builder equivalent of a grouped override: its GROUP BY column and first aggregate."""
        raw = metric.raw_query or ""
        group = _GROUP_BY_RE.search(raw)
        aggregate = _AGGREGATE_RE.search(raw)
        if not group or not aggregate:
            return None
        function, column = aggregate.group(1).upper(), aggregate.group(2)
        if function == "COUNT":
            update = {"aggregation": Aggregation.COUNT, "column": None}
        else:
            update = {"aggregation": Aggregation(function), "column": column}
        return metric.model_copy(update={
            **update,
            "use_raw_query": False,
            "group_by_column": group.group(1),
            "order_by_column": None,
            "limit": 0,
        })


def has_sql_trend(rows: List[Dict[str, Any]]) -> bool:
    if not rows:
        return False
    return any(
        marker in str(column).lower()
        for column in rows[0].keys()
        for marker in _SQL_TREND_MARKERS
    )


def row_value(row: Dict[str, Any], label_column: str) -> Optional[float]:
    """The row's measure: ``value`` when present, else its first numeric column."""
    if isinstance(row.get("value"), (int, float)) and not isinstance(row.get("value"), bool):
        return float(row["value"])
    for column, value in row.items():
        if column == label_column or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return float(value)
    return None


def merge_row_trends(
    rows: List[Dict[str, Any]],
    previous_rows: List[Dict[str, Any]],
    label_column: str,
) -> List[Dict[str, Any]]:
    """Copy of ``rows`` with ``trend`` (rounded to 1 decimal, or None) merged in by label."""
    if has_sql_trend(rows):
        return rows
    previous = {}
    for row in previous_rows:
        previous[str(row.get(label_column))] = row_value(row, label_column)

    merged = []
    for row in rows:
        trend = compute_trend(row_value(row, label_column), previous.get(str(row.get(label_column))))
        merged.append({**row, "trend": round(trend, 1) if trend is not None else None})
    return merged
