"""
Query Compiler - metric definition + filter context -> executable query spec.

Provides:
- QuerySpec: compiled SQL plus the result row limit handed to the executor
- QueryCompiler: builder mode, SQL-override mode, drill-down, target and
  sparkline queries

Builder mode synthesizes SQL from structured metric fields. Override mode
takes the metric's hand-written query, swaps in the resolved table name and
bounds it with a safety LIMIT; the filter context is NOT injected into
overrides, which reference it explicitly through ``{{placeholder}}``
parameters instead. Both modes produce the same QuerySpec so execution and
caching never need to know which one was used.
"""
import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cockpit.core.constants import (
    DRILL_DOWN_LIMIT,
    LIST_ROW_LIMIT,
    OVERRIDE_ROW_LIMIT,
    SPARKLINE_POINTS,
)
from cockpit.core.errors import CompileError, CompileErrorKind
from cockpit.filters.context import FilterContext, RowLevelScope
from cockpit.filters.presets import DateWindow
from cockpit.metrics.models import Aggregation, Dataset, MetricDefinition
from cockpit.utils.log_utils import get_logger

from . import predicates

logger = get_logger(__name__)


class QueryPurpose(str, Enum):
    PRIMARY = "primary"
    COMPARISON = "comparison"
    COMPARABLE_DAYS = "comparable_days"
    TARGET = "target"
    SERIES = "series"
    ROW_TREND = "row_trend"
    DRILL_DOWN = "drill_down"
    DRILL_DOWN_COUNT = "drill_down_count"


class QueryOrigin(str, Enum):
    BUILDER = "builder"
    OVERRIDE = "override"


@dataclass(frozen=True)
class QuerySpec:
    """A compiled, executable query. ``origin`` is informational only."""
    sql: str
    row_limit: Optional[int] = None
    metric_id: Optional[str] = None
    purpose: QueryPurpose = QueryPurpose.PRIMARY
    origin: QueryOrigin = QueryOrigin.BUILDER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sql": self.sql,
            "rowLimit": self.row_limit,
            "metricId": self.metric_id,
            "purpose": self.purpose.value,
            "origin": self.origin.value,
        }


@dataclass(frozen=True)
class DrillDownRefinement:
    """The clicked data point: ``field = value``."""
    field: str
    value: Any


# Aggregation -> SQL expression template
AGGREGATE_SQL = {
    Aggregation.SUM: "sum({column})",
    Aggregation.AVG: "avg({column})",
    Aggregation.COUNT: "count(*)",
    Aggregation.DISTINCT: "count(DISTINCT {column})",
    Aggregation.MIN: "min({column})",
    Aggregation.MAX: "max({column})",
}

_FROM_RE = re.compile(r"\bFROM\s+([A-Za-z_][A-Za-z0-9_.]*)", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\bLIMIT\s+\d+", re.IGNORECASE)
_SUBQUERY_RE = re.compile(r"\s*(SELECT|WITH)\b", re.IGNORECASE)
_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

# Parameters a SQL override may reference as {{name}}.
OVERRIDE_PARAMETERS = ("startDate", "endDate", "storeIds", "regionCodes", "groupCodes")


def _enclosing_paren(sql: str, pos: int) -> Optional[int]:
    """Index of the innermost unclosed ``(`` before ``pos``, or None at top level."""
    depth = 0
    for i in range(pos - 1, -1, -1):
        if sql[i] == ")":
            depth += 1
        elif sql[i] == "(":
            if depth == 0:
                return i
            depth -= 1
    return None


def table_reference(sql: str) -> Optional["re.Match"]:
    """First ``FROM <identifier>`` at top level or directly inside a subquery."""
    for match in _FROM_RE.finditer(sql):
        opening = _enclosing_paren(sql, match.start())
        if opening is None or _SUBQUERY_RE.match(sql, opening + 1):
            return match
    return None


def _literal_list(values) -> Optional[str]:
    if not values:
        return None
    return ", ".join(predicates.sql_literal(v) for v in sorted(values, key=str))


def override_parameters(context: FilterContext) -> Dict[str, Optional[str]]:
    """
    ``{{placeholder}}`` values as SQL literals. Unrestricted selections
    expand to every known code; None means the context cannot supply one.
    """
    window = context.date_window()
    regions = context.active_regions()
    groups = context.active_groups()
    stores = context.active_stores()
    return {
        "startDate": predicates.sql_literal(window.start) if window else None,
        "endDate": predicates.sql_literal(window.end) if window else None,
        "storeIds": _literal_list(stores if stores is not None else context.known_store_ids),
        "regionCodes": _literal_list(regions if regions is not None else context.known_region_codes),
        "groupCodes": _literal_list(groups if groups is not None else context.known_group_codes),
    }


def aggregate_expression(metric: MetricDefinition) -> str:
    if metric.aggregation == Aggregation.LIST:
        raise CompileError(
            CompileErrorKind.MISSING_COLUMN,
            f"metric {metric.id!r} lists rows and has no aggregate expression",
        )
    if metric.aggregation != Aggregation.COUNT and not metric.column:
        raise CompileError(
            CompileErrorKind.MISSING_COLUMN,
            f"metric {metric.id!r} uses {metric.aggregation.value} without a column",
        )
    return AGGREGATE_SQL[metric.aggregation].format(column=metric.column)


def render(
    select: str,
    table: str,
    conditions: Sequence[str] = (),
    group_by: Optional[str] = None,
    order_by: Optional[str] = None,
    limit: Optional[int] = None,
) -> str:
    parts = [f"SELECT {select}", f"FROM {table}"]
    if conditions:
        parts.append("WHERE " + " AND ".join(conditions))
    if group_by:
        parts.append(f"GROUP BY {group_by}")
    if order_by:
        parts.append(f"ORDER BY {order_by}")
    if limit:
        parts.append(f"LIMIT {limit}")
    return " ".join(parts)


class QueryCompiler:
    """
    Compiles metrics against a dataset catalog.

    ``catalog`` is anything with ``get_dataset(dataset_id)``, normally the
    MetricRegistry.
    """

    def __init__(self, catalog):
        self.catalog = catalog

    # =========================================================================
    # Public contract
    # =========================================================================

    def compile(
        self,
        metric: MetricDefinition,
        context: FilterContext,
        refinement: Optional[DrillDownRefinement] = None,
        *,
        scope: Optional[RowLevelScope] = None,
        cross_filters: Optional[Sequence[Tuple[str, Any]]] = None,
    ) -> QuerySpec:
        if refinement is not None:
            return self.compile_drill_down(metric, context, refinement, scope=scope)
        if metric.use_raw_query:
            return self.compile_override(metric, context)
        return self.compile_for_window(
            metric, context, context.date_window(), scope=scope, cross_filters=cross_filters
        )

    # =========================================================================
    # Dataset resolution
    # =========================================================================

    def resolve_dataset(self, dataset_id: Optional[str]) -> Dataset:
        dataset = self.catalog.get_dataset(dataset_id)
        if dataset is None:
            raise CompileError(
                CompileErrorKind.UNKNOWN_DATASET,
                f"dataset {dataset_id!r} could not be resolved",
                {"datasetId": dataset_id},
            )
        return dataset

    @staticmethod
    def date_column(metric: MetricDefinition, dataset: Dataset) -> Optional[str]:
        return metric.comparison_date_column or dataset.date_column

    def where_conditions(
        self,
        metric: MetricDefinition,
        dataset: Dataset,
        context: FilterContext,
        window: Optional[DateWindow],
        *,
        scope: Optional[RowLevelScope] = None,
        cross_filters: Optional[Sequence[Tuple[str, Any]]] = None,
        date_condition: Optional[str] = None,
    ) -> List[str]:
        """
        WHERE conditions in a fixed order: dates, dimensions, row-level
        scope, the metric's own filter expression, then cross-filters.

        ``date_condition`` replaces the window predicate when given.
        """
        conditions = []
        date_col = self.date_column(metric, dataset)
        if date_condition:
            conditions.append(date_condition)
        elif window is not None:
            if date_col:
                conditions.append(predicates.date_range(date_col, window))
            else:
                logger.debug(f"Dataset {dataset.id} has no date column; date filter skipped")

        conditions.extend(predicates.dimension_predicates(dataset, context))

        scoped = predicates.scope_predicate(dataset, scope)
        if scoped:
            conditions.append(scoped)

        if metric.filter_expression and metric.filter_expression.strip():
            conditions.append(f"({metric.filter_expression.strip()})")

        for field, value in cross_filters or ():
            conditions.append(predicates.equals(predicates.check_identifier(field, "cross-filter field"), value))
        return conditions

    # =========================================================================
    # Builder mode
    # =========================================================================

    def compile_for_window(
        self,
        metric: MetricDefinition,
        context: FilterContext,
        window: Optional[DateWindow],
        *,
        purpose: QueryPurpose = QueryPurpose.PRIMARY,
        scope: Optional[RowLevelScope] = None,
        cross_filters: Optional[Sequence[Tuple[str, Any]]] = None,
        date_condition: Optional[str] = None,
        apply_limit: bool = True,
    ) -> QuerySpec:
        """Builder-mode query for an explicit date window."""
        dataset = self.resolve_dataset(metric.dataset_id)
        conditions = self.where_conditions(
            metric, dataset, context, window,
            scope=scope, cross_filters=cross_filters, date_condition=date_condition,
        )
        direction = metric.order_direction.value
        limit = metric.limit if apply_limit and metric.limit > 0 else None

        if metric.is_list:
            columns = metric.grid_columns or ([metric.column] if metric.column else [])
            if not columns:
                raise CompileError(
                    CompileErrorKind.MISSING_COLUMN,
                    f"list metric {metric.id!r} selects no columns",
                )
            order_by = f"{metric.order_by_column} {direction}" if metric.order_by_column else None
            sql = render(", ".join(columns), dataset.table, conditions, order_by=order_by, limit=limit)
            row_limit = limit or LIST_ROW_LIMIT
        else:
            expression = aggregate_expression(metric)
            group_by = metric.group_by_column
            select = f"{expression} AS value"
            if group_by:
                select = f"{select}, {group_by}"
            if metric.order_by_column:
                order_by = f"{metric.order_by_column} {direction}"
            elif group_by:
                order_by = f"value {direction}"
            else:
                order_by = None
            sql = render(select, dataset.table, conditions, group_by=group_by, order_by=order_by, limit=limit)
            row_limit = (limit or LIST_ROW_LIMIT) if group_by else None

        logger.debug(f"Compiled {purpose.value} query for {metric.id}: {sql}")
        return QuerySpec(sql=sql, row_limit=row_limit, metric_id=metric.id, purpose=purpose)

    # =========================================================================
    # SQL-override mode
    # =========================================================================

    def compile_override(self, metric: MetricDefinition, context: Optional[FilterContext] = None) -> QuerySpec:
        """
        Substitute the resolved table into the first ``FROM <identifier>``
        that belongs to a SELECT, append a safety LIMIT when the query has
        none, then fill ``{{placeholder}}`` parameters from ``context``.

        Filters are never injected: an override that wants the current
        window or selection references it explicitly, e.g.
        ``WHERE sale_date BETWEEN {{startDate}} AND {{endDate}}`` or
        ``store_id IN ({{storeIds}})``. A ``FROM`` inside a function call
        such as ``EXTRACT(YEAR FROM sale_date)`` is not a table reference;
        parentheses inside string literals are not tracked.
        """
        raw = (metric.raw_query or "").strip().rstrip(";").strip()
        if not raw:
            raise CompileError(CompileErrorKind.INVALID_OVERRIDE, f"metric {metric.id!r} has an empty raw query")
        table_ref = table_reference(raw)
        if table_ref is None:
            raise CompileError(
                CompileErrorKind.INVALID_OVERRIDE,
                f"raw query of metric {metric.id!r} has no FROM clause",
            )
        dataset = self.resolve_dataset(metric.dataset_id)
        sql = f"{raw[:table_ref.start()]}FROM {dataset.table}{raw[table_ref.end():]}"

        row_limit = None
        if not _LIMIT_RE.search(sql):
            sql = f"{sql} LIMIT {OVERRIDE_ROW_LIMIT}"
            row_limit = OVERRIDE_ROW_LIMIT

        sql = self._fill_placeholders(metric, sql, context)
        logger.debug(f"Compiled override query for {metric.id}: {sql}")
        return QuerySpec(sql=sql, row_limit=row_limit, metric_id=metric.id, origin=QueryOrigin.OVERRIDE)

    @staticmethod
    def _fill_placeholders(metric: MetricDefinition, sql: str, context: Optional[FilterContext]) -> str:
        if not _PLACEHOLDER_RE.search(sql):
            return sql
        values = override_parameters(context) if context is not None else {}

        def substitute(match: "re.Match") -> str:
            name = match.group(1)
            if name not in OVERRIDE_PARAMETERS:
                raise CompileError(
                    CompileErrorKind.INVALID_OVERRIDE,
                    f"raw query of metric {metric.id!r} uses unknown parameter {{{{{name}}}}}",
                    {"parameter": name, "known": list(OVERRIDE_PARAMETERS)},
                )
            value = values.get(name)
            if value is None:
                raise CompileError(
                    CompileErrorKind.INVALID_OVERRIDE,
                    f"parameter {{{{{name}}}}} of metric {metric.id!r} has no value under the current filters",
                    {"parameter": name},
                )
            return value

        return _PLACEHOLDER_RE.sub(substitute, sql)

    # =========================================================================
    # Drill-down
    # =========================================================================

    def compile_drill_down(
        self,
        metric: MetricDefinition,
        context: FilterContext,
        refinement: DrillDownRefinement,
        *,
        scope: Optional[RowLevelScope] = None,
        limit: int = DRILL_DOWN_LIMIT,
    ) -> QuerySpec:
        """Raw rows under the current filters plus ``field = value``, capped at ``limit``."""
        dataset, conditions = self._drill_down_scope(metric, context, refinement, scope)
        sql = render("*", dataset.table, conditions, limit=limit)
        return QuerySpec(sql=sql, row_limit=limit, metric_id=metric.id, purpose=QueryPurpose.DRILL_DOWN)

    def compile_drill_down_count(
        self,
        metric: MetricDefinition,
        context: FilterContext,
        refinement: DrillDownRefinement,
        *,
        scope: Optional[RowLevelScope] = None,
    ) -> QuerySpec:
        dataset, conditions = self._drill_down_scope(metric, context, refinement, scope)
        sql = render("count(*) AS value", dataset.table, conditions)
        return QuerySpec(sql=sql, metric_id=metric.id, purpose=QueryPurpose.DRILL_DOWN_COUNT)

    def _drill_down_scope(self, metric, context, refinement, scope):
        dataset = self.resolve_dataset(metric.dataset_id)
        field = predicates.check_identifier(refinement.field, "drill-down field")
        conditions = self.where_conditions(metric, dataset, context, context.date_window(), scope=scope)
        conditions.append(predicates.equals(field, refinement.value))
        return dataset, conditions

    # =========================================================================
    # Target and sparkline
    # =========================================================================

    def compile_target(
        self,
        metric: MetricDefinition,
        context: FilterContext,
        *,
        scope: Optional[RowLevelScope] = None,
    ) -> Optional[QuerySpec]:
        """``sum(targetColumn)`` over the same filtered scope, or None without a target column."""
        if not metric.target_column:
            return None
        dataset = self.resolve_dataset(metric.dataset_id)
        conditions = self.where_conditions(metric, dataset, context, context.date_window(), scope=scope)
        sql = render(f"sum({metric.target_column}) AS value", dataset.table, conditions)
        return QuerySpec(sql=sql, metric_id=metric.id, purpose=QueryPurpose.TARGET)

    def compile_series(
        self,
        metric: MetricDefinition,
        context: FilterContext,
        *,
        scope: Optional[RowLevelScope] = None,
        points: int = SPARKLINE_POINTS,
    ) -> Optional[QuerySpec]:
        """Daily values for the last ``points`` days of the window, or None when not applicable."""
        if metric.use_raw_query or metric.is_list:
            return None
        dataset = self.resolve_dataset(metric.dataset_id)
        date_col = self.date_column(metric, dataset)
        if not date_col:
            return None
        window = context.date_window()
        end = window.end if window else context.today()
        series_window = DateWindow(end - timedelta(days=points - 1), end)
        conditions = self.where_conditions(metric, dataset, context, series_window, scope=scope)
        sql = render(
            f"{date_col} AS day, {aggregate_expression(metric)} AS value",
            dataset.table,
            conditions,
            group_by=date_col,
            order_by=f"{date_col} ASC",
        )
        return QuerySpec(sql=sql, row_limit=points, metric_id=metric.id, purpose=QueryPurpose.SERIES)
