"""
Widget Data Assembler - compile, execute and merge one widget's data.

Provides:
- resolve: one metric under one filter context -> WidgetData
- resolve_all: concurrent batch; a failing metric becomes a WidgetError in
  its own slot and never aborts its siblings

Per widget the primary query runs together with the optional comparison,
comparable-days, target and sparkline queries. Failures of optional
queries degrade the payload (logged at WARNING); only a primary failure
fails the widget. A comparison that cannot be planned also degrades to
the plain value with ``comparisonError`` set.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from cockpit.compiler.sql import QueryCompiler, QuerySpec
from cockpit.comparison.engine import ComparisonEngine, ComparisonPlan, has_sql_trend, merge_row_trends
from cockpit.core.constants import DEFAULT_CACHE_TTL
from cockpit.core.errors import CockpitError, ComparisonError
from cockpit.filters.context import FilterContext, RowLevelScope
from cockpit.filters.cross_filter import CrossFilterCoordinator
from cockpit.formatting import format_value, target_progress
from cockpit.metrics.models import MetricDefinition, PayloadKind
from cockpit.metrics.registry import MetricRegistry
from cockpit.executor.base import QueryExecutor, Row
from cockpit.utils.log_utils import elapsed_ms, get_logger

from .cache import MemoryCache, WidgetCache, cache_key
from .widget_data import (
    ScalarWidgetData,
    SeriesPoint,
    SeriesWidgetData,
    TableWidgetData,
    TargetInfo,
    WidgetError,
)

logger = get_logger(__name__)


def scalar_value(rows: List[Row]) -> Any:
    """``value`` of the first row, else its first column; None for no rows."""
    if not rows:
        return None
    first = rows[0]
    value = first["value"] if "value" in first else next(iter(first.values()), None)
    # Some drivers hand back decimals as text.
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return value
    return value


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def label_column_of(metric: MetricDefinition, rows: List[Row]) -> Optional[str]:
    if metric.group_by_column:
        return metric.group_by_column
    for column, value in (rows[0].items() if rows else ()):
        if column != "value" and not isinstance(value, (int, float)):
            return column
    return None


class WidgetDataAssembler:

    def __init__(
        self,
        registry: MetricRegistry,
        executor: QueryExecutor,
        cache: Optional[WidgetCache] = None,
        *,
        cross_filters: Optional[CrossFilterCoordinator] = None,
        apply_cross_filters: bool = False,
    ):
        self.registry = registry
        self.executor = executor
        self.cache = cache or MemoryCache()
        self.compiler = QueryCompiler(registry)
        self.comparisons = ComparisonEngine(self.compiler)
        self.cross_filters = cross_filters or CrossFilterCoordinator()
        # Cross-filters are recorded but not applied unless switched on.
        self.apply_cross_filters = apply_cross_filters

    def _cross_filters_for(self, widget_id: Optional[str]) -> List[Tuple[str, Any]]:
        if not self.apply_cross_filters:
            return []
        return self.cross_filters.as_predicates(widget_id)

    # =========================================================================
    # Single widget
    # =========================================================================

    async def resolve(
        self,
        metric: MetricDefinition,
        context: FilterContext,
        *,
        widget_id: Optional[str] = None,
        scope: Optional[RowLevelScope] = None,
    ):
        started = time.perf_counter()
        cross = self._cross_filters_for(widget_id)
        key = cache_key(metric, context, scope, cross)

        hit = await self.cache.get(key)
        if hit is not None:
            return hit.model_copy(update={"cached": True, "widget_id": widget_id})

        plan: Optional[ComparisonPlan] = None
        comparison_error: Optional[str] = None
        try:
            plan = self.comparisons.plan_comparison(metric, context, scope=scope, cross_filters=cross)
        except ComparisonError as e:
            logger.warning(f"Comparison for {metric.id} unavailable, showing plain value: {e}")
            comparison_error = e.kind.value

        kind = metric.visualization_type.payload_kind
        queries: Dict[str, Optional[QuerySpec]] = {
            "primary": plan.primary if plan else self.compiler.compile(
                metric, context, scope=scope, cross_filters=cross
            ),
        }
        if plan:
            queries["comparison"] = plan.comparison
            queries["days"] = plan.comparable_days
        if kind == PayloadKind.SCALAR:
            queries["target"] = self.compiler.compile_target(metric, context, scope=scope)
            if metric.visualization_type.wants_series:
                queries["series"] = self.compiler.compile_series(metric, context, scope=scope)

        results = await self._execute_all({name: q for name, q in queries.items() if q is not None})
        rows = results.pop("primary")
        if isinstance(rows, BaseException):
            raise rows

        optional: Dict[str, Optional[List[Row]]] = {}
        for name, result in results.items():
            if isinstance(result, CockpitError):
                logger.warning(f"{name} query for {metric.id} failed, degrading: {result}")
                if name in ("comparison", "days"):
                    comparison_error = result.kind.value
                optional[name] = None
            elif isinstance(result, BaseException):
                raise result
            else:
                optional[name] = result

        common = {
            "metric_id": metric.id,
            "widget_id": widget_id,
            "visualization_type": metric.visualization_type,
            "comparison_error": comparison_error,
        }
        if kind == PayloadKind.SCALAR:
            data = self._scalar(metric, rows, plan, optional, common)
        elif kind == PayloadKind.SERIES:
            data = SeriesWidgetData(
                value=rows,
                formatted=format_value(rows, metric.format_config),
                data=rows,
                label_column=label_column_of(metric, rows),
                **common,
            )
        else:
            rows = await self._with_row_trends(metric, context, rows, scope)
            data = TableWidgetData(
                value=rows,
                formatted=format_value(rows, metric.format_config),
                data=rows,
                columns=list(rows[0].keys()) if rows else metric.grid_columns,
                label_column=label_column_of(metric, rows),
                **common,
            )

        data.execution_time = elapsed_ms(started)
        ttl = metric.cache_ttl if metric.cache_ttl is not None else DEFAULT_CACHE_TTL
        await self.cache.set(key, data, ttl)
        return data

    async def _execute_all(self, queries: Dict[str, QuerySpec]) -> Dict[str, Any]:
        names = list(queries)
        results = await asyncio.gather(
            *(self.executor.execute(queries[name]) for name in names),
            return_exceptions=True,
        )
        return dict(zip(names, results))

    def _scalar(self, metric, rows, plan, optional, common) -> ScalarWidgetData:
        value = scalar_value(rows)
        numeric = _numeric(value)

        previous_value = trend = label = None
        comparison_rows = optional.get("comparison")
        if plan is not None and comparison_rows is not None:
            days_rows = optional.get("days")
            days = _numeric(scalar_value(days_rows)) if days_rows else None
            outcome = self.comparisons.outcome(
                plan,
                numeric,
                _numeric(scalar_value(comparison_rows)),
                int(days) if days is not None else None,
            )
            previous_value, trend, label = outcome.previous_value, outcome.trend, outcome.label

        target = None
        if metric.target_source == "column":
            target_rows = optional.get("target")
            target_value = _numeric(scalar_value(target_rows)) if target_rows else None
        else:
            target_value = metric.target_value
        progress = target_progress(numeric, target_value)
        if progress is not None:
            target = TargetInfo(value=target_value, progress=progress)

        series = None
        if optional.get("series") is not None:
            series = [
                SeriesPoint(date=str(row.get("day")), value=_numeric(row.get("value")))
                for row in optional["series"]
            ]

        return ScalarWidgetData(
            value=value,
            formatted=format_value(value, metric.format_config),
            previous_value=previous_value,
            trend=trend,
            comparison_label=label,
            target=target,
            series=series,
            **common,
        )

    async def _with_row_trends(self, metric, context, rows, scope) -> List[Row]:
        if not metric.auto_calculate_trend or not rows:
            return rows
        if has_sql_trend(rows):
            logger.debug(f"{metric.id} carries its own trend column; row trends skipped")
            return rows
        try:
            plan = self.comparisons.plan_row_trend(metric, context, scope=scope)
            if plan is None:
                return rows
            previous_rows = await self.executor.execute(plan.query)
        except CockpitError as e:
            logger.warning(f"Row trends for {metric.id} unavailable: {e}")
            return rows
        return merge_row_trends(rows, previous_rows, plan.label_column)

    # =========================================================================
    # Batch
    # =========================================================================

    async def resolve_all(
        self,
        metrics: Sequence[Union[MetricDefinition, str]],
        context: FilterContext,
        *,
        widget_ids: Optional[Sequence[Optional[str]]] = None,
        scope: Optional[RowLevelScope] = None,
    ) -> List:
        """
        Resolve every metric concurrently. Entries may be definitions or
        metric ids; results keep the input order.
        """
        widget_ids = list(widget_ids) if widget_ids is not None else [None] * len(metrics)
        return list(await asyncio.gather(*(
            self._resolve_safely(metric, context, widget_id, scope)
            for metric, widget_id in zip(metrics, widget_ids)
        )))

    async def _resolve_safely(self, metric, context, widget_id, scope):
        metric_id = metric if isinstance(metric, str) else metric.id
        visualization_type = None
        try:
            if isinstance(metric, str):
                metric = self.registry.get_metric(metric)
            visualization_type = metric.visualization_type
            return await self.resolve(metric, context, widget_id=widget_id, scope=scope)
        except CockpitError as e:
            logger.warning(f"Widget {widget_id or metric_id} failed: {e}")
            return WidgetError.from_error(e, metric_id, widget_id, visualization_type)
        except Exception as e:
            logger.exception(f"Unexpected error resolving {metric_id}: {e}")
            return WidgetError(
                metric_id=metric_id,
                widget_id=widget_id,
                visualization_type=visualization_type,
                error_family="InternalError",
                error_kind="Unexpected",
                message=str(e),
            )
