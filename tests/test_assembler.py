"""
End-to-end widget assembly against the seeded SQLite store.

Reference numbers (thisMonth = 2024-03-01..15, daily total 180):
- net sales 2700, February 1..15 = 2250, March 2023 1..15 = 1800
- store n sells 180 * n in the window
"""
import asyncio
import fnmatch
from datetime import date, timedelta
from typing import List

import pandas as pd
import pytest

from cockpit.assembler.assembler import WidgetDataAssembler, scalar_value
from cockpit.assembler.cache import MemoryCache, RedisCache, cache_key, dataset_prefix
from cockpit.assembler.widget_data import (
    ScalarWidgetData,
    SeriesWidgetData,
    TableWidgetData,
    WidgetError,
)
from cockpit.compiler.sql import QueryPurpose, QuerySpec
from cockpit.core.errors import ExecutionError, ExecutionErrorKind
from cockpit.executor.base import QueryExecutor, Row
from cockpit.executor.sqlalchemy_executor import load_dataframes
from cockpit.filters.context import DateMode, FilterContext, RowLevelScope, ScopeLevel
from cockpit.filters.cross_filter import CrossFilter, CrossFilterCoordinator

from conftest import LFL_DAYS, REFERENCE_DATE

LFL_CONFIG = {
    "lflCalendarDatasetId": "lfl",
    "lflCurrentPeriodColumn": "cur_date",
    "lflPriorPeriodColumn": "prior_date",
}

RANKING_SQL = (
    "SELECT store_name, SUM(net_amount) AS value FROM sales "
    "WHERE sale_date >= '2024-03-01' AND sale_date <= '2024-03-15' "
    "GROUP BY store_name ORDER BY value DESC"
)


class RecordingExecutor(QueryExecutor):
    """Delegates to a real executor and records every spec it runs."""

    def __init__(self, inner: QueryExecutor, fail_on=(), error=None):
        self.inner = inner
        self.fail_on = set(fail_on)
        self.error = error or ExecutionError(ExecutionErrorKind.QUERY_SYNTAX_ERROR, "rejected")
        self.specs: List[QuerySpec] = []

    async def execute(self, spec: QuerySpec) -> List[Row]:
        self.specs.append(spec)
        if spec.purpose in self.fail_on:
            raise self.error
        return await self.inner.execute(spec)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def recording(executor):
    return RecordingExecutor(executor)


@pytest.fixture
def assembler(registry, recording):
    return WidgetDataAssembler(registry, recording, MemoryCache())


class TestScalarValue:

    def test_value_column_preferred(self):
        assert scalar_value([{"x": 1, "value": 2}]) == 2

    def test_first_column_fallback(self):
        assert scalar_value([{"total": 7}]) == 7

    def test_numeric_text(self):
        assert scalar_value([{"value": "12.50"}]) == 12.5

    def test_no_rows(self):
        assert scalar_value([]) is None


class TestScalarWidgets:
    """Tests for kpi cards and other single-value widgets."""

    def test_month_over_month(self, assembler, make_metric, context):
        """Should merge current, previous and trend for a MoM KPI."""
        metric = make_metric(
            comparisonEnabled=True, comparisonType="mom",
            formatConfig={"type": "currency", "prefix": "₺"},
        )
        data = run(assembler.resolve(metric, context, widget_id="kpi"))
        assert isinstance(data, ScalarWidgetData)
        assert data.value == 2700
        assert data.previous_value == 2250
        assert data.trend == pytest.approx(20.0)
        assert data.comparison_label == "vs last month"
        assert data.formatted == "₺2,700.00"
        assert data.widget_id == "kpi"
        assert data.comparison_error is None

    def test_year_over_year(self, assembler, make_metric, context):
        data = run(assembler.resolve(make_metric(comparisonEnabled=True), context))
        assert data.previous_value == 1800
        assert data.trend == pytest.approx(50.0)

    def test_region_filter(self, assembler, make_metric, universe):
        context = FilterContext.build(region_codes=["EGE"], universe=universe, reference_date=REFERENCE_DATE)
        data = run(assembler.resolve(make_metric(), context))
        assert data.value == 1080

    def test_previous_zero_gives_no_trend(self, assembler, make_metric, universe):
        """Should leave trend empty when there is nothing to compare against."""
        context = FilterContext.build(
            DateMode.custom(date(2023, 1, 1), date(2023, 1, 10)),
            universe=universe, reference_date=REFERENCE_DATE,
        )
        metric = make_metric(aggregation="COUNT", column=None, comparisonEnabled=True)
        data = run(assembler.resolve(metric, context))
        assert data.value == 50
        assert data.previous_value == 0
        assert data.trend is None

    def test_no_comparison_leaves_trend_empty(self, assembler, make_metric, context):
        data = run(assembler.resolve(make_metric(), context))
        assert data.trend is None
        assert data.previous_value is None
        assert data.comparison_label is None

    def test_like_for_like(self, assembler, make_metric, context):
        """Should compare only calendar days with data on both sides."""
        metric = make_metric(comparisonEnabled=True, comparisonType="lfl", **LFL_CONFIG)
        data = run(assembler.resolve(metric, context))
        assert data.value == 900
        assert data.previous_value == 600
        assert data.trend == pytest.approx(50.0)
        assert data.comparison_label == "LFL (5 days)"

    def test_like_for_like_ignores_unmatched_stores(self, assembler, registry, engine, make_metric, context):
        """Should leave out a store that only has data on one side of the comparison."""
        opened = [
            {"sale_date": day.isoformat(), "store_id": "S6", "region_code": "EGE", "group_code": "OWN", "net_amount": 1000.0}
            for day in LFL_DAYS
        ]
        closed = [
            {"sale_date": (day - timedelta(days=364)).isoformat(), "store_id": "S7",
             "region_code": "MAR", "group_code": "FR", "net_amount": 500.0}
            for day in LFL_DAYS
        ]
        load_dataframes(engine, {"sales": pd.DataFrame.from_records(opened + closed)}, if_exists="append")

        data = run(assembler.resolve(make_metric(comparisonEnabled=True, comparisonType="lfl", **LFL_CONFIG), context))
        assert data.value == 900
        assert data.previous_value == 600
        assert data.comparison_label == "LFL (5 days)"

        registry.register_dataset({"id": "daily", "name": "Daily sales", "table": "sales", "dateColumn": "sale_date"})
        by_day = run(assembler.resolve(
            make_metric(datasetId="daily", comparisonEnabled=True, comparisonType="lfl", **LFL_CONFIG), context,
        ))
        assert by_day.value == 5900
        assert by_day.previous_value == 3100

    def test_target_column(self, assembler, make_metric, context):
        data = run(assembler.resolve(make_metric(targetColumn="target_amount", targetValue=1), context))
        assert data.target.value == 2250
        assert data.target.progress == 100

    def test_target_value(self, assembler, make_metric, context):
        data = run(assembler.resolve(make_metric(targetValue=5400, visualizationType="gauge"), context))
        assert data.target.value == 5400
        assert data.target.progress == 50

    def test_sparkline_series(self, assembler, make_metric, context):
        data = run(assembler.resolve(make_metric(visualizationType="sparkline"), context))
        assert len(data.series) == 12
        assert data.series[0].date == "2024-03-04"
        assert data.series[-1].date == "2024-03-15"
        assert {p.value for p in data.series} == {180}

    def test_kpi_has_no_series(self, assembler, make_metric, context):
        data = run(assembler.resolve(make_metric(), context))
        assert data.series is None

    def test_row_level_scope(self, assembler, make_metric, context):
        data = run(assembler.resolve(make_metric(), context, scope=RowLevelScope(ScopeLevel.REGION, "MAR")))
        assert data.value == 1620


class TestDegradation:
    """Tests for optional query failures."""

    def test_failed_comparison_keeps_value(self, registry, executor, make_metric, context):
        recording = RecordingExecutor(executor, fail_on={QueryPurpose.COMPARISON})
        assembler = WidgetDataAssembler(registry, recording)
        data = run(assembler.resolve(make_metric(comparisonEnabled=True), context))
        assert data.value == 2700
        assert data.trend is None
        assert data.comparison_error == "QuerySyntaxError"

    def test_unplannable_comparison_keeps_value(self, assembler, make_metric, universe):
        context = FilterContext.build(DateMode.all_time(), universe=universe, reference_date=REFERENCE_DATE)
        data = run(assembler.resolve(make_metric(comparisonEnabled=True, comparisonType="mom"), context))
        assert data.value is not None
        assert data.trend is None
        assert data.comparison_error == "InvalidPeriodShift"

    def test_missing_lfl_config_keeps_value(self, assembler, make_metric, context):
        data = run(assembler.resolve(make_metric(comparisonEnabled=True, comparisonType="lfl"), context))
        assert data.value == 2700
        assert data.comparison_error == "LFLConfigMissing"

    def test_failed_target_drops_target(self, registry, executor, make_metric, context):
        recording = RecordingExecutor(executor, fail_on={QueryPurpose.TARGET})
        assembler = WidgetDataAssembler(registry, recording)
        data = run(assembler.resolve(make_metric(targetColumn="target_amount"), context))
        assert data.value == 2700
        assert data.target is None
        assert data.comparison_error is None

    def test_failed_primary_raises(self, registry, executor, make_metric, context):
        recording = RecordingExecutor(executor, fail_on={QueryPurpose.PRIMARY})
        assembler = WidgetDataAssembler(registry, recording)
        with pytest.raises(ExecutionError):
            run(assembler.resolve(make_metric(), context))


class TestTabularWidgets:

    def test_ranking_with_row_trends(self, assembler, make_metric, context):
        metric = make_metric(
            groupByColumn="store_name", limit=5,
            visualizationType="ranking_list", autoCalculateTrend=True,
        )
        data = run(assembler.resolve(metric, context))
        assert isinstance(data, TableWidgetData)
        assert [r["store_name"] for r in data.data] == ["Nilüfer", "Kadıköy", "Manisa Merkez", "Bornova", "Alsancak"]
        assert [r["value"] for r in data.data] == [900, 720, 540, 360, 180]
        assert {r["trend"] for r in data.data} == {20.0}
        assert data.label_column == "store_name"
        assert data.formatted == "5 rows"
        assert data.trend is None

    def test_yoy_row_trends(self, assembler, make_metric, context):
        metric = make_metric(
            groupByColumn="store_name", visualizationType="ranking_list",
            autoCalculateTrend=True, trendComparisonType="yoy",
        )
        data = run(assembler.resolve(metric, context))
        assert {r["trend"] for r in data.data} == {50.0}

    def test_override_ranking_row_trends(self, assembler, make_metric, context):
        metric = make_metric(
            useRawQuery=True, rawQuery=RANKING_SQL,
            visualizationType="ranking_list", autoCalculateTrend=True,
        )
        data = run(assembler.resolve(metric, context))
        assert data.data[0] == {"store_name": "Nilüfer", "value": 900, "trend": 20.0}

    def test_sql_trend_column_is_kept(self, assembler, make_metric, context, recording):
        metric = make_metric(
            useRawQuery=True,
            rawQuery="SELECT store_name, SUM(net_amount) AS value, 1.5 AS growth FROM sales GROUP BY store_name",
            visualizationType="ranking_list", autoCalculateTrend=True,
        )
        data = run(assembler.resolve(metric, context))
        assert "trend" not in data.data[0]
        assert data.data[0]["growth"] == 1.5
        assert QueryPurpose.ROW_TREND not in {s.purpose for s in recording.specs}

    def test_bar_chart(self, assembler, make_metric, context):
        metric = make_metric(groupByColumn="region_code", visualizationType="bar_chart")
        data = run(assembler.resolve(metric, context))
        assert isinstance(data, SeriesWidgetData)
        assert data.data == [{"value": 1620, "region_code": "MAR"}, {"value": 1080, "region_code": "EGE"}]
        assert data.value == data.data
        assert data.label_column == "region_code"

    def test_data_grid(self, assembler, make_metric, context):
        metric = make_metric(
            aggregation="LIST", visualizationType="data_grid", orderByColumn="sale_date",
            chartConfig={"gridColumns": ["sale_date", "store_name", "net_amount"]},
        )
        data = run(assembler.resolve(metric, context))
        assert len(data.data) == 75
        assert data.columns == ["sale_date", "store_name", "net_amount"]
        assert data.data[0]["sale_date"] == "2024-03-15"


class TestCaching:

    def test_second_resolve_is_cached(self, assembler, make_metric, context, recording):
        metric = make_metric(comparisonEnabled=True)
        first = run(assembler.resolve(metric, context, widget_id="a"))
        executed = len(recording.specs)
        second = run(assembler.resolve(metric, context, widget_id="b"))
        assert first.cached is False
        assert second.cached is True
        assert second.widget_id == "b"
        assert second.value == first.value
        assert len(recording.specs) == executed

    def test_different_filters_miss(self, assembler, make_metric, context, universe, recording):
        run(assembler.resolve(make_metric(), context))
        other = FilterContext.build(region_codes=["EGE"], universe=universe, reference_date=REFERENCE_DATE)
        data = run(assembler.resolve(make_metric(), other))
        assert data.cached is False
        assert data.value == 1080

    def test_edited_metric_misses(self, assembler, make_metric, context):
        run(assembler.resolve(make_metric(), context))
        data = run(assembler.resolve(make_metric(filterExpression="store_id = 'S5'"), context))
        assert data.cached is False
        assert data.value == 900

    def test_zero_ttl_is_not_cached(self, assembler, make_metric, context):
        run(assembler.resolve(make_metric(cacheTtl=0), context))
        data = run(assembler.resolve(make_metric(cacheTtl=0), context))
        assert data.cached is False

    def test_keys_carry_the_dataset(self, make_metric, context):
        key = cache_key(make_metric(), context)
        assert key.startswith(dataset_prefix("sales") + "metric:net_sales:")

    def test_override_keys_follow_placeholder_values(self, make_metric, context):
        """Should not share a cached override between different windows."""
        metric = make_metric(
            useRawQuery=True,
            rawQuery="SELECT sum(net_amount) AS value FROM sales WHERE sale_date >= {{startDate}}",
        )
        february = context.with_date_mode(DateMode.custom(date(2024, 2, 1), date(2024, 2, 15)))
        assert cache_key(metric, context) != cache_key(metric, february)

    def test_clear_by_dataset_prefix(self):
        cache = MemoryCache()
        payload = ScalarWidgetData(metric_id="m", value=1)
        for key in ("dataset:sales:metric:a:1", "dataset:sales:metric:b:2", "dataset:sales_copy:metric:c:3"):
            run(cache.set(key, payload, 60))
        assert run(cache.clear(dataset_prefix("sales"))) == 2
        assert len(cache) == 1
        assert run(cache.clear()) == 1
        assert len(cache) == 0


class FakeRedis:
    """The slice of redis.asyncio.Redis that RedisCache uses, keys matched with fnmatch."""

    def __init__(self):
        self.store = {}
        self.patterns = []

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def get(self, key):
        return self.store.get(key)

    async def scan_iter(self, match):
        self.patterns.append(match)
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0


class TestRedisCache:

    def test_round_trip_and_prefix_clear(self):
        client = FakeRedis()
        cache = RedisCache(prefix="cockpit:", client=client)
        payload = ScalarWidgetData(metric_id="net_sales", value=2700, formatted="2,700")
        run(cache.set("dataset:sales:metric:net_sales:x", payload, 60))
        run(cache.set("dataset:stock:metric:qty:y", payload, 60))

        restored = run(cache.get("dataset:sales:metric:net_sales:x"))
        assert restored.value == 2700
        assert run(cache.clear(dataset_prefix("sales"))) == 1
        assert client.patterns[-1] == "cockpit:dataset:sales:*"
        assert list(client.store) == ["cockpit:dataset:stock:metric:qty:y"]

    def test_clear_escapes_glob_characters(self):
        client = FakeRedis()
        cache = RedisCache(prefix="cockpit:", client=client)
        run(cache.clear(dataset_prefix("sales[1]*")))
        assert client.patterns == [r"cockpit:dataset:sales\[1\]\*:*"]


class TestCrossFilters:

    def _assembler(self, registry, executor, apply):
        coordinator = CrossFilterCoordinator()
        coordinator.add(CrossFilter("map", "city", "İzmir"))
        return WidgetDataAssembler(registry, executor, cross_filters=coordinator, apply_cross_filters=apply)

    def test_inert_by_default(self, registry, executor, make_metric, context):
        """Should record cross-filters without changing sibling queries."""
        assembler = self._assembler(registry, executor, apply=False)
        data = run(assembler.resolve(make_metric(), context, widget_id="kpi"))
        assert data.value == 2700

    def test_applied_to_siblings(self, registry, executor, make_metric, context):
        assembler = self._assembler(registry, executor, apply=True)
        sibling = run(assembler.resolve(make_metric(), context, widget_id="kpi"))
        origin = run(assembler.resolve(make_metric(), context, widget_id="map"))
        assert sibling.value == 540
        assert origin.value == 2700


class TestBatch:
    """Tests for isolated, concurrent batch resolution."""

    def test_failures_stay_in_their_slot(self, assembler, registry, make_metric, context):
        registry.register_metric(make_metric())
        broken = make_metric(id="broken", column="no_such_column")
        orphan = make_metric(id="orphan", datasetId="missing")
        results = run(assembler.resolve_all(
            ["net_sales", broken, "unknown_metric", orphan],
            context,
            widget_ids=["w1", "w2", "w3", "w4"],
        ))
        assert results[0].value == 2700
        assert isinstance(results[1], WidgetError)
        assert results[1].error_kind == "QuerySyntaxError"
        assert results[1].widget_id == "w2"
        assert results[2].error_family == "CatalogError"
        assert results[2].error_kind == "UnknownMetric"
        assert results[3].error_family == "CompileError"
        assert results[3].error_kind == "UnknownDataset"

    def test_one_compile_error_in_five(self, assembler, make_metric, context):
        """Should return four payloads and one error marker in the third slot."""
        metrics = [make_metric(id=f"m{n}", filterExpression=f"store_id = 'S{n}'") for n in range(1, 6)]
        metrics[2] = make_metric(id="m3", datasetId="missing")
        results = run(assembler.resolve_all(metrics, context))
        assert [r.kind for r in results] == ["scalar", "scalar", "error", "scalar", "scalar"]
        assert results[2].error_kind == "UnknownDataset"
        assert results[4].value == 900

    def test_unexpected_errors_are_contained(self, registry, executor, make_metric, context):
        recording = RecordingExecutor(executor, fail_on={QueryPurpose.PRIMARY}, error=RuntimeError("boom"))
        assembler = WidgetDataAssembler(registry, recording)
        [result] = run(assembler.resolve_all([make_metric()], context))
        assert result.error_family == "InternalError"
        assert result.message == "boom"

    def test_order_is_preserved(self, assembler, make_metric, context):
        metrics = [make_metric(id=f"m{n}", filterExpression=f"store_id = 'S{n}'") for n in range(1, 6)]
        results = run(assembler.resolve_all(metrics, context))
        assert [r.metric_id for r in results] == ["m1", "m2", "m3", "m4", "m5"]
        assert [r.value for r in results] == [180, 360, 540, 720, 900]

    def test_error_payload_serializes(self, assembler, make_metric, context):
        [result] = run(assembler.resolve_all([make_metric(datasetId="missing")], context, widget_ids=["w9"]))
        payload = result.to_dict()
        assert payload["kind"] == "error"
        assert payload["widgetId"] == "w9"
        assert payload["errorKind"] == "UnknownDataset"
