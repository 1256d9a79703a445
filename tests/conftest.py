"""
Shared fixtures: a seeded SQLite analytical store and a metric catalog.

Seeded data (2023-01-01 .. 2024-03-15, one row per store per day):
store n (1..5) sells n * factor, where factor is 8 in 2023, 10 in
Jan/Feb 2024 and 12 in March 2024. Daily totals: 120 / 150 / 180.
"""
import os
import sys
from datetime import date, timedelta

import pandas as pd
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cockpit.executor.sqlalchemy_executor import SqlAlchemyExecutor, create_store_engine, load_dataframes
from cockpit.filters.context import DimensionUniverse, FilterContext, OwnershipGroup, Region, Store
from cockpit.metrics.models import MetricDefinition
from cockpit.metrics.registry import MetricRegistry

REFERENCE_DATE = date(2024, 3, 15)

STORES = [
    Store("S1", "Alsancak", "EGE", "OWN", "İzmir"),
    Store("S2", "Bornova", "EGE", "FR", "İzmir"),
    Store("S3", "Manisa Merkez", "EGE", "OWN", "Manisa"),
    Store("S4", "Kadıköy", "MAR", "OWN", "İstanbul"),
    Store("S5", "Nilüfer", "MAR", "FR", "Bursa"),
]

# Comparable LFL days: 2024-03-04..08 paired with 364 days earlier.
LFL_DAYS = [date(2024, 3, 4) + timedelta(days=i) for i in range(5)]


def daily_factor(day: date) -> int:
    if day.year == 2023:
        return 8
    if day.month == 3:
        return 12
    return 10


def sales_frame() -> pd.DataFrame:
    records = []
    for ts in pd.date_range("2023-01-01", REFERENCE_DATE.isoformat(), freq="D"):
        day = ts.date()
        for n, store in enumerate(STORES, start=1):
            records.append({
                "sale_date": day.isoformat(),
                "store_id": store.id,
                "store_name": store.name,
                "region_code": store.region_code,
                "group_code": store.group_code,
                "city": store.city,
                "net_amount": float(n * daily_factor(day)),
                "quantity": 1,
                "target_amount": float(n * 10),
            })
    return pd.DataFrame.from_records(records)


def calendar_frame() -> pd.DataFrame:
    rows = [{"cur_date": d.isoformat(), "prior_date": (d - timedelta(days=364)).isoformat()} for d in LFL_DAYS]
    # Prior side has no data at all: never comparable.
    rows.append({"cur_date": "2024-03-09", "prior_date": "2022-03-12"})
    # Outside the March window.
    rows.append({"cur_date": "2024-04-01", "prior_date": "2023-04-03"})
    return pd.DataFrame.from_records(rows)


@pytest.fixture
def universe() -> DimensionUniverse:
    return DimensionUniverse.build(
        regions=[Region("EGE", "Ege"), Region("MAR", "Marmara")],
        groups=[OwnershipGroup("OWN", "Owned"), OwnershipGroup("FR", "Franchise")],
        stores=STORES,
    )


@pytest.fixture
def registry(universe) -> MetricRegistry:
    registry = MetricRegistry()
    registry.universe = universe
    registry.register_dataset({
        "id": "sales",
        "name": "Sales",
        "table": "sales",
        "dateColumn": "sale_date",
        "storeColumn": "store_id",
        "regionColumn": "region_code",
        "groupColumn": "group_code",
    })
    registry.register_dataset({"id": "lfl", "name": "LFL calendar", "table": "lfl_calendar"})
    registry.register_dataset({"id": "stock", "name": "Stock snapshot", "table": "stock"})
    return registry


@pytest.fixture
def make_metric():
    """Factory for metric definitions with sensible defaults."""
    def _make(**overrides) -> MetricDefinition:
        fields = {
            "id": "net_sales",
            "name": "net_sales",
            "label": "Net Sales",
            "datasetId": "sales",
            "column": "net_amount",
            "aggregation": "SUM",
        }
        fields.update(overrides)
        return MetricDefinition.model_validate(fields)

    return _make


@pytest.fixture
def context(universe) -> FilterContext:
    """thisMonth relative to 2024-03-15."""
    return FilterContext.build(universe=universe, reference_date=REFERENCE_DATE)


@pytest.fixture
def engine(tmp_path):
    engine = create_store_engine(f"sqlite:///{tmp_path / 'analytics.db'}")
    load_dataframes(engine, {"sales": sales_frame(), "lfl_calendar": calendar_frame()})
    yield engine
    engine.dispose()


@pytest.fixture
def executor(engine) -> SqlAlchemyExecutor:
    return SqlAlchemyExecutor(engine=engine)
