"""Widget data assembly, caching and dashboard refresh."""
from .widget_data import (
    ScalarWidgetData,
    SeriesPoint,
    SeriesWidgetData,
    TableWidgetData,
    TargetInfo,
    WidgetData,
    WidgetError,
    WIDGET_DATA_ADAPTER,
    widget_data_from_dict,
)
from .cache import MemoryCache, RedisCache, WidgetCache, cache_key, create_cache, dataset_prefix
from .assembler import WidgetDataAssembler, scalar_value
from .refresh import DashboardRefresher, RefreshResult

__all__ = [
    "ScalarWidgetData",
    "SeriesPoint",
    "SeriesWidgetData",
    "TableWidgetData",
    "TargetInfo",
    "WidgetData",
    "WidgetError",
    "WIDGET_DATA_ADAPTER",
    "widget_data_from_dict",
    "MemoryCache",
    "RedisCache",
    "WidgetCache",
    "cache_key",
    "dataset_prefix",
    "create_cache",
    "WidgetDataAssembler",
    "scalar_value",
    "DashboardRefresher",
    "RefreshResult",
]
