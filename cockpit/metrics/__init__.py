"""Metric and dataset definitions plus the metric catalog."""
from .models import (
    Aggregation,
    ComparisonType,
    Dataset,
    FormatConfig,
    FormatType,
    MetricDefinition,
    MetricListItem,
    OrderDirection,
    PayloadKind,
    VisualizationType,
)
from .registry import MetricRegistry

__all__ = [
    "Aggregation",
    "ComparisonType",
    "Dataset",
    "FormatConfig",
    "FormatType",
    "MetricDefinition",
    "MetricListItem",
    "OrderDirection",
    "PayloadKind",
    "VisualizationType",
    "MetricRegistry",
]
