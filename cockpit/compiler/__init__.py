"""Metric -> SQL compilation."""
from .sql import (
    DrillDownRefinement,
    QueryCompiler,
    QueryOrigin,
    QueryPurpose,
    QuerySpec,
    aggregate_expression,
)

__all__ = [
    "DrillDownRefinement",
    "QueryCompiler",
    "QueryOrigin",
    "QueryPurpose",
    "QuerySpec",
    "aggregate_expression",
]
