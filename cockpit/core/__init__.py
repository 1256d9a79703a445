"""Core configuration and error taxonomy."""
from .errors import (
    CockpitError,
    CompileError,
    CompileErrorKind,
    ComparisonError,
    ComparisonErrorKind,
    ExecutionError,
    ExecutionErrorKind,
    DrillDownError,
    CatalogError,
    CatalogErrorKind,
)

__all__ = [
    "CockpitError",
    "CompileError",
    "CompileErrorKind",
    "ComparisonError",
    "ComparisonErrorKind",
    "ExecutionError",
    "ExecutionErrorKind",
    "DrillDownError",
    "CatalogError",
    "CatalogErrorKind",
]
