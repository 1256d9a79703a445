"""
Error taxonomy for metric compilation, comparison, execution and drill-down.

Every error carries a machine-readable ``kind`` so the assembler can turn it
into a per-widget error marker and the API layer can map it to a status code.
"""
from enum import Enum
from typing import Any, Dict, Optional


class CompileErrorKind(str, Enum):
    UNKNOWN_DATASET = "UnknownDataset"
    MISSING_COLUMN = "MissingColumn"
    INVALID_OVERRIDE = "InvalidOverride"
    INVALID_IDENTIFIER = "InvalidIdentifier"


class ComparisonErrorKind(str, Enum):
    LFL_CONFIG_MISSING = "LFLConfigMissing"
    INVALID_PERIOD_SHIFT = "InvalidPeriodShift"


class ExecutionErrorKind(str, Enum):
    TIMEOUT = "Timeout"
    CONNECTION_FAILURE = "ConnectionFailure"
    QUERY_SYNTAX_ERROR = "QuerySyntaxError"


class DrillDownErrorKind(str, Enum):
    UNEXPECTED = "Unexpected"


class CatalogErrorKind(str, Enum):
    UNKNOWN_METRIC = "UnknownMetric"
    METRIC_IN_USE = "MetricInUse"


class CockpitError(Exception):
    """Base class for all domain errors."""

    family = "CockpitError"

    def __init__(self, kind: Enum, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family,
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class CompileError(CockpitError):
    family = "CompileError"


class ComparisonError(CockpitError):
    family = "ComparisonError"


class ExecutionError(CockpitError):
    family = "ExecutionError"

    @property
    def retryable(self) -> bool:
        # Syntax errors are configuration bugs; only transport failures are worth a retry.
        return self.kind == ExecutionErrorKind.CONNECTION_FAILURE


class DrillDownError(CockpitError):
    family = "DrillDownError"

    @classmethod
    def wrap(cls, error: CockpitError) -> "DrillDownError":
        wrapped = cls(error.kind, error.message, {"cause": error.family, **error.details})
        wrapped.__cause__ = error
        return wrapped

    @classmethod
    def unexpected(cls, error: Exception) -> "DrillDownError":
        wrapped = cls(DrillDownErrorKind.UNEXPECTED, str(error) or type(error).__name__, {"cause": type(error).__name__})
        wrapped.__cause__ = error
        return wrapped


class CatalogError(CockpitError):
    family = "CatalogError"
