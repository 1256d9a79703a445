"""
Query execution boundary: ``execute(QuerySpec) -> rows``.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List

from cockpit.compiler.sql import QuerySpec

Row = Dict[str, Any]


class QueryExecutor(ABC):
    """Runs compiled queries against the analytical store."""

    @abstractmethod
    async def execute(self, spec: QuerySpec) -> List[Row]:
        """Run ``spec`` and return at most ``spec.row_limit`` rows as dicts."""
        pass

    async def close(self) -> None:
        pass


def normalize_value(value: Any) -> Any:
    """JSON-friendly cell value."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def normalize_row(row: Dict[str, Any]) -> Row:
    return {str(k): normalize_value(v) for k, v in row.items()}
