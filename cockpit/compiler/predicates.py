"""
Predicate helpers - turn filter context dimensions into SQL conditions.

Values are rendered as quoted literals rather than bound parameters: the
analytical store's HTTP interface takes a single SQL string, and the
compiled text doubles as the cache identity of a query.
"""
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from cockpit.core.errors import CompileError, CompileErrorKind
from cockpit.filters.context import FilterContext, RowLevelScope, ScopeLevel
from cockpit.filters.presets import DateWindow
from cockpit.metrics.models import Dataset
from cockpit.utils.log_utils import get_logger

logger = get_logger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def check_identifier(name: Optional[str], role: str = "field") -> str:
    """Reject anything that is not a plain (optionally qualified) column name."""
    if not name or not _IDENTIFIER_RE.match(name):
        raise CompileError(
            CompileErrorKind.INVALID_IDENTIFIER,
            f"{role} {name!r} is not a valid column identifier",
        )
    return name


def sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return f"'{value.strftime('%Y-%m-%d %H:%M:%S')}'"
    if isinstance(value, date):
        return f"'{value.isoformat()}'"
    text = str(value).replace("'", "''")
    return f"'{text}'"


def equals(column: str, value: Any) -> str:
    if value is None:
        return f"{column} IS NULL"
    return f"{column} = {sql_literal(value)}"


def in_list(column: str, values: Iterable[Any]) -> Optional[str]:
    """``column IN (...)``, or None for an empty set (never ``IN ()``)."""
    values = sorted(values, key=str)
    if not values:
        return None
    return f"{column} IN ({', '.join(sql_literal(v) for v in values)})"


def date_range(column: str, window: DateWindow) -> str:
    return f"{column} >= {sql_literal(window.start)} AND {column} <= {sql_literal(window.end)}"


def dimension_predicates(dataset: Dataset, context: FilterContext) -> List[str]:
    """
    Region, group and store predicates for one dataset.

    Unrestricted selections compile to nothing. A restricted selection on a
    dimension the dataset does not declare is skipped.
    """
    conditions = []
    for role, column, selection in (
        ("region", dataset.region_column, context.active_regions()),
        ("group", dataset.group_column, context.active_groups()),
        ("store", dataset.store_column, context.active_stores()),
    ):
        if selection is None:
            continue
        if not column:
            logger.debug(f"Dataset {dataset.id} has no {role} column; {role} filter skipped")
            continue
        condition = in_list(column, selection)
        if condition:
            conditions.append(condition)
    return conditions


_SCOPE_COLUMNS = {
    ScopeLevel.STORE: "store_column",
    ScopeLevel.REGION: "region_column",
    ScopeLevel.GROUP: "group_column",
}


def scope_predicate(dataset: Dataset, scope: Optional[RowLevelScope]) -> Optional[str]:
    """Mandatory row-level restriction. Fails closed when the dataset cannot express it."""
    if scope is None:
        return None
    level = ScopeLevel(scope.level)
    column = getattr(dataset, _SCOPE_COLUMNS[level])
    if not column:
        raise CompileError(
            CompileErrorKind.MISSING_COLUMN,
            f"dataset {dataset.id!r} declares no {level.value} column for row-level scope",
            {"dataset": dataset.id, "scope": scope.to_dict()},
        )
    return equals(column, scope.value)
