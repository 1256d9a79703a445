"""Analytical store executors."""
from typing import Optional

from cockpit.core.constants import DATABASE_URL

from .base import QueryExecutor, Row
from .clickhouse import ClickHouseExecutor
from .retry import RetryingExecutor
from .sqlalchemy_executor import SqlAlchemyExecutor, create_store_engine, load_dataframes


def create_executor(database_url: Optional[str] = None) -> QueryExecutor:
    """HTTP(S) URLs select the ClickHouse HTTP interface, anything else is a SQLAlchemy URL."""
    url = database_url or DATABASE_URL
    if url.startswith(("http://", "https://")):
        inner = ClickHouseExecutor(url=url)
    else:
        inner = SqlAlchemyExecutor(database_url=url)
    return RetryingExecutor(inner)


__all__ = [
    "QueryExecutor",
    "Row",
    "ClickHouseExecutor",
    "RetryingExecutor",
    "SqlAlchemyExecutor",
    "create_executor",
    "create_store_engine",
    "load_dataframes",
]
