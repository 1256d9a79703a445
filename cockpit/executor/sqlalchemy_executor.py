"""
SQLAlchemy executor - any SQLAlchemy URL as the analytical store.

Blocking driver calls run in a worker thread and are bounded by the query
timeout; a timed-out statement is interrupted on its DBAPI connection so it
stops holding the store. In-memory SQLite shares one connection (StaticPool)
and is serialized with a lock, since the sqlite3 module is not safe for
concurrent use of one connection.
"""
import asyncio
import threading
import time
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ProgrammingError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from cockpit.compiler.sql import QuerySpec
from cockpit.core.constants import DATABASE_URL, QUERY_TIMEOUT
from cockpit.core.errors import ExecutionError, ExecutionErrorKind
from cockpit.utils.log_utils import elapsed_ms, get_logger

from .base import QueryExecutor, Row, normalize_row

logger = get_logger(__name__)

_SYNTAX_HINTS = (
    "syntax",
    "no such table",
    "no such column",
    "no such function",
    "unknown column",
    "does not exist",
    "ambiguous column",
    "misuse of aggregate",
)


def create_store_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    url = database_url or DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


def load_dataframes(engine: Engine, frames: Dict[str, pd.DataFrame], if_exists: str = "replace") -> None:
    """Seed tables from DataFrames (demo data, tests)."""
    for table, frame in frames.items():
        frame.to_sql(table, engine, index=False, if_exists=if_exists)
        logger.info(f"Loaded {len(frame)} rows into {table}")


def classify_error(error: SQLAlchemyError) -> ExecutionError:
    message = str(getattr(error, "orig", None) or error)
    if isinstance(error, ProgrammingError) or any(hint in message.lower() for hint in _SYNTAX_HINTS):
        kind = ExecutionErrorKind.QUERY_SYNTAX_ERROR
    else:
        # Driver-level failures without a syntax signature: lost connection, locked db, ...
        kind = ExecutionErrorKind.CONNECTION_FAILURE
    return ExecutionError(kind, message)


class _RunningQuery:
    """
    The DBAPI connection a worker thread is executing on, so a timed-out
    caller can interrupt the statement instead of leaving it to run.
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._connection = None
        self.abandoned = False

    def attach(self, dbapi_connection) -> bool:
        """False when the caller already gave up; the statement must not start."""
        with self._mutex:
            if self.abandoned:
                return False
            self._connection = dbapi_connection
            return True

    def detach(self) -> None:
        with self._mutex:
            self._connection = None

    def abandon(self) -> None:
        with self._mutex:
            self.abandoned = True
            connection = self._connection
            if connection is None:
                return
            # sqlite3 exposes interrupt(), psycopg2 and most server drivers cancel().
            cancel = getattr(connection, "interrupt", None) or getattr(connection, "cancel", None)
            if cancel is None:
                logger.warning(f"{type(connection).__name__} cannot cancel a running statement")
                return
            try:
                cancel()
            except Exception as e:
                logger.warning(f"Interrupting a timed-out statement failed: {e}")


class SqlAlchemyExecutor(QueryExecutor):

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        timeout: float = QUERY_TIMEOUT,
    ):
        self.engine = engine or create_store_engine(database_url)
        self.timeout = timeout
        self._lock = threading.Lock() if self.engine.dialect.name == "sqlite" else None

    async def execute(self, spec: QuerySpec) -> List[Row]:
        started = time.perf_counter()
        running = _RunningQuery()
        try:
            rows = await asyncio.wait_for(asyncio.to_thread(self._run, spec, running), timeout=self.timeout)
        except asyncio.TimeoutError:
            running.abandon()
            raise ExecutionError(
                ExecutionErrorKind.TIMEOUT,
                f"{spec.purpose.value} query for {spec.metric_id} exceeded {self.timeout}s",
            )
        except SQLAlchemyError as e:
            error = classify_error(e)
            logger.warning(f"Query for {spec.metric_id} failed ({error.kind.value}): {error.message}")
            raise error from e
        logger.debug(f"{spec.purpose.value} query for {spec.metric_id}: {len(rows)} rows in {elapsed_ms(started)}ms")
        return rows

    def _run(self, spec: QuerySpec, running: Optional[_RunningQuery] = None) -> List[Row]:
        running = running or _RunningQuery()
        if self._lock is not None and not self._lock.acquire(timeout=self.timeout):
            raise ExecutionError(
                ExecutionErrorKind.TIMEOUT,
                f"{spec.purpose.value} query for {spec.metric_id} waited {self.timeout}s for the store",
            )
        try:
            with self.engine.connect() as conn:
                if not running.attach(conn.connection.dbapi_connection):
                    return []
                try:
                    result = conn.exec_driver_sql(spec.sql)
                    raw = result.fetchmany(spec.row_limit) if spec.row_limit else result.fetchall()
                    return [normalize_row(dict(row._mapping)) for row in raw]
                finally:
                    running.detach()
        finally:
            if self._lock is not None:
                self._lock.release()

    async def close(self) -> None:
        self.engine.dispose()
