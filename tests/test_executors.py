"""
Tests for the SQLAlchemy and ClickHouse executors and the retry wrapper.
"""
import asyncio
import json
import time
from datetime import date
from decimal import Decimal
from typing import List

import httpx
import pytest

from cockpit.compiler.sql import QuerySpec
from cockpit.core.errors import ExecutionError, ExecutionErrorKind
from cockpit.executor import create_executor
from cockpit.executor.base import QueryExecutor, Row, normalize_row
from cockpit.executor.clickhouse import ClickHouseExecutor
from cockpit.executor.retry import RetryingExecutor
from cockpit.executor.sqlalchemy_executor import SqlAlchemyExecutor


def _spec(sql="SELECT sum(net_amount) AS value FROM sales", row_limit=None):
    return QuerySpec(sql=sql, row_limit=row_limit, metric_id="net_sales")


class TestNormalization:

    def test_decimal_and_dates(self):
        row = normalize_row({"value": Decimal("12.50"), "day": date(2024, 3, 1), 1: "x"})
        assert row == {"value": 12.5, "day": "2024-03-01", "1": "x"}


class TestSqlAlchemyExecutor:

    def test_executes_against_sqlite(self, executor):
        rows = asyncio.run(executor.execute(_spec()))
        assert len(rows) == 1
        assert rows[0]["value"] > 0

    def test_row_limit(self, executor):
        rows = asyncio.run(executor.execute(_spec("SELECT * FROM sales", row_limit=7)))
        assert len(rows) == 7

    def test_syntax_error(self, executor):
        with pytest.raises(ExecutionError) as exc:
            asyncio.run(executor.execute(_spec("SELEC value FROM sales")))
        assert exc.value.kind == ExecutionErrorKind.QUERY_SYNTAX_ERROR
        assert not exc.value.retryable

    def test_unknown_table(self, executor):
        with pytest.raises(ExecutionError) as exc:
            asyncio.run(executor.execute(_spec("SELECT 1 FROM nowhere")))
        assert exc.value.kind == ExecutionErrorKind.QUERY_SYNTAX_ERROR

    def test_timeout(self, engine):
        """Should surface a slow query as Timeout."""

        class SlowExecutor(SqlAlchemyExecutor):
            def _run(self, spec, running=None):
                time.sleep(0.3)
                return super()._run(spec, running)

        slow = SlowExecutor(engine=engine, timeout=0.05)
        with pytest.raises(ExecutionError) as exc:
            asyncio.run(slow.execute(_spec()))
        assert exc.value.kind == ExecutionErrorKind.TIMEOUT

    def test_timed_out_statement_is_interrupted(self, engine):
        """Should stop a runaway statement so the next query still runs."""
        executor = SqlAlchemyExecutor(engine=engine, timeout=0.5)
        runaway = (
            "WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n WHERE x < 200000000) "
            "SELECT count(*) AS value FROM n"
        )

        async def scenario():
            with pytest.raises(ExecutionError) as exc:
                await executor.execute(_spec(runaway))
            assert exc.value.kind == ExecutionErrorKind.TIMEOUT
            return await executor.execute(_spec("SELECT 1 AS value"))

        assert asyncio.run(scenario()) == [{"value": 1}]

    def test_abandoned_query_never_starts(self, executor):
        from cockpit.executor.sqlalchemy_executor import _RunningQuery

        running = _RunningQuery()
        running.abandon()
        assert executor._run(_spec("SELECT 1 AS value"), running) == []

    def test_in_memory_database(self):
        executor = SqlAlchemyExecutor(database_url="sqlite:///:memory:")
        rows = asyncio.run(executor.execute(_spec("SELECT 1 AS value")))
        assert rows == [{"value": 1}]
        asyncio.run(executor.close())


def _clickhouse(handler) -> ClickHouseExecutor:
    return ClickHouseExecutor(
        url="http://clickhouse:8123/",
        database="analytics",
        user="cockpit",
        password="secret",
        transport=httpx.MockTransport(handler),
    )


class TestClickHouseExecutor:
    """Tests for the HTTP interface, using a mock transport."""

    def test_posts_sql_and_reads_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["sql"] = request.content.decode("utf-8")
            seen["params"] = dict(request.url.params)
            seen["user"] = request.headers["X-ClickHouse-User"]
            seen["key"] = request.headers["X-ClickHouse-Key"]
            body = {"meta": [], "data": [{"value": 2700, "label": "EGE"}, {"value": 10, "label": "MAR"}], "rows": 2}
            return httpx.Response(200, content=json.dumps(body))

        executor = _clickhouse(handler)
        rows = asyncio.run(executor.execute(_spec(row_limit=1)))
        assert rows == [{"value": 2700, "label": "EGE"}]
        assert seen["sql"] == "SELECT sum(net_amount) AS value FROM sales"
        assert seen["params"]["database"] == "analytics"
        assert seen["params"]["default_format"] == "JSON"
        assert seen["params"]["max_result_rows"] == "1"
        assert seen["params"]["result_overflow_mode"] == "break"
        assert seen["user"] == "cockpit"
        assert seen["key"] == "secret"
        asyncio.run(executor.close())

    def test_no_row_limit_params_without_limit(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json={"data": []})

        asyncio.run(_clickhouse(handler).execute(_spec()))
        assert "max_result_rows" not in seen

    def test_server_rejection_is_syntax_error(self):
        def handler(request):
            return httpx.Response(400, text="Code: 62. DB::Exception: Syntax error")

        with pytest.raises(ExecutionError) as exc:
            asyncio.run(_clickhouse(handler).execute(_spec()))
        assert exc.value.kind == ExecutionErrorKind.QUERY_SYNTAX_ERROR
        assert exc.value.details == {"status": 400}
        assert "Syntax error" in exc.value.message

    def test_exception_text_with_200_is_syntax_error(self):
        """Should classify a 200 response that carries exception text instead of JSON."""
        def handler(request):
            return httpx.Response(200, text="Code: 241. DB::Exception: Memory limit exceeded")

        with pytest.raises(ExecutionError) as exc:
            asyncio.run(_clickhouse(handler).execute(_spec()))
        assert exc.value.kind == ExecutionErrorKind.QUERY_SYNTAX_ERROR
        assert "Memory limit exceeded" in exc.value.message
        assert exc.value.details == {"status": 200}

    def test_gateway_error_is_connection_failure(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(ExecutionError) as exc:
            asyncio.run(_clickhouse(handler).execute(_spec()))
        assert exc.value.kind == ExecutionErrorKind.CONNECTION_FAILURE
        assert exc.value.retryable

    def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExecutionError) as exc:
            asyncio.run(_clickhouse(handler).execute(_spec()))
        assert exc.value.kind == ExecutionErrorKind.CONNECTION_FAILURE

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ExecutionError) as exc:
            asyncio.run(_clickhouse(handler).execute(_spec()))
        assert exc.value.kind == ExecutionErrorKind.TIMEOUT


class FlakyExecutor(QueryExecutor):

    def __init__(self, failures: int, kind=ExecutionErrorKind.CONNECTION_FAILURE):
        self.failures = failures
        self.kind = kind
        self.calls = 0

    async def execute(self, spec: QuerySpec) -> List[Row]:
        self.calls += 1
        if self.calls <= self.failures:
            raise ExecutionError(self.kind, "flaky")
        return [{"value": 1}]


class TestRetryingExecutor:

    def test_retries_connection_failure(self):
        inner = FlakyExecutor(failures=1)
        rows = asyncio.run(RetryingExecutor(inner, retries=1).execute(_spec()))
        assert rows == [{"value": 1}]
        assert inner.calls == 2

    def test_gives_up_after_retries(self):
        inner = FlakyExecutor(failures=3)
        with pytest.raises(ExecutionError):
            asyncio.run(RetryingExecutor(inner, retries=1).execute(_spec()))
        assert inner.calls == 2

    @pytest.mark.parametrize("kind", [ExecutionErrorKind.TIMEOUT, ExecutionErrorKind.QUERY_SYNTAX_ERROR])
    def test_does_not_retry_other_kinds(self, kind):
        inner = FlakyExecutor(failures=1, kind=kind)
        with pytest.raises(ExecutionError):
            asyncio.run(RetryingExecutor(inner, retries=3).execute(_spec()))
        assert inner.calls == 1


class TestCreateExecutor:

    def test_http_url_selects_clickhouse(self):
        executor = create_executor("http://clickhouse:8123")
        assert isinstance(executor, RetryingExecutor)
        assert isinstance(executor.inner, ClickHouseExecutor)
        asyncio.run(executor.close())

    def test_sqlalchemy_url(self):
        executor = create_executor("sqlite:///:memory:")
        assert isinstance(executor.inner, SqlAlchemyExecutor)
        assert executor.inner.engine.dialect.name == "sqlite"
