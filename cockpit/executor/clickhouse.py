"""
ClickHouse executor - the analytical store over its HTTP interface.

The compiled SQL is POSTed as the request body; results come back in
``FORMAT JSON`` (``{"meta": [...], "data": [...], "rows": n}``).
"""
import time
from typing import List, Optional

import httpx

from cockpit.compiler.sql import QuerySpec
from cockpit.core.constants import (
    CLICKHOUSE_DATABASE,
    CLICKHOUSE_PASSWORD,
    CLICKHOUSE_URL,
    CLICKHOUSE_USER,
    QUERY_TIMEOUT,
)
from cockpit.core.errors import ExecutionError, ExecutionErrorKind
from cockpit.utils.log_utils import elapsed_ms, get_logger

from .base import QueryExecutor, Row, normalize_row

logger = get_logger(__name__)

# Gateway statuses mean the server never ran the query.
_TRANSIENT_STATUSES = {502, 503, 504}


class ClickHouseExecutor(QueryExecutor):

    def __init__(
        self,
        url: str = CLICKHOUSE_URL,
        database: str = CLICKHOUSE_DATABASE,
        user: str = CLICKHOUSE_USER,
        password: str = CLICKHOUSE_PASSWORD,
        timeout: float = QUERY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.database = database
        self.timeout = timeout
        headers = {"X-ClickHouse-User": user}
        if password:
            headers["X-ClickHouse-Key"] = password
        self._client = httpx.AsyncClient(
            base_url=self.url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def _params(self, spec: QuerySpec) -> dict:
        params = {
            "database": self.database,
            "default_format": "JSON",
            "output_format_json_quote_64bit_integers": "0",
        }
        if spec.row_limit:
            params["max_result_rows"] = str(spec.row_limit)
            params["result_overflow_mode"] = "break"
        return params

    async def execute(self, spec: QuerySpec) -> List[Row]:
        started = time.perf_counter()
        try:
            response = await self._client.post("/", content=spec.sql.encode("utf-8"), params=self._params(spec))
        except httpx.TimeoutException as e:
            raise ExecutionError(
                ExecutionErrorKind.TIMEOUT,
                f"{spec.purpose.value} query for {spec.metric_id} exceeded {self.timeout}s",
            ) from e
        except httpx.TransportError as e:
            raise ExecutionError(
                ExecutionErrorKind.CONNECTION_FAILURE,
                f"ClickHouse at {self.url} unreachable: {e}",
            ) from e

        if response.status_code in _TRANSIENT_STATUSES:
            raise ExecutionError(
                ExecutionErrorKind.CONNECTION_FAILURE,
                f"ClickHouse returned HTTP {response.status_code}",
            )
        if response.status_code >= 400:
            message = response.text.strip()[:500]
            logger.warning(f"Query for {spec.metric_id} rejected: HTTP {response.status_code} {message}")
            raise ExecutionError(
                ExecutionErrorKind.QUERY_SYNTAX_ERROR,
                message or f"HTTP {response.status_code}",
                {"status": response.status_code},
            )

        # ClickHouse can answer 200 with exception text once it has started streaming.
        try:
            payload = response.json()
        except ValueError as e:
            message = response.text.strip()[:500]
            logger.warning(f"Query for {spec.metric_id} returned a non-JSON body: {message}")
            raise ExecutionError(
                ExecutionErrorKind.QUERY_SYNTAX_ERROR,
                message or "empty response body",
                {"status": response.status_code},
            ) from e

        data = payload.get("data", []) if isinstance(payload, dict) else []
        if spec.row_limit:
            data = data[:spec.row_limit]
        logger.debug(f"{spec.purpose.value} query for {spec.metric_id}: {len(data)} rows in {elapsed_ms(started)}ms")
        return [normalize_row(row) for row in data]

    async def close(self) -> None:
        await self._client.aclose()
