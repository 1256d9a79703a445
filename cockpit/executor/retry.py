"""
Transparent retry for transient execution failures.

Only ``ConnectionFailure`` is retried. Timeouts and syntax errors surface
immediately.
"""
from typing import List

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_none

from cockpit.compiler.sql import QuerySpec
from cockpit.core.constants import EXECUTION_RETRIES
from cockpit.core.errors import ExecutionError
from cockpit.utils.log_utils import get_logger

from .base import QueryExecutor, Row

logger = get_logger(__name__)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ExecutionError) and error.retryable


class RetryingExecutor(QueryExecutor):

    def __init__(self, inner: QueryExecutor, retries: int = EXECUTION_RETRIES):
        self.inner = inner
        self.retries = retries

    async def execute(self, spec: QuerySpec) -> List[Row]:
        def log_retry(retry_state):
            error = retry_state.outcome.exception()
            logger.warning(
                f"Retrying {spec.purpose.value} query for {spec.metric_id} "
                f"after {error.kind.value} ({retry_state.attempt_number}/{self.retries})"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_none(),
            retry=retry_if_exception(_is_retryable),
            before_sleep=log_retry,
            reraise=True,
        )
        return await retrying(self.inner.execute, spec)

    async def close(self) -> None:
        await self.inner.close()
