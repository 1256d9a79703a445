"""
Drill-Down Coordinator - the single row-level detail view.

State machine::

    CLOSED -> OPENING(request) -> LOADED(result) | FAILED(error) -> CLOSED

``open()`` flips to OPENING synchronously, before any I/O, so the modal
shell can render at once. Opening again replaces the current drill-down;
each open gets a token and a load that finishes under a stale token is
dropped. ``close()`` cancels the in-flight load. Drill-down state is
independent of the dashboard refresh cycle.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from cockpit.compiler.sql import DrillDownRefinement, QueryCompiler
from cockpit.core.constants import DRILL_DOWN_LIMIT
from cockpit.core.errors import CockpitError, DrillDownError
from cockpit.executor.base import QueryExecutor
from cockpit.filters.context import FilterContext, RowLevelScope
from cockpit.metrics.models import MetricDefinition
from cockpit.metrics.registry import MetricRegistry
from cockpit.utils.log_utils import elapsed_ms, get_logger

logger = get_logger(__name__)


class DrillDownPhase(str, Enum):
    CLOSED = "closed"
    OPENING = "opening"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True)
class DrillDownRequest:
    widget_id: str
    metric_id: str
    field: str
    value: Any
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "widgetId": self.widget_id,
            "metricId": self.metric_id,
            "field": self.field,
            "value": self.value,
            "label": self.label,
        }


@dataclass
class DrillDownResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    truncated: bool = False
    total: Optional[int] = None
    execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "columns": self.columns,
            "truncated": self.truncated,
            "total": self.total,
            "executionTime": self.execution_time,
        }


@dataclass(frozen=True)
class DrillDownState:
    phase: DrillDownPhase = DrillDownPhase.CLOSED
    request: Optional[DrillDownRequest] = None
    result: Optional[DrillDownResult] = None
    error: Optional[DrillDownError] = None

    @property
    def loading(self) -> bool:
        return self.phase == DrillDownPhase.OPENING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "loading": self.loading,
            "request": self.request.to_dict() if self.request else None,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error.to_dict() if self.error else None,
        }


async def fetch_drill_down(
    compiler: QueryCompiler,
    executor: QueryExecutor,
    metric: MetricDefinition,
    context: FilterContext,
    request: DrillDownRequest,
    *,
    scope: Optional[RowLevelScope] = None,
    limit: int = DRILL_DOWN_LIMIT,
) -> DrillDownResult:
    """Rows matching ``field = value`` under ``context``, capped at ``limit``."""
    started = time.perf_counter()
    refinement = DrillDownRefinement(request.field, request.value)
    try:
        rows_query = compiler.compile_drill_down(metric, context, refinement, scope=scope, limit=limit)
        count_query = compiler.compile_drill_down_count(metric, context, refinement, scope=scope)
        rows, count_rows = await asyncio.gather(
            executor.execute(rows_query),
            executor.execute(count_query),
        )
    except CockpitError as e:
        raise DrillDownError.wrap(e) from e

    total = None
    if count_rows:
        first = count_rows[0]
        raw = first.get("value", next(iter(first.values()), None))
        total = int(raw) if raw is not None else None
    rows = rows[:limit]
    truncated = total is not None and total > len(rows)
    return DrillDownResult(
        rows=rows,
        columns=list(rows[0].keys()) if rows else [],
        truncated=truncated,
        total=total,
        execution_time=elapsed_ms(started),
    )


DrillDownListener = Callable[[DrillDownState], None]


class DrillDownCoordinator:

    def __init__(
        self,
        registry: MetricRegistry,
        executor: QueryExecutor,
        *,
        compiler: Optional[QueryCompiler] = None,
        listener: Optional[DrillDownListener] = None,
    ):
        self.registry = registry
        self.executor = executor
        self.compiler = compiler or QueryCompiler(registry)
        self.listener = listener
        self._state = DrillDownState()
        self._token = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> DrillDownState:
        return self._state

    def _set(self, state: DrillDownState) -> None:
        self._state = state
        if self.listener:
            self.listener(state)

    def open(
        self,
        request: DrillDownRequest,
        context: FilterContext,
        *,
        scope: Optional[RowLevelScope] = None,
    ) -> asyncio.Task:
        """Enter OPENING immediately and start loading in the background."""
        self._cancel_load()
        self._token += 1
        self._set(DrillDownState(DrillDownPhase.OPENING, request))
        self._task = asyncio.get_running_loop().create_task(
            self._load(self._token, request, context, scope)
        )
        return self._task

    async def _load(self, token, request, context, scope) -> None:
        try:
            metric = self.registry.get_metric(request.metric_id)
            result = await fetch_drill_down(self.compiler, self.executor, metric, context, request, scope=scope)
        except CockpitError as e:
            self._fail(token, request, e if isinstance(e, DrillDownError) else DrillDownError.wrap(e))
            return
        except Exception as e:
            logger.exception(f"Unexpected drill-down failure on {request.widget_id}")
            self._fail(token, request, DrillDownError.unexpected(e))
            return

        if token != self._token:
            logger.debug(f"Dropped stale drill-down result for {request.widget_id}")
            return
        self._set(DrillDownState(DrillDownPhase.LOADED, request, result))

    def _fail(self, token: int, request: DrillDownRequest, error: DrillDownError) -> None:
        if token != self._token:
            return
        logger.warning(f"Drill-down {request.field}={request.value!r} on {request.widget_id} failed: {error}")
        self._set(DrillDownState(DrillDownPhase.FAILED, request, DrillDownResult(), error))

    def close(self) -> None:
        self._cancel_load()
        self._token += 1
        self._set(DrillDownState())

    def _cancel_load(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
