"""
Dashboard refresh - debounced, generation-checked re-resolution.

Every FilterSession mutation restarts a quiet-period timer. When the
filters settle, all widgets resolve against that snapshot. A batch whose
snapshot generation is older than the session's current generation is
discarded on arrival instead of being published.

Must be driven from the event loop that owns the session.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from cockpit.core.constants import REFRESH_DEBOUNCE
from cockpit.filters.context import FilterContext, FilterSession, RowLevelScope
from cockpit.utils.log_utils import get_logger

from .assembler import WidgetDataAssembler

logger = get_logger(__name__)


@dataclass
class RefreshResult:
    generation: int
    context: FilterContext
    widgets: Dict[str, object] = field(default_factory=dict)  # widget_id -> WidgetData


class DashboardRefresher:

    def __init__(
        self,
        assembler: WidgetDataAssembler,
        session: FilterSession,
        widgets: Dict[str, str],
        *,
        debounce: float = REFRESH_DEBOUNCE,
        scope: Optional[RowLevelScope] = None,
        on_result: Optional[Callable[[RefreshResult], None]] = None,
    ):
        self.assembler = assembler
        self.session = session
        self.widgets = dict(widgets)  # widget_id -> metric_id
        self.debounce = debounce
        self.scope = scope
        self.on_result = on_result
        self.latest: Optional[RefreshResult] = None
        self.discarded = 0
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._unsubscribe = session.subscribe(self._on_change)

    def _on_change(self, snapshot: FilterContext) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._settle(snapshot))

    async def _settle(self, snapshot: FilterContext) -> None:
        await asyncio.sleep(self.debounce)
        task = asyncio.get_running_loop().create_task(self._fetch(snapshot))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def refresh_now(self) -> Optional[RefreshResult]:
        """Resolve all widgets for the current snapshot without debouncing."""
        return await self._fetch(self.session.snapshot())

    async def _fetch(self, snapshot: FilterContext) -> Optional[RefreshResult]:
        widget_ids: List[str] = list(self.widgets)
        results = await self.assembler.resolve_all(
            [self.widgets[w] for w in widget_ids],
            snapshot,
            widget_ids=widget_ids,
            scope=self.scope,
        )
        if snapshot.generation != self.session.generation:
            self.discarded += 1
            logger.info(
                f"Discarded refresh for generation {snapshot.generation} "
                f"(current {self.session.generation})"
            )
            return None

        result = RefreshResult(snapshot.generation, snapshot, dict(zip(widget_ids, results)))
        self.latest = result
        if self.on_result:
            self.on_result(result)
        return result

    async def wait_idle(self) -> None:
        """Wait for the pending timer and every in-flight batch to finish."""
        while True:
            pending = [t for t in ([self._timer] if self._timer else []) if not t.done()]
            pending.extend(t for t in self._inflight if not t.done())
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def close(self) -> None:
        self._unsubscribe()
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        for task in self._inflight:
            task.cancel()
