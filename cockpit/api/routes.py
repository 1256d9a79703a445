"""
Cockpit API Routes - metric execution, batch dashboard loads, drill-down,
the cross-filter surface and widget cache invalidation.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from cockpit.assembler.assembler import WidgetDataAssembler
from cockpit.assembler.cache import dataset_prefix
from cockpit.compiler.predicates import check_identifier
from cockpit.core.constants import utc_now
from cockpit.core.errors import (
    CatalogErrorKind,
    CockpitError,
    CompileErrorKind,
    ComparisonErrorKind,
    ExecutionErrorKind,
)
from cockpit.drilldown.coordinator import DrillDownRequest, fetch_drill_down
from cockpit.filters.cross_filter import CrossFilter, CrossFilterCoordinator
from cockpit.metrics.models import MetricListItem
from cockpit.metrics.registry import MetricRegistry
from cockpit.utils.log_utils import get_logger

from .models import BatchRequest, BatchResponse, CrossFilterBody, DrillDownBody, FilterContextPayload

router = APIRouter(prefix="/api", tags=["Metrics"])
logger = get_logger(__name__)


def status_for(error: CockpitError) -> int:
    kind = error.kind
    if kind == CatalogErrorKind.UNKNOWN_METRIC:
        return 404
    if kind == CatalogErrorKind.METRIC_IN_USE:
        return 409
    if isinstance(kind, (CompileErrorKind, ComparisonErrorKind)):
        return 422
    if kind == ExecutionErrorKind.TIMEOUT:
        return 504
    if isinstance(kind, ExecutionErrorKind):
        return 502
    return 500


def http_error(error: CockpitError) -> HTTPException:
    return HTTPException(status_code=status_for(error), detail=error.to_dict())


def _registry(request: Request) -> MetricRegistry:
    return request.app.state.registry


def _assembler(request: Request) -> WidgetDataAssembler:
    return request.app.state.assembler


def _cross_filters(request: Request) -> CrossFilterCoordinator:
    return request.app.state.cross_filters


# =============================================================================
# Metric catalog
# =============================================================================

@router.get("/metrics", response_model=list[MetricListItem])
def list_metrics(request: Request):
    """List all registered metrics."""
    return [
        MetricListItem(
            id=m.id,
            name=m.name,
            label=m.label,
            dataset_id=m.dataset_id,
            aggregation=m.aggregation,
            visualization_type=m.visualization_type,
            comparison_enabled=m.comparison_enabled,
        )
        for m in _registry(request).list_metrics()
    ]


@router.get("/metrics/{metric_id}")
def get_metric(metric_id: str, request: Request):
    try:
        metric = _registry(request).get_metric(metric_id)
    except CockpitError as e:
        raise http_error(e)
    return metric.model_dump(by_alias=True, mode="json")


@router.delete("/metrics/{metric_id}")
def delete_metric(metric_id: str, request: Request):
    """Delete a metric. Rejected with 409 while a widget is bound to it."""
    try:
        _registry(request).delete_metric(metric_id)
    except CockpitError as e:
        raise http_error(e)
    return {"deleted": metric_id}


# =============================================================================
# Execution
# =============================================================================

@router.post("/metrics/batch", response_model=BatchResponse)
async def execute_batch(body: BatchRequest, request: Request):
    """
    Resolve many metrics under one filter context.

    Never fails as a whole: each failed metric occupies its slot as an
    error marker.
    """
    context = body.filters.to_context(_registry(request).universe)
    results = await _assembler(request).resolve_all(body.metric_ids, context, widget_ids=body.widget_ids)
    failed = sum(1 for r in results if r.kind == "error")
    logger.info(f"Batch of {len(results)} metrics resolved, {failed} failed")
    return BatchResponse(results=[r.to_dict() for r in results], generated_at=utc_now())


@router.post("/metrics/{metric_id}/execute")
async def execute_metric(metric_id: str, request: Request, filters: Optional[FilterContextPayload] = None):
    registry = _registry(request)
    context = (filters or FilterContextPayload()).to_context(registry.universe)
    try:
        metric = registry.get_metric(metric_id)
        data = await _assembler(request).resolve(metric, context)
    except CockpitError as e:
        logger.warning(f"Execute {metric_id} failed: {e}")
        raise http_error(e)
    return data.to_dict()


@router.post("/metrics/{metric_id}/drill-down")
async def drill_down(metric_id: str, body: DrillDownBody, request: Request):
    """Up to 100 raw rows behind one clicked data point."""
    registry = _registry(request)
    assembler = _assembler(request)
    context = body.filters.to_context(registry.universe)
    drill = DrillDownRequest(body.widget_id, metric_id, body.field, body.value, body.label)
    try:
        metric = registry.get_metric(metric_id)
        result = await fetch_drill_down(assembler.compiler, assembler.executor, metric, context, drill)
    except CockpitError as e:
        logger.warning(f"Drill-down on {metric_id} failed: {e}")
        raise http_error(e)
    return {"request": drill.to_dict(), **result.to_dict()}


# =============================================================================
# Cross-filters
# =============================================================================

@router.get("/filters/cross-filters")
def list_cross_filters(request: Request):
    return {"crossFilters": [f.to_dict() for f in _cross_filters(request).filters]}


@router.post("/filters/cross-filters")
def add_cross_filter(body: CrossFilterBody, request: Request):
    """Record a cross-filter; a second one from the same widget replaces the first."""
    coordinator = _cross_filters(request)
    try:
        check_identifier(body.field, "cross-filter field")
    except CockpitError as e:
        raise http_error(e)
    coordinator.add(CrossFilter(body.widget_id, body.field, body.value, body.label))
    return {"crossFilters": [f.to_dict() for f in coordinator.filters]}


@router.delete("/filters/cross-filters/{widget_id}")
def remove_cross_filter(widget_id: str, request: Request):
    coordinator = _cross_filters(request)
    if not coordinator.remove(widget_id):
        raise HTTPException(status_code=404, detail=f"No cross-filter for widget: {widget_id}")
    return {"crossFilters": [f.to_dict() for f in coordinator.filters]}


@router.delete("/filters/cross-filters")
def clear_cross_filters(request: Request):
    _cross_filters(request).clear()
    return {"crossFilters": []}


# =============================================================================
# Widget cache
# =============================================================================

@router.delete("/cache")
async def clear_cache(request: Request):
    """Drop every cached widget payload."""
    removed = await request.app.state.cache.clear()
    logger.info(f"Widget cache cleared: {removed} entries")
    return {"cleared": removed}


@router.delete("/datasets/{dataset_id}/cache")
async def clear_dataset_cache(dataset_id: str, request: Request):
    """Drop cached payloads of metrics computed from one dataset, e.g. after a reload."""
    if _registry(request).get_dataset(dataset_id) is None:
        raise HTTPException(status_code=404, detail=f"Dataset not found: {dataset_id}")
    removed = await request.app.state.cache.clear(dataset_prefix(dataset_id))
    logger.info(f"Widget cache cleared for dataset {dataset_id}: {removed} entries")
    return {"datasetId": dataset_id, "cleared": removed}
