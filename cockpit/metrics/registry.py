"""
Metric Registry - catalog of datasets, metric definitions and widget bindings.

Provides:
- Dataset and metric registration / lookup
- Widget -> metric bindings (a bound metric cannot be deleted)
- Optional YAML catalog loading (datasets, metrics, dimension universe)
"""
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

import yaml

from cockpit.core.errors import CatalogError, CatalogErrorKind
from cockpit.filters.context import DimensionUniverse, OwnershipGroup, Region, Store
from cockpit.metrics.models import Dataset, MetricDefinition
from cockpit.utils.log_utils import get_logger

logger = get_logger(__name__)


class MetricRegistry:
    """In-process metric catalog. Definitions are read-only once registered."""

    def __init__(self):
        self._datasets: Dict[str, Dataset] = {}
        self._metrics: Dict[str, MetricDefinition] = {}
        self._bindings: Dict[str, str] = {}  # widget_id -> metric_id
        self.universe = DimensionUniverse()

    # =========================================================================
    # Datasets
    # =========================================================================

    def register_dataset(self, dataset: Union[Dataset, Dict[str, Any]]) -> Dataset:
        if isinstance(dataset, dict):
            dataset = Dataset.model_validate(dataset)
        self._datasets[dataset.id] = dataset
        return dataset

    def get_dataset(self, dataset_id: Optional[str]) -> Optional[Dataset]:
        if not dataset_id:
            return None
        return self._datasets.get(dataset_id)

    def list_datasets(self) -> List[Dataset]:
        return list(self._datasets.values())

    # =========================================================================
    # Metrics
    # =========================================================================

    def register_metric(self, metric: Union[MetricDefinition, Dict[str, Any]]) -> MetricDefinition:
        if isinstance(metric, dict):
            metric = MetricDefinition.model_validate(metric)
        if metric.dataset_id not in self._datasets:
            # Allowed: the widget resolves to an UnknownDataset error marker at compile time.
            logger.warning(f"Metric {metric.id} references unknown dataset {metric.dataset_id}")
        self._metrics[metric.id] = metric
        return metric

    def get_metric(self, metric_id: str) -> MetricDefinition:
        metric = self._metrics.get(metric_id)
        if metric is None:
            raise CatalogError(CatalogErrorKind.UNKNOWN_METRIC, f"metric {metric_id!r} not found")
        return metric

    def has_metric(self, metric_id: str) -> bool:
        return metric_id in self._metrics

    def list_metrics(self) -> List[MetricDefinition]:
        return sorted(self._metrics.values(), key=lambda m: m.id)

    def delete_metric(self, metric_id: str) -> None:
        self.get_metric(metric_id)
        widgets = self.widgets_for(metric_id)
        if widgets:
            raise CatalogError(
                CatalogErrorKind.METRIC_IN_USE,
                f"metric {metric_id!r} is bound to {len(widgets)} widget(s)",
                {"widgets": sorted(widgets)},
            )
        del self._metrics[metric_id]
        logger.info(f"Deleted metric {metric_id}")

    # =========================================================================
    # Widget bindings
    # =========================================================================

    def bind_widget(self, widget_id: str, metric_id: str) -> None:
        self.get_metric(metric_id)
        self._bindings[widget_id] = metric_id

    def unbind_widget(self, widget_id: str) -> None:
        self._bindings.pop(widget_id, None)

    def metric_for_widget(self, widget_id: str) -> Optional[str]:
        return self._bindings.get(widget_id)

    def widgets_for(self, metric_id: str) -> Set[str]:
        return {w for w, m in self._bindings.items() if m == metric_id}

    # =========================================================================
    # YAML catalog
    # =========================================================================

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "MetricRegistry":
        """
        Load a catalog file of the form::

            datasets: [{id, table, dateColumn, storeColumn, ...}]
            metrics: [{id, name, label, datasetId, ...}]
            dimensions:
              regions: [{code, name}]
              groups: [{code, name}]
              stores: [{id, name, region_code, group_code, city}]
            widgets: {widget_id: metric_id}
        """
        path = Path(path)
        data = yaml.safe_load(path.read_text()) or {}
        registry = cls.from_dict(data)
        logger.info(
            f"Loaded catalog {path.name}: {len(registry._datasets)} datasets, "
            f"{len(registry._metrics)} metrics"
        )
        return registry

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricRegistry":
        registry = cls()
        for ds in data.get("datasets") or []:
            registry.register_dataset(ds)
        for metric in data.get("metrics") or []:
            registry.register_metric(metric)

        dims = data.get("dimensions") or {}
        registry.universe = DimensionUniverse.build(
            regions=[Region(**r) for r in dims.get("regions") or []],
            groups=[OwnershipGroup(**g) for g in dims.get("groups") or []],
            stores=[Store(**s) for s in dims.get("stores") or []],
        )

        for widget_id, metric_id in (data.get("widgets") or {}).items():
            registry.bind_widget(str(widget_id), metric_id)
        return registry
