"""
Cross-Filter Coordinator - ad-hoc filters raised by clicking a data point.

Filters are keyed by the originating widget: a widget holds at most one
active cross-filter and a new click replaces the previous one.

The coordinator is inert by default. The assembler only applies
``as_predicates()`` to sibling widgets when it is constructed with
``apply_cross_filters=True``; otherwise the filters are recorded and
exposed but never change a query.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from cockpit.utils.log_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CrossFilter:
    widget_id: str
    field: str
    value: Any
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "widgetId": self.widget_id,
            "field": self.field,
            "value": self.value,
            "label": self.label,
        }


class CrossFilterCoordinator:
    """Ordered store of cross-filters, one per originating widget."""

    def __init__(self):
        self._filters: Dict[str, CrossFilter] = {}

    def add(self, cross_filter: CrossFilter) -> None:
        # Re-inserting moves the widget's filter to the end (latest click last).
        self._filters.pop(cross_filter.widget_id, None)
        self._filters[cross_filter.widget_id] = cross_filter
        logger.debug(
            f"Cross-filter set by {cross_filter.widget_id}: {cross_filter.field}={cross_filter.value!r}"
        )

    def remove(self, widget_id: str) -> bool:
        return self._filters.pop(widget_id, None) is not None

    def clear(self) -> None:
        self._filters.clear()

    @property
    def filters(self) -> List[CrossFilter]:
        return list(self._filters.values())

    def get(self, widget_id: str) -> Optional[CrossFilter]:
        return self._filters.get(widget_id)

    def for_sibling(self, widget_id: Optional[str]) -> List[CrossFilter]:
        """Filters that would scope ``widget_id``: everything it did not raise itself."""
        return [f for f in self._filters.values() if f.widget_id != widget_id]

    def as_predicates(self, widget_id: Optional[str] = None) -> List[Tuple[str, Any]]:
        """(field, value) equality pairs for the compiler's extension point."""
        return [(f.field, f.value) for f in self.for_sibling(widget_id)]

    def __len__(self) -> int:
        return len(self._filters)
