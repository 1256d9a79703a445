"""Row-level drill-down."""
from .coordinator import (
    DrillDownCoordinator,
    DrillDownPhase,
    DrillDownRequest,
    DrillDownResult,
    DrillDownState,
    fetch_drill_down,
)

__all__ = [
    "DrillDownCoordinator",
    "DrillDownPhase",
    "DrillDownRequest",
    "DrillDownResult",
    "DrillDownState",
    "fetch_drill_down",
]
