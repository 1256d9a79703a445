"""Filter context, date presets and cross-filters."""
from .presets import DatePreset, DateWindow, resolve_preset
from .context import (
    DateMode,
    DateModeKind,
    DimensionUniverse,
    FilterContext,
    FilterSession,
    OwnershipGroup,
    Region,
    RowLevelScope,
    ScopeLevel,
    Store,
    is_unrestricted,
)
from .cross_filter import CrossFilter, CrossFilterCoordinator

__all__ = [
    "DatePreset",
    "DateWindow",
    "resolve_preset",
    "DateMode",
    "DateModeKind",
    "DimensionUniverse",
    "FilterContext",
    "FilterSession",
    "OwnershipGroup",
    "Region",
    "RowLevelScope",
    "ScopeLevel",
    "Store",
    "is_unrestricted",
    "CrossFilter",
    "CrossFilterCoordinator",
]
