"""
Filter Context - the single source of truth every widget query is scoped by.

Two layers:
- FilterContext: immutable, versioned snapshot handed to the compiler.
  Every compile call takes one explicitly; nothing reads global state.
- FilterSession: the mutable, single-writer holder the filter bar edits.
  Each mutation bumps the generation counter so late responses computed
  against an older snapshot can be recognised and dropped.

Selection semantics: an empty selection means "no restriction", and a
selection covering the whole known universe means the same thing.
``is_unrestricted`` is the one place that rule lives.
"""
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from .presets import DEFAULT_PRESET, DatePreset, DateWindow, resolve_preset
from cockpit.utils.log_utils import get_logger

logger = get_logger(__name__)


# =============================================================================
# Date mode
# =============================================================================

class DateModeKind(str, Enum):
    ALL_TIME = "all_time"
    PRESET = "preset"
    CUSTOM = "custom"


@dataclass(frozen=True)
class DateMode:
    """
    Exactly one of the preset or the explicit start/end is authoritative.

    Use the factories instead of the constructor.
    """
    kind: DateModeKind
    preset: Optional[DatePreset] = None
    start: Optional[date] = None
    end: Optional[date] = None

    @classmethod
    def all_time(cls) -> "DateMode":
        return cls(DateModeKind.ALL_TIME)

    @classmethod
    def from_preset(cls, preset: DatePreset) -> "DateMode":
        preset = DatePreset(preset)
        if preset == DatePreset.ALL:
            return cls.all_time()
        if preset == DatePreset.CUSTOM:
            raise ValueError("custom preset needs explicit dates; use DateMode.custom()")
        return cls(DateModeKind.PRESET, preset=preset)

    @classmethod
    def custom(cls, start: date, end: date) -> "DateMode":
        DateWindow(start, end)
        return cls(DateModeKind.CUSTOM, start=start, end=end)

    def window(self, today: date) -> Optional[DateWindow]:
        if self.kind == DateModeKind.ALL_TIME:
            return None
        if self.kind == DateModeKind.PRESET:
            return resolve_preset(self.preset, today)
        return DateWindow(self.start, self.end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "preset": self.preset.value if self.preset else None,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


# =============================================================================
# Dimension universe
# =============================================================================

@dataclass(frozen=True)
class Region:
    code: str
    name: str = ""


@dataclass(frozen=True)
class OwnershipGroup:
    code: str
    name: str = ""


@dataclass(frozen=True)
class Store:
    id: str
    name: str = ""
    region_code: Optional[str] = None
    group_code: Optional[str] = None
    city: Optional[str] = None


@dataclass(frozen=True)
class DimensionUniverse:
    """All known regions, ownership groups and stores."""
    regions: tuple = ()
    groups: tuple = ()
    stores: tuple = ()

    @classmethod
    def build(
        cls,
        regions: Iterable[Region] = (),
        groups: Iterable[OwnershipGroup] = (),
        stores: Iterable[Store] = (),
    ) -> "DimensionUniverse":
        return cls(tuple(regions), tuple(groups), tuple(stores))

    @property
    def region_codes(self) -> FrozenSet[str]:
        return frozenset(r.code for r in self.regions)

    @property
    def group_codes(self) -> FrozenSet[str]:
        return frozenset(g.code for g in self.groups)

    @property
    def store_ids(self) -> FrozenSet[str]:
        return frozenset(s.id for s in self.stores)

    def stores_matching(
        self,
        region_codes: FrozenSet[str] = frozenset(),
        group_codes: FrozenSet[str] = frozenset(),
    ) -> List[Store]:
        """Stores in the intersection of the region and group selections."""
        matched = list(self.stores)
        if not is_unrestricted(region_codes, self.region_codes):
            matched = [s for s in matched if s.region_code in region_codes]
        if not is_unrestricted(group_codes, self.group_codes):
            matched = [s for s in matched if s.group_code in group_codes]
        return matched


def is_unrestricted(selection: Iterable[str], universe: Iterable[str] = ()) -> bool:
    """
    True when a multi-select places no restriction on the query.

    An empty selection means "all", not "none". A selection that covers the
    whole known universe is also "all".
    """
    selection = frozenset(selection)
    if not selection:
        return True
    universe = frozenset(universe)
    return bool(universe) and selection >= universe


# =============================================================================
# Row-level security scope
# =============================================================================

class ScopeLevel(str, Enum):
    STORE = "store"
    REGION = "region"
    GROUP = "group"


@dataclass(frozen=True)
class RowLevelScope:
    """Mandatory per-user restriction applied on top of the filter context."""
    level: ScopeLevel
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"level": ScopeLevel(self.level).value, "value": self.value}


# =============================================================================
# Immutable snapshot
# =============================================================================

@dataclass(frozen=True)
class FilterContext:
    """Immutable filter snapshot consumed by the compiler."""
    date_mode: DateMode = field(default_factory=lambda: DateMode.from_preset(DEFAULT_PRESET))
    region_codes: FrozenSet[str] = frozenset()
    group_codes: FrozenSet[str] = frozenset()
    store_ids: FrozenSet[str] = frozenset()
    known_region_codes: FrozenSet[str] = frozenset()
    known_group_codes: FrozenSet[str] = frozenset()
    known_store_ids: FrozenSet[str] = frozenset()
    generation: int = 0
    reference_date: Optional[date] = None

    @classmethod
    def build(
        cls,
        date_mode: Optional[DateMode] = None,
        region_codes: Iterable[str] = (),
        group_codes: Iterable[str] = (),
        store_ids: Iterable[str] = (),
        universe: Optional[DimensionUniverse] = None,
        reference_date: Optional[date] = None,
        generation: int = 0,
    ) -> "FilterContext":
        universe = universe or DimensionUniverse()
        return cls(
            date_mode=date_mode or DateMode.from_preset(DEFAULT_PRESET),
            region_codes=frozenset(region_codes),
            group_codes=frozenset(group_codes),
            store_ids=frozenset(store_ids),
            known_region_codes=universe.region_codes,
            known_group_codes=universe.group_codes,
            known_store_ids=universe.store_ids,
            generation=generation,
            reference_date=reference_date,
        )

    def today(self) -> date:
        return self.reference_date or date.today()

    def date_window(self) -> Optional[DateWindow]:
        return self.date_mode.window(self.today())

    def active_regions(self) -> Optional[FrozenSet[str]]:
        """Region codes to compile, or None when unrestricted."""
        if is_unrestricted(self.region_codes, self.known_region_codes):
            return None
        return self.region_codes

    def active_groups(self) -> Optional[FrozenSet[str]]:
        if is_unrestricted(self.group_codes, self.known_group_codes):
            return None
        return self.group_codes

    def active_stores(self) -> Optional[FrozenSet[str]]:
        if is_unrestricted(self.store_ids, self.known_store_ids):
            return None
        return self.store_ids

    def with_date_mode(self, date_mode: DateMode) -> "FilterContext":
        return replace(self, date_mode=date_mode)

    def fingerprint(self) -> Dict[str, Any]:
        """
        Every dimension that takes part in query compilation, resolved.

        Two contexts with the same fingerprint compile to the same queries;
        the generation is not part of it.
        """
        window = self.date_window()
        regions = self.active_regions()
        groups = self.active_groups()
        stores = self.active_stores()
        return {
            "date": window.to_dict() if window else "all",
            "regions": sorted(regions) if regions is not None else "all",
            "groups": sorted(groups) if groups is not None else "all",
            "stores": sorted(stores) if stores is not None else "all",
            "today": self.today().isoformat(),
        }


# =============================================================================
# Mutable session state
# =============================================================================

FilterListener = Callable[[FilterContext], None]


class FilterSession:
    """
    Per-session filter state edited by the filter bar.

    Mutations are synchronous; ``snapshot()`` reflects them immediately.
    Listeners are notified after every mutation with the new snapshot.
    """

    def __init__(
        self,
        universe: Optional[DimensionUniverse] = None,
        reference_date: Optional[date] = None,
    ):
        self.universe = universe or DimensionUniverse()
        self._reference_date = reference_date
        self._listeners: List[FilterListener] = []
        self.generation = 0
        self._reset_state()

    def _reset_state(self) -> None:
        self.date_mode = DateMode.from_preset(DEFAULT_PRESET)
        self.region_codes: FrozenSet[str] = frozenset()
        self.group_codes: FrozenSet[str] = frozenset()
        # Default: every known store selected, which compiles to no predicate.
        self.store_ids: FrozenSet[str] = self.universe.store_ids

    def subscribe(self, listener: FilterListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> FilterContext:
        return FilterContext(
            date_mode=self.date_mode,
            region_codes=self.region_codes,
            group_codes=self.group_codes,
            store_ids=self.store_ids,
            known_region_codes=self.universe.region_codes,
            known_group_codes=self.universe.group_codes,
            known_store_ids=self.universe.store_ids,
            generation=self.generation,
            reference_date=self._reference_date,
        )

    def _changed(self) -> None:
        self.generation += 1
        snapshot = self.snapshot()
        logger.debug(f"Filter context changed, generation={self.generation}")
        for listener in list(self._listeners):
            listener(snapshot)

    # --- date -------------------------------------------------------------

    def set_date_preset(self, preset: DatePreset) -> None:
        preset = DatePreset(preset)
        if preset == DatePreset.CUSTOM:
            # Custom keeps whatever window is currently in effect.
            window = self.date_mode.window(self.snapshot().today())
            if window is None:
                return
            self.date_mode = DateMode.custom(window.start, window.end)
        else:
            self.date_mode = DateMode.from_preset(preset)
        self._changed()

    def set_custom_dates(self, start: date, end: date) -> None:
        self.date_mode = DateMode.custom(start, end)
        self._changed()

    def set_all_time(self) -> None:
        self.date_mode = DateMode.all_time()
        self._changed()

    # --- dimensions -------------------------------------------------------

    def set_regions(self, region_codes: Iterable[str]) -> None:
        """Select regions and narrow the store selection to match."""
        self.region_codes = frozenset(region_codes)
        self._narrow_stores()
        self._changed()

    def set_groups(self, group_codes: Iterable[str]) -> None:
        self.group_codes = frozenset(group_codes)
        self._narrow_stores()
        self._changed()

    def set_stores(self, store_ids: Iterable[str]) -> None:
        self.store_ids = frozenset(store_ids)
        self._changed()

    def select_all_stores(self) -> None:
        self.region_codes = frozenset()
        self.group_codes = frozenset()
        self.store_ids = self.universe.store_ids
        self._changed()

    def reset(self) -> None:
        self._reset_state()
        self._changed()

    def _narrow_stores(self) -> None:
        matched = self.universe.stores_matching(self.region_codes, self.group_codes)
        self.store_ids = frozenset(s.id for s in matched)
