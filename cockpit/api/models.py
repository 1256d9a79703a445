"""
Request/response contracts for the cockpit HTTP API.

Accepts camelCase (wire) and snake_case field names.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from cockpit.filters.context import DateMode, DimensionUniverse, FilterContext
from cockpit.filters.presets import DatePreset


class FilterContextPayload(BaseModel):
    """Filter bar snapshot. Explicit dates win over a preset; ``allTime`` wins over both."""
    date_preset: Optional[DatePreset] = Field(default=None, alias="datePreset")
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")
    all_time: bool = Field(default=False, alias="allTime")
    region_codes: List[str] = Field(default_factory=list, alias="regionCodes")
    group_codes: List[str] = Field(default_factory=list, alias="groupCodes")
    store_ids: List[str] = Field(default_factory=list, alias="storeIds")
    reference_date: Optional[date] = Field(default=None, alias="referenceDate")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check_dates(self) -> "FilterContextPayload":
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("startDate and endDate must be given together")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        if self.date_preset == DatePreset.CUSTOM and self.start_date is None and not self.all_time:
            raise ValueError("datePreset 'custom' requires startDate and endDate")
        return self

    def date_mode(self) -> Optional[DateMode]:
        if self.all_time:
            return DateMode.all_time()
        if self.start_date and self.end_date:
            return DateMode.custom(self.start_date, self.end_date)
        if self.date_preset:
            return DateMode.from_preset(self.date_preset)
        return None

    def to_context(self, universe: Optional[DimensionUniverse] = None) -> FilterContext:
        return FilterContext.build(
            date_mode=self.date_mode(),
            region_codes=self.region_codes,
            group_codes=self.group_codes,
            store_ids=self.store_ids,
            universe=universe,
            reference_date=self.reference_date,
        )


class BatchRequest(BaseModel):
    metric_ids: List[str] = Field(alias="metricIds")
    widget_ids: Optional[List[str]] = Field(default=None, alias="widgetIds")
    filters: FilterContextPayload = Field(default_factory=FilterContextPayload)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check_widgets(self) -> "BatchRequest":
        if self.widget_ids is not None and len(self.widget_ids) != len(self.metric_ids):
            raise ValueError("widgetIds must match metricIds one to one")
        return self


class BatchResponse(BaseModel):
    results: List[Dict[str, Any]]
    generated_at: str = Field(alias="generatedAt")

    model_config = {"populate_by_name": True}


class DrillDownBody(BaseModel):
    widget_id: str = Field(alias="widgetId")
    field: str
    value: Any = None
    label: Optional[str] = None
    filters: FilterContextPayload = Field(default_factory=FilterContextPayload)

    model_config = {"populate_by_name": True}


class CrossFilterBody(BaseModel):
    widget_id: str = Field(alias="widgetId")
    field: str
    value: Any = None
    label: Optional[str] = None

    model_config = {"populate_by_name": True}
