"""
Widget Data contract - one payload variant per visualization family.

The variant is decided once at assembly time (``kind``) so renderers branch
on ``kind``/``visualizationType`` instead of sniffing the payload shape.
Every variant carries the comparison fields; ``trend`` stays None whenever
no comparison resolved.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from cockpit.core.errors import CockpitError
from cockpit.metrics.models import VisualizationType


class TargetInfo(BaseModel):
    value: float
    progress: int


class SeriesPoint(BaseModel):
    date: str
    value: Optional[float] = None


class _WidgetDataBase(BaseModel):
    metric_id: str = Field(alias="metricId")
    widget_id: Optional[str] = Field(default=None, alias="widgetId")
    visualization_type: Optional[VisualizationType] = Field(default=None, alias="visualizationType")

    value: Any = None
    formatted: str = "-"

    previous_value: Optional[float] = Field(default=None, alias="previousValue")
    trend: Optional[float] = None
    comparison_label: Optional[str] = Field(default=None, alias="comparisonLabel")
    comparison_error: Optional[str] = Field(default=None, alias="comparisonError")
    target: Optional[TargetInfo] = None

    cached: bool = False
    execution_time: float = Field(default=0.0, alias="executionTime")

    model_config = {"populate_by_name": True}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ScalarWidgetData(_WidgetDataBase):
    """kpi_card, gauge, progress, sparkline, trend, trend_card."""
    kind: Literal["scalar"] = "scalar"
    series: Optional[List[SeriesPoint]] = None


class SeriesWidgetData(_WidgetDataBase):
    """bar/line/area/pie charts: one row per label."""
    kind: Literal["series"] = "series"
    data: List[Dict[str, Any]] = Field(default_factory=list)
    label_column: Optional[str] = Field(default=None, alias="labelColumn")


class TableWidgetData(_WidgetDataBase):
    """table, data_grid, ranking_list, list."""
    kind: Literal["table"] = "table"
    data: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    label_column: Optional[str] = Field(default=None, alias="labelColumn")


class WidgetError(_WidgetDataBase):
    """Error marker occupying a failed widget's slot."""
    kind: Literal["error"] = "error"
    error_family: str = Field(alias="errorFamily")
    error_kind: str = Field(alias="errorKind")
    message: str

    @classmethod
    def from_error(
        cls,
        error: CockpitError,
        metric_id: str,
        widget_id: Optional[str] = None,
        visualization_type: Optional[VisualizationType] = None,
    ) -> "WidgetError":
        return cls(
            metric_id=metric_id,
            widget_id=widget_id,
            visualization_type=visualization_type,
            error_family=error.family,
            error_kind=error.kind.value,
            message=error.message,
        )


WidgetData = Annotated[
    Union[ScalarWidgetData, SeriesWidgetData, TableWidgetData, WidgetError],
    Field(discriminator="kind"),
]

WIDGET_DATA_ADAPTER: TypeAdapter = TypeAdapter(WidgetData)


def widget_data_from_dict(payload: Dict[str, Any]):
    return WIDGET_DATA_ADAPTER.validate_python(payload)
