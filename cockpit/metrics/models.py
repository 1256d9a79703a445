"""
Metric Definition Models - declarative records of one computable value.

Definitions are produced by the metric management screen and consumed
read-only here. Field aliases follow the camelCase wire format; snake_case
names are accepted too.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class Aggregation(str, Enum):
    SUM = "SUM"
    AVG = "AVG"
    COUNT = "COUNT"
    DISTINCT = "DISTINCT"
    MIN = "MIN"
    MAX = "MAX"
    LIST = "LIST"


class OrderDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class ComparisonType(str, Enum):
    YOY = "yoy"
    MOM = "mom"
    WOW = "wow"
    YTD = "ytd"
    LFL = "lfl"


# Ranking-list trends only support plain period shifts.
ROW_TREND_TYPES = {ComparisonType.MOM, ComparisonType.YOY, ComparisonType.WOW}


class PayloadKind(str, Enum):
    SCALAR = "scalar"
    SERIES = "series"
    TABLE = "table"


class VisualizationType(str, Enum):
    KPI_CARD = "kpi_card"
    GAUGE = "gauge"
    PROGRESS = "progress"
    SPARKLINE = "sparkline"
    TREND = "trend"
    TREND_CARD = "trend_card"
    BAR_CHART = "bar_chart"
    LINE_CHART = "line_chart"
    AREA_CHART = "area_chart"
    PIE_CHART = "pie_chart"
    TABLE = "table"
    DATA_GRID = "data_grid"
    RANKING_LIST = "ranking_list"
    LIST = "list"

    @property
    def payload_kind(self) -> PayloadKind:
        return _PAYLOAD_KINDS[self]

    @property
    def wants_series(self) -> bool:
        return self in (VisualizationType.SPARKLINE, VisualizationType.TREND, VisualizationType.TREND_CARD)


_PAYLOAD_KINDS = {
    VisualizationType.KPI_CARD: PayloadKind.SCALAR,
    VisualizationType.GAUGE: PayloadKind.SCALAR,
    VisualizationType.PROGRESS: PayloadKind.SCALAR,
    VisualizationType.SPARKLINE: PayloadKind.SCALAR,
    VisualizationType.TREND: PayloadKind.SCALAR,
    VisualizationType.TREND_CARD: PayloadKind.SCALAR,
    VisualizationType.BAR_CHART: PayloadKind.SERIES,
    VisualizationType.LINE_CHART: PayloadKind.SERIES,
    VisualizationType.AREA_CHART: PayloadKind.SERIES,
    VisualizationType.PIE_CHART: PayloadKind.SERIES,
    VisualizationType.TABLE: PayloadKind.TABLE,
    VisualizationType.DATA_GRID: PayloadKind.TABLE,
    VisualizationType.RANKING_LIST: PayloadKind.TABLE,
    VisualizationType.LIST: PayloadKind.TABLE,
}


class FormatType(str, Enum):
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    COMPACT = "compact"


class FormatConfig(BaseModel):
    type: FormatType = FormatType.NUMBER
    decimals: Optional[int] = Field(default=None, ge=0, le=10)
    prefix: Optional[str] = None
    suffix: Optional[str] = None


class Dataset(BaseModel):
    """A named physical analytical table plus the columns filters compile against."""
    id: str
    name: str = ""
    table: str
    date_column: Optional[str] = Field(default=None, alias="dateColumn")
    store_column: Optional[str] = Field(default=None, alias="storeColumn")
    region_column: Optional[str] = Field(default=None, alias="regionColumn")
    group_column: Optional[str] = Field(default=None, alias="groupColumn")

    model_config = {"populate_by_name": True}


class MetricDefinition(BaseModel):
    # Identity
    id: str
    name: str
    label: str
    description: Optional[str] = None

    # Source
    dataset_id: str = Field(alias="datasetId")
    column: Optional[str] = None
    aggregation: Aggregation = Aggregation.SUM

    # Builder options
    filter_expression: Optional[str] = Field(default=None, alias="filterExpression")
    group_by_column: Optional[str] = Field(default=None, alias="groupByColumn")
    order_by_column: Optional[str] = Field(default=None, alias="orderByColumn")
    order_direction: OrderDirection = Field(default=OrderDirection.DESC, alias="orderDirection")
    limit: int = Field(default=0, ge=0)  # 0 = unlimited

    # SQL override
    use_raw_query: bool = Field(default=False, alias="useRawQuery")
    raw_query: Optional[str] = Field(default=None, alias="rawQuery")

    # Comparison
    comparison_enabled: bool = Field(default=False, alias="comparisonEnabled")
    comparison_type: Optional[ComparisonType] = Field(default=None, alias="comparisonType")
    comparison_date_column: Optional[str] = Field(default=None, alias="comparisonDateColumn")
    comparison_label: Optional[str] = Field(default=None, alias="comparisonLabel")
    lfl_calendar_dataset_id: Optional[str] = Field(default=None, alias="lflCalendarDatasetId")
    lfl_current_period_column: Optional[str] = Field(default=None, alias="lflCurrentPeriodColumn")
    lfl_prior_period_column: Optional[str] = Field(default=None, alias="lflPriorPeriodColumn")

    # Target
    target_value: Optional[float] = Field(default=None, alias="targetValue")
    target_column: Optional[str] = Field(default=None, alias="targetColumn")

    # Ranking-list trend
    auto_calculate_trend: bool = Field(default=False, alias="autoCalculateTrend")
    trend_comparison_type: ComparisonType = Field(default=ComparisonType.MOM, alias="trendComparisonType")

    # Presentation
    visualization_type: VisualizationType = Field(default=VisualizationType.KPI_CARD, alias="visualizationType")
    format_config: FormatConfig = Field(default_factory=FormatConfig, alias="formatConfig")
    chart_config: Dict[str, Any] = Field(default_factory=dict, alias="chartConfig")

    cache_ttl: Optional[int] = Field(default=None, ge=0, alias="cacheTtl")

    model_config = {"populate_by_name": True}

    @field_validator("aggregation", "order_direction", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.upper() if isinstance(value, str) else value

    @field_validator("comparison_type", "trend_comparison_type", mode="before")
    @classmethod
    def _lower(cls, value):
        return value.lower() if isinstance(value, str) else value

    @field_validator("trend_comparison_type")
    @classmethod
    def _row_trend_type(cls, value: ComparisonType) -> ComparisonType:
        if value not in ROW_TREND_TYPES:
            raise ValueError("trendComparisonType must be one of mom, yoy, wow")
        return value

    @model_validator(mode="after")
    def _comparison_defaults(self) -> "MetricDefinition":
        if self.comparison_enabled and self.comparison_type is None:
            self.comparison_type = ComparisonType.YOY
        return self

    @property
    def is_list(self) -> bool:
        return self.aggregation == Aggregation.LIST

    @property
    def grid_columns(self) -> List[str]:
        """Column set chosen for list/grid types (``chartConfig.gridColumns``)."""
        columns = []
        for entry in self.chart_config.get("gridColumns") or []:
            if isinstance(entry, dict):
                entry = entry.get("column")
            if entry:
                columns.append(str(entry))
        return columns

    @property
    def target_source(self) -> Optional[str]:
        """'column', 'value' or None. A target column wins over a constant."""
        if self.target_column:
            return "column"
        if self.target_value is not None:
            return "value"
        return None


class MetricListItem(BaseModel):
    id: str
    name: str
    label: str
    dataset_id: str = Field(alias="datasetId")
    aggregation: Aggregation
    visualization_type: VisualizationType = Field(alias="visualizationType")
    comparison_enabled: bool = Field(alias="comparisonEnabled")

    model_config = {"populate_by_name": True}
