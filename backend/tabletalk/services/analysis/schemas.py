"""Pydantic schemas for chart recommendations and the analysis response envelope."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ChartType(str, Enum):
    NUMBER = "number"
    TABLE = "table"
    BAR = "bar"
    LINE = "line"
    AREA = "area"
    PIE = "pie"
    SCATTER = "scatter"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ── Chart ─────────────────────────────────────────────────

class ChartConfig(BaseModel):
    x_key: Optional[str] = None
    y_key: Optional[str] = None
    name_key: Optional[str] = None
    value_key: Optional[str] = None
    series_keys: Optional[List[str]] = None


class ChartRecommendation(BaseModel):
    chart_type: ChartType
    confidence: Confidence
    reason: str
    config: Optional[ChartConfig] = None


class ChartData(BaseModel):
    """Rows ready for a chart renderer, plus the keys to plot."""
    records: List[Dict[str, Any]]
    x_key: str
    y_key: str
    series_keys: Optional[List[str]] = None


# ── Response envelope ─────────────────────────────────────

class AnalysisResponse(BaseModel):
    success: bool
    summary: str = ""
    code: str = ""
    raw_output: str = ""
    elapsed_time: Optional[float] = None
    result: Any = None
    chart: Optional[ChartRecommendation] = None
    chart_data: Optional[ChartData] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    failed_stage: Optional[str] = None
    failure_kind: Optional[str] = None
    error: Optional[str] = None
    error_category: Optional[str] = None
    states: List[str] = Field(default_factory=list)
