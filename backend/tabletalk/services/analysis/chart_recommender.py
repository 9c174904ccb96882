"""Chart recommender — picks a display type for a normalized analysis result.

Runs after execution, on the actual data shape. ``classify`` applies a fixed
first-match-wins decision order; ``normalize_for_chart`` reshapes the value
into renderer-ready rows (pivoting long-form records into one column per
category when there is an x key, a category key and a value key); and
``cap_chart_data`` bounds the number of rendered points.

Pivot policy: when an (x, category) pair repeats, numeric values are summed;
for anything non-numeric the last row wins.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tabletalk.services.analysis.schemas import (
    ChartConfig,
    ChartData,
    ChartRecommendation,
    ChartType,
    Confidence,
)

logger = logging.getLogger(__name__)

_MONTHS = (
    r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)
# "2024-01", "2024-01-31", "01/31", "1/31/2024", "Jan", "March 2024"
DATE_LIKE_RE = re.compile(rf"^\d{{4}}-\d{{2}}|^\d{{1,2}}/\d{{1,2}}|^(?:{_MONTHS})\b", re.IGNORECASE)
DATE_NAME_RE = re.compile(r"date|time|year|month", re.IGNORECASE)

PIVOT_CHART_TYPES = (ChartType.BAR, ChartType.LINE, ChartType.AREA)
SAMPLE_SIZE = 10
MAX_BAR_RECORDS = 50
MAX_PIE_KEYS = 6
OTHER_LABEL = "Other"


# ── Value helpers ─────────────────────────────────────────────


def _is_real(value: Any) -> bool:
    """True for int/float values (never bool)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_numeric(value: Any) -> bool:
    """True for finite numbers and strings that parse as finite numbers."""
    if _is_real(value):
        return math.isfinite(value)
    if isinstance(value, str) and value.strip():
        try:
            return math.isfinite(float(value))
        except ValueError:
            return False
    return False


def _to_number(value: Any) -> float:
    return float(value) if _is_numeric(value) else 0.0


def is_date_like(value: Any) -> bool:
    return isinstance(value, str) and bool(DATE_LIKE_RE.search(value.strip()))


def _is_record_array(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0 and all(isinstance(r, dict) for r in value)


@dataclass
class RecordProfile:
    """Column roles of an array of records, judged on the first rows."""
    keys: List[str]
    numeric_keys: List[str] = field(default_factory=list)
    date_keys: List[str] = field(default_factory=list)

    @property
    def category_keys(self) -> List[str]:
        return [k for k in self.keys if k not in self.numeric_keys]


def profile_records(records: Sequence[Dict[str, Any]], sample_size: int = SAMPLE_SIZE) -> RecordProfile:
    keys: List[str] = []
    for record in records:
        for key in record:
            if key not in keys:
                keys.append(key)

    profile = RecordProfile(keys=keys)
    sample = records[:sample_size]
    for key in keys:
        values = [r.get(key) for r in sample if r.get(key) is not None]
        if values and all(_is_numeric(v) for v in values):
            profile.numeric_keys.append(key)
        elif any(is_date_like(v) for v in values):
            profile.date_keys.append(key)
    return profile


# ── Classification ────────────────────────────────────────────


def _classify_mapping(value: Dict[str, Any]) -> ChartRecommendation:
    keys = list(value)

    if keys == ["value"]:
        return ChartRecommendation(
            chart_type=ChartType.NUMBER,
            confidence=Confidence.HIGH,
            reason="Single value result - display as large number",
        )

    if "error" in value:
        return ChartRecommendation(
            chart_type=ChartType.TABLE,
            confidence=Confidence.HIGH,
            reason="Error response - display as text",
        )

    if len(keys) > 1 and all(_is_real(v) for v in value.values()):
        config = ChartConfig(name_key="name", value_key="value")
        if any(is_date_like(k) for k in keys):
            return ChartRecommendation(
                chart_type=ChartType.LINE,
                confidence=Confidence.HIGH,
                reason="Time series data detected (date keys with numeric values)",
                config=config,
            )
        if len(keys) <= MAX_PIE_KEYS:
            return ChartRecommendation(
                chart_type=ChartType.PIE,
                confidence=Confidence.HIGH,
                reason=f"{len(keys)} categories - suitable for pie chart",
                config=config,
            )
        return ChartRecommendation(
            chart_type=ChartType.BAR,
            confidence=Confidence.HIGH,
            reason=f"Category to value mapping ({len(keys)} categories) - ideal for bar chart",
            config=config,
        )

    return _fallback()


def _classify_records(records: List[Dict[str, Any]]) -> ChartRecommendation:
    profile = profile_records(records)
    numeric = profile.numeric_keys
    categories = profile.category_keys

    if "x" in profile.keys and "y" in profile.keys:
        return ChartRecommendation(
            chart_type=ChartType.SCATTER,
            confidence=Confidence.HIGH,
            reason="X/Y coordinate data - perfect for scatter plot",
            config=ChartConfig(x_key="x", y_key="y"),
        )

    if profile.date_keys and numeric:
        date_key = profile.date_keys[0]
        value_key = next((k for k in numeric if k not in profile.date_keys), numeric[0])
        return ChartRecommendation(
            chart_type=ChartType.LINE,
            confidence=Confidence.HIGH,
            reason="Time series records with dates - line chart recommended",
            config=ChartConfig(x_key=date_key, y_key=value_key),
        )

    if categories and numeric and len(records) <= MAX_BAR_RECORDS:
        return ChartRecommendation(
            chart_type=ChartType.BAR,
            confidence=Confidence.HIGH,
            reason=f"Category column ({categories[0]}) with numeric values - bar chart",
            config=ChartConfig(x_key=categories[0], y_key=numeric[0]),
        )

    if not categories and numeric:
        return ChartRecommendation(
            chart_type=ChartType.TABLE,
            confidence=Confidence.MEDIUM,
            reason=(
                "All numeric columns without category labels - showing as table "
                "(data may be missing group keys)"
            ),
        )

    if len(records) > 20 or len(profile.keys) > 4:
        return ChartRecommendation(
            chart_type=ChartType.TABLE,
            confidence=Confidence.MEDIUM,
            reason=f"Large dataset ({len(records)} rows, {len(profile.keys)} columns) - table view best",
        )

    if categories:
        y_key = numeric[0] if numeric else (profile.keys[1] if len(profile.keys) > 1 else None)
        return ChartRecommendation(
            chart_type=ChartType.BAR,
            confidence=Confidence.LOW,
            reason="Array of records - attempting bar chart",
            config=ChartConfig(x_key=categories[0], y_key=y_key),
        )

    return ChartRecommendation(
        chart_type=ChartType.TABLE,
        confidence=Confidence.LOW,
        reason="No suitable category column for chart - showing as table",
    )


def _fallback() -> ChartRecommendation:
    return ChartRecommendation(
        chart_type=ChartType.TABLE,
        confidence=Confidence.LOW,
        reason="Complex or unrecognized data structure - showing as table",
    )


def classify(value: Any) -> ChartRecommendation:
    """Recommend a chart type for a normalized result. Never raises."""
    if isinstance(value, (bool, int, float, str)):
        return ChartRecommendation(
            chart_type=ChartType.NUMBER,
            confidence=Confidence.HIGH,
            reason="Single numeric value - display as metric",
        )

    if isinstance(value, dict):
        return _classify_mapping(value)

    if _is_record_array(value):
        return _classify_records(value)

    if isinstance(value, list) and value and all(_is_real(v) for v in value):
        return ChartRecommendation(
            chart_type=ChartType.LINE,
            confidence=Confidence.MEDIUM,
            reason="Array of numbers - line chart for sequence",
        )

    return _fallback()


# ── Chart data ────────────────────────────────────────────────


def pick_pivot_keys(profile: RecordProfile) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Choose (x, category, value) keys for a pivot; any may be None."""
    categories = profile.category_keys
    x_key = (
        next((k for k in profile.date_keys if k in categories), None)
        or next((k for k in categories if DATE_NAME_RE.search(k)), None)
        or (categories[0] if categories else None)
    )
    category_key = next((k for k in categories if k != x_key), None)
    value_key = profile.numeric_keys[0] if profile.numeric_keys else None
    return x_key, category_key, value_key


def pivot_records(
    records: List[Dict[str, Any]],
    x_key: str,
    category_key: str,
    value_key: str,
) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Turn long-form records into one row per x value and one field per category.

    Rows and series keep first-seen order. A repeated (x, category) pair sums
    numeric values; otherwise the later row overwrites the earlier one. A category
    named like the x key becomes "<category_key>: <name>".
    """
    rows: Dict[str, Dict[str, Any]] = {}
    series: Dict[str, None] = {}

    for record in records:
        x_value = record.get(x_key)
        name = str(record.get(category_key))
        if name == x_key:
            name = f"{category_key}: {name}"
        value = record.get(value_key)
        series.setdefault(name, None)

        row = rows.setdefault(str(x_value), {x_key: x_value})
        previous = row.get(name)
        if name in row and _is_real(previous) and _is_real(value):
            row[name] = previous + value
        else:
            row[name] = value

    return list(rows.values()), list(series)


def normalize_for_chart(value: Any, chart_type: ChartType) -> Optional[ChartData]:
    """Reshape *value* into rows for a renderer, or None when nothing should be plotted."""
    if isinstance(value, dict):
        if "error" in value or list(value) == ["value"]:
            return None
        records = [{"name": k, "value": v} for k, v in value.items() if _is_real(v)]
        if not records:
            return None
        return ChartData(records=records, x_key="name", y_key="value")

    if _is_record_array(value):
        profile = profile_records(value)
        keys = profile.keys
        if not keys:
            return None

        if chart_type == ChartType.SCATTER and "x" in keys and "y" in keys:
            return ChartData(records=value, x_key="x", y_key="y")

        x_key, category_key, value_key = pick_pivot_keys(profile)
        if chart_type in PIVOT_CHART_TYPES and x_key and category_key and value_key:
            rows, series_keys = pivot_records(value, x_key, category_key, value_key)
            return ChartData(records=rows, x_key=x_key, y_key=value_key, series_keys=series_keys)

        categories = profile.category_keys
        numeric = profile.numeric_keys
        return ChartData(
            records=value,
            x_key=categories[0] if categories else keys[0],
            y_key=numeric[0] if numeric else keys[min(1, len(keys) - 1)],
        )

    if isinstance(value, list) and value and all(_is_real(v) for v in value):
        records = [{"name": str(i + 1), "value": v} for i, v in enumerate(value)]
        return ChartData(records=records, x_key="name", y_key="value")

    return None


def cap_chart_data(
    data: ChartData,
    chart_type: ChartType,
    pie_cap: int = 10,
    bar_cap: int = 30,
    series_cap: int = 100,
) -> ChartData:
    """Bound the number of rendered rows.

    Pie and bar keep ``cap - 1`` rows and fold the rest into an "Other" row
    that sums every value key; other chart types are truncated.
    """
    records = data.records
    if chart_type in (ChartType.PIE, ChartType.BAR):
        cap = pie_cap if chart_type == ChartType.PIE else bar_cap
        if len(records) <= cap:
            return data
        head, tail = records[: cap - 1], records[cap - 1:]
        value_keys = data.series_keys or [data.y_key]
        other: Dict[str, Any] = {data.x_key: OTHER_LABEL}
        for key in value_keys:
            other[key] = sum(_to_number(r.get(key)) for r in tail)
        logger.debug("Capped %s chart at %d rows (%d folded into %r)", chart_type.value, cap, len(tail), OTHER_LABEL)
        return data.model_copy(update={"records": head + [other]})

    if len(records) > series_cap:
        return data.model_copy(update={"records": records[:series_cap]})
    return data


def build_chart(
    value: Any,
    pie_cap: int = 10,
    bar_cap: int = 30,
    series_cap: int = 100,
) -> Tuple[ChartRecommendation, Optional[ChartData]]:
    """Classify *value* and prepare its (capped) chart data in one step.

    Pivoted series names are copied into the recommendation's config.
    """
    recommendation = classify(value)
    chart_data = normalize_for_chart(value, recommendation.chart_type)
    if chart_data is None:
        return recommendation, None

    chart_data = cap_chart_data(
        chart_data,
        recommendation.chart_type,
        pie_cap=pie_cap,
        bar_cap=bar_cap,
        series_cap=series_cap,
    )
    if chart_data.series_keys:
        config = recommendation.config or ChartConfig()
        recommendation = recommendation.model_copy(
            update={"config": config.model_copy(update={"series_keys": chart_data.series_keys})}
        )
    return recommendation, chart_data
