"""
Visualization hints.

Given result rows (or a Combined Dataset) determines the best chart type and
returns a specification a front end can render.

Supported chart types:
  - bar       (categorical breakdowns: region, product …)
  - line      (time series with a date-like dimension)
  - pie       (single dimension, few categories)
  - metric    (single KPI number, no dimensions)
  - table     (fallback for empty, wide or nested results)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.analysis.roles import Row, detect_roles, looks_temporal, infer_column_types, DATE
from src.core.utils import humanize
from src.core.logging import get_logger

logger = get_logger(__name__)

# ── Chart types ─────────────────────────────────────────

CHART_BAR = "bar"
CHART_LINE = "line"
CHART_PIE = "pie"
CHART_METRIC = "metric"
CHART_TABLE = "table"

@dataclass
class ChartSpec:
    """Describes how a set of result rows should be visualised."""
    chart_type: str
    title: str
    x_column: str | None = None
    y_column: str | None = None
    color_column: str | None = None
    rows: list[Row] = field(default_factory=list)
    kpi_value: Any = None
    kpi_label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chart_type": self.chart_type,
            "title": self.title,
            "x_column": self.x_column,
            "y_column": self.y_column,
            "color_column": self.color_column,
            "kpi_value": self.kpi_value,
            "kpi_label": self.kpi_label,
            "row_count": len(self.rows),
        }


# ── Chart selection logic ───────────────────────────────

def _is_time_column(rows: list[Row], col: str) -> bool:
    return looks_temporal(col) or infer_column_types(rows).get(col) == DATE


def suggest_chart(rows: list[Row], title: str | None = None) -> ChartSpec:
    """Choose the best chart type for flat result rows.

    Parameters
    ----------
    rows : list[dict]
        Tabular result rows.
    title : str, optional
        Chart title; derived from the measure and dimension when omitted.

    Returns
    -------
    ChartSpec
    """
    if not rows or not isinstance(rows[0], dict):
        return ChartSpec(chart_type=CHART_TABLE, title=title or "Results", rows=[])

    roles = detect_roles(rows)
    measure = roles.primary_measure
    dims = roles.dimensions
    title = title or _build_title(measure, dims)

    if not dims and len(rows) == 1 and measure:
        return ChartSpec(
            chart_type=CHART_METRIC,
            title=title,
            kpi_value=rows[0].get(measure),
            kpi_label=measure,
            rows=rows,
        )

    if not measure or not dims:
        return ChartSpec(chart_type=CHART_TABLE, title=title, rows=rows)

    x_col = next((d for d in dims if _is_time_column(rows, d)), dims[0])
    color = next((d for d in dims if d != x_col), None)

    if _is_time_column(rows, x_col):
        return ChartSpec(CHART_LINE, title, x_col, measure, color, rows)

    if len(dims) == 1 and len(rows) <= 6:
        return ChartSpec(CHART_PIE, title, x_col, measure, None, rows)

    return ChartSpec(CHART_BAR, title, x_col, measure, color, rows)


def _build_title(measure: str | None, dims: list[str]) -> str:
    parts = [humanize(measure).title() if measure else "Results"]
    if dims:
        parts.append("by " + ", ".join(humanize(d).title() for d in dims[:2]))
    return " ".join(parts)


# ── Combined datasets ───────────────────────────────────

def _flat(rows: Any) -> list[Row]:
    if not isinstance(rows, list):
        return []
    return [
        {k: v for k, v in r.items() if not isinstance(v, (list, dict))}
        for r in rows if isinstance(r, dict)
    ]


def _or_none(rows: Any) -> Any:
    return rows if rows else None


def _viz_temporal(data: Any) -> dict[str, Any]:
    return {"comparison_data": data, "visualization_type": "comparison"}


def _viz_multi_dimensional(data: Any) -> dict[str, Any]:
    return {"primary_data": data, "visualization_type": "multi-dimensional"}


def _viz_trend_summary(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "trend_data": data.get("trends", []),
        "summary_data": data.get("summary", []),
        "combined_data": _or_none(data.get("combined")),
        "visualization_type": "trend-summary",
    }


def _viz_performers(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "performers_data": data.get("performers", []),
        "details_data": data.get("details", []),
        "enriched_data": _or_none(data.get("combined")),
        "visualization_type": "performers-details",
    }


def _viz_historical(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "historical_data": data.get("historical", []),
        "prediction_data": data.get("prediction", []),
        "timeseries_data": _or_none(data.get("timeseries")),
        "visualization_type": "historical-prediction",
    }


def _viz_generic(data: Any) -> dict[str, Any]:
    if isinstance(data, dict):
        return {"datasets": data, "visualization_type": "multiple"}
    return {"primary_data": data, "visualization_type": "single"}


_PREPARERS = {
    "temporal-comparison": (_viz_temporal, "comparison_data"),
    "multi-dimensional-aggregation": (_viz_multi_dimensional, "primary_data"),
    "trend-and-summary": (_viz_trend_summary, "trend_data"),
    "performers-with-details": (_viz_performers, "performers_data"),
    "historical-prediction": (_viz_historical, "timeseries_data"),
}


def prepare_for_visualization(combined: dict[str, Any]) -> dict[str, Any]:
    """Shape a Combined Dataset for rendering.

    Dispatches on the combination method actually used, so a dataset that
    fell back to the generic strategy is rendered as ``multiple``.  Each
    result carries a ``visualization_type`` and a ``chart`` hint for its
    primary series.
    """
    metadata = dict(combined.get("metadata") or {})
    data = combined.get("data")

    if combined.get("type") != "complex":
        chart = suggest_chart(_flat(data))
        return {
            "type": "single-dataset",
            "primary_data": data,
            "visualization_type": "single",
            "chart": chart.to_dict(),
            "metadata": metadata,
        }

    query_type = combined.get("query_type") or "unknown"
    method = metadata.get("combination_method", query_type)
    preparer, primary_key = _PREPARERS.get(method, (None, None))
    if preparer is None:
        shaped = _viz_generic(data)
        primary = shaped.get("primary_data")
        if primary is None and isinstance(data, dict):
            first = next(iter(data.values()), {})
            primary = first.get("data") if isinstance(first, dict) else None
    else:
        shaped = preparer(data)
        primary = shaped.get(primary_key) or shaped.get("trend_data") or shaped.get("historical_data")

    shaped["chart"] = suggest_chart(_flat(primary)).to_dict()
    logger.debug("Prepared %s visualization for %s", shaped["visualization_type"], query_type)
    return {"type": query_type, **shaped, "metadata": {**metadata, "query_type": query_type}}
