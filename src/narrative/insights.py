"""
Insight records.

An insight is a plain dict ``{"type", "importance", "description", ...}``.
Importance is assigned from the insight type by a fixed rule table so the
same finding always ranks the same way:

  - high    trends, seasonality, dominant categories, cross-dataset
            consistency / continuity / accuracy, big period changes
  - medium  ranges, frequencies, correlations, distributions, outliers
  - low     row / column counts and other generic observations
"""
from __future__ import annotations

from typing import Any, Iterable

HIGH = "high"
MEDIUM = "medium"
LOW = "low"

IMPORTANCE_ORDER = {HIGH: 0, MEDIUM: 1, LOW: 2}

IMPORTANCE_BY_TYPE: dict[str, str] = {
    # trends and cross-dataset findings
    "trend": HIGH,
    "seasonality": HIGH,
    "trend-direction": HIGH,
    "trend-consistency": HIGH,
    "trend-continuation": HIGH,
    "trend-reversal": HIGH,
    "prediction-continuity": HIGH,
    "prediction-accuracy": HIGH,
    "measure-transition": HIGH,
    # period comparison
    "period-comparison": HIGH,
    "percentage-change": HIGH,
    "growth-distribution": HIGH,
    "performance-shift": HIGH,
    "change-pattern": MEDIUM,
    "standout-performers": MEDIUM,
    "top-improver": MEDIUM,
    "top-decliner": MEDIUM,
    # single result sets
    "top-performer": HIGH,
    "concentration": HIGH,
    "bottom-performer": MEDIUM,
    "total": MEDIUM,
    "average": MEDIUM,
    "median": MEDIUM,
    "summary": MEDIUM,
    "extremes": MEDIUM,
    "range": MEDIUM,
    "frequency": MEDIUM,
    "correlation": MEDIUM,
    "distribution": MEDIUM,
    "outliers": MEDIUM,
    "category": MEDIUM,
    "time-coverage": MEDIUM,
    "performer-coverage": MEDIUM,
    "top-performer-details": MEDIUM,
    "detail-distribution": LOW,
    "observation": LOW,
    "overview": LOW,
}

# Sub-types ranked differently from their parent type
_SUB_TYPE_IMPORTANCE: dict[tuple[str, str], str] = {
    ("category", "dominant"): HIGH,
    ("trend-direction", "stable"): MEDIUM,
    ("top-performer-details", "similar"): LOW,
}


def importance_for(insight_type: str, sub_type: str | None = None) -> str:
    """Fixed importance tier for an insight type."""
    if sub_type is not None and (insight_type, sub_type) in _SUB_TYPE_IMPORTANCE:
        return _SUB_TYPE_IMPORTANCE[(insight_type, sub_type)]
    return IMPORTANCE_BY_TYPE.get(insight_type, MEDIUM)


def make_insight(insight_type: str, description: str, importance: str | None = None, **fields: Any) -> dict[str, Any]:
    """Build an insight dict; *importance* defaults to the rule table."""
    tier = importance or importance_for(insight_type, fields.get("sub_type"))
    return {"type": insight_type, "importance": tier, "description": description, **fields}


def rank_insights(insights: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Stable sort by importance tier (high first)."""
    return sorted(insights, key=lambda i: IMPORTANCE_ORDER.get(i.get("importance", LOW), 3))


def merge_insights(*groups: Iterable[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Concatenate insight lists, dropping repeated descriptions, then rank."""
    seen: set[str] = set()
    merged: list[dict[str, Any]] = []
    for group in groups:
        for insight in group or []:
            desc = insight.get("description", "")
            if desc in seen:
                continue
            seen.add(desc)
            merged.append(insight)
    return rank_insights(merged)


def by_importance(insights: Iterable[dict[str, Any]], tier: str) -> list[dict[str, Any]]:
    return [i for i in insights if i.get("importance") == tier]
