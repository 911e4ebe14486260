"""
Pattern detection and insight generation for flat result rows.
"""
from __future__ import annotations

import math
from typing import Any

from src.analysis.roles import (
    CATEGORICAL,
    NUMERIC,
    Row,
    column_names,
    column_values,
    TIME_NAME_CANDIDATES,
    infer_column_types,
)
from src.analysis.stats import correlation, find_outliers, numbers, skewness
from src.narrative.insights import make_insight
from src.core.utils import to_datetime, to_number

CORRELATION_THRESHOLD = 0.7
SKEW_THRESHOLD = 0.5
PARETO_SHARE = 0.8
PARETO_MIN_CATEGORIES = 4
TREND_CONFIDENCE = 0.7
SEASONALITY_CONFIDENCE = 0.6


def numeric_columns(rows: list[Row], exclude: tuple[str, ...] = ()) -> list[str]:
    """Columns where every row holds a number."""
    return [
        col for col in column_names(rows)
        if col not in exclude and all(to_number(r.get(col)) is not None for r in rows)
    ]


def time_column(rows: list[Row]) -> str | None:
    """First column named like a time axis, in candidate order."""
    if not rows:
        return None
    cols = column_names(rows)
    for cand in TIME_NAME_CANDIDATES:
        for col in cols:
            if cand in col.lower():
                return col
    return None


def sort_by_time(rows: list[Row], column: str) -> list[Row]:
    """Rows ordered by a numeric or date-like time column; input order otherwise."""
    for convert in (to_number, to_datetime):
        keys = [convert(r.get(column)) for r in rows]
        if all(k is not None for k in keys):
            order = sorted(range(len(rows)), key=lambda i: (keys[i], i))
            return [rows[i] for i in order]
    return list(rows)


# ── Pattern detectors ───────────────────────────────────

def trend_direction(values: list[float]) -> str | None:
    """Return "increasing" or "decreasing" when every step moves the same way."""
    if len(values) < 2:
        return None
    diffs = [b - a for a, b in zip(values, values[1:])]
    if all(d == 0 for d in diffs):
        return None
    if all(d >= 0 for d in diffs):
        return "increasing"
    if all(d <= 0 for d in diffs):
        return "decreasing"
    return None


def identify_time_series_patterns(rows: list[Row], time_col: str) -> list[dict[str, Any]]:
    if len(rows) < 3:
        return []
    ordered = sort_by_time(rows, time_col)
    patterns: list[dict[str, Any]] = []
    for col in numeric_columns(rows, exclude=(time_col,)):
        values = [to_number(r.get(col)) for r in ordered]
        direction = trend_direction(values)
        if direction:
            patterns.append({
                "type": "trend",
                "sub_type": direction,
                "metric": col,
                "time_dimension": time_col,
                "confidence": TREND_CONFIDENCE,
                "description": f"{col} shows a consistent {direction} trend over {time_col}",
            })
        if len(values) >= 6:
            half = len(values) // 2
            first, second = values[:half], values[half:]
            range1 = max(first) - min(first)
            range2 = max(second) - min(second)
            if range1 > 0 and abs(range1 - range2) / range1 < 0.2:
                patterns.append({
                    "type": "seasonality",
                    "metric": col,
                    "time_dimension": time_col,
                    "confidence": SEASONALITY_CONFIDENCE,
                    "description": f"{col} may show seasonal patterns over {time_col}",
                })
    return patterns


def identify_correlations(rows: list[Row], numeric_columns: list[str]) -> list[dict[str, Any]]:
    if len(numeric_columns) < 2 or len(rows) < 3:
        return []
    patterns = []
    for i, col1 in enumerate(numeric_columns):
        for col2 in numeric_columns[i + 1:]:
            r = correlation(
                [to_number(row.get(col1)) for row in rows],
                [to_number(row.get(col2)) for row in rows],
            )
            if abs(r) >= CORRELATION_THRESHOLD:
                kind = "positive" if r > 0 else "negative"
                patterns.append({
                    "type": "correlation",
                    "sub_type": kind,
                    "metrics": [col1, col2],
                    "strength": abs(r),
                    "description": f"Strong {kind} correlation ({r:.2f}) between {col1} and {col2}",
                })
    return patterns


def identify_distribution_patterns(rows: list[Row], column: str) -> list[dict[str, Any]]:
    if len(rows) < 5:
        return []
    values = numbers([r.get(column) for r in rows])
    patterns: list[dict[str, Any]] = []
    skew = skewness(values)
    if abs(skew) < SKEW_THRESHOLD:
        sub, text = "normal", f"{column} appears to be normally distributed"
    elif skew > 0:
        sub, text = "right-skewed", f"{column} has a right-skewed distribution with more values below the mean"
    else:
        sub, text = "left-skewed", f"{column} has a left-skewed distribution with more values above the mean"
    patterns.append({"type": "distribution", "sub_type": sub, "metric": column, "skewness": skew, "description": text})

    outliers = find_outliers(values)
    if outliers:
        share = len(outliers) / len(values) * 100
        patterns.append({
            "type": "outliers",
            "metric": column,
            "outlier_count": len(outliers),
            "outlier_percentage": share,
            "description": f"{column} has {len(outliers)} outliers ({share:.1f}% of values)",
        })
    return patterns


def identify_category_patterns(rows: list[Row], column: str, measure: str | None = None) -> list[dict[str, Any]]:
    """Dominant-category and Pareto checks.

    Categories are weighted by *measure* when given, otherwise by row count.
    """
    if len(rows) < 5:
        return []
    weights: dict[str, float] = {}
    for row in rows:
        key = str(row.get(column))
        weight = to_number(row.get(measure)) if measure else 1.0
        weights[key] = weights.get(key, 0.0) + (weight or 0.0)
    total = sum(weights.values())
    if total <= 0:
        return []
    ranked = sorted(weights.items(), key=lambda kv: kv[1], reverse=True)
    patterns: list[dict[str, Any]] = []

    top_cat, top_weight = ranked[0]
    top_share = top_weight / total * 100
    if top_share > 50:
        patterns.append({
            "type": "category",
            "sub_type": "dominant",
            "metric": column,
            "dominant_category": top_cat,
            "percentage": top_share,
            "description": f"{column} has a dominant category: {top_cat} ({top_share:.1f}% of data)",
        })

    if len(ranked) >= PARETO_MIN_CATEGORIES:
        top_n = math.ceil(len(ranked) * 0.2)
        share = sum(w for _, w in ranked[:top_n]) / total
        if share >= PARETO_SHARE:
            patterns.append({
                "type": "category",
                "sub_type": "pareto",
                "metric": column,
                "pareto_categories": top_n,
                "total_categories": len(ranked),
                "share": share * 100,
                "description": (
                    f"{column} shows a Pareto distribution: the top {top_n} of "
                    f"{len(ranked)} categories account for {share * 100:.1f}% of the total"
                ),
            })
    return patterns


def identify_patterns(rows: list[Row]) -> list[dict[str, Any]]:
    """All detectors over flat rows, in a fixed order."""
    if not rows:
        return []
    patterns: list[dict[str, Any]] = []

    time_col = time_column(rows)
    if time_col:
        patterns.extend(identify_time_series_patterns(rows, time_col))

    numeric = numeric_columns(rows)
    if len(numeric) >= 2:
        patterns.extend(identify_correlations(rows, numeric))
    for col in numeric:
        patterns.extend(identify_distribution_patterns(rows, col))

    types = infer_column_types(rows)
    measure = next((c for c in numeric if c != time_col), None)
    for col, kind in types.items():
        if kind == CATEGORICAL and len(column_values(rows, col)) == len(rows):
            patterns.extend(identify_category_patterns(rows, col, measure))
    return patterns


# ── Insights ────────────────────────────────────────────

def _insight_from_pattern(pattern: dict[str, Any]) -> dict[str, Any] | None:
    kind = pattern["type"]
    desc = pattern["description"]
    if kind == "trend":
        return make_insight("trend", desc, metric=pattern["metric"], trend=pattern["sub_type"])
    if kind == "seasonality":
        return make_insight("seasonality", desc, metric=pattern["metric"], time_dimension=pattern["time_dimension"])
    if kind == "correlation":
        return make_insight(
            "correlation", desc,
            metrics=pattern["metrics"], correlation_type=pattern["sub_type"], strength=pattern["strength"],
        )
    if kind == "distribution":
        return make_insight("distribution", desc, metric=pattern["metric"], distribution_type=pattern["sub_type"])
    if kind == "outliers":
        return make_insight("outliers", desc, metric=pattern["metric"], outlier_count=pattern["outlier_count"])
    if kind == "category":
        return make_insight(
            "category", desc, metric=pattern["metric"],
            sub_type=pattern["sub_type"], category_pattern=pattern["sub_type"],
        )
    return None


def generate_insights(rows: list[Row], patterns: list[dict[str, Any]], stats: dict[str, Any]) -> list[dict[str, Any]]:
    """Verbalise patterns and column statistics as insight records."""
    if not rows:
        return []
    insights = [make_insight(
        "observation",
        f"Dataset contains {len(rows)} rows and {len(column_names(rows))} columns.",
    )]
    for pattern in patterns:
        insight = _insight_from_pattern(pattern)
        if insight:
            insights.append(insight)

    for col, details in stats.get("columns", {}).items():
        if details.get("type") == NUMERIC and details["max"] - details["min"] > 0:
            insights.append(make_insight(
                "extremes",
                f"{col} ranges from {details['min']:g} to {details['max']:g} with an average of {details['mean']:.2f}",
                metric=col, min=details["min"], max=details["max"], mean=details["mean"],
            ))
        elif details.get("type") == CATEGORICAL:
            share = details["most_frequent_count"] / len(rows) * 100
            insights.append(make_insight(
                "frequency",
                f'Most frequent value for {col} is "{details["most_frequent"]}" ({share:.1f}% of data)',
                metric=col, most_frequent=details["most_frequent"],
                frequency=details["most_frequent_count"], percentage=share,
            ))
    return insights
