"""
Cross-dataset checks for Combined Datasets with named components
(trend/summary, performers/details, historical/prediction).
"""
from __future__ import annotations

import math
import re
from typing import Any

from src.analysis.patterns import numeric_columns, sort_by_time, time_column
from src.analysis.roles import Row, find_common_dimension
from src.analysis.stats import correlation
from src.narrative.insights import make_insight
from src.core.utils import to_datetime, to_number
from src.core.logging import get_logger

logger = get_logger(__name__)

CONSISTENCY_TOLERANCE_PCT = 5.0
DETAIL_CORRELATION_THRESHOLD = 0.5
STABLE_CHANGE_PCT = 5.0


def _simple_name(name: str) -> str:
    return re.sub(r"[_\-\s]", "", name.lower())


def _related_measures(a: str, b: str) -> bool:
    sa, sb = _simple_name(a), _simple_name(b)
    return sa in sb or sb in sa or ("total" in sa and "total" in sb)


def _display_time(value: Any) -> Any:
    if isinstance(value, (int, float)):
        return value
    moment = to_datetime(value)
    return moment.date().isoformat() if moment is not None else value


def _strength(pct: float) -> str:
    size = abs(pct)
    if size < 5:
        return "slight"
    return "moderate" if size < 20 else "strong"


def _direction(pct: float) -> str:
    if pct > 0:
        return "increasing"
    return "decreasing" if pct < 0 else "stable"


def _pct_change(first: float, last: float) -> float | None:
    return (last - first) / first * 100 if first else None


# ── Trend / summary ─────────────────────────────────────

def analyze_trend_summary(data: dict[str, Any]) -> list[dict[str, Any]]:
    """Trend totals versus same-named summary figures, and trend time span."""
    trends, summary = data.get("trends") or [], data.get("summary") or []
    if not trends or not summary:
        return []
    relationships: list[dict[str, Any]] = []
    time_col = time_column(trends)
    trend_measures = numeric_columns(trends, exclude=(time_col,) if time_col else ())
    summary_measures = numeric_columns(summary)

    for trend_measure in trend_measures:
        trend_total = sum(to_number(r.get(trend_measure)) for r in trends)
        for summary_measure in summary_measures:
            if not _related_measures(trend_measure, summary_measure):
                continue
            summary_value = to_number(summary[0].get(summary_measure))
            diff = abs(trend_total - summary_value)
            pct = diff / abs(trend_total) * 100 if trend_total else None
            if pct is not None and pct < CONSISTENCY_TOLERANCE_PCT:
                relationships.append({
                    "type": "trend-summary-match",
                    "trend_measure": trend_measure,
                    "summary_measure": summary_measure,
                    "trend_total": trend_total,
                    "summary_value": summary_value,
                    "difference": diff,
                    "percent_difference": pct,
                    "description": (
                        f"{trend_measure} total from trend data ({trend_total:.2f}) approximately "
                        f"matches {summary_measure} in summary ({summary_value:.2f})"
                    ),
                })

    if time_col and len(trends) > 1:
        ordered = sort_by_time(trends, time_col)
        first = _display_time(ordered[0].get(time_col))
        last = _display_time(ordered[-1].get(time_col))
        relationships.append({
            "type": "trend-time-range",
            "time_dimension": time_col,
            "first_time": first,
            "last_time": last,
            "point_count": len(trends),
            "description": f"Trend data spans from {first} to {last} with {len(trends)} data points",
        })
    return relationships


def identify_trend_direction(trends: list[Row]) -> dict[str, Any] | None:
    """First-to-last change of the primary trend measure; stable within 5%."""
    if len(trends) < 3:
        return None
    time_col = time_column(trends)
    if time_col is None:
        return None
    measures = numeric_columns(trends, exclude=(time_col,))
    if not measures:
        return None
    measure = measures[0]
    ordered = sort_by_time(trends, time_col)
    pct = _pct_change(to_number(ordered[0][measure]), to_number(ordered[-1][measure]))
    if pct is None:
        return None
    if abs(pct) < STABLE_CHANGE_PCT:
        desc = f"{measure} shows a relatively stable trend over time ({pct:.1f}% overall change)"
        direction = "stable"
    elif pct > 0:
        desc = f"{measure} shows an increasing trend over time ({pct:.1f}% overall growth)"
        direction = "increasing"
    else:
        desc = f"{measure} shows a decreasing trend over time ({abs(pct):.1f}% overall decline)"
        direction = "decreasing"
    return make_insight("trend-direction", desc, sub_type=direction, measure=measure, direction=direction, percent_change=pct)


# ── Performers / details ────────────────────────────────

def _details_per_key(details: list[Row], key: str) -> dict[Any, int]:
    counts: dict[Any, int] = {}
    for row in details:
        value = row.get(key)
        counts[value] = counts.get(value, 0) + 1
    return counts


def analyze_performers_details(data: dict[str, Any]) -> list[dict[str, Any]]:
    """Join coverage, details per performer and metric / detail-count correlation."""
    performers, details = data.get("performers") or [], data.get("details") or []
    if not performers or not details:
        return []
    key = find_common_dimension(performers, details)
    if key is None:
        return []

    performer_keys = {r.get(key) for r in performers}
    counts = _details_per_key(details, key)
    matching = [v for v in performer_keys if v in counts]
    coverage = len(matching) / len(performer_keys) * 100
    total_details = sum(counts.values())
    average = total_details / len(counts) if counts else 0.0

    relationships: list[dict[str, Any]] = [
        {
            "type": "performer-detail-coverage",
            "join_key": key,
            "performer_count": len(performer_keys),
            "matching_count": len(matching),
            "match_percentage": coverage,
            "description": (
                f"{len(matching)} out of {len(performer_keys)} performers "
                f"({coverage:.1f}%) have matching detail records"
            ),
        },
        {
            "type": "detail-distribution",
            "join_key": key,
            "total_details": total_details,
            "performers_with_details": len(counts),
            "avg_details_per_performer": average,
            "description": f"On average, each performer has {average:.2f} detail records",
        },
    ]

    detail_counts = [counts.get(r.get(key), 0) for r in performers]
    for metric in numeric_columns(performers, exclude=(key,)):
        r = correlation([to_number(p.get(metric)) for p in performers], detail_counts)
        if abs(r) >= DETAIL_CORRELATION_THRESHOLD:
            relationships.append({
                "type": "metric-detail-correlation",
                "metric": metric,
                "correlation": r,
                "direction": "positive" if r > 0 else "negative",
                "description": (
                    f"{'Positive' if r > 0 else 'Negative'} correlation ({r:.2f}) between "
                    f"{metric} and the number of detail records"
                ),
            })
    return relationships


def analyze_top_performer_details(performers: list[Row], details: list[Row]) -> dict[str, Any] | None:
    """Do the top 20% (at least 3) performers carry more detail rows than average?"""
    if not performers or not details:
        return None
    key = find_common_dimension(performers, details)
    if key is None:
        return None
    metrics = numeric_columns(performers, exclude=(key,))
    if not metrics:
        return None
    metric = metrics[0]
    counts = _details_per_key(details, key)

    ranked = sorted(performers, key=lambda r: to_number(r.get(metric)), reverse=True)
    top = ranked[: max(3, math.ceil(len(performers) * 0.2))]
    avg_all = sum(counts.get(r.get(key), 0) for r in performers) / len(performers)
    avg_top = sum(counts.get(r.get(key), 0) for r in top) / len(top)
    if avg_all == 0:
        return None
    ratio = avg_top / avg_all

    if abs(ratio - 1) < 0.1:
        sub = "similar"
        desc = (
            f"Top performers have a similar number of detail records ({avg_top:.1f}) "
            f"compared to the average ({avg_all:.1f})"
        )
    elif ratio > 1:
        sub = "more"
        desc = f"Top performers have {ratio:.1f}x more detail records ({avg_top:.1f}) than the average ({avg_all:.1f})"
    elif ratio > 0:
        sub = "fewer"
        desc = f"Top performers have {1 / ratio:.1f}x fewer detail records ({avg_top:.1f}) than the average ({avg_all:.1f})"
    else:
        sub = "fewer"
        desc = f"Top performers have no detail records while the average is {avg_all:.1f}"
    return make_insight(
        "top-performer-details", desc, sub_type=sub,
        join_key=key, top_performer_avg=avg_top, overall_avg=avg_all, ratio=ratio,
    )


# ── Historical / prediction ─────────────────────────────

def _continuity(last_hist: Any, first_pred: Any) -> str:
    for convert in (to_number, to_datetime):
        a, b = convert(last_hist), convert(first_pred)
        if a is not None and b is not None:
            return "continuous" if b > a else "overlapping"
    if last_hist != first_pred:
        return "gapped"
    return "unknown"


def _matching_measures(hist_cols: list[str], pred_cols: list[str]) -> list[tuple[str, str]]:
    pairs = []
    for h in hist_cols:
        for p in pred_cols:
            sh, sp = _simple_name(h), _simple_name(p)
            if sh in sp or sp in sh:
                pairs.append((h, p))
    return pairs


def prediction_accuracy(timeseries: list[Row], time_col: str) -> list[dict[str, Any]]:
    """MAPE per measure over time points present as both historical and prediction rows."""
    if not timeseries:
        return []
    hist = {r.get(time_col): r for r in timeseries if r.get("data_type") == "historical"}
    pred = {r.get(time_col): r for r in timeseries if r.get("data_type") == "prediction"}
    overlap = [t for t in hist if t in pred]
    if not overlap:
        return []
    measures = numeric_columns(timeseries, exclude=(time_col, "data_type"))
    out = []
    for measure in measures:
        errors = []
        for t in overlap:
            actual = to_number(hist[t].get(measure))
            predicted = to_number(pred[t].get(measure))
            if actual and predicted is not None:
                errors.append(abs((actual - predicted) / actual) * 100)
        if errors:
            mape = sum(errors) / len(errors)
            out.append({
                "type": "prediction-accuracy",
                "measure": measure,
                "mape": mape,
                "compare_points": len(errors),
                "description": (
                    f"Prediction accuracy for {measure}: MAPE of {mape:.2f}% "
                    f"across {len(errors)} comparison points"
                ),
            })
    return out


def analyze_historical_prediction(data: dict[str, Any]) -> list[dict[str, Any]]:
    """Continuity between the series, end-point transitions and MAPE."""
    historical, prediction = data.get("historical") or [], data.get("prediction") or []
    if not historical or not prediction:
        return []
    relationships: list[dict[str, Any]] = []
    hist_time = time_column(historical)
    pred_time = time_column(prediction)
    if hist_time is None or pred_time is None:
        shared = find_common_dimension(historical, prediction)
        hist_time = pred_time = shared
    if hist_time is None:
        return relationships

    hist_sorted = sort_by_time(historical, hist_time)
    pred_sorted = sort_by_time(prediction, pred_time)
    last_hist = hist_sorted[-1].get(hist_time)
    first_pred = pred_sorted[0].get(pred_time)
    continuity = _continuity(last_hist, first_pred)
    relationships.append({
        "type": "historical-prediction-continuity",
        "historical_time_dimension": hist_time,
        "prediction_time_dimension": pred_time,
        "last_historical_time": _display_time(last_hist),
        "first_prediction_time": _display_time(first_pred),
        "continuity": continuity,
        "description": (
            f"Historical data ends at {_display_time(last_hist)} and prediction data starts at "
            f"{_display_time(first_pred)} ({continuity})"
        ),
    })

    pairs = _matching_measures(
        numeric_columns(historical, exclude=(hist_time,)),
        numeric_columns(prediction, exclude=(pred_time,)),
    )
    for h_col, p_col in pairs:
        last_value = to_number(hist_sorted[-1].get(h_col))
        first_value = to_number(pred_sorted[0].get(p_col))
        diff = abs(first_value - last_value)
        pct = diff / abs(last_value) * 100 if last_value else None
        relationships.append({
            "type": "historical-prediction-transition",
            "historical_measure": h_col,
            "prediction_measure": p_col,
            "last_historical_value": last_value,
            "first_prediction_value": first_value,
            "absolute_difference": diff,
            "percentage_difference": pct,
            "description": (
                f"{h_col} transitions from {last_value:.2f} (historical) to {first_value:.2f} "
                f"(prediction) with {f'{pct:.2f}%' if pct is not None else 'N/A'} change"
            ),
        })

    time_col = data.get("time_column") or hist_time
    relationships.extend(prediction_accuracy(data.get("timeseries") or [], time_col))
    return relationships


def compare_historical_prediction_trends(historical: list[Row], prediction: list[Row]) -> dict[str, Any] | None:
    """Trend continuation or reversal between the two series."""
    if len(historical) < 3 or len(prediction) < 3:
        return None
    hist_time, pred_time = time_column(historical), time_column(prediction)
    if hist_time is None or pred_time is None:
        return None
    pairs = _matching_measures(
        numeric_columns(historical, exclude=(hist_time,)),
        numeric_columns(prediction, exclude=(pred_time,)),
    )
    if not pairs:
        return None
    h_col, p_col = pairs[0]
    hist = sort_by_time(historical, hist_time)
    pred = sort_by_time(prediction, pred_time)
    h_pct = _pct_change(to_number(hist[0][h_col]), to_number(hist[-1][h_col]))
    p_pct = _pct_change(to_number(pred[0][p_col]), to_number(pred[-1][p_col]))
    if h_pct is None or p_pct is None:
        return None

    h_dir, p_dir = _direction(h_pct), _direction(p_pct)
    fields = dict(
        historical_measure=h_col, prediction_measure=p_col,
        historical_change=h_pct, prediction_change=p_pct,
    )
    if h_dir == p_dir:
        return make_insight(
            "trend-continuation",
            f"Prediction continues the {_strength(h_pct)} {h_dir} historical trend "
            f"(historical: {h_pct:.1f}%, prediction: {p_pct:.1f}%)",
            continuity="same-direction", **fields,
        )
    return make_insight(
        "trend-reversal",
        f"Prediction shows a trend reversal from {_strength(h_pct)} {h_dir} ({h_pct:.1f}%) "
        f"to {_strength(p_pct)} {p_dir} ({p_pct:.1f}%)",
        continuity="reversal", **fields,
    )


# ── Dispatch and insights ───────────────────────────────

def analyze_dataset_relationships(data: dict[str, Any], query_type: str | None = None) -> list[dict[str, Any]]:
    if not isinstance(data, dict):
        return []
    if query_type == "trend-and-summary" or ("trends" in data and "summary" in data):
        return analyze_trend_summary(data)
    if query_type == "performers-with-details" or ("performers" in data and "details" in data):
        return analyze_performers_details(data)
    if query_type == "historical-prediction" or ("historical" in data and "prediction" in data):
        return analyze_historical_prediction(data)
    return []


_RELATIONSHIP_INSIGHTS = {
    "trend-summary-match": "trend-consistency",
    "trend-time-range": "time-coverage",
    "performer-detail-coverage": "performer-coverage",
    "detail-distribution": "detail-distribution",
    "metric-detail-correlation": "correlation",
    "historical-prediction-continuity": "prediction-continuity",
    "historical-prediction-transition": "measure-transition",
    "prediction-accuracy": "prediction-accuracy",
}


def generate_multi_dataset_insights(data: dict[str, Any], relationships: list[dict[str, Any]]) -> list[dict[str, Any]]:
    insights = [make_insight("observation", "Analysis includes multiple related datasets.")]
    for rel in relationships:
        kind = _RELATIONSHIP_INSIGHTS.get(rel["type"])
        if kind:
            extra = {k: v for k, v in rel.items() if k not in ("type", "description")}
            insights.append(make_insight(kind, rel["description"], relationship=rel["type"], **extra))

    if data.get("trends") and data.get("summary"):
        insight = identify_trend_direction(data["trends"])
        if insight:
            insights.append(insight)
    if data.get("performers") and data.get("details"):
        insight = analyze_top_performer_details(data["performers"], data["details"])
        if insight:
            insights.append(insight)
    if data.get("historical") and data.get("prediction"):
        insight = compare_historical_prediction_trends(data["historical"], data["prediction"])
        if insight:
            insights.append(insight)
    return insights


def analyze_multi_dataset(data: Any, query_type: str | None = None) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {"relationships": [], "insights": []}
    relationships = analyze_dataset_relationships(data, query_type)
    logger.info("Found %d cross-dataset relationships", len(relationships))
    return {"relationships": relationships, "insights": generate_multi_dataset_insights(data, relationships)}
