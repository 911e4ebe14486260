"""
Statistical analyzer entry points.

``analyze_data`` inspects the shape of a result (flat rows, a period
comparison, or a Combined Dataset with named components) and runs the
matching analysis.  It never raises: on failure it returns basic stats
tagged with ``error``.
"""
from __future__ import annotations

import datetime
from typing import Any

from src.analysis.comparison import analyze_comparison_data, analyze_comparisons
from src.analysis.patterns import generate_insights, identify_patterns
from src.analysis.relationships import analyze_dataset_relationships, analyze_multi_dataset
from src.analysis.stats import generate_basic_stats
from src.core.logging import get_logger

logger = get_logger(__name__)

_COMPARISON_MARKERS = ("_diff", "_pct_change")
_COMPARISON_SUFFIXES = ("_current", "_previous", "_period1", "_period2")

# Named-component shapes: sub-type -> (first key, second key, joined key)
_MULTI_SHAPES = (
    ("trend-summary", "trends", "summary", "combined"),
    ("performers-details", "performers", "details", "combined"),
    ("historical-prediction", "historical", "prediction", "timeseries"),
)

ANALYSIS_TYPES = ("statistical", "pattern", "relationship", "comparison")


def _rows_of(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []
    if isinstance(data.get("data"), list):
        return data["data"]
    # Generic combination: {step_id: {"description", "output_type", "data"}}
    for entry in data.values():
        if isinstance(entry, dict) and isinstance(entry.get("data"), list) and entry["data"]:
            return entry["data"]
    return []


def _is_comparison_row(row: Any) -> bool:
    if not isinstance(row, dict):
        return False
    return any(
        any(m in key for m in _COMPARISON_MARKERS) or key.endswith(_COMPARISON_SUFFIXES)
        for key in row
    )


def determine_data_structure(data: Any) -> dict[str, Any]:
    """Classify *data* as ``simple-array``, ``comparison``, ``multi-dataset`` or ``unknown``.

    A flat row list whose rows carry ``_diff`` / ``_pct_change`` columns is a
    comparison, as is a dict wrapping such rows under ``data``.
    """
    if isinstance(data, list):
        if data and _is_comparison_row(data[0]):
            return {"type": "comparison", "row_count": len(data), "column_count": len(data[0])}
        return {
            "type": "simple-array",
            "row_count": len(data),
            "column_count": len(data[0]) if data and isinstance(data[0], dict) else 0,
        }

    if isinstance(data, dict):
        inner = data.get("data")
        if isinstance(inner, list) and inner and _is_comparison_row(inner[0]):
            return {"type": "comparison", "row_count": len(inner), "column_count": len(inner[0])}
        for sub_type, first, second, joined in _MULTI_SHAPES:
            if first in data and second in data:
                return {
                    "type": "multi-dataset",
                    "sub_type": sub_type,
                    "datasets": {
                        first: len(data.get(first) or []),
                        second: len(data.get(second) or []),
                        joined: len(data.get(joined) or []),
                    },
                }

    return {
        "type": "unknown",
        "is_object": isinstance(data, dict),
        "property_count": len(data) if isinstance(data, dict) else 0,
    }


def analyze_simple_data(rows: list[dict[str, Any]]) -> dict[str, Any]:
    if not rows:
        return {"basic_stats": generate_basic_stats([]), "patterns": [], "insights": []}
    stats = generate_basic_stats(rows)
    patterns = identify_patterns(rows)
    return {
        "basic_stats": stats,
        "patterns": patterns,
        "insights": generate_insights(rows, patterns, stats),
    }


def _metadata(query_type: str | None, structure_type: str, error: bool = False) -> dict[str, Any]:
    meta = {
        "query_type": query_type or structure_type,
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }
    if error:
        meta["error"] = True
    return meta


def analyze_data(data: Any, query_type: str | None = None) -> dict[str, Any]:
    """Full analysis of a result set or Combined Dataset.

    Parameters
    ----------
    data : list[dict] or dict
        Flat rows, or the ``data`` payload of a Combined Dataset.
    query_type : str, optional
        The plan's query type, used to pick the relationship checks.

    Returns
    -------
    dict
        ``{"data_structure", ..., "insights", "metadata"}``; on failure
        ``{"error", "basic_stats", "metadata"}``.
    """
    try:
        structure = determine_data_structure(data)
        kind = structure["type"]
        if kind == "simple-array":
            result = analyze_simple_data(data)
        elif kind == "comparison":
            result = analyze_comparison_data(data)
        elif kind == "multi-dataset":
            result = analyze_multi_dataset(data, query_type)
        else:
            result = analyze_simple_data(_rows_of(data))
        logger.info("Analyzed %s data: %d insights", kind, len(result.get("insights", [])))
        return {"data_structure": structure, **result, "metadata": _metadata(query_type, kind)}
    except Exception as exc:
        logger.exception("Error analyzing data")
        rows = [r for r in data if isinstance(r, dict)] if isinstance(data, list) else []
        return {
            "error": f"Error analyzing data: {exc}",
            "basic_stats": generate_basic_stats(rows),
            "insights": [],
            "metadata": _metadata(query_type, "unknown", error=True),
        }


def generate_targeted_analysis(
    data: Any,
    analysis_type: str,
    query_type: str | None = None,
    force_comparison: bool = False,
) -> dict[str, Any]:
    """Run a single aspect of the analysis.

    *analysis_type* is one of ``statistical``, ``pattern``, ``relationship``
    or ``comparison``; anything else returns an ``error``.
    """
    if analysis_type not in ANALYSIS_TYPES:
        return {"type": "unknown", "error": f"Unknown analysis type: {analysis_type}"}
    try:
        structure = determine_data_structure(data)
        if analysis_type == "statistical":
            return {"type": "statistical", "stats": generate_basic_stats(_rows_of(data))}
        if analysis_type == "pattern":
            return {"type": "pattern", "patterns": identify_patterns(_rows_of(data))}
        if analysis_type == "relationship":
            if structure["type"] != "multi-dataset":
                return {
                    "type": "relationship",
                    "error": "Relationship analysis requires multi-dataset data",
                    "relationships": [],
                }
            return {"type": "relationship", "relationships": analyze_dataset_relationships(data, query_type)}
        if analysis_type == "comparison":
            if structure["type"] != "comparison" and not force_comparison:
                return {
                    "type": "comparison",
                    "error": "Comparison analysis requires comparison data",
                    "comparisons": [],
                }
            return {"type": "comparison", "comparisons": analyze_comparisons(_rows_of(data))}
    except Exception as exc:
        logger.exception("Error in %s analysis", analysis_type)
        return {"type": analysis_type, "error": f"Error in {analysis_type} analysis: {exc}"}
