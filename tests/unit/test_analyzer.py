"""
Unit tests -- analyzer entry points and shape detection.
"""
import pytest

from src.analysis.analyzer import (
    ANALYSIS_TYPES,
    analyze_data,
    determine_data_structure,
    generate_targeted_analysis,
)


COMPARISON_ROWS = [
    {"Region": "East", "Sales_2022": 100.0, "Sales_2023": 150.0, "Sales_diff": 50.0, "Sales_pct_change": 50.0},
    {"Region": "West", "Sales_2022": 200.0, "Sales_2023": 180.0, "Sales_diff": -20.0, "Sales_pct_change": -10.0},
]

SIMPLE_ROWS = [{"Region": r, "total_sales": s} for r, s in (("East", 10), ("West", 20), ("North", 30))]


# ── Structure detection ──────────────────────────────────

@pytest.mark.parametrize("data,expected", [
    (SIMPLE_ROWS, "simple-array"),
    ([], "simple-array"),
    (COMPARISON_ROWS, "comparison"),
    ({"data": COMPARISON_ROWS}, "comparison"),
    ({"trends": [], "summary": [], "combined": []}, "multi-dataset"),
    ({"performers": [], "details": []}, "multi-dataset"),
    ({"historical": [], "prediction": [], "timeseries": []}, "multi-dataset"),
    ({}, "unknown"),
    (None, "unknown"),
])
def test_determine_data_structure(data, expected):
    assert determine_data_structure(data)["type"] == expected


def test_current_previous_suffix_is_comparison():
    assert determine_data_structure([{"k": "a", "v_current": 1, "v_previous": 2}])["type"] == "comparison"


def test_multi_dataset_sub_type():
    structure = determine_data_structure({"historical": [{"a": 1}], "prediction": [], "timeseries": []})
    assert structure["sub_type"] == "historical-prediction"
    assert structure["datasets"] == {"historical": 1, "prediction": 0, "timeseries": 0}


# ── analyze_data ─────────────────────────────────────────

def test_analyze_simple():
    result = analyze_data(SIMPLE_ROWS)
    assert result["data_structure"]["type"] == "simple-array"
    assert result["basic_stats"]["row_count"] == 3
    assert result["insights"][0]["type"] == "observation"
    assert result["metadata"]["query_type"] == "simple-array"
    assert "timestamp" in result["metadata"]


def test_analyze_comparison():
    result = analyze_data(COMPARISON_ROWS, "temporal-comparison")
    assert result["data_structure"]["type"] == "comparison"
    assert result["comparisons"]
    assert result["metadata"]["query_type"] == "temporal-comparison"


def test_analyze_multi_dataset():
    data = {
        "trends": [{"month": m, "total_sales": m * 10} for m in (1, 2, 3)],
        "summary": [{"total_sales": 60}],
        "combined": [],
    }
    result = analyze_data(data, "trend-and-summary")
    assert result["relationships"]
    assert any(i["type"] == "trend-direction" for i in result["insights"])


def test_analyze_generic_combination_uses_first_dataset():
    data = {"a": {"description": "A", "output_type": "aggregated", "data": SIMPLE_ROWS}}
    result = analyze_data(data)
    assert result["data_structure"]["type"] == "unknown"
    assert result["basic_stats"]["row_count"] == 3


def test_analyze_never_raises():
    result = analyze_data([1, 2, 3])
    assert "error" in result
    assert result["metadata"]["error"] is True
    assert result["basic_stats"]["row_count"] == 0


# ── Targeted analysis ────────────────────────────────────

def test_targeted_statistical():
    result = generate_targeted_analysis(SIMPLE_ROWS, "statistical")
    assert result["stats"]["row_count"] == 3


def test_targeted_pattern():
    assert generate_targeted_analysis(SIMPLE_ROWS, "pattern")["type"] == "pattern"


def test_targeted_relationship_requires_multi_dataset():
    result = generate_targeted_analysis(SIMPLE_ROWS, "relationship")
    assert result["error"] == "Relationship analysis requires multi-dataset data"


def test_targeted_comparison():
    assert generate_targeted_analysis(SIMPLE_ROWS, "comparison")["error"]
    forced = generate_targeted_analysis(COMPARISON_ROWS, "comparison")
    assert forced["comparisons"]
    assert "error" not in generate_targeted_analysis(SIMPLE_ROWS, "comparison", force_comparison=True)


def test_targeted_unknown_type():
    assert generate_targeted_analysis(SIMPLE_ROWS, "astrology")["error"] == "Unknown analysis type: astrology"
    assert generate_targeted_analysis(None, "astrology")["type"] == "unknown"


@pytest.mark.parametrize("analysis_type", ANALYSIS_TYPES)
def test_targeted_known_types_report_their_type(analysis_type):
    result = generate_targeted_analysis(COMPARISON_ROWS, analysis_type)
    assert result["type"] == analysis_type
