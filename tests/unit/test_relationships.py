"""
Unit tests -- cross-dataset relationship checks.
"""
import pytest

from src.analysis.relationships import (
    analyze_dataset_relationships,
    analyze_historical_prediction,
    analyze_multi_dataset,
    analyze_performers_details,
    analyze_top_performer_details,
    analyze_trend_summary,
    compare_historical_prediction_trends,
    generate_multi_dataset_insights,
    identify_trend_direction,
    prediction_accuracy,
)


# ── Trend / summary ──────────────────────────────────────

@pytest.fixture(scope="module")
def trend_summary():
    return {
        "trends": [
            {"month": 1, "total_sales": 10},
            {"month": 2, "total_sales": 20},
            {"month": 3, "total_sales": 30},
        ],
        "summary": [{"total_sales": 60.0}],
        "combined": [],
    }


def test_trend_summary_match_and_range(trend_summary):
    rels = analyze_trend_summary(trend_summary)
    match, span = rels
    assert match["type"] == "trend-summary-match"
    assert match["difference"] == 0
    assert span["type"] == "trend-time-range"
    assert span["description"] == "Trend data spans from 1 to 3 with 3 data points"


def test_trend_summary_mismatch_not_reported():
    data = {"trends": [{"month": 1, "total_sales": 10}, {"month": 2, "total_sales": 10}],
            "summary": [{"total_sales": 100}]}
    assert [r["type"] for r in analyze_trend_summary(data)] == ["trend-time-range"]


def test_trend_direction_increasing(trend_summary):
    insight = identify_trend_direction(trend_summary["trends"])
    assert insight["direction"] == "increasing"
    assert insight["importance"] == "high"
    assert insight["description"] == "total_sales shows an increasing trend over time (200.0% overall growth)"


def test_trend_direction_stable_is_medium():
    rows = [{"month": m, "v": v} for m, v in ((1, 100), (2, 103), (3, 102))]
    insight = identify_trend_direction(rows)
    assert insight["direction"] == "stable"
    assert insight["importance"] == "medium"


def test_trend_direction_needs_three_points():
    assert identify_trend_direction([{"month": 1, "v": 1}, {"month": 2, "v": 2}]) is None


# ── Performers / details ─────────────────────────────────

@pytest.fixture(scope="module")
def performers_details():
    performers = [
        {"Region": "East", "total_sales": 300},
        {"Region": "West", "total_sales": 200},
        {"Region": "North", "total_sales": 100},
    ]
    details = (
        [{"Region": "East", "Sales": 1}] * 3
        + [{"Region": "West", "Sales": 1}] * 2
        + [{"Region": "Mars", "Sales": 1}]
    )
    return {"performers": performers, "details": details, "combined": []}


def test_performer_detail_coverage(performers_details):
    rels = {r["type"]: r for r in analyze_performers_details(performers_details)}
    coverage = rels["performer-detail-coverage"]
    assert coverage["join_key"] == "Region"
    assert coverage["matching_count"] == 2
    assert coverage["description"] == "2 out of 3 performers (66.7%) have matching detail records"
    assert rels["detail-distribution"]["avg_details_per_performer"] == pytest.approx(2.0)
    assert rels["metric-detail-correlation"]["direction"] == "positive"


def test_top_performer_details_similar(performers_details):
    insight = analyze_top_performer_details(performers_details["performers"], performers_details["details"])
    assert insight["sub_type"] == "similar"
    assert insight["importance"] == "low"


def test_top_performer_details_more():
    performers = [{"Store": s, "total": t} for s, t in zip("ABCDEF", (600, 500, 400, 300, 200, 100))]
    details = [{"Store": s} for s in "AAAABBBBCCCCD"]
    insight = analyze_top_performer_details(performers, details)
    assert insight["sub_type"] == "more"
    assert insight["top_performer_avg"] == pytest.approx(4.0)


# ── Historical / prediction ──────────────────────────────

def _series(start, values):
    return [{"month": start + i, "sales": v} for i, v in enumerate(values)]


def test_historical_prediction_continuity_and_transition():
    data = {"historical": _series(1, [10, 20, 30]), "prediction": _series(4, [40, 50, 60])}
    rels = {r["type"]: r for r in analyze_historical_prediction(data)}
    assert rels["historical-prediction-continuity"]["continuity"] == "continuous"
    transition = rels["historical-prediction-transition"]
    assert transition["absolute_difference"] == 10
    assert transition["percentage_difference"] == pytest.approx(33.333, rel=1e-3)


def test_overlapping_series():
    data = {"historical": _series(1, [10, 20, 30]), "prediction": _series(2, [20, 30, 40])}
    (continuity, *_rest) = analyze_historical_prediction(data)
    assert continuity["continuity"] == "overlapping"


def test_prediction_accuracy_mape():
    timeseries = [
        {"month": 3, "sales": 30, "data_type": "historical"},
        {"month": 3, "sales": 33, "data_type": "prediction"},
    ]
    (accuracy,) = prediction_accuracy(timeseries, "month")
    assert accuracy["mape"] == pytest.approx(10.0)
    assert accuracy["compare_points"] == 1


def test_trend_continuation_and_reversal():
    hist = _series(1, [10, 20, 30])
    cont = compare_historical_prediction_trends(hist, _series(4, [40, 50, 60]))
    assert cont["type"] == "trend-continuation"
    assert cont["description"].startswith("Prediction continues the strong increasing historical trend")
    rev = compare_historical_prediction_trends(hist, _series(4, [60, 50, 40]))
    assert rev["type"] == "trend-reversal"
    assert rev["importance"] == "high"


# ── Dispatch ─────────────────────────────────────────────

def test_dispatch_by_shape(trend_summary, performers_details):
    assert analyze_dataset_relationships(trend_summary)[0]["type"] == "trend-summary-match"
    assert analyze_dataset_relationships(performers_details)[0]["type"] == "performer-detail-coverage"
    assert analyze_dataset_relationships([]) == []
    assert analyze_dataset_relationships({"other": []}) == []


def test_multi_dataset_insights(trend_summary):
    rels = analyze_trend_summary(trend_summary)
    insights = generate_multi_dataset_insights(trend_summary, rels)
    types = [i["type"] for i in insights]
    assert types == ["observation", "trend-consistency", "time-coverage", "trend-direction"]


def test_analyze_multi_dataset_non_dict():
    assert analyze_multi_dataset([1, 2]) == {"relationships": [], "insights": []}
