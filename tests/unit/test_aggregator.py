"""
Unit tests -- result aggregator strategies and fallbacks.
"""
import pytest

from src.analysis.aggregator import (
    STRATEGIES,
    combine_results,
    extract_dimension_name,
    extract_period_identifiers,
    get_strategy,
)
from src.planning.models import PlanStep, QueryPlan


def _plan(query_type, *steps):
    return QueryPlan(type="complex", query_type=query_type, steps=list(steps))


# ── Naming helpers ───────────────────────────────────────

@pytest.mark.parametrize("first,second,expected", [
    ("Total sales for period Q1 2023", "Total sales for period Q1 2022", ("2023", "2022")),
    ("Sales for period Q1 2023", "Sales for period Q3 2023", ("q1_2023", "q3_2023")),
    ("Current period sales", "Previous period sales", ("current", "previous")),
    ("period", "period", ("p1", "p2")),
])
def test_extract_period_identifiers(first, second, expected):
    assert extract_period_identifiers(first, second) == expected


@pytest.mark.parametrize("description,expected", [
    ("Total sales by Region", "region"),
    ("Category dimension totals", "category"),
    ("Product breakdown", "product"),
    ("Totals", "dimension"),
    ("", "dim"),
    (None, "dim"),
])
def test_extract_dimension_name(description, expected):
    assert extract_dimension_name(description) == expected


def test_registry():
    assert set(STRATEGIES) >= {
        "temporal-comparison",
        "multi-dimensional-aggregation",
        "trend-and-summary",
        "performers-with-details",
        "historical-prediction",
    }
    assert get_strategy("nope").query_type == "generic"
    assert get_strategy(None).query_type == "generic"


# ── Simple / degenerate inputs ───────────────────────────

def test_simple_plan_returns_data_directly():
    plan = QueryPlan(type="simple", steps=[PlanStep(id="main-query")])
    combined = combine_results([{"id": "main-query", "data": [{"a": 1}]}], plan)
    assert combined["type"] == "simple"
    assert combined["data"] == [{"a": 1}]
    assert combined["metadata"] == {"query_count": 1, "combination_method": "direct"}


def test_single_result_of_complex_plan_is_direct():
    combined = combine_results([{"id": "x", "data": [{"a": 1}]}], _plan("temporal-comparison"))
    assert combined["metadata"]["combination_method"] == "direct"


def test_empty_results_unknown_plan_never_raises():
    combined = combine_results([], {"type": "unknown"})
    assert combined["metadata"]["combination_method"]
    assert combined["data"] in ([], {})


def test_none_plan_never_raises():
    combined = combine_results([{"id": "a", "data": [{"x": 1}]}, {"id": "b", "data": []}], None)
    assert combined["metadata"]["combination_method"] == "generic"


def test_malformed_results_fall_back_with_error():
    combined = combine_results([{"id": "a", "data": [{"x": 1}]}, "garbage"], _plan("trend-and-summary"))
    assert "error" in combined
    assert combined["data"] == [{"x": 1}]
    assert combined["metadata"]["combination_method"] == "error-fallback"


# ── Temporal comparison ──────────────────────────────────

_Q1_STEPS = (
    PlanStep(id="period-1", description="Total Sales by Region for period Q1 2023", output_type="aggregated"),
    PlanStep(id="period-2", description="Total Sales by Region for period Q1 2022", output_type="aggregated"),
)


def test_temporal_comparison_rows():
    results = [
        {"id": "period-1", "data": [{"Region": "East", "Sales": 150.0}, {"Region": "West", "Sales": 80.0}]},
        {"id": "period-2", "data": [{"Region": "East", "Sales": 100.0}, {"Region": "North", "Sales": 40.0}]},
    ]
    combined = combine_results(results, _plan("temporal-comparison", *_Q1_STEPS))
    assert combined["type"] == "complex"
    assert combined["metadata"]["combination_method"] == "temporal-comparison"

    rows = {r["Region"]: r for r in combined["data"]}
    assert set(rows) == {"East", "West", "North"}
    assert set(rows["East"]) == {"Region", "Sales_2023", "Sales_2022", "Sales_diff", "Sales_pct_change"}
    assert rows["East"]["Sales_diff"] == pytest.approx(50.0)
    assert rows["East"]["Sales_pct_change"] == pytest.approx(50.0)
    # Missing in one period: no delta
    assert rows["West"]["Sales_2022"] is None
    assert rows["West"]["Sales_diff"] is None
    assert rows["North"]["Sales_2023"] is None


def test_temporal_zero_value_has_no_delta():
    results = [
        {"id": "period-1", "data": [{"Region": "East", "Sales": 10.0}]},
        {"id": "period-2", "data": [{"Region": "East", "Sales": 0}]},
    ]
    row = combine_results(results, _plan("temporal-comparison", *_Q1_STEPS))["data"][0]
    assert row["Sales_diff"] is None
    assert row["Sales_pct_change"] is None


@pytest.mark.parametrize("steps", [_Q1_STEPS, tuple(reversed(_Q1_STEPS))])
def test_temporal_diff_is_later_minus_earlier_whatever_the_step_order(steps):
    # period-1 holds Q1 2023, period-2 holds Q1 2022, in either declaration order
    results = [
        {"id": "period-1", "data": [{"Region": "East", "Sales": 150.0}]},
        {"id": "period-2", "data": [{"Region": "East", "Sales": 100.0}]},
    ]
    row = combine_results(results, _plan("temporal-comparison", *steps))["data"][0]
    assert list(row) == ["Region", "Sales_2022", "Sales_2023", "Sales_diff", "Sales_pct_change"]
    assert row["Sales_2022"] == 100.0
    assert row["Sales_2023"] == 150.0
    assert row["Sales_diff"] == pytest.approx(50.0)
    assert row["Sales_pct_change"] == pytest.approx(50.0)


def test_temporal_quarters_ordered_within_a_year():
    steps = (
        PlanStep(id="late", description="Total Sales by Region for period Q3 2023", output_type="aggregated"),
        PlanStep(id="early", description="Total Sales by Region for period Q1 2023", output_type="aggregated"),
    )
    results = [
        {"id": "late", "data": [{"Region": "East", "Sales": 90.0}]},
        {"id": "early", "data": [{"Region": "East", "Sales": 60.0}]},
    ]
    row = combine_results(results, _plan("temporal-comparison", *steps))["data"][0]
    assert list(row)[1:3] == ["Sales_q1_2023", "Sales_q3_2023"]
    assert row["Sales_diff"] == pytest.approx(30.0)


def test_temporal_without_period_steps_falls_back_to_generic():
    plan = _plan(
        "temporal-comparison",
        PlanStep(id="a", description="first", output_type="aggregated"),
        PlanStep(id="b", description="second", output_type="aggregated"),
    )
    combined = combine_results([{"id": "a", "data": [{"x": 1}]}, {"id": "b", "data": [{"x": 2}]}], plan)
    assert combined["metadata"]["combination_method"] == "generic"
    assert combined["data"]["a"] == {"description": "first", "output_type": "aggregated", "data": [{"x": 1}]}


# ── Multi-dimensional ────────────────────────────────────

def test_multi_dimensional_enriches_raw_rows():
    plan = _plan(
        "multi-dimensional-aggregation",
        PlanStep(id="detail", description="Detailed records", output_type="raw-data"),
        PlanStep(id="d1", description="Total Sales by Region", output_type="aggregated"),
        PlanStep(id="d2", description="Total Sales by Category", output_type="aggregated"),
    )
    results = [
        {"id": "detail", "data": [
            {"Region": "East", "Category": "Toys", "Sales": 5},
            {"Region": "West", "Category": "Food", "Sales": 7},
        ]},
        {"id": "d1", "data": [{"Region": "East", "total_sales": 50}, {"Region": "West", "total_sales": 70}]},
        {"id": "d2", "data": [{"Category": "Toys", "total_sales": 11}]},
    ]
    combined = combine_results(results, plan)
    first, second = combined["data"]
    assert first["region_total_sales"] == 50
    assert first["category_total_sales"] == 11
    assert second["region_total_sales"] == 70
    assert "category_total_sales" not in second


# ── Named-component shapes ───────────────────────────────

def test_trend_summary_broadcasts_single_summary_row():
    plan = _plan(
        "trend-and-summary",
        PlanStep(id="trend", description="Sales trend over time", output_type="aggregated"),
        PlanStep(id="summary", description="Overall summary", output_type="summary"),
    )
    results = [
        {"id": "trend", "data": [{"Date": "2023-01-01", "total_sales": 10}, {"Date": "2023-02-01", "total_sales": 20}]},
        {"id": "summary", "data": [{"total_sales": 30, "record_count": 2}]},
    ]
    data = combine_results(results, plan)["data"]
    assert data["trends"] == results[0]["data"]
    assert data["summary"] == results[1]["data"]
    assert data["combined"][0]["summary_total_sales"] == 30
    assert len(data["combined"]) == 2


def test_trend_summary_joins_on_shared_dimension():
    plan = _plan(
        "trend-and-summary",
        PlanStep(id="t", description="trend by region", output_type="aggregated"),
        PlanStep(id="s", description="totals by region", output_type="summary"),
    )
    results = [
        {"id": "t", "data": [{"Region": "East", "month": 1, "v": 1}, {"Region": "West", "month": 1, "v": 2}]},
        {"id": "s", "data": [{"Region": "East", "total": 9}, {"Region": "West", "total": 8}]},
    ]
    combined = combine_results(results, plan)["data"]["combined"]
    assert combined[0]["summary_total"] == 9
    assert combined[1]["summary_total"] == 8
    assert "summary_Region" not in combined[0]


def test_performers_with_details():
    plan = _plan(
        "performers-with-details",
        PlanStep(id="top", description="Top 2 performers by sales", output_type="aggregated"),
        PlanStep(id="det", description="Record details for each Region", output_type="raw-data"),
    )
    results = [
        {"id": "top", "data": [{"Region": "East", "total_sales": 9}, {"Region": "West", "total_sales": 5}]},
        {"id": "det", "data": [{"Region": "East", "Sales": 4}, {"Region": "East", "Sales": 5}, {"Region": "West", "Sales": 5}]},
    ]
    data = combine_results(results, plan)["data"]
    east, west = data["combined"]
    assert len(east["details"]) == 2
    assert len(west["details"]) == 1


def test_historical_prediction_timeseries():
    plan = _plan(
        "historical-prediction",
        PlanStep(id="h", description="Historical sales", output_type="aggregated"),
        PlanStep(id="p", description="Forecast baseline", output_type="aggregated"),
    )
    results = [
        {"id": "h", "data": [{"month": 2, "v": 20}, {"month": 1, "v": 10}]},
        {"id": "p", "data": [{"month": 3, "v": 30}]},
    ]
    data = combine_results(results, plan)["data"]
    assert data["time_column"] == "month"
    assert [r["month"] for r in data["timeseries"]] == [1, 2, 3]
    assert [r["data_type"] for r in data["timeseries"]] == ["historical", "historical", "prediction"]


def test_unknown_query_type_generic():
    plan = {"type": "complex", "queryType": "mystery", "steps": [{"id": "a", "description": "A"}, {"id": "b"}]}
    combined = combine_results([{"id": "a", "data": [1]}, {"id": "b", "data": [2]}], plan)
    assert combined["query_type"] == "mystery"
    assert combined["data"]["a"]["description"] == "A"
    assert combined["data"]["b"]["output_type"] == "raw-data"
