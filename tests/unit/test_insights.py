"""
Unit tests -- insight records, importance tiers and merging.
"""
import pytest

from src.narrative.insights import (
    HIGH,
    LOW,
    MEDIUM,
    by_importance,
    importance_for,
    make_insight,
    merge_insights,
    rank_insights,
)


@pytest.mark.parametrize("kind,sub_type,tier", [
    ("trend", None, HIGH),
    ("seasonality", None, HIGH),
    ("period-comparison", None, HIGH),
    ("correlation", None, MEDIUM),
    ("category", None, MEDIUM),
    ("category", "dominant", HIGH),
    ("category", "pareto", MEDIUM),
    ("trend-direction", "stable", MEDIUM),
    ("observation", None, LOW),
    ("something-new", None, MEDIUM),
])
def test_importance_table(kind, sub_type, tier):
    assert importance_for(kind, sub_type) == tier


def test_make_insight_fields():
    insight = make_insight("total", "The total Sales is 5.", value=5, metric="Sales")
    assert insight == {
        "type": "total",
        "importance": MEDIUM,
        "description": "The total Sales is 5.",
        "value": 5,
        "metric": "Sales",
    }


def test_make_insight_explicit_importance():
    assert make_insight("observation", "x", importance=HIGH)["importance"] == HIGH


def test_same_finding_same_rank():
    a = make_insight("trend", "Sales rising")
    b = make_insight("trend", "Sales rising")
    assert a["importance"] == b["importance"]


def test_rank_is_stable():
    insights = [
        make_insight("observation", "o"),
        make_insight("range", "r1"),
        make_insight("trend", "t"),
        make_insight("range", "r2"),
    ]
    assert [i["description"] for i in rank_insights(insights)] == ["t", "r1", "r2", "o"]


def test_merge_drops_repeated_descriptions():
    first = [make_insight("trend", "same"), make_insight("observation", "only-first")]
    second = [make_insight("trend", "same"), make_insight("range", "only-second")]
    merged = merge_insights(first, None, second)
    assert [i["description"] for i in merged] == ["same", "only-second", "only-first"]


def test_by_importance():
    insights = [make_insight("trend", "t"), make_insight("observation", "o")]
    assert [i["description"] for i in by_importance(insights, LOW)] == ["o"]
