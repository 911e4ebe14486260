"""
Unit tests -- analysis service: end-to-end pipeline with fake collaborators.
No database or API key is needed; the executor and LLM are injected.
"""
import json

import pytest

from src.core.errors import QueryExecutionError
from src.pipeline.service import AnalysisResult, analyze
from src.schema.models import ColumnDescriptor


@pytest.fixture(scope="module")
def columns():
    return [
        ColumnDescriptor(name="Date", type="date"),
        ColumnDescriptor(name="Region", type="string"),
        ColumnDescriptor(name="Sales", type="float"),
    ]


class FakeExecutor:
    """Records statements; *respond* maps SQL to rows or raises."""

    def __init__(self, respond=None):
        self.respond = respond or (lambda sql: [])
        self.calls = []

    def execute(self, sql, table_reference=None):
        self.calls.append(sql)
        rows = self.respond(sql)
        return {"rows": rows, "total_rows": len(rows)}


REGION_ROWS = [{"Region": "East", "total_sales": 10.0}, {"Region": "West", "total_sales": 20.0}]


def _quarter_rows(sql):
    if "2023-01-01" in sql:
        return [{"Region": "East", "Sales": 150.0}, {"Region": "West", "Sales": 80.0}]
    return [{"Region": "East", "Sales": 100.0}, {"Region": "West", "Sales": 100.0}]


# ── Simple path ──────────────────────────────────────────

def test_simple_question(columns):
    executor = FakeExecutor(lambda sql: REGION_ROWS)
    result = analyze("total sales by region", columns, "sales", executor=executor)

    assert isinstance(result, AnalysisResult)
    assert result.success
    assert result.sql == "SELECT Region, SUM(Sales) AS total_sales GROUP BY Region ORDER BY Region"
    assert result.full_sql == "SELECT Region, SUM(Sales) AS total_sales FROM sales GROUP BY Region ORDER BY Region"
    assert executor.calls == [result.full_sql]
    assert result.rows == REGION_ROWS
    assert result.plan["type"] == "simple"
    assert result.step_results[0]["id"] == "main-query"
    assert result.visualization["visualization_type"] == "single"
    assert result.insights
    assert result.narrative
    assert result.metadata["is_dimensional"] is True
    assert result.metadata["total_rows"] == 2
    assert result.metadata["dataset_name"] == "sales"
    assert result.retries == 0
    assert result.latency_ms >= 0


def test_to_dict_carries_success(columns):
    data = analyze("total sales by region", columns, "sales", executor=FakeExecutor(lambda sql: REGION_ROWS)).to_dict()
    assert data["success"] is True
    assert data["error"] is None
    json.dumps(data)


def test_empty_result_narrative(columns):
    result = analyze("total sales by region", columns, "sales", executor=FakeExecutor())
    assert result.success
    assert result.rows == []
    assert "didn't return any data" in result.narrative


def test_plan_failure_runs_single_query_with_warning(columns):
    executor = FakeExecutor(lambda sql: [{"total_sales": 30.0}])
    result = analyze("compare total sales between East and West", columns, "sales", executor=executor)
    assert result.success
    assert result.warnings == ["plan: Could not identify two periods to compare"]
    assert result.plan["error"]
    assert len(executor.calls) == 1


# ── Complex path ─────────────────────────────────────────

def test_temporal_comparison(columns):
    executor = FakeExecutor(_quarter_rows)
    result = analyze(
        "compare total sales between Q1 2023 and Q1 2022 by region",
        columns, "sales", executor=executor,
    )
    assert result.success, result.error
    assert [s["id"] for s in result.execution_sequence] == ["period-1", "period-2"]
    assert len(executor.calls) == 2
    assert all(" FROM sales " in sql for sql in executor.calls)
    assert result.metadata["combination_method"] == "temporal-comparison"
    assert result.metadata["total_rows"] == 4

    east = next(r for r in result.rows if r["Region"] == "East")
    assert east["Sales_2022"] == 100.0
    assert east["Sales_2023"] == 150.0
    assert east["Sales_diff"] == pytest.approx(50.0)
    assert east["Sales_pct_change"] == pytest.approx(50.0)
    assert result.visualization["visualization_type"] == "comparison"
    assert result.analysis["data_structure"]["type"] == "comparison"
    assert any(i["type"] == "period-comparison" for i in result.insights)


def test_step_failure_names_the_step(columns):
    def respond(sql):
        if "2022" in sql:
            raise QueryExecutionError("relation does not exist", sql=sql)
        return _quarter_rows(sql)

    result = analyze(
        "compare total sales between Q1 2023 and Q1 2022 by region",
        columns, "sales", executor=FakeExecutor(respond),
    )
    assert not result.success
    assert result.error["stage"] == "execution"
    assert result.error["step_id"] == "period-2"
    assert result.error["message"] == "relation does not exist"
    assert result.error["plan"]["query_type"] == "temporal-comparison"


# ── Failures ─────────────────────────────────────────────

def test_validation_failure_after_three_attempts(columns):
    prompts = []

    def llm(prompt):
        prompts.append(prompt)
        return "SELECT Bogus"

    executor = FakeExecutor()
    result = analyze("total sales by region", columns, "sales", llm=llm, executor=executor)

    assert not result.success
    assert result.error["stage"] == "validation"
    assert result.error["retries"] == 2
    assert "Bogus" in result.error["message"]
    assert result.error["sql"] == "SELECT Bogus"
    # one classification call, three generation attempts
    assert len(prompts) == 4
    assert executor.calls == []


def test_execution_failure(columns):
    def respond(sql):
        raise QueryExecutionError("no such table: sales")

    result = analyze("total sales by region", columns, "sales", executor=FakeExecutor(respond))
    assert result.error["stage"] == "execution"
    assert result.error["full_sql"].endswith("FROM sales GROUP BY Region ORDER BY Region")
    assert result.narrative == ""


def test_unsafe_table_reference_blocked(columns):
    executor = FakeExecutor()
    result = analyze("total sales by region", columns, "sales; DROP TABLE users", executor=executor)
    assert result.error["stage"] == "validation"
    assert "DROP" in result.error["message"]
    assert executor.calls == []


# ── LLM-driven complex plan ──────────────────────────────

def _scripted_llm(prompts):
    plan = {
        "steps": [
            {"id": "trend", "description": "Sales trend over time", "query": "sales by date",
             "outputType": "aggregated"},
            {"id": "summary", "description": "Overall summary", "query": "overall sales totals",
             "dependencies": ["trend", "ghost"], "outputType": "summary"},
        ]
    }

    def llm(prompt):
        prompts.append(prompt)
        if prompt.startswith("Decide whether"):
            return json.dumps({"isComplex": True, "reason": "trend plus totals", "queryType": "trend-and-summary"})
        if prompt.startswith("You are planning"):
            return json.dumps(plan)
        if "explains data insights" in prompt:
            return "Sales grew steadily."
        if "step 'trend'" in prompt:
            return "SELECT Date, SUM(Sales) AS total_sales FROM sales GROUP BY Date ORDER BY Date"
        return "SELECT SUM(Sales) AS total_sales"

    return llm


def _trend_rows(sql):
    if "GROUP BY" in sql:
        return [{"Date": f"2023-0{m}-01", "total_sales": 10.0 * m} for m in (1, 2, 3)]
    return [{"total_sales": 60.0}]


def test_llm_planned_trend_and_summary(columns):
    prompts = []
    executor = FakeExecutor(_trend_rows)
    result = analyze(
        "how have sales moved recently", columns, "sales",
        llm=_scripted_llm(prompts), executor=executor,
    )
    assert result.success, result.error
    assert [s["id"] for s in result.execution_sequence] == ["trend", "summary"]
    assert result.warnings == ["summary: Depends on unknown step(s): ghost"]
    assert executor.calls[0] == (
        "SELECT Date, SUM(Sales) AS total_sales FROM sales GROUP BY Date ORDER BY Date"
    )
    assert result.combined["metadata"]["combination_method"] == "trend-and-summary"
    assert len(result.combined["data"]["combined"]) == 3
    assert result.visualization["visualization_type"] == "trend-summary"
    assert result.narrative == "Sales grew steadily."
    assert any(r["type"] == "trend-summary-match" for r in result.analysis["relationships"])
