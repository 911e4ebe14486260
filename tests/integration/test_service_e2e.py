"""
Integration tests -- full analysis pipeline with live SQL execution.

Tests the complete analyze() flow end-to-end: question → plan → SQL →
execute → combine → insights → narrative, against a SQLite sales table.
"""
from __future__ import annotations

import pytest
from sqlalchemy import text

from src.db.connection import build_engine
from src.db.executor import SqlExecutor
from src.pipeline.service import analyze
from src.schema.models import ColumnDescriptor

COLUMNS = [
    ColumnDescriptor(name="Date", type="date"),
    ColumnDescriptor(name="Region", type="string"),
    ColumnDescriptor(name="Sales", type="float"),
]

SALES = [
    ("2022-02-10", "East", 60.0),
    ("2022-03-05", "East", 40.0),
    ("2022-05-01", "East", 500.0),
    ("2022-01-20", "West", 200.0),
    ("2023-01-11", "East", 150.0),
    ("2023-02-02", "West", 90.0),
    ("2023-03-30", "West", 90.0),
    ("2023-07-14", "West", 20.0),
]


@pytest.fixture(scope="module")
def executor(tmp_path_factory):
    path = tmp_path_factory.mktemp("warehouse") / "sales.db"
    engine = build_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE sales (Date TEXT, Region TEXT, Sales REAL)"))
        conn.execute(
            text("INSERT INTO sales VALUES (:d, :r, :s)"),
            [{"d": d, "r": r, "s": s} for d, r, s in SALES],
        )
    yield SqlExecutor(engine=engine)
    engine.dispose()


# ── Simple path ──────────────────────────────────────────

def test_total_by_region(executor):
    result = analyze("total sales by region", COLUMNS, "sales", executor=executor)
    assert result.success, result.error
    assert result.rows == [
        {"Region": "East", "total_sales": 750.0},
        {"Region": "West", "total_sales": 400.0},
    ]
    assert any(i["type"] == "top-performer" for i in result.insights)
    assert result.narrative


# ── Temporal comparison ──────────────────────────────────

def test_quarter_comparison_by_region(executor):
    result = analyze(
        "compare total sales between Q1 2023 and Q1 2022 by region",
        COLUMNS, "sales", executor=executor,
    )
    assert result.success, result.error
    assert result.metadata["combination_method"] == "temporal-comparison"

    by_region = {r["Region"]: r for r in result.rows}
    assert by_region["East"]["Sales_2022"] == 100.0
    assert by_region["East"]["Sales_2023"] == 150.0
    assert by_region["East"]["Sales_diff"] == pytest.approx(50.0)
    assert by_region["East"]["Sales_pct_change"] == pytest.approx(50.0)
    assert by_region["West"]["Sales_2022"] == 200.0
    assert by_region["West"]["Sales_2023"] == 180.0
    assert by_region["West"]["Sales_diff"] == pytest.approx(-20.0)
    assert by_region["West"]["Sales_pct_change"] == pytest.approx(-10.0)


def test_year_comparison_runs_on_sqlite(executor):
    result = analyze(
        "compare total sales between 2022 and 2023 by region",
        COLUMNS, "sales", executor=executor,
    )
    assert result.success, result.error
    assert all("EXTRACT" not in s["full_sql"] for s in result.step_results)

    by_region = {r["Region"]: r for r in result.rows}
    assert by_region["East"]["Sales_2022"] == 600.0
    assert by_region["East"]["Sales_2023"] == 150.0
    assert by_region["West"]["Sales_2023"] == 200.0


def test_missing_table_fails_at_execution(executor):
    result = analyze("total sales by region", COLUMNS, "no_such_table", executor=executor)
    assert not result.success
    assert result.error["stage"] == "execution"
    assert "no_such_table" in result.error["message"]
