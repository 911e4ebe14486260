"""
Unit tests -- schema models and the Schema Context Builder.
"""
import pytest
from pydantic import ValidationError

from src.schema.context import (
    build_system_prompt,
    describe_schema,
    detect_query_patterns,
    summarize_schema,
)
from src.schema.models import ColumnDescriptor, DatasetContext, coerce_columns, coerce_context


@pytest.fixture(scope="module")
def columns():
    return [
        ColumnDescriptor(name="id", type="integer", primary_key=True, nullable=False),
        ColumnDescriptor(name="Order Date", type="date"),
        ColumnDescriptor(name="Region", type="string", description="Sales region"),
        ColumnDescriptor(name="Retail Sales", type="float", description="Gross sales"),
        ColumnDescriptor(name="Notes", type="string"),
    ]


# ── Models ───────────────────────────────────────────────

def test_sql_name_quotes_spaces():
    assert ColumnDescriptor(name="Retail Sales", type="float").sql_name == "`Retail Sales`"
    assert ColumnDescriptor(name="Region").sql_name == "Region"


def test_column_rejects_unknown_type():
    with pytest.raises(ValidationError):
        ColumnDescriptor(name="x", type="blob")


def test_coerce_from_dicts():
    cols = coerce_columns([{"name": "id", "type": "integer", "primaryKey": True}])
    assert cols[0].primary_key
    assert coerce_context(None) == DatasetContext()
    assert coerce_context({"purpose": "p"}).purpose == "p"


# ── Summary ──────────────────────────────────────────────

def test_summarize_schema(columns):
    summary = summarize_schema(columns)
    assert summary.numeric == ["id", "Retail Sales"]
    assert summary.date == ["Order Date"]
    assert summary.categorical == ["Region"]
    assert summary.other == ["Notes"]
    assert summary.has_spaces
    assert summary.supports_dimensional
    assert summary.supports_time_series
    assert summary.supports_correlation


# ── Description ──────────────────────────────────────────

def test_describe_schema_sections(columns):
    text = describe_schema(columns, "retail", DatasetContext(context="Weekly store sales", notes="n"))
    assert text.startswith("DATASET: retail")
    assert "DATASET CONTEXT: Weekly store sales" in text
    assert "ADDITIONAL NOTES: n" in text
    assert "DATASET PURPOSE" not in text
    assert "- id (integer) [PRIMARY KEY] [NOT NULL]" in text
    assert "- `Retail Sales` (float) - Gross sales [REQUIRES BACKTICKS IN SQL]" in text
    assert "ANALYSIS CONTEXT:" in text
    assert "DIMENSIONAL QUERY PATTERNS:" in text
    assert "COLUMN ALIASES AND EXPRESSIONS:" in text
    assert "SQL QUERY PATTERNS:" in text
    assert "Example: SELECT `Order Date`, `Retail Sales`" in text


def test_describe_schema_without_spaces():
    text = describe_schema([ColumnDescriptor(name="Sales", type="float")], "d")
    assert "IMPORTANT" not in text


# ── Pattern detection ────────────────────────────────────

def test_detect_query_patterns():
    p = detect_query_patterns("compare monthly sales by region vs last year top 5")
    assert p.dimensional and p.comparison and p.time_series and p.ranking
    assert detect_query_patterns("") == detect_query_patterns("hello")


def test_system_prompt_optional_sections(columns):
    plain = build_system_prompt(columns, "retail", question="show everything")
    ranked = build_system_prompt(columns, "retail", question="top 10 regions")
    assert "RANKING QUERY" not in plain
    assert "RANKING QUERY" in ranked
    assert "DO NOT include a FROM clause" in plain
