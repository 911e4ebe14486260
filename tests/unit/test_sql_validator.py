"""
Unit tests -- schema validation of FROM-less SELECT drafts.
"""
import pytest

from src.governance.sql_validator import ERR_FROM, ERR_NO_COLUMNS, ERR_NOT_SELECT, validate_sql
from src.schema.models import ColumnDescriptor


@pytest.fixture(scope="module")
def columns():
    return [
        ColumnDescriptor(name="Sales", type="float"),
        ColumnDescriptor(name="Region", type="string"),
        ColumnDescriptor(name="Sales Date", type="date"),
        ColumnDescriptor(name="Product Category", type="string"),
    ]


# ── Accepted drafts ──────────────────────────────────────

@pytest.mark.parametrize("sql", [
    "SELECT Sales, Region",
    "select sales, region",
    "SELECT *",
    "SELECT * ",
    "SELECT DISTINCT *",
    "select distinct * ",
    "SELECT ALL *",
    "SELECT EXTRACT(YEAR FROM `Sales Date`) AS yr",
    "SELECT Region, SUM(Sales) AS total_sales GROUP BY Region ORDER BY total_sales DESC",
    "SELECT Region WHERE Region = 'West' AND Sales > 100",
    "SELECT Region WHERE Region IN ('North Region', 'South')",
    "SELECT `Product Category`, AVG(Sales) AS avg_sales GROUP BY `Product Category`",
    "SELECT \"Product Category\", COUNT(*) AS n GROUP BY \"Product Category\"",
    "SELECT Region WHERE EXTRACT(YEAR FROM `Sales Date`) = 2023",
])
def test_valid_drafts(sql, columns):
    result = validate_sql(sql, columns)
    assert result.valid, result.error


def test_referenced_columns_reported(columns):
    result = validate_sql("SELECT Region, SUM(Sales) AS s GROUP BY Region", columns)
    assert result.referenced_columns == ["Region", "Sales"]


def test_partial_reference_to_multi_word_column(columns):
    result = validate_sql("SELECT Category, Sales", columns)
    assert result.valid
    assert "Product Category" in result.referenced_columns


# ── Rejected drafts ──────────────────────────────────────

def test_unknown_column_named_in_error(columns):
    result = validate_sql("SELECT Sales, Bogus", columns)
    assert not result.valid
    assert "Bogus" in result.error


def test_must_start_with_select(columns):
    result = validate_sql("UPDATE Sales SET Sales = 0", columns)
    assert not result.valid
    assert result.error == ERR_NOT_SELECT


def test_empty_sql_rejected(columns):
    assert validate_sql("", columns).error == ERR_NOT_SELECT


def test_from_clause_rejected(columns):
    result = validate_sql("SELECT Sales FROM orders", columns)
    assert not result.valid
    assert result.error == ERR_FROM


def test_extract_from_is_not_a_table_clause(columns):
    result = validate_sql("SELECT EXTRACT(MONTH FROM `Sales Date`) AS m, Sales", columns)
    assert result.valid


def test_unknown_extract_column(columns):
    result = validate_sql("SELECT EXTRACT(YEAR FROM `Order Date`) AS yr", columns)
    assert not result.valid
    assert "EXTRACT" in result.error
    assert "Order Date" in result.error


def test_where_literals_are_not_columns(columns):
    # 'Bogus' is a value on the right of '=', not a column reference
    result = validate_sql("SELECT Sales WHERE Region = 'Bogus'", columns)
    assert result.valid


def test_unknown_where_column(columns):
    result = validate_sql("SELECT Sales WHERE Country = 'US'", columns)
    assert not result.valid
    assert "Country" in result.error


def test_no_columns_referenced(columns):
    result = validate_sql("SELECT 1 AS one", columns)
    assert not result.valid
    assert result.error == ERR_NO_COLUMNS


def test_to_dict_omits_error_when_valid(columns):
    assert validate_sql("SELECT Sales", columns).to_dict() == {"valid": True}
    assert "error" in validate_sql("SELECT Bogus", columns).to_dict()


def test_distinct_star_matches_plain_star(columns):
    assert validate_sql("SELECT DISTINCT *", columns).valid == validate_sql("SELECT *", columns).valid
    assert validate_sql("SELECT DISTINCT Region", columns).referenced_columns == ["Region"]
    assert not validate_sql("SELECT DISTINCT Bogus", columns).valid
