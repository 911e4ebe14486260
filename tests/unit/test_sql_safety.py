"""
Unit tests -- SQL safety gate on composed statements.
"""
import pytest

from src.governance.sql_safety import check_sql_safety, is_safe_query

_SAFE_SQL = (
    "SELECT Region, SUM(Sales) AS total_sales FROM sales "
    "WHERE `Order Date` BETWEEN '2023-01-01' AND '2023-12-31' "
    "GROUP BY Region ORDER BY total_sales DESC LIMIT 10"
)


def test_safe_sql_passes():
    errors = check_sql_safety(_SAFE_SQL)
    assert errors == [], f"Expected no errors but got: {errors}"
    assert is_safe_query(_SAFE_SQL)


def test_cte_allowed():
    assert check_sql_safety("WITH x AS (SELECT Sales FROM t) SELECT * FROM x") == []


# ── 1. Must start with SELECT ───────────────────────────

def test_not_select():
    errors = check_sql_safety("EXPLAIN SELECT 1")
    assert any("SELECT" in e for e in errors)


# ── 2. No multi-statement ───────────────────────────────

def test_multi_statement():
    errors = check_sql_safety("SELECT Sales FROM t LIMIT 10; DROP TABLE t")
    assert any("Multi-statement" in e for e in errors)


def test_trailing_semicolon_ok():
    assert check_sql_safety("SELECT Sales FROM t;") == []


# ── 3. No dangerous keywords ────────────────────────────

@pytest.mark.parametrize("statement", [
    "DROP TABLE foo",
    "ALTER TABLE foo ADD col int",
    "TRUNCATE TABLE foo",
    "DELETE FROM foo",
    "UPDATE foo SET x=1",
    "INSERT INTO foo VALUES (1)",
    "GRANT ALL ON foo TO public",
    "CREATE TABLE foo (id int)",
    "PRAGMA table_info(foo)",
])
def test_dangerous_keywords(statement):
    errors = check_sql_safety(statement)
    assert any("Dangerous" in e for e in errors)
    assert any("SELECT" in e for e in errors)


def test_keyword_inside_string_literal_is_ignored():
    sql = "SELECT Status FROM t WHERE Status = 'Update pending; drop later'"
    assert check_sql_safety(sql) == []


# ── 4. No SQL comments ──────────────────────────────────

def test_inline_comment():
    errors = check_sql_safety("SELECT Sales FROM t -- sneaky comment\nLIMIT 10")
    assert any("comment" in e.lower() for e in errors)


def test_block_comment():
    errors = check_sql_safety("SELECT Sales /* hidden */ FROM t")
    assert any("comment" in e.lower() for e in errors)


# ── 5. Catalog access ───────────────────────────────────

@pytest.mark.parametrize("sql,name", [
    ("SELECT tablename FROM pg_catalog.pg_tables", "pg_catalog"),
    ("SELECT table_name FROM information_schema.tables", "information_schema"),
    ("SELECT name FROM sqlite_master", "sqlite_master"),
])
def test_catalog_blocked(sql, name):
    errors = check_sql_safety(sql)
    assert any(name in e for e in errors)


# ── Edge cases ───────────────────────────────────────────

def test_empty_sql():
    assert len(check_sql_safety("")) >= 1
    assert not is_safe_query("")
