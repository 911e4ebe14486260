"""
Deterministic SQL safety checks (non-LLM).

The final gate before a composed statement reaches the warehouse.  Checks
operate on the SQL text with string literals masked out, so a filter value
such as ``'Update pending'`` never trips a keyword check.

Checks performed:
  1. SQL must be a single SELECT statement (no DDL / DML)
  2. No multi-statement SQL
  3. No dangerous keywords (DROP, ALTER, TRUNCATE, INSERT, UPDATE, DELETE, GRANT ...)
  4. No SQL comments (--, /*)
  5. No catalog schemas (pg_catalog, information_schema, sqlite_master)
"""
from __future__ import annotations

import re

from src.core.logging import get_logger

logger = get_logger(__name__)

# ── Compiled patterns ────────────────────────────────────

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")

_DANGEROUS_KW = re.compile(
    r"\b(DROP|ALTER|TRUNCATE|INSERT|UPDATE|DELETE|MERGE|GRANT|REVOKE|"
    r"CREATE|EXECUTE|EXEC|CALL|COPY|ATTACH|DETACH|PRAGMA|SET\s+ROLE|RESET\s+ROLE)\b",
    re.IGNORECASE,
)

_MULTI_STMT = re.compile(r";\s*\S")  # semicolon followed by non-whitespace

_COMMENT_INLINE = re.compile(r"--")
_COMMENT_BLOCK = re.compile(r"/\*")

_CATALOG_RE = re.compile(r"\b(pg_catalog|information_schema|sqlite_master|sqlite_schema)\b", re.IGNORECASE)


def is_safe_query(sql: str) -> bool:
    return not check_sql_safety(sql)


def check_sql_safety(sql: str) -> list[str]:
    """Return a list of safety violations (empty list = safe).

    Parameters
    ----------
    sql : str
        The composed SQL statement.
    """
    errors: list[str] = []
    masked = _STRING_LITERAL.sub("''", (sql or "").strip())

    # ── 1. Must start with SELECT (or WITH … SELECT for CTEs) ─────
    upper = masked.upper()
    if not (upper.startswith("SELECT") or upper.startswith("WITH")):
        errors.append("SQL must be a SELECT statement.")

    # ── 2. No multi-statement ────────────────────────
    if _MULTI_STMT.search(masked):
        errors.append("Multi-statement SQL is not allowed (found ';' followed by another statement).")

    # ── 3. No dangerous keywords ─────────────────────
    m = _DANGEROUS_KW.search(masked)
    if m:
        errors.append(f"Dangerous keyword detected: '{m.group(1).upper()}'.")

    # ── 4. No SQL comments (injection vector) ────────
    if _COMMENT_INLINE.search(masked):
        errors.append("Inline comments (--) are not allowed.")
    if _COMMENT_BLOCK.search(masked):
        errors.append("Block comments (/* */) are not allowed.")

    # ── 5. No catalog access ─────────────────────────
    m = _CATALOG_RE.search(masked)
    if m:
        errors.append(f"Blocked schema referenced: '{m.group(1).lower()}'.")

    if errors:
        logger.warning("SQL safety violations: %s", errors)
    return errors
