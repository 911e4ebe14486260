"""
SQL composition -- normalises a validated draft and attaches the table.

``compose_sql`` always succeeds: it cleans the text, slices it into clauses,
and rebuilds ``SELECT .. FROM <table> [WHERE] [GROUP BY] [HAVING] [ORDER BY]
[LIMIT]`` in canonical order whatever order the draft used.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from src.governance.sql_tokenizer import clause_text, segment_clauses, tokenize
from src.core.logging import get_logger

logger = get_logger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_STRING_LITERAL_RE = re.compile(r"('(?:[^']|'')*')")
_PLACEHOLDER_FROM_RE = re.compile(r"\bFROM\s+\.\.\.", re.IGNORECASE)
# Single-quoted literals are matched first so quotes inside them survive.
_QUOTED_RE = re.compile(r"'(?:[^']|'')*'|\"([^\"]*)\"")
_LEADING_SELECT_RE = re.compile(r"^\s*SELECT\b", re.IGNORECASE)

_YEAR_EXTRACT_RE = re.compile(
    r"EXTRACT\s*\(\s*YEAR\s+FROM\s+[\"`']?([^\"`'\)]+?)[\"`']?\s*\)\s*=\s*(\d{4})",
    re.IGNORECASE,
)


def _double_to_backtick(match: re.Match[str]) -> str:
    if match.group(1) is None:
        return match.group(0)
    return f"`{match.group(1)}`"


def collapse_whitespace(sql: str) -> str:
    """Collapse whitespace runs to one space, leaving string literals untouched."""
    parts = _STRING_LITERAL_RE.split(sql or "")
    # Odd indices are the captured literals
    return "".join(
        part if i % 2 else _WHITESPACE_RE.sub(" ", part) for i, part in enumerate(parts)
    ).strip()


def clean_sql(sql: str) -> str:
    """Collapse whitespace, drop ``FROM ...`` placeholders, backtick-quote identifiers."""
    text = collapse_whitespace(sql)
    text = _PLACEHOLDER_FROM_RE.sub("", text)
    text = _QUOTED_RE.sub(_double_to_backtick, text)
    text = collapse_whitespace(text)
    return text.rstrip(";").strip()


@dataclass(frozen=True)
class SqlComponents:
    select_part: str = "*"
    where_part: str = ""
    group_by_part: str = ""
    having_part: str = ""
    order_by_part: str = ""
    limit_part: str = ""

    @property
    def has_where(self) -> bool:
        return bool(self.where_part)

    @property
    def has_group_by(self) -> bool:
        return bool(self.group_by_part)

    @property
    def has_having(self) -> bool:
        return bool(self.having_part)

    @property
    def has_order_by(self) -> bool:
        return bool(self.order_by_part)

    @property
    def has_limit(self) -> bool:
        return bool(self.limit_part)


def extract_components(sql: str) -> SqlComponents:
    """Slice *sql* into its top-level clauses.

    A top-level FROM clause, if any, is discarded.
    """
    tokens = tokenize(sql)
    spans = segment_clauses(sql, tokens)

    select_part = clause_text(sql, spans.get("SELECT"))
    if "SELECT" not in spans:
        # No SELECT keyword: everything before the first clause is the projection
        first = min((s.keyword_start for s in spans.values()), default=len(sql))
        select_part = _LEADING_SELECT_RE.sub("", sql[:first]).strip()

    return SqlComponents(
        select_part=select_part or "*",
        where_part=clause_text(sql, spans.get("WHERE")),
        group_by_part=clause_text(sql, spans.get("GROUP BY")),
        having_part=clause_text(sql, spans.get("HAVING")),
        order_by_part=clause_text(sql, spans.get("ORDER BY")),
        limit_part=clause_text(sql, spans.get("LIMIT")),
    )


def strip_table_clause(sql: str) -> str:
    """Remove a top-level ``FROM <table>`` clause; EXTRACT(.. FROM ..) is kept."""
    text = (sql or "").strip()
    span = segment_clauses(text).get("FROM")
    if span is None:
        return text
    logger.debug("Stripping table clause '%s'", text[span.keyword_start:span.body_end].strip())
    stripped = f"{text[:span.keyword_start].rstrip()} {text[span.body_end:].lstrip()}"
    return collapse_whitespace(stripped)


def _quote_identifier(name: str) -> str:
    name = name.strip()
    return f"`{name}`" if " " in name else name


def rewrite_year_extract(sql: str) -> str:
    """Rewrite ``EXTRACT(YEAR FROM col) = YYYY`` as a BETWEEN date range.

    Every occurrence is rewritten in one pass; the output contains no
    matching predicate, so applying it again is a no-op.
    """
    def _replace(match: re.Match[str]) -> str:
        column = _quote_identifier(match.group(1))
        year = match.group(2)
        return f"{column} BETWEEN '{year}-01-01' AND '{year}-12-31'"

    rewritten, count = _YEAR_EXTRACT_RE.subn(_replace, sql)
    if count:
        logger.info("Rewrote %d EXTRACT(YEAR ...) predicate(s) as date ranges", count)
    return rewritten


def compose_sql(sql: str, table_reference: str) -> str:
    """Build the fully-qualified statement for *sql* against *table_reference*.

    Parameters
    ----------
    sql : str
        A validated, FROM-less SELECT draft.
    table_reference : str
        Table (or view) the statement runs against, already quoted as the
        warehouse requires.
    """
    parts = extract_components(clean_sql(sql))

    out = f"SELECT {parts.select_part} FROM {table_reference}"
    if parts.has_where:
        out += f" WHERE {parts.where_part}"
    if parts.has_group_by:
        out += f" GROUP BY {parts.group_by_part}"
    if parts.has_having:
        out += f" HAVING {parts.having_part}"
    if parts.has_order_by:
        out += f" ORDER BY {parts.order_by_part}"
    if parts.has_limit:
        out += f" LIMIT {parts.limit_part}"

    return rewrite_year_extract(out)


def is_dimensional(sql: str) -> bool:
    return "GROUP BY" in segment_clauses(sql)
