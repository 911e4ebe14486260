"""
Schema validation of FROM-less SELECT drafts.

Checks performed:
  1. The statement must start with SELECT
  2. ``SELECT *`` is accepted as-is
  3. No top-level FROM clause (the composer supplies the table)
  4. Every column-like identifier in the SELECT list and WHERE clause must
     be a real column, a partial reference to a multi-word column, an alias,
     a function name, or a known SQL word
  5. Columns inside ``EXTRACT(part FROM column)`` are validated separately
  6. At least one real column must be referenced
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from src.governance.sql_tokenizer import (
    COMMA,
    IDENT,
    KEYWORD,
    LPAREN,
    OPERATOR,
    QUOTED,
    RPAREN,
    STAR,
    Token,
    segment_clauses,
    tokenize,
)
from src.schema.models import ColumnDescriptor
from src.core.logging import get_logger

logger = get_logger(__name__)

# Words that are not columns unless the schema says otherwise.
_SOFT_WORDS = frozenset({
    "count", "sum", "avg", "min", "max", "total", "amount", "value",
    "year", "month", "day", "hour", "minute", "second", "quarter", "week",
    "epoch", "millennium", "centuries", "decades", "years", "months", "days",
    "dow", "doy", "isodow", "isoyear",
    "float64", "int64", "numeric", "integer", "float", "string", "date", "timestamp",
})

_ALIAS_SUFFIXES = ("_sales", "_total", "_sum", "_count", "_avg")

_VALUE_SIDE_KEYWORDS = frozenset({"LIKE", "ILIKE", "IN", "BETWEEN", "IS"})
_RESET_KEYWORDS = frozenset({"AND", "OR", "NOT", "WHEN", "THEN", "ELSE"})

ERR_NOT_SELECT = "SQL query must start with SELECT."
ERR_FROM = (
    "Do not include a FROM clause or table name in your query. "
    "Only include columns, conditions, and other clauses."
)
ERR_NO_COLUMNS = (
    "No valid column references found in the query. "
    "Make sure to use column names from the dataset schema."
)


@dataclass
class ValidationResult:
    valid: bool
    error: str | None = None
    referenced_columns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        out: dict = {"valid": self.valid}
        if self.error:
            out["error"] = self.error
        return out


def _unknown_column(name: str) -> str:
    return (
        f"Column '{name}' not found in dataset schema. If your column name "
        "contains spaces, make sure to quote it with backticks."
    )


def _unknown_extract_column(name: str) -> str:
    return f"Column '{name}' used in EXTRACT function not found in dataset schema."


class _ColumnIndex:
    """Case-insensitive lookup over the schema's column names."""

    def __init__(self, columns: list[ColumnDescriptor]):
        self.by_lower = {c.name.lower(): c.name for c in columns}
        self.multi_word = [c.name.lower() for c in columns if " " in c.name]

    def exact(self, name: str) -> str | None:
        return self.by_lower.get(name.strip().lower())

    def partial(self, name: str) -> str | None:
        needle = name.strip().lower()
        if not needle:
            return None
        pattern = re.compile(rf"(?<!\w){re.escape(needle)}(?!\w)")
        for col in self.multi_word:
            if pattern.search(col):
                return self.by_lower[col]
        return None


def _collect_aliases(tokens: list[Token]) -> set[str]:
    aliases: set[str] = set()
    for prev, tok in zip(tokens, tokens[1:]):
        if prev.is_keyword("AS") and tok.kind in (IDENT, QUOTED, KEYWORD):
            aliases.add(tok.name.lower())
    return aliases


def _looks_like_alias(name: str) -> bool:
    lower = name.lower()
    return lower.endswith(_ALIAS_SUFFIXES) or "total_" in lower


class _Checker:
    def __init__(self, tokens: list[Token], columns: list[ColumnDescriptor]):
        self.tokens = tokens
        self.index = _ColumnIndex(columns)
        self.aliases = _collect_aliases(tokens)
        self.found: list[str] = []

    # ── reference resolution ─────────────────────────
    def resolve(self, i: int) -> str | None:
        """Return an error for the reference at token *i*, or None when acceptable."""
        tok = self.tokens[i]
        nxt = self.tokens[i + 1] if i + 1 < len(self.tokens) else None
        prev = self.tokens[i - 1] if i > 0 else None

        if tok.kind == IDENT and nxt is not None and nxt.kind == LPAREN:
            return None  # function name
        if prev is not None and prev.is_keyword("AS"):
            return None

        name = tok.name
        if tok.kind == IDENT and "." in name:
            name = name.rsplit(".", 1)[1]

        match = self.index.exact(name) or self.index.partial(name)
        if match:
            self.found.append(match)
            return None
        if name.lower() in self.aliases:
            return None
        if tok.kind == IDENT and (name.lower() in _SOFT_WORDS or _looks_like_alias(name)):
            return None
        return _unknown_column(name)

    def check_extract(self, i: int) -> tuple[str | None, int]:
        """Validate ``EXTRACT(part FROM column)`` starting at token *i*.

        Returns (error, index of the closing paren).
        """
        j = i + 2  # skip EXTRACT and (
        depth = self.tokens[i + 1].depth
        column_tokens: list[Token] = []
        seen_from = False
        while j < len(self.tokens):
            tok = self.tokens[j]
            if tok.kind == RPAREN and tok.depth == depth:
                break
            if tok.is_keyword("FROM"):
                seen_from = True
            elif seen_from and tok.kind in (IDENT, QUOTED, KEYWORD):
                column_tokens.append(tok)
            j += 1

        for tok in column_tokens:
            match = self.index.exact(tok.name) or self.index.partial(tok.name)
            if match:
                self.found.append(match)
            elif tok.kind != KEYWORD:
                return _unknown_extract_column(tok.name), j
        return None, j

    def _is_extract(self, i: int) -> bool:
        tok = self.tokens[i]
        nxt = self.tokens[i + 1] if i + 1 < len(self.tokens) else None
        return tok.is_keyword("EXTRACT") and nxt is not None and nxt.kind == LPAREN

    # ── clause walkers ───────────────────────────────
    def check_select(self, start: int, end: int) -> str | None:
        i = start
        while i < end:
            tok = self.tokens[i]
            if self._is_extract(i):
                error, i = self.check_extract(i)
                if error:
                    return error
            elif tok.kind in (IDENT, QUOTED):
                error = self.resolve(i)
                if error:
                    return error
            i += 1
        return None

    def check_where(self, start: int, end: int) -> str | None:
        expect_column = True
        i = start
        while i < end:
            tok = self.tokens[i]
            if self._is_extract(i):
                error, i = self.check_extract(i)
                if error:
                    return error
                expect_column = False
            elif tok.kind == KEYWORD and tok.upper in _RESET_KEYWORDS:
                expect_column = True
            elif tok.kind == KEYWORD and tok.upper in _VALUE_SIDE_KEYWORDS:
                expect_column = False
            elif tok.kind in (LPAREN, COMMA):
                if tok.kind == LPAREN:
                    expect_column = True
            elif tok.kind == OPERATOR:
                expect_column = False
            elif tok.kind in (IDENT, QUOTED):
                nxt = self.tokens[i + 1] if i + 1 < end else None
                is_function = tok.kind == IDENT and nxt is not None and nxt.kind == LPAREN
                if expect_column and not is_function:
                    error = self.resolve(i)
                    if error:
                        return error
                    expect_column = False
            i += 1
        return None


def validate_sql(sql: str, columns: list[ColumnDescriptor]) -> ValidationResult:
    """Validate a FROM-less SELECT draft against *columns*.

    Parameters
    ----------
    sql : str
        Candidate SQL (no FROM clause).
    columns : list[ColumnDescriptor]
        The dataset schema.

    Returns
    -------
    ValidationResult
        ``valid`` plus, when invalid, an ``error`` naming the offending token.
    """
    text = (sql or "").strip()
    tokens = tokenize(text)

    if not tokens or not tokens[0].is_keyword("SELECT"):
        return ValidationResult(False, ERR_NOT_SELECT)

    # A bare star, optionally after DISTINCT or ALL, needs no column check
    first = 2 if len(tokens) > 1 and tokens[1].is_keyword("DISTINCT", "ALL") else 1
    if len(tokens) > first and tokens[first].kind == STAR:
        return ValidationResult(True)

    clauses = segment_clauses(text, tokens)
    if "FROM" in clauses:
        logger.warning("Rejected SQL with FROM clause: %s", text[:120])
        return ValidationResult(False, ERR_FROM)

    checker = _Checker(tokens, columns)

    select = clauses.get("SELECT")
    if select is not None:
        error = checker.check_select(*select.token_range)
        if error:
            return ValidationResult(False, error)

    where = clauses.get("WHERE")
    if where is not None:
        error = checker.check_where(*where.token_range)
        if error:
            return ValidationResult(False, error)

    if not checker.found:
        return ValidationResult(False, ERR_NO_COLUMNS)

    referenced = list(dict.fromkeys(checker.found))
    return ValidationResult(True, referenced_columns=referenced)
