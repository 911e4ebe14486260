"""
Minimal single-pass SQL tokenizer and clause segmenter.

Not a parser: tokens are classified (keyword / identifier / quoted identifier /
string / number / operator / punctuation) and tagged with their parenthesis
depth.  Clause boundaries are keywords at depth 0, so ``FROM`` inside
``EXTRACT(YEAR FROM col)`` is never mistaken for a table clause.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

# ── Token kinds ─────────────────────────────────────────

KEYWORD = "keyword"
IDENT = "ident"
QUOTED = "quoted"
STRING = "string"
NUMBER = "number"
OPERATOR = "operator"
COMMA = "comma"
LPAREN = "lparen"
RPAREN = "rparen"
STAR = "star"
SEMICOLON = "semicolon"
OTHER = "other"

# Words that are never column references.
RESERVED = frozenset({
    "SELECT", "FROM", "WHERE", "GROUP", "BY", "ORDER", "HAVING", "LIMIT", "OFFSET",
    "AND", "OR", "NOT", "IN", "BETWEEN", "LIKE", "ILIKE", "IS", "NULL", "AS",
    "JOIN", "INNER", "LEFT", "RIGHT", "OUTER", "FULL", "CROSS", "ON", "USING",
    "DISTINCT", "CASE", "WHEN", "THEN", "ELSE", "END", "ASC", "DESC", "ALL",
    "CAST", "EXTRACT", "TRUE", "FALSE", "INTERVAL", "UNION", "WITH", "EXISTS",
    "ANY", "NULLS", "OVER", "PARTITION",
})

_TOKEN_RE = re.compile(
    r"""
     (?P<ws>\s+)
    |(?P<string>'(?:[^']|'')*'?)
    |(?P<backtick>`[^`]*`?)
    |(?P<dquote>"[^"]*"?)
    |(?P<number>\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|\.\d+)
    |(?P<ident>[A-Za-z_][A-Za-z0-9_$]*(?:\.[A-Za-z_][A-Za-z0-9_$]*)*)
    |(?P<op><>|!=|<=|>=|\|\||::|[=<>+\-/%])
    |(?P<comma>,)
    |(?P<lparen>\()
    |(?P<rparen>\))
    |(?P<star>\*)
    |(?P<semi>;)
    |(?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_GROUP_KIND = {
    "string": STRING,
    "backtick": QUOTED,
    "dquote": QUOTED,
    "number": NUMBER,
    "op": OPERATOR,
    "comma": COMMA,
    "lparen": LPAREN,
    "rparen": RPAREN,
    "star": STAR,
    "semi": SEMICOLON,
    "other": OTHER,
}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    start: int
    end: int
    depth: int

    @property
    def upper(self) -> str:
        return self.text.upper()

    @property
    def name(self) -> str:
        """Identifier text without quoting."""
        if self.kind == QUOTED:
            return self.text[1:-1] if len(self.text) >= 2 and self.text[-1] == self.text[0] else self.text[1:]
        return self.text

    def is_keyword(self, *words: str) -> bool:
        return self.kind == KEYWORD and (not words or self.upper in words)


def tokenize(sql: str) -> list[Token]:
    """Split *sql* into classified tokens (whitespace dropped)."""
    tokens: list[Token] = []
    depth = 0
    for m in _TOKEN_RE.finditer(sql):
        group = m.lastgroup
        if group == "ws":
            continue
        text = m.group(0)
        if group == "ident":
            kind = KEYWORD if text.upper() in RESERVED else IDENT
        else:
            kind = _GROUP_KIND[group]
        if kind == RPAREN:
            depth = max(depth - 1, 0)
        tokens.append(Token(kind, text, m.start(), m.end(), depth))
        if kind == LPAREN:
            depth += 1
    return tokens


# ── Clause segmentation ─────────────────────────────────

CLAUSES = ("SELECT", "FROM", "WHERE", "GROUP BY", "HAVING", "ORDER BY", "LIMIT")


@dataclass(frozen=True)
class ClauseSpan:
    keyword: str
    keyword_start: int
    body_start: int
    body_end: int
    token_range: tuple[int, int]


def _boundaries(tokens: list[Token]) -> list[tuple[str, int, int, int]]:
    """(clause, token index, keyword start, body start) for depth-0 clause keywords."""
    found = []
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok.depth == 0 and tok.kind == KEYWORD:
            word = tok.upper
            if word in ("GROUP", "ORDER"):
                nxt = tokens[i + 1] if i + 1 < len(tokens) else None
                if nxt is not None and nxt.is_keyword("BY"):
                    found.append((f"{word} BY", i, tok.start, nxt.end))
                    i += 2
                    continue
            elif word in ("SELECT", "FROM", "WHERE", "HAVING", "LIMIT"):
                found.append((word, i, tok.start, tok.end))
        i += 1
    return found


def segment_clauses(sql: str, tokens: list[Token] | None = None) -> dict[str, ClauseSpan]:
    """Locate the first occurrence of each top-level clause.

    Each clause body runs from its keyword to the next top-level clause
    keyword (or the end of the statement).
    """
    tokens = tokens if tokens is not None else tokenize(sql)
    bounds = _boundaries(tokens)
    end_of_text = len(sql.rstrip().rstrip(";"))
    spans: dict[str, ClauseSpan] = {}
    for n, (clause, idx, kw_start, body_start) in enumerate(bounds):
        if n + 1 < len(bounds):
            body_end, next_idx = bounds[n + 1][2], bounds[n + 1][1]
        else:
            body_end, next_idx = end_of_text, len(tokens)
        if clause in spans:
            continue
        first_body_idx = idx + (2 if " " in clause else 1)
        spans[clause] = ClauseSpan(clause, kw_start, body_start, max(body_end, body_start), (first_body_idx, next_idx))
    return spans


def clause_text(sql: str, span: ClauseSpan | None) -> str:
    if span is None:
        return ""
    return sql[span.body_start:span.body_end].strip()
