"""
Deterministic question drafter (mock mode).

Keyword extraction over the dataset schema: which measure, which aggregate,
which "by <dimension>" groupings, which time periods, "top N".  The extracted
``QuestionFrame`` is turned into a FROM-less SQL draft that goes through the
same validation and composition as LLM output.
"""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field

from src.schema.models import ColumnDescriptor
from src.core.config import get_settings

# ── Keyword maps ─────────────────────────────────────────

_AGGREGATE_KEYWORDS: list[tuple[str, list[str]]] = [
    ("AVG", ["average", "avg", "mean"]),
    ("COUNT", ["how many", "number of", "count"]),
    ("MAX", ["maximum", "max", "highest value"]),
    ("MIN", ["minimum", "min", "lowest value"]),
    ("SUM", ["total", "sum", "overall"]),
]

_ALIAS_PREFIX = {"SUM": "total", "AVG": "average", "COUNT": "count", "MAX": "max", "MIN": "min"}

_SHOW_ALL_RE = re.compile(r"^(?:show|list|get|display)(?:\s+me)?\s+all\b|\bshow all\b", re.IGNORECASE)
_DIMENSION_RE = re.compile(
    r"\b(?:by|per|for each|grouped by)\s+(.+?)"
    r"(?=\s+(?:and|for|in|between|with|from|during|over|where|vs|versus|than)\b|[,.?;]|$)",
    re.IGNORECASE,
)
_QUARTER_RE = re.compile(r"\bQ([1-4])\s*(?:of\s+)?((?:19|20)\d{2})\b", re.IGNORECASE)
_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")
_RANK_RE = re.compile(r"\b(top|bottom|best|worst|highest|lowest)\b(?:\s+(\d+))?", re.IGNORECASE)


@dataclass(frozen=True)
class Period:
    """A calendar period named in the question."""
    label: str
    year: int
    quarter: int | None = None

    @property
    def start(self) -> str:
        month = 1 if self.quarter is None else 3 * (self.quarter - 1) + 1
        return f"{self.year}-{month:02d}-01"

    @property
    def end(self) -> str:
        month = 12 if self.quarter is None else 3 * self.quarter
        day = calendar.monthrange(self.year, month)[1]
        return f"{self.year}-{month:02d}-{day:02d}"


@dataclass
class QuestionFrame:
    question: str
    measure: ColumnDescriptor | None = None
    aggregate: str = "SUM"
    dimensions: list[ColumnDescriptor] = field(default_factory=list)
    periods: list[Period] = field(default_factory=list)
    date_column: ColumnDescriptor | None = None
    rank_n: int | None = None
    rank_desc: bool = True
    show_all: bool = False

    @property
    def dimension(self) -> ColumnDescriptor | None:
        return self.dimensions[0] if self.dimensions else None


def wants_all_rows(question: str) -> bool:
    """True for "show all ..." / "list all ..." requests for unaggregated rows."""
    return bool(_SHOW_ALL_RE.search((question or "").strip()))


def snake(name: str) -> str:
    return re.sub(r"\W+", "_", name.lower()).strip("_")


def measure_alias(measure: ColumnDescriptor, aggregate: str = "SUM") -> str:
    return f"{_ALIAS_PREFIX.get(aggregate, aggregate.lower())}_{snake(measure.name)}"


# ── Extraction ───────────────────────────────────────────

def _mentions(text: str, name: str) -> int:
    """Position of column *name* as whole words in *text*, or -1."""
    m = re.search(rf"(?<![\w]){re.escape(name.lower())}(?![\w])", text)
    return m.start() if m else -1


def _find_measure(q: str, columns: list[ColumnDescriptor]) -> ColumnDescriptor | None:
    numeric = [c for c in columns if c.is_numeric]
    best: ColumnDescriptor | None = None
    best_pos = len(q) + 1
    # Longest names first so "unit price" beats "price"
    for col in sorted(numeric, key=lambda c: -len(c.name)):
        pos = _mentions(q, col.name)
        if pos != -1 and pos < best_pos:
            best, best_pos = col, pos
    if best is None and numeric:
        best = numeric[0]
    return best


def _match_dimension(phrase: str, columns: list[ColumnDescriptor]) -> ColumnDescriptor | None:
    phrase = phrase.strip().strip("`\"'").lower()
    candidates = [c for c in columns if not c.is_numeric]
    for col in candidates:
        if col.name.lower() == phrase:
            return col
    for col in sorted(candidates, key=lambda c: -len(c.name)):
        if _mentions(phrase, col.name) != -1:
            return col
    # "by regions" / "by customer segment" -> singular or partial word match
    words = phrase.split()
    for col in candidates:
        name = col.name.lower()
        if any(w.rstrip("s") == name or w == name.rstrip("s") for w in words):
            return col
    return None


def _find_dimensions(question: str, columns: list[ColumnDescriptor]) -> list[ColumnDescriptor]:
    found: list[ColumnDescriptor] = []
    for m in _DIMENSION_RE.finditer(question):
        col = _match_dimension(m.group(1), columns)
        if col is not None and col not in found:
            found.append(col)
    return found


def extract_periods(question: str) -> list[Period]:
    """Quarters ("Q1 2023") and bare years, in order of appearance."""
    found: list[tuple[int, Period]] = []
    taken: list[tuple[int, int]] = []
    for m in _QUARTER_RE.finditer(question):
        found.append((m.start(), Period(f"Q{m.group(1)} {m.group(2)}", int(m.group(2)), int(m.group(1)))))
        taken.append(m.span())
    for m in _YEAR_RE.finditer(question):
        if any(start <= m.start() < end for start, end in taken):
            continue
        found.append((m.start(), Period(m.group(1), int(m.group(1)))))
    return [p for _, p in sorted(found, key=lambda item: item[0])]


def _find_date_column(columns: list[ColumnDescriptor]) -> ColumnDescriptor | None:
    for col in columns:
        if col.type == "date":
            return col
    for col in columns:
        if any(h in col.name.lower() for h in ("date", "time", "day")):
            return col
    return None


def frame_question(question: str, columns: list[ColumnDescriptor]) -> QuestionFrame:
    """Extract a ``QuestionFrame`` from *question* against *columns*."""
    q = question.lower().strip()
    frame = QuestionFrame(
        question=question,
        measure=_find_measure(q, columns),
        dimensions=_find_dimensions(question, columns),
        periods=extract_periods(question),
        date_column=_find_date_column(columns),
        show_all=wants_all_rows(question),
    )

    for aggregate, keywords in _AGGREGATE_KEYWORDS:
        if any(re.search(rf"\b{re.escape(kw)}\b", q) for kw in keywords):
            frame.aggregate = aggregate
            break

    rank = _RANK_RE.search(q)
    if rank:
        frame.rank_n = int(rank.group(2)) if rank.group(2) else 5
        frame.rank_desc = rank.group(1) in ("top", "best", "highest")
    return frame


# ── SQL drafting ─────────────────────────────────────────

def period_predicate(period: Period, date_column: ColumnDescriptor) -> str:
    """WHERE predicate restricting *date_column* to *period*.

    Whole years use EXTRACT, which the composer rewrites to a date range.
    """
    if period.quarter is None:
        return f"EXTRACT(YEAR FROM {date_column.sql_name}) = {period.year}"
    return f"{date_column.sql_name} BETWEEN '{period.start}' AND '{period.end}'"


def draft_sql(
    frame: QuestionFrame,
    dimension: ColumnDescriptor | None = None,
    period: Period | None = None,
    alias: str | None = None,
    limit: int | None = None,
    use_dimension: bool = True,
) -> str:
    """Draft a FROM-less SELECT for *frame*.

    Parameters
    ----------
    frame : QuestionFrame
        Extracted question intent.
    dimension : ColumnDescriptor, optional
        Group-by column; defaults to the frame's first dimension.
    period : Period, optional
        Time restriction; defaults to the frame's first period.
    alias : str, optional
        Alias for the aggregated measure.
    limit : int, optional
        Explicit LIMIT; "top N" questions supply their own.
    use_dimension : bool
        False drafts an ungrouped aggregate.
    """
    if use_dimension and dimension is None:
        dimension = frame.dimension
    if not use_dimension:
        dimension = None
    if period is None and frame.periods:
        period = frame.periods[0]

    where = ""
    if period is not None and frame.date_column is not None:
        where = f" WHERE {period_predicate(period, frame.date_column)}"

    if frame.show_all and dimension is None:
        return f"SELECT *{where}"

    measure = frame.measure
    if limit is None and frame.rank_n is not None and dimension is not None:
        limit = frame.rank_n
    limit_sql = f" LIMIT {int(limit)}" if limit else ""

    if measure is None:
        if dimension is None:
            return f"SELECT *{where} LIMIT {get_settings().sql_row_limit}"
        return (
            f"SELECT {dimension.sql_name}, COUNT(*) AS record_count{where} "
            f"GROUP BY {dimension.sql_name} ORDER BY record_count DESC{limit_sql}"
        )

    aggregate = frame.aggregate
    alias = alias or measure_alias(measure, aggregate)
    expr = f"{aggregate}({measure.sql_name}) AS {alias}"

    if dimension is None:
        return f"SELECT {expr}{where}{limit_sql}"

    if frame.rank_n is not None:
        order = f"{alias} {'DESC' if frame.rank_desc else 'ASC'}"
    else:
        order = dimension.sql_name
    return (
        f"SELECT {dimension.sql_name}, {expr}{where} "
        f"GROUP BY {dimension.sql_name} ORDER BY {order}{limit_sql}"
    )
