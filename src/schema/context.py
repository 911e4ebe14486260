"""
Schema Context Builder.

Turns column descriptors plus dataset context into the structured text the
LLM Service consumes, and classifies columns into the numeric / date /
categorical groups that downstream stages reuse.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from src.schema.models import ColumnDescriptor, DatasetContext
from src.core.logging import get_logger

logger = get_logger(__name__)

_CATEGORICAL_NAME_HINTS = ("category", "type", "region", "status")


@dataclass
class SchemaSummary:
    """Columns grouped by analytical role."""
    numeric: list[str] = field(default_factory=list)
    date: list[str] = field(default_factory=list)
    categorical: list[str] = field(default_factory=list)
    other: list[str] = field(default_factory=list)
    has_spaces: bool = False

    @property
    def supports_dimensional(self) -> bool:
        return bool(self.numeric and self.categorical)

    @property
    def supports_time_series(self) -> bool:
        return bool(self.numeric and self.date)

    @property
    def supports_correlation(self) -> bool:
        return len(self.numeric) >= 2


def _is_categorical(column: ColumnDescriptor) -> bool:
    if column.type != "string" or not column.description.strip():
        return False
    name = column.name.lower()
    return "category" in column.description.lower() or any(h in name for h in _CATEGORICAL_NAME_HINTS)


def summarize_schema(columns: list[ColumnDescriptor]) -> SchemaSummary:
    summary = SchemaSummary(has_spaces=any(c.needs_quoting for c in columns))
    for column in columns:
        if column.is_numeric:
            summary.numeric.append(column.name)
        elif column.type == "date":
            summary.date.append(column.name)
        elif _is_categorical(column):
            summary.categorical.append(column.name)
        else:
            summary.other.append(column.name)
    return summary


# ── Schema description ──────────────────────────────────

_DIMENSIONAL_GUIDE = """\
DIMENSIONAL QUERY PATTERNS:
- When the user asks for data "by X", "per X", or "for each X", use GROUP BY X
- For "total X by Y", use: SELECT Y, SUM(X) AS total_x GROUP BY Y ORDER BY Y
- For "average X by Y", use: SELECT Y, AVG(X) AS average_x GROUP BY Y ORDER BY Y
- Always include appropriate ORDER BY clauses for dimensional queries
- When grouping by a dimension, always include that dimension in the SELECT clause"""

_ALIAS_GUIDE = """\
COLUMN ALIASES AND EXPRESSIONS:
- When creating calculated columns, always use AS to name them (example: SUM(X) AS total_x)
- Column aliases should be lowercase with underscores: total_sales, monthly_revenue
- Aliases are not database columns, so they never need backticks: AS total_sales"""

_SQL_PATTERN_GUIDE = """\
SQL QUERY PATTERNS:
- "Total sales by year": SELECT YEAR, SUM(`RETAIL SALES`) AS total_sales GROUP BY YEAR ORDER BY YEAR
- "Monthly sales for 2023": SELECT MONTH, SUM(`RETAIL SALES`) AS total_sales WHERE YEAR = 2023 GROUP BY MONTH ORDER BY MONTH
- "Top 10 products by sales": SELECT `ITEM DESCRIPTION`, SUM(`RETAIL SALES`) AS total_sales GROUP BY `ITEM DESCRIPTION` ORDER BY total_sales DESC LIMIT 10
- "Sales trend over time": SELECT `DATE`, SUM(`RETAIL SALES`) AS daily_sales GROUP BY `DATE` ORDER BY `DATE`"""


def describe_schema(
    columns: list[ColumnDescriptor],
    dataset_name: str,
    context: DatasetContext | None = None,
) -> str:
    """Render the dataset schema as prompt text.

    Parameters
    ----------
    columns : list[ColumnDescriptor]
        The dataset columns.
    dataset_name : str
        Human-readable dataset name.
    context : DatasetContext, optional
        Free-text context lines; empty fields are omitted.
    """
    context = context or DatasetContext()
    lines: list[str] = [f"DATASET: {dataset_name}", ""]

    for label, value in (
        ("DATASET CONTEXT", context.context),
        ("DATASET PURPOSE", context.purpose),
        ("DATASET SOURCE", context.source),
        ("ADDITIONAL NOTES", context.notes),
    ):
        if value:
            lines.extend([f"{label}: {value}", ""])

    lines.append("The dataset has the following columns:")
    for column in columns:
        entry = f"- {column.sql_name} ({column.type})"
        if column.primary_key:
            entry += " [PRIMARY KEY]"
        if not column.nullable:
            entry += " [NOT NULL]"
        if column.description.strip():
            entry += f" - {column.description.strip()}"
        if column.needs_quoting:
            entry += " [REQUIRES BACKTICKS IN SQL]"
        lines.append(entry)

    summary = summarize_schema(columns)
    lines.extend(["", "ANALYSIS CONTEXT:"])
    if summary.numeric:
        lines.append(f"- Numeric measures that can be aggregated: {', '.join(summary.numeric)}")
    if summary.date:
        lines.append(f"- Time dimensions for trend analysis: {', '.join(summary.date)}")
    if summary.categorical:
        lines.append(f"- Categorical dimensions for grouping: {', '.join(summary.categorical)}")
    if summary.supports_dimensional:
        lines.append("- This dataset supports dimensional analysis (measures by categories)")
    if summary.supports_time_series:
        lines.append("- This dataset supports time series analysis (measures over time)")
    if summary.supports_correlation:
        lines.append("- This dataset supports correlation analysis between numeric measures")

    if summary.has_spaces:
        quoted = [c.sql_name for c in columns if c.needs_quoting][:2]
        lines.extend([
            "",
            "IMPORTANT: Some column names contain spaces and MUST be enclosed in backticks in SQL queries.",
            f"Example: SELECT {', '.join(quoted)}",
        ])

    lines.extend(["", _DIMENSIONAL_GUIDE, "", _ALIAS_GUIDE, "", _SQL_PATTERN_GUIDE])
    return "\n".join(lines) + "\n"


# ── Query pattern detection ─────────────────────────────

_DIMENSIONAL_RE = re.compile(r"\b(by|per|for each|group by)\s+\w+\b|\b\w+ly\b", re.IGNORECASE)
_COMPARISON_RE = re.compile(r"\b(compare|comparison|versus|vs|against)\b", re.IGNORECASE)
_TIME_RE = re.compile(r"\b(trend|over time|historical|monthly|yearly|quarterly|weekly|daily)\b", re.IGNORECASE)
_RANKING_RE = re.compile(r"\b(top|bottom|highest|lowest|best|worst)\b", re.IGNORECASE)


@dataclass(frozen=True)
class QueryPatterns:
    dimensional: bool = False
    comparison: bool = False
    time_series: bool = False
    ranking: bool = False


def detect_query_patterns(question: str) -> QueryPatterns:
    if not question:
        return QueryPatterns()
    return QueryPatterns(
        dimensional=bool(_DIMENSIONAL_RE.search(question)),
        comparison=bool(_COMPARISON_RE.search(question)),
        time_series=bool(_TIME_RE.search(question)),
        ranking=bool(_RANKING_RE.search(question)),
    )


# ── System prompt ───────────────────────────────────────

_SQL_RULES = """\
SQL QUERY REQUIREMENTS:
1. Generate a single SELECT statement that answers the user's question
2. Only reference columns that exist in the dataset schema
3. ALWAYS enclose column names with spaces in backticks, e.g. `RETAIL SALES`
4. DO NOT include a FROM clause or table name - the system adds it automatically
5. DO NOT use table aliases or reference any tables by name
6. ALWAYS use single quotes for string literals (e.g. WHERE Client = 'Pfizer')
7. EXTRACT(YEAR FROM `Date`) is valid - FROM is allowed inside functions
8. Return the SQL inside a ```sql fenced block"""

_PATTERN_SECTIONS: dict[str, str] = {
    "dimensional": (
        "DIMENSIONAL QUERY:\n"
        "- Group by the requested dimension and include it in the SELECT list\n"
        "- Order the groups so the best and worst performers are easy to read"
    ),
    "comparison": (
        "COMPARISON QUERY:\n"
        "- Return every compared item side by side with the same measures\n"
        "- Keep the measure aliases identical across compared items"
    ),
    "time_series": (
        "TIME SERIES QUERY:\n"
        "- Group by the time dimension and ORDER BY it ascending"
    ),
    "ranking": (
        "RANKING QUERY:\n"
        "- ORDER BY the ranked measure and apply the requested LIMIT"
    ),
}


def build_system_prompt(
    columns: list[ColumnDescriptor],
    dataset_name: str,
    context: DatasetContext | None = None,
    question: str = "",
) -> str:
    """Compose the SQL-generation system prompt for *question*."""
    patterns = detect_query_patterns(question)
    sections = [
        "You are an expert data analyst who writes SQL for a single tabular dataset.",
        describe_schema(columns, dataset_name, context),
        _SQL_RULES,
    ]
    for name, text in _PATTERN_SECTIONS.items():
        if getattr(patterns, name):
            sections.append(text)
    logger.debug("System prompt patterns: %s", patterns)
    return "\n\n".join(sections)
