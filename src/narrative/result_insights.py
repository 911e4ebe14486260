"""
Row-level insights for single-query answers.

Three shapes are handled: dimensional results (the SQL has a top-level
GROUP BY), single-row summaries, and plain tables.
"""
from __future__ import annotations

import math
from typing import Any

from src.analysis.roles import CATEGORICAL, DATE, NUMERIC, Row, column_names, infer_column_types
from src.analysis.stats import median
from src.governance.sql_composer import is_dimensional
from src.narrative.insights import make_insight
from src.core.utils import humanize, to_datetime, to_number
from src.core.logging import get_logger

logger = get_logger(__name__)


def format_number(value: Any) -> str:
    """Display form of a number: thousands separators, 2 decimals, N/A for junk.

    >>> format_number(1234567.891)
    '1,234,567.89'
    >>> format_number(0.004)
    '4.00e-03'
    """
    number = to_number(value)
    if number is None:
        return "N/A"
    if abs(number) >= 1000:
        return f"{number:,.2f}".rstrip("0").rstrip(".")
    if number != 0 and abs(number) < 0.01:
        return f"{number:.2e}"
    if number.is_integer():
        return str(int(number))
    return f"{number:.2f}"


def _num(row: Row, col: str) -> float:
    return to_number(row.get(col)) or 0.0


def _dimensional_insights(rows: list[Row], columns: list[str], types: dict[str, str]) -> list[dict[str, Any]]:
    dimensions = [c for c in columns if types.get(c) != NUMERIC]
    measures = [c for c in columns if types.get(c) == NUMERIC]
    if not dimensions or not measures:
        return []
    dim, measure = dimensions[0], measures[0]
    dim_label, measure_label = humanize(dim), humanize(measure)
    insights: list[dict[str, Any]] = []

    total = sum(_num(r, measure) for r in rows)
    insights.append(make_insight(
        "total", f"The total {measure_label} is {format_number(total)}.",
        title=f"Total {measure_label}", value=total, metric=measure,
    ))

    if len(rows) > 1:
        ranked = sorted(rows, key=lambda r: _num(r, measure), reverse=True)
        top = ranked[0]
        insights.append(make_insight(
            "top-performer",
            f"{top.get(dim)} has the highest {measure_label} with {format_number(_num(top, measure))}.",
            title=f"Top {dim_label}", value=_num(top, measure),
            dimension=dim, measure=measure, category=top.get(dim),
        ))
        if len(rows) > 2:
            bottom = ranked[-1]
            insights.append(make_insight(
                "bottom-performer",
                f"{bottom.get(dim)} has the lowest {measure_label} with {format_number(_num(bottom, measure))}.",
                title=f"Lowest {dim_label}", value=_num(bottom, measure),
                dimension=dim, measure=measure, category=bottom.get(dim),
            ))

    if len(rows) > 3:
        average = total / len(rows)
        insights.append(make_insight(
            "average", f"The average {measure_label} is {format_number(average)}.",
            title=f"Average {measure_label}", value=average, metric=measure,
        ))
        if len(rows) > 4:
            mid = median([_num(r, measure) for r in rows])
            insights.append(make_insight(
                "median", f"The median {measure_label} is {format_number(mid)}.",
                title=f"Median {measure_label}", value=mid, metric=measure,
            ))
            if abs(mid - average) > abs(average) * 0.2:
                skew = "positively" if mid < average else "negatively"
                tail = "high" if mid < average else "low"
                insights.append(make_insight(
                    "distribution",
                    f"The data is {skew} skewed (median: {format_number(mid)}, "
                    f"average: {format_number(average)}), indicating some {tail} outliers.",
                    title=f"{skew.capitalize()} Skewed Distribution", metric=measure,
                ))

    if types.get(dim) == DATE and len(rows) > 2:
        dated = [(to_datetime(r.get(dim)), r) for r in rows]
        dated = sorted((d for d in dated if d[0] is not None), key=lambda d: d[0])
        if len(dated) > 2:
            first, last = dated[0][1], dated[-1][1]
            start, end = _num(first, measure), _num(last, measure)
            if start:
                pct = (end - start) / start * 100
                direction = "increasing" if pct > 0 else "decreasing"
                insights.append(make_insight(
                    "trend",
                    f"{measure_label} has been {direction}, changing by {abs(pct):.1f}% "
                    f"from {first.get(dim)} to {last.get(dim)}.",
                    title=f"Overall {direction} trend", percent_change=pct,
                    start_date=first.get(dim), end_date=last.get(dim),
                    dimension=dim, measure=measure,
                ))

    if types.get(dim) not in (NUMERIC, DATE) and len(rows) > 3 and total > 0:
        ranked = sorted(rows, key=lambda r: _num(r, measure), reverse=True)
        top_n = max(1, math.ceil(len(rows) * 0.2))
        share = sum(_num(r, measure) for r in ranked[:top_n]) / total * 100
        if share > 70:
            names = ", ".join(str(r.get(dim)) for r in ranked[:top_n])
            insights.append(make_insight(
                "concentration",
                f"The top {top_n} {dim_label} ({names}) account for {share:.1f}% of total {measure_label}.",
                title="Notable Concentration", share=share, dimension=dim, measure=measure,
            ))
    return insights


def _summary_insights(row: Row, columns: list[str], types: dict[str, str]) -> list[dict[str, Any]]:
    return [
        make_insight(
            "summary", f"{humanize(col)} is {format_number(_num(row, col))}.",
            title=humanize(col), value=_num(row, col), metric=col,
        )
        for col in columns if types.get(col) == NUMERIC
    ]


def _standard_insights(rows: list[Row], columns: list[str], types: dict[str, str]) -> list[dict[str, Any]]:
    insights = [make_insight(
        "overview", f"Query returned {len(rows)} rows with {len(columns)} columns.", title="Data Overview",
    )]
    for col in columns:
        if types.get(col) != NUMERIC:
            continue
        values = [_num(r, col) for r in rows]
        low, high = min(values), max(values)
        if high > 0 and high != low:
            avg = sum(values) / len(values)
            insights.append(make_insight(
                "range",
                f"{humanize(col)} ranges from {format_number(low)} to {format_number(high)} "
                f"with an average of {format_number(avg)}.",
                title=f"{humanize(col)} Range", min=low, max=high, average=avg, metric=col,
            ))
    for col in columns:
        if types.get(col) != CATEGORICAL:
            continue
        counts: dict[str, int] = {}
        for r in rows:
            key = str(r.get(col))
            counts[key] = counts.get(key, 0) + 1
        common, count = max(counts.items(), key=lambda kv: kv[1])
        if count > 1 and len(counts) > 1:
            share = count / len(rows) * 100
            insights.append(make_insight(
                "frequency",
                f"{common} is the most common {humanize(col)}, appearing in {share:.1f}% "
                f"of the data ({count} out of {len(rows)} rows).",
                title=f"Most Common {humanize(col)}", category=common,
                count=count, percentage=share, dimension=col,
            ))
    return insights


def extract_insights(rows: list[Row], sql: str = "") -> list[dict[str, Any]]:
    """Insights for the rows of one executed statement.

    Parameters
    ----------
    rows : list[dict]
        Result rows.
    sql : str
        The statement that produced them; a top-level GROUP BY selects the
        dimensional insights.

    Returns
    -------
    list[dict]
        Never empty for non-empty *rows*: falls back to a row-count overview.
    """
    if not rows:
        return []
    try:
        columns = column_names(rows)
        types = infer_column_types(rows)
        if sql and is_dimensional(sql):
            insights = _dimensional_insights(rows, columns, types)
        elif len(rows) == 1:
            insights = _summary_insights(rows[0], columns, types)
        else:
            insights = _standard_insights(rows, columns, types)
        if not insights:
            insights = [make_insight(
                "overview", f"Query returned {len(rows)} rows with {len(columns)} columns.", title="Data Overview",
            )]
        logger.info("Extracted %d insights from %d rows", len(insights), len(rows))
        return insights
    except Exception:
        logger.exception("Error extracting insights")
        return [make_insight(
            "overview", f"Query successfully returned {len(rows)} rows of data.", title="Data Retrieved",
        )]
