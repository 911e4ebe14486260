"""
Period-over-period analysis of temporal-comparison datasets.

Works on rows shaped ``{<dimension>, <m>_<p1>, <m>_<p2>, <m>_diff,
<m>_pct_change}`` as produced by the aggregator.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.analysis.roles import Row, column_names, find_label_column
from src.analysis.stats import numbers
from src.narrative.insights import make_insight
from src.core.utils import to_number

_DERIVED_SUFFIXES = ("_diff", "_pct_change")

# (key, lower bound in %), checked top-down
GROWTH_BANDS = (
    ("strong_growth", 20.0),
    ("moderate_growth", 5.0),
    ("stable", -5.0),
    ("moderate_decline", -20.0),
    ("strong_decline", float("-inf")),
)


@dataclass(frozen=True)
class PeriodPair:
    base: str
    period1: str
    period2: str
    col1: str
    col2: str


def find_period_pairs(columns: list[str]) -> list[PeriodPair]:
    """Pair ``<base>_<period>`` columns that share a base, first two per base."""
    by_base: dict[str, list[tuple[str, str]]] = {}
    for col in columns:
        if col.endswith(_DERIVED_SUFFIXES) or "_" not in col:
            continue
        base, _, period = col.rpartition("_")
        if base and period:
            by_base.setdefault(base, []).append((period, col))
    pairs = []
    for base, entries in by_base.items():
        if len(entries) >= 2:
            (p1, c1), (p2, c2) = entries[0], entries[1]
            pairs.append(PeriodPair(base, p1, p2, c1, c2))
    return pairs


def _pct(new: float, old: float) -> float | None:
    return (new - old) / old * 100 if old else None


def _change_phrase(pct: float | None) -> str:
    if pct is None:
        return "changed by N/A"
    return f"{'increased' if pct >= 0 else 'decreased'} by {abs(pct):.2f}%"


def analyze_comparisons(rows: list[Row]) -> list[dict[str, Any]]:
    """Aggregate period totals plus ``_diff`` / ``_pct_change`` summaries."""
    if not rows:
        return []
    columns = column_names(rows)
    comparisons: list[dict[str, Any]] = []

    for pair in find_period_pairs(columns):
        v1 = numbers([r.get(pair.col1) for r in rows])
        v2 = numbers([r.get(pair.col2) for r in rows])
        if not v1 or not v2:
            continue
        sum1, sum2 = sum(v1), sum(v2)
        pct = _pct(sum2, sum1)
        comparisons.append({
            "type": "period-comparison",
            "base": pair.base,
            "period1": pair.period1,
            "period2": pair.period2,
            "sum1": sum1,
            "sum2": sum2,
            "absolute_change": sum2 - sum1,
            "percent_change": pct,
            "description": f"{pair.base} {_change_phrase(pct)} from {pair.period1} to {pair.period2}",
        })

    for col in columns:
        if col.endswith("_diff"):
            metric = col[: -len("_diff")]
            diffs = numbers([r.get(col) for r in rows])
            if not diffs:
                continue
            avg = sum(diffs) / len(diffs)
            up = sum(1 for d in diffs if d > 0)
            down = sum(1 for d in diffs if d < 0)
            comparisons.append({
                "type": "diff-analysis",
                "metric": metric,
                "total_diff": sum(diffs),
                "average_diff": avg,
                "positive_count": up,
                "negative_count": down,
                "description": f"{metric} shows an average change of {avg:.2f} with {up} increases and {down} decreases",
            })
        elif col.endswith("_pct_change"):
            metric = col[: -len("_pct_change")]
            pcts = numbers([r.get(col) for r in rows])
            if not pcts:
                continue
            avg = sum(pcts) / len(pcts)
            up = sum(1 for p in pcts if p > 0)
            down = sum(1 for p in pcts if p < 0)
            comparisons.append({
                "type": "pct-analysis",
                "metric": metric,
                "average_pct_change": avg,
                "positive_count": up,
                "negative_count": down,
                "description": (
                    f"{metric} shows an average percentage change of {avg:.2f}% "
                    f"with {up} increases and {down} decreases"
                ),
            })
    return comparisons


def growth_band(pct_change: float) -> str:
    for key, lower in GROWTH_BANDS:
        if pct_change >= lower:
            return key
    return GROWTH_BANDS[-1][0]


def _growth_description(dimension: str, counts: dict[str, int], total: int) -> str:
    growth = counts["strong_growth"] + counts["moderate_growth"]
    decline = counts["moderate_decline"] + counts["strong_decline"]
    stable = counts["stable"]

    def share(n: int) -> str:
        return f"{n / total * 100:.1f}%"

    if growth > decline * 2:
        return (
            f"Strong overall growth: {share(growth)} of {dimension} values grew, "
            f"{share(counts['strong_growth'])} by 20% or more."
        )
    if decline > growth * 2:
        return (
            f"Significant overall decline: {share(decline)} of {dimension} values declined, "
            f"{share(counts['strong_decline'])} by 20% or more."
        )
    if stable > total * 0.5:
        return f"Predominantly stable: {share(stable)} of {dimension} values stayed within 5%."
    return (
        f"Mixed performance: {share(growth)} of {dimension} values grew, "
        f"{share(decline)} declined and {share(stable)} stayed stable."
    )


def analyze_growth_categories(rows: list[Row]) -> list[dict[str, Any]]:
    """Bucket dimension values by their first ``_pct_change`` column."""
    if not rows:
        return []
    columns = column_names(rows)
    pct_col = next((c for c in columns if c.endswith("_pct_change")), None)
    dimension = find_label_column(rows)
    if pct_col is None or dimension is None:
        return []

    bands: dict[str, list[Any]] = {key: [] for key, _ in GROWTH_BANDS}
    for row in rows:
        pct = to_number(row.get(pct_col))
        if pct is not None:
            bands[growth_band(pct)].append(row.get(dimension))
    counts = {key: len(items) for key, items in bands.items()}
    total = len(rows)
    return [{
        "type": "growth-categories",
        "dimension": dimension,
        "measure_change": pct_col,
        "categories": {
            key: {"count": counts[key], "percentage": counts[key] / total * 100, "items": items}
            for key, items in bands.items()
        },
        "description": _growth_description(dimension, counts, total),
    }]


def analyze_relative_performance(rows: list[Row]) -> list[dict[str, Any]]:
    """Improved / declined dimension values for the first period pair."""
    if not rows:
        return []
    pairs = find_period_pairs(column_names(rows))
    dimension = find_label_column(rows)
    if not pairs or dimension is None:
        return []
    pair = pairs[0]

    improved, declined = [], []
    for row in rows:
        v1, v2 = to_number(row.get(pair.col1)), to_number(row.get(pair.col2))
        if v1 is None or v2 is None or v1 == v2:
            continue
        entry = {
            "dimension": row.get(dimension),
            "value1": v1,
            "value2": v2,
            "change": v2 - v1,
            "percent_change": _pct(v2, v1),
        }
        (improved if v2 > v1 else declined).append(entry)

    improved.sort(key=lambda e: e["percent_change"] or 0, reverse=True)
    declined.sort(key=lambda e: e["percent_change"] or 0)
    unchanged = len(rows) - len(improved) - len(declined)
    return [{
        "type": "relative-performance",
        "dimension": dimension,
        "measure": pair.base,
        "period1": pair.period1,
        "period2": pair.period2,
        "improved_count": len(improved),
        "declined_count": len(declined),
        "no_change_count": unchanged,
        "top_improved": improved[:5],
        "top_declined": declined[:5],
        "description": (
            f"{len(improved)} {dimension} values improved from {pair.period1} to {pair.period2}, "
            f"while {len(declined)} declined. {unchanged} showed no change or had a missing period."
        ),
    }]


def _fmt_pct(value: float | None) -> str:
    return f"{value:.1f}%" if value is not None else "N/A"


def generate_comparison_insights(rows: list[Row], comparisons: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not rows:
        return []
    insights = [make_insight("observation", f"Comparison dataset contains {len(rows)} rows across two periods.")]

    for comp in comparisons:
        if comp["type"] == "period-comparison":
            insights.append(make_insight(
                "period-comparison", comp["description"],
                metric=comp["base"], periods=[comp["period1"], comp["period2"]],
                percent_change=comp["percent_change"],
            ))
        elif comp["type"] == "diff-analysis" and abs(comp["average_diff"]) > 0.1:
            insights.append(make_insight(
                "change-pattern", comp["description"],
                metric=comp["metric"], average_change=comp["average_diff"],
                direction="increase" if comp["average_diff"] > 0 else "decrease",
            ))
        elif comp["type"] == "pct-analysis" and abs(comp["average_pct_change"]) > 5:
            insights.append(make_insight(
                "percentage-change", comp["description"],
                metric=comp["metric"], average_pct_change=comp["average_pct_change"],
                direction="increase" if comp["average_pct_change"] > 0 else "decrease",
            ))

    for growth in analyze_growth_categories(rows):
        cats = growth["categories"]
        insights.append(make_insight(
            "growth-distribution", growth["description"],
            dimension=growth["dimension"],
            categories={
                "growth": cats["strong_growth"]["count"] + cats["moderate_growth"]["count"],
                "stable": cats["stable"]["count"],
                "decline": cats["moderate_decline"]["count"] + cats["strong_decline"]["count"],
            },
        ))
        for key, label in (("strong_growth", "strong growth"), ("strong_decline", "strong decline")):
            items = cats[key]["items"]
            if items:
                shown = ", ".join(str(i) for i in items[:3]) + ("..." if len(items) > 3 else "")
                insights.append(make_insight(
                    "standout-performers",
                    f"{len(items)} {growth['dimension']} values showed {label} (20% or more): {shown}",
                    performers=items[:5], direction="growth" if key == "strong_growth" else "decline",
                ))

    for perf in analyze_relative_performance(rows):
        insights.append(make_insight(
            "performance-shift", perf["description"],
            dimension=perf["dimension"], measure=perf["measure"],
            periods=[perf["period1"], perf["period2"]],
            improved=perf["improved_count"], declined=perf["declined_count"],
        ))
        if perf["top_improved"]:
            top = perf["top_improved"][0]
            insights.append(make_insight(
                "top-improver", f"Top improver: {top['dimension']} ({_fmt_pct(top['percent_change'])} change)",
                performer=top["dimension"], metric=perf["measure"], change=top["percent_change"],
            ))
        if perf["top_declined"]:
            bottom = perf["top_declined"][0]
            insights.append(make_insight(
                "top-decliner", f"Largest decliner: {bottom['dimension']} ({_fmt_pct(bottom['percent_change'])} change)",
                performer=bottom["dimension"], metric=perf["measure"], change=bottom["percent_change"],
            ))
    return insights


def analyze_comparison_data(data: Any) -> dict[str, Any]:
    """Comparisons, growth buckets, relative performance and insights."""
    rows = data.get("data") if isinstance(data, dict) else data
    if not isinstance(rows, list) or not rows:
        return {"comparisons": [], "growth_categories": [], "relative_performance": [], "insights": []}
    comparisons = analyze_comparisons(rows)
    return {
        "comparisons": comparisons,
        "growth_categories": analyze_growth_categories(rows),
        "relative_performance": analyze_relative_performance(rows),
        "insights": generate_comparison_insights(rows, comparisons),
    }
