"""
Result aggregator -- merges the result sets of a plan's steps.

One ``CombinationStrategy`` per query type, looked up in a registry; the
generic keyed-by-step strategy is both the default for unknown types and the
fallback whenever a strategy cannot find the shape it expects.  Nothing in
this module raises to the caller.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from src.analysis.roles import (
    Row,
    dimension_column,
    find_common_dimension,
    find_shared_time_column,
    find_time_dimension,
    value_columns,
)
from src.planning.models import QueryPlan
from src.core.utils import to_datetime, to_number
from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StepInfo:
    id: str
    description: str
    output_type: str

    @property
    def text(self) -> str:
        return self.description.lower()


class ShapeNotFound(Exception):
    """A strategy could not locate the steps or columns it needs."""


def _hashable(value: Any) -> Any:
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value


def _index_by(rows: list[Row], column: str) -> dict[Any, Row]:
    """Last row wins for duplicate keys."""
    return {_hashable(row.get(column)): row for row in rows}


# ── Naming helpers ──────────────────────────────────────

_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")
_QUARTER_YEAR_RE = re.compile(r"\b(Q[1-4])\s*((?:19|20)\d{2})\b", re.IGNORECASE)
_MONTH_YEAR_RE = re.compile(r"\b([A-Za-z]{3,9})\s+((?:19|20)\d{2})\b")
_CURRENT_RE = re.compile(r"\b(current|this\s+\w+)\b", re.IGNORECASE)
_PREVIOUS_RE = re.compile(r"\b(previous|prior|last\s+\w+)\b", re.IGNORECASE)


def _slug(text: str) -> str:
    return re.sub(r"\W+", "_", text.strip().lower()).strip("_")


def _period_forms(description: str) -> list[str | None]:
    """Candidate identifiers for a period step, least specific first."""
    description = description or ""
    year = _YEAR_RE.search(description)
    quarter = _QUARTER_YEAR_RE.search(description)
    month = _MONTH_YEAR_RE.search(description)
    if month and month.group(1).lower() in ("period", "for", "in", "of", "year", "fiscal"):
        month = None
    relative = "current" if _CURRENT_RE.search(description) else (
        "previous" if _PREVIOUS_RE.search(description) else None
    )
    return [
        year.group(1) if year else None,
        f"{quarter.group(1).lower()}_{quarter.group(2)}" if quarter else None,
        f"{month.group(1).lower()}_{month.group(2)}" if month else None,
        relative,
        _slug(description)[:10] or None,
    ]


def extract_period_identifiers(first: str, second: str) -> tuple[str, str]:
    """Distinct column suffixes for two period steps.

    The year is preferred ("Q1 2023" -> ``2023``); a more specific form is
    used only when the years collide, and ``p1``/``p2`` as a last resort.
    """
    for a, b in zip(_period_forms(first), _period_forms(second)):
        if a and b and a != b:
            return a, b
    return "p1", "p2"


def _period_sort_key(description: str) -> tuple[int, int] | None:
    """(year, quarter) for chronological ordering of period steps."""
    year = _YEAR_RE.search(description or "")
    if not year:
        return None
    quarter = _QUARTER_YEAR_RE.search(description)
    return int(year.group(1)), int(quarter.group(1)[1]) if quarter else 0


_DIMENSION_NAME_PATTERNS = [
    re.compile(r"\bby\s+(\w+)", re.IGNORECASE),
    re.compile(r"(\w+)\s+dimension", re.IGNORECASE),
    re.compile(r"(\w+)\s+breakdown", re.IGNORECASE),
]


def extract_dimension_name(description: str | None) -> str:
    if not description:
        return "dim"
    for pattern in _DIMENSION_NAME_PATTERNS:
        m = pattern.search(description)
        if m:
            return m.group(1).lower()
    return "dimension"


# ── Strategies ──────────────────────────────────────────

class CombinationStrategy:
    """Base strategy: subclasses set ``query_type`` and implement ``combine``."""

    query_type = "generic"

    def combine(self, results: dict[str, list[Row]], steps: list[StepInfo]) -> Any:
        raise NotImplementedError

    @staticmethod
    def _find(steps: list[StepInfo], *keywords: str, exclude: StepInfo | None = None) -> StepInfo | None:
        for step in steps:
            if step is not exclude and any(k in step.text for k in keywords):
                return step
        return None


class GenericStrategy(CombinationStrategy):
    query_type = "generic"

    def combine(self, results: dict[str, list[Row]], steps: list[StepInfo]) -> dict[str, Any]:
        return {
            step.id: {
                "description": step.description,
                "output_type": step.output_type,
                "data": results[step.id],
            }
            for step in steps
            if step.id in results
        }


class TemporalComparisonStrategy(CombinationStrategy):
    query_type = "temporal-comparison"

    def combine(self, results: dict[str, list[Row]], steps: list[StepInfo]) -> list[Row]:
        periods = [s for s in steps if s.output_type == "aggregated" and "period" in s.text]
        if len(periods) < 2:
            raise ShapeNotFound("fewer than two aggregated period steps")

        first, second = periods[0], periods[1]
        k1, k2 = _period_sort_key(first.description), _period_sort_key(second.description)
        if k1 is not None and k2 is not None and k1 > k2:
            first, second = second, first
        rows1 = results.get(first.id, [])
        rows2 = results.get(second.id, [])
        if not rows1 and not rows2:
            return []

        join = (
            find_common_dimension(rows1, rows2)
            or find_time_dimension(rows1 or rows2)
            or next(iter((rows1 or rows2)[0]), None)
        )
        if join is None:
            raise ShapeNotFound("no join column")

        p1, p2 = extract_period_identifiers(first.description, second.description)
        sample = rows1 or rows2
        values = [c for c in sample[0] if c != join]

        map1, map2 = _index_by(rows1, join), _index_by(rows2, join)
        keys: dict[Any, Any] = {}
        for row in rows1 + rows2:
            keys.setdefault(_hashable(row.get(join)), row.get(join))

        combined: list[Row] = []
        for key, original in keys.items():
            r1, r2 = map1.get(key, {}), map2.get(key, {})
            row: Row = {join: original}
            for col in values:
                row[f"{col}_{p1}"] = r1.get(col)
            for col in values:
                row[f"{col}_{p2}"] = r2.get(col)
            for col in values:
                v1, v2 = to_number(r1.get(col)), to_number(r2.get(col))
                if v1 and v2:
                    row[f"{col}_diff"] = v2 - v1
                    row[f"{col}_pct_change"] = (v2 - v1) / v1 * 100
                else:
                    row[f"{col}_diff"] = None
                    row[f"{col}_pct_change"] = None
            combined.append(row)
        return combined


class MultiDimensionalStrategy(CombinationStrategy):
    query_type = "multi-dimensional-aggregation"

    def combine(self, results: dict[str, list[Row]], steps: list[StepInfo]) -> list[Row]:
        aggregated = [s for s in steps if s.output_type == "aggregated"]
        if len(aggregated) < 2:
            return list(results.get(aggregated[0].id, [])) if aggregated else []

        raw = next((s for s in steps if s.output_type == "raw-data"), None)
        base = list(results.get(raw.id, [])) if raw else []
        enrich_from = aggregated
        if not base:
            base = list(results.get(aggregated[0].id, []))
            enrich_from = aggregated[1:]

        for step in enrich_from:
            rows = results.get(step.id, [])
            if not rows:
                continue
            name = extract_dimension_name(step.description)
            values = value_columns(rows)
            dim = dimension_column(rows, values)
            if dim is None or not values:
                continue
            lookup = _index_by(rows, dim)
            enriched = []
            for row in base:
                match = lookup.get(_hashable(row.get(dim))) if dim in row else None
                new_row = dict(row)
                if match:
                    for col in values:
                        if col in match:
                            new_row[f"{name}_{col}"] = match[col]
                enriched.append(new_row)
            base = enriched
        return base


class TrendSummaryStrategy(CombinationStrategy):
    query_type = "trend-and-summary"

    def combine(self, results: dict[str, list[Row]], steps: list[StepInfo]) -> dict[str, Any]:
        trend = self._find(steps, "trend")
        summary = next(
            (s for s in steps if s is not trend and s.output_type == "summary"),
            None,
        ) or self._find(steps, "summary", "total", exclude=trend)
        if trend is None and summary is None:
            raise ShapeNotFound("no trend or summary step")

        out: dict[str, Any] = {
            "trends": results.get(trend.id, []) if trend else [],
            "summary": results.get(summary.id, []) if summary else [],
            "combined": [],
        }
        trends, summ = out["trends"], out["summary"]
        if not trends or not summ:
            return out

        join = find_common_dimension(trends, summ)
        if join is not None and not _numeric_join(trends, join):
            lookup = _index_by(summ, join)
            out["combined"] = [
                {**row, **{f"summary_{k}": v for k, v in lookup.get(_hashable(row.get(join)), {}).items() if k != join}}
                for row in trends
            ]
        elif len(summ) == 1:
            # One summary row applies to every trend point
            extra = {f"summary_{k}": v for k, v in summ[0].items()}
            out["combined"] = [{**row, **extra} for row in trends]
        return out


def _numeric_join(rows: list[Row], column: str) -> bool:
    return to_number(rows[0].get(column)) is not None


class PerformersDetailsStrategy(CombinationStrategy):
    query_type = "performers-with-details"

    def combine(self, results: dict[str, list[Row]], steps: list[StepInfo]) -> dict[str, Any]:
        performers = next(
            (s for s in steps if "detail" not in s.text and any(k in s.text for k in ("performer", "top", "bottom"))),
            None,
        ) or self._find(steps, "performer", "top", "bottom")
        details = self._find(steps, "detail", exclude=performers)
        if performers is None and details is None:
            raise ShapeNotFound("no performer or detail step")

        out: dict[str, Any] = {
            "performers": results.get(performers.id, []) if performers else [],
            "details": results.get(details.id, []) if details else [],
            "combined": [],
        }
        perf, det = out["performers"], out["details"]
        if not perf or not det:
            return out

        join = find_common_dimension(perf, det)
        if join is None:
            return out
        grouped: dict[Any, list[Row]] = {}
        for row in det:
            grouped.setdefault(_hashable(row.get(join)), []).append(row)
        out["combined"] = [
            {**row, "details": grouped.get(_hashable(row.get(join)), [])}
            for row in perf
        ]
        return out


def _time_sort_key(column: str):
    def key(row: Row) -> tuple:
        value = row.get(column)
        if value is None:
            return (3, "")
        number = to_number(value)
        if number is not None:
            return (0, number)
        moment = to_datetime(value)
        if moment is not None:
            return (1, moment.isoformat())
        return (2, str(value))
    return key


class HistoricalPredictionStrategy(CombinationStrategy):
    query_type = "historical-prediction"

    def combine(self, results: dict[str, list[Row]], steps: list[StepInfo]) -> dict[str, Any]:
        historical = self._find(steps, "historical", "history", "past")
        prediction = self._find(steps, "prediction", "forecast", "future", exclude=historical)
        if historical is None and prediction is None:
            raise ShapeNotFound("no historical or prediction step")

        out: dict[str, Any] = {
            "historical": results.get(historical.id, []) if historical else [],
            "prediction": results.get(prediction.id, []) if prediction else [],
            "timeseries": [],
        }
        hist, pred = out["historical"], out["prediction"]
        if not hist or not pred:
            return out

        time_col = find_shared_time_column(hist, pred)
        if time_col is None:
            return out
        merged = [{**r, "data_type": "historical"} for r in hist] + [{**r, "data_type": "prediction"} for r in pred]
        out["timeseries"] = sorted(merged, key=_time_sort_key(time_col))
        out["time_column"] = time_col
        return out


_GENERIC = GenericStrategy()

STRATEGIES: dict[str, CombinationStrategy] = {
    s.query_type: s
    for s in (
        TemporalComparisonStrategy(),
        MultiDimensionalStrategy(),
        TrendSummaryStrategy(),
        PerformersDetailsStrategy(),
        HistoricalPredictionStrategy(),
        _GENERIC,
    )
}


def get_strategy(query_type: str | None) -> CombinationStrategy:
    return STRATEGIES.get(query_type or "", _GENERIC)


# ── Public API ──────────────────────────────────────────

def _plan_fields(plan: QueryPlan | Mapping[str, Any] | None) -> tuple[str, str | None, list[dict[str, Any]]]:
    if plan is None:
        return "unknown", None, []
    if isinstance(plan, QueryPlan):
        return plan.type, plan.query_type, [s.model_dump() for s in plan.steps]
    steps = [dict(s) for s in plan.get("steps") or [] if isinstance(s, Mapping)]
    return str(plan.get("type") or "unknown"), plan.get("query_type") or plan.get("queryType"), steps


def _step_infos(plan_steps: list[dict[str, Any]], results: list[dict[str, Any]]) -> list[StepInfo]:
    infos: list[StepInfo] = []
    seen: set[str] = set()
    for raw in list(plan_steps) + list(results):
        sid = str(raw.get("id", ""))
        if not sid or sid in seen:
            continue
        seen.add(sid)
        infos.append(StepInfo(
            id=sid,
            description=str(raw.get("description") or ""),
            output_type=str(raw.get("output_type") or raw.get("outputType") or "raw-data"),
        ))
    return infos


def combine_results(
    results: list[dict[str, Any]],
    plan: QueryPlan | Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Merge step results into one Combined Dataset.

    Parameters
    ----------
    results : list[dict]
        Step results, each ``{"id", "data", ...}``; ``description`` and
        ``output_type`` are read from the plan step with the same id.
    plan : QueryPlan or dict
        The plan the results belong to.

    Returns
    -------
    dict
        ``{"type", "query_type", "data", "metadata": {"query_count",
        "combination_method"}}`` plus ``error`` on the fallback path.
    """
    results = list(results or [])
    try:
        plan_type, query_type, plan_steps = _plan_fields(plan)

        if plan_type == "simple" or len(results) == 1:
            return {
                "type": "simple",
                "query_type": query_type,
                "data": list(results[0].get("data") or []) if results else [],
                "metadata": {"query_count": len(results), "combination_method": "direct"},
            }

        by_id = {str(r.get("id")): list(r.get("data") or []) for r in results}
        steps = _step_infos(plan_steps, results)
        strategy = get_strategy(query_type)
        try:
            data = strategy.combine(by_id, steps)
            method = strategy.query_type
        except ShapeNotFound as exc:
            logger.info("Strategy %s fell back to generic: %s", strategy.query_type, exc)
            data = _GENERIC.combine(by_id, steps)
            method = _GENERIC.query_type

        logger.info("Combined %d results via %s", len(results), method)
        return {
            "type": "complex",
            "query_type": query_type or "unknown",
            "data": data,
            "metadata": {"query_count": len(results), "combination_method": method},
        }
    except Exception as exc:
        logger.exception("Error combining query results")
        first = results[0].get("data") if results and isinstance(results[0], Mapping) else None
        return {
            "type": "simple",
            "error": f"Error combining query results: {exc}",
            "data": list(first or []),
            "metadata": {"query_count": len(results), "combination_method": "error-fallback"},
        }
