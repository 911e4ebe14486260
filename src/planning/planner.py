"""
Query plan builder -- turns a complexity verdict into a plan of steps.

Two modes:
  mock               -> template plan per query type, drafted from the schema
  openai / anthropic -> LLM-authored plan parsed from a JSON contract

Plan construction is total: every failure path yields a one-step fallback
plan tagged with ``error``.
"""
from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from src.planning.models import ComplexityVerdict, PlanStep, QueryPlan
from src.planning.drafter import QuestionFrame, draft_sql, frame_question, measure_alias
from src.llm.client import LLMCallable
from src.llm.parsing import parse_json_object
from src.schema.models import ColumnDescriptor, DatasetContext
from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)


def simple_plan(question: str) -> QueryPlan:
    return QueryPlan(
        type="simple",
        steps=[PlanStep(id="main-query", description="Execute single query", query=question)],
    )


def fallback_plan(question: str, verdict: ComplexityVerdict, error: str) -> QueryPlan:
    return QueryPlan(
        type="complex" if verdict.is_complex else "simple",
        query_type=verdict.query_type,
        reason=verdict.reason,
        error=error,
        steps=[
            PlanStep(
                id="fallback-main-query",
                description="Execute the original question as a single query",
                query=question,
                output_type="raw-data",
            )
        ],
    )


# ── Mock templates ───────────────────────────────────────

class _TemplateError(ValueError):
    """The question lacks what a template needs."""


def _measure_label(frame: QuestionFrame) -> str:
    return frame.measure.name if frame.measure else "records"


def _temporal_steps(frame: QuestionFrame) -> list[PlanStep]:
    if len(frame.periods) < 2:
        raise _TemplateError("Could not identify two periods to compare")
    if frame.date_column is None:
        raise _TemplateError("Dataset has no date column to restrict periods on")
    dim = frame.dimension
    by = f" by {dim.name}" if dim else ""
    alias = frame.measure.name if frame.measure else None
    steps = []
    for i, period in enumerate(frame.periods[:2], 1):
        description = f"Total {_measure_label(frame)}{by} for period {period.label}"
        steps.append(PlanStep(
            id=f"period-{i}",
            description=description,
            query=description,
            sql=draft_sql(frame, period=period, alias=alias) if frame.measure else None,
            output_type="aggregated",
        ))
    return steps


def _multi_dimensional_steps(frame: QuestionFrame) -> list[PlanStep]:
    if len(frame.dimensions) < 2 or frame.measure is None:
        raise _TemplateError("Need a measure and at least two dimensions")
    names = ", ".join(d.sql_name for d in frame.dimensions)
    steps = [PlanStep(
        id="detail",
        description="Detailed records across all requested dimensions",
        query=frame.question,
        sql=f"SELECT {names}, {frame.measure.sql_name} LIMIT {get_settings().sql_row_limit}",
        output_type="raw-data",
    )]
    for i, dim in enumerate(frame.dimensions, 1):
        description = f"Total {frame.measure.name} by {dim.name}"
        steps.append(PlanStep(
            id=f"dimension-{i}",
            description=description,
            query=description,
            sql=draft_sql(frame, dimension=dim, alias=measure_alias(frame.measure, "SUM"), period=None),
            output_type="aggregated",
        ))
    return steps


def _trend_summary_steps(frame: QuestionFrame) -> list[PlanStep]:
    if frame.measure is None or frame.date_column is None:
        raise _TemplateError("Need a measure and a date column")
    m, d = frame.measure, frame.date_column
    alias = measure_alias(m, "SUM")
    return [
        PlanStep(
            id="trend",
            description=f"{m.name} trend over time",
            query=f"{m.name} by {d.name}",
            sql=f"SELECT {d.sql_name}, SUM({m.sql_name}) AS {alias} GROUP BY {d.sql_name} ORDER BY {d.sql_name}",
            output_type="aggregated",
        ),
        PlanStep(
            id="summary",
            description=f"Overall summary of {m.name}",
            query=f"Overall {m.name} summary",
            sql=(
                f"SELECT SUM({m.sql_name}) AS {alias}, AVG({m.sql_name}) AS {measure_alias(m, 'AVG')}, "
                f"COUNT(*) AS record_count"
            ),
            output_type="summary",
        ),
    ]


def _performer_steps(frame: QuestionFrame) -> list[PlanStep]:
    dim = frame.dimension
    if frame.measure is None or dim is None:
        raise _TemplateError("Need a measure and a dimension to rank")
    m = frame.measure
    n = frame.rank_n or 5
    direction = "Top" if frame.rank_desc else "Bottom"
    detail_cols = [dim.sql_name]
    if frame.date_column is not None:
        detail_cols.append(frame.date_column.sql_name)
    detail_cols.append(m.sql_name)
    return [
        PlanStep(
            id="performers",
            description=f"{direction} {n} performers by {m.name}",
            query=f"{direction} {n} {dim.name} by {m.name}",
            sql=draft_sql(frame, dimension=dim, alias=measure_alias(m, "SUM"), limit=n),
            output_type="aggregated",
        ),
        PlanStep(
            id="details",
            description=f"Record details for each {dim.name}",
            query=f"Detailed {m.name} records per {dim.name}",
            sql=f"SELECT {', '.join(detail_cols)} ORDER BY {dim.sql_name} LIMIT {get_settings().sql_row_limit}",
            dependencies=["performers"],
            output_type="raw-data",
        ),
    ]


def _historical_steps(frame: QuestionFrame) -> list[PlanStep]:
    if frame.measure is None or frame.date_column is None:
        raise _TemplateError("Need a measure and a date column")
    m, d = frame.measure, frame.date_column
    alias = measure_alias(m, "SUM")
    return [
        PlanStep(
            id="historical",
            description=f"Historical {m.name} by {d.name}",
            query=f"Total {m.name} by {d.name}",
            sql=f"SELECT {d.sql_name}, SUM({m.sql_name}) AS {alias} GROUP BY {d.sql_name} ORDER BY {d.sql_name}",
            output_type="aggregated",
        ),
        PlanStep(
            id="prediction",
            description=f"Forecast baseline for {m.name} from the latest periods",
            query=f"Average {m.name} over the most recent {d.name} values",
            sql=(
                f"SELECT {d.sql_name}, AVG({m.sql_name}) AS {alias} GROUP BY {d.sql_name} "
                f"ORDER BY {d.sql_name} DESC LIMIT 3"
            ),
            dependencies=["historical"],
            output_type="aggregated",
        ),
    ]


_TEMPLATES = {
    "temporal-comparison": _temporal_steps,
    "multi-dimensional-aggregation": _multi_dimensional_steps,
    "trend-and-summary": _trend_summary_steps,
    "performers-with-details": _performer_steps,
    "historical-prediction": _historical_steps,
}


def _plan_mock(question: str, columns: list[ColumnDescriptor], verdict: ComplexityVerdict) -> QueryPlan:
    template = _TEMPLATES.get(verdict.query_type or "")
    if template is None:
        return fallback_plan(question, verdict, f"No plan template for query type '{verdict.query_type}'")
    frame = frame_question(question, columns)
    try:
        steps = template(frame)
    except _TemplateError as exc:
        logger.warning("Planner[mock] template failed: %s", exc)
        return fallback_plan(question, verdict, str(exc))
    return QueryPlan(type="complex", query_type=verdict.query_type, reason=verdict.reason, steps=steps)


# ── LLM planner ──────────────────────────────────────────

_LLM_PROMPT = """\
You are planning the SQL sub-queries needed to answer a complex analytical
question over a single table.  Query type: {query_type}.  Reason: {reason}.

Columns: {columns}
Dataset context: {context}

Return a JSON object {{"steps": [...]}} where every step has these exact fields:
  id           : short unique string
  description  : what the step computes (mention "period" for each compared
                 period, "trend", "summary", "top"/"detail", "historical"/"forecast")
  query        : a natural-language sub-question answerable by ONE query
  dependencies : list of step ids that must run first
  outputType   : one of raw-data, aggregated, comparison, summary

Question: {question}

JSON:"""


def _build_llm_prompt(
    question: str,
    columns: list[ColumnDescriptor],
    context: DatasetContext | None,
    verdict: ComplexityVerdict,
) -> str:
    return _LLM_PROMPT.format(
        query_type=verdict.query_type or "unknown",
        reason=verdict.reason or "n/a",
        columns=", ".join(f"{c.name} ({c.type})" for c in columns) or "unknown",
        context=context.context if context and context.context else "none",
        question=question,
    )


def _parse_llm_plan(data: dict[str, Any], question: str, verdict: ComplexityVerdict) -> QueryPlan:
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        return fallback_plan(question, verdict, "Plan response has no steps")

    steps: list[PlanStep] = []
    seen: set[str] = set()
    for i, raw in enumerate(raw_steps, 1):
        if not isinstance(raw, dict):
            continue
        raw = {**raw, "id": str(raw.get("id") or f"step-{i}")}
        try:
            step = PlanStep.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Skipping malformed plan step %d: %s", i, exc.errors()[:1])
            continue
        if step.id in seen:
            step = step.model_copy(update={"id": f"{step.id}-{i}"})
        if not step.query and not step.sql:
            step = step.model_copy(update={"query": step.description or question})
        seen.add(step.id)
        steps.append(step)

    if not steps:
        return fallback_plan(question, verdict, "Plan response has no usable steps")

    return QueryPlan(
        type="complex",
        query_type=data.get("queryType") or verdict.query_type,
        reason=verdict.reason,
        steps=steps,
    )


# ── Public API ───────────────────────────────────────────

def build_plan(
    question: str,
    columns: list[ColumnDescriptor],
    context: DatasetContext | None = None,
    verdict: ComplexityVerdict | None = None,
    llm: LLMCallable | None = None,
    mode: str = "mock",
) -> QueryPlan:
    """Build the query plan for *question*.  Never raises.

    Parameters
    ----------
    question : str
        The natural-language question.
    columns : list[ColumnDescriptor]
        Dataset schema.
    context : DatasetContext, optional
        Prompt enrichment.
    verdict : ComplexityVerdict, optional
        Classifier output; a simple verdict yields a one-step plan.
    llm : LLMCallable, optional
        Injected LLM for complex plans.
    mode : str
        ``mock`` uses the template plans.
    """
    verdict = verdict or ComplexityVerdict()
    if not verdict.is_complex:
        return simple_plan(question)

    try:
        if llm is None and mode == "mock":
            query_plan = _plan_mock(question, columns, verdict)
        else:
            if llm is None:
                from src.llm.client import get_llm

                llm = get_llm(mode, json_mode=True)
            response = llm(_build_llm_prompt(question, columns, context, verdict))
            data = parse_json_object(response)
            if data is None:
                query_plan = fallback_plan(question, verdict, "Plan response is not valid JSON")
            else:
                query_plan = _parse_llm_plan(data, question, verdict)
    except Exception as exc:
        logger.warning("Plan construction failed: %s", exc)
        query_plan = fallback_plan(question, verdict, f"Error creating query plan: {exc}")

    logger.info(
        "Planner[%s] -> type=%s query_type=%s steps=%d error=%s",
        mode, query_plan.type, query_plan.query_type, len(query_plan.steps), query_plan.error,
    )
    return query_plan
