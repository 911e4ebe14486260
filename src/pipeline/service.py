"""
Analysis service -- orchestrates classify -> plan -> generate -> compose ->
safety -> execute -> combine -> analyze -> narrate.

Single entry point ``analyze``.  Simple questions run one generated query;
complex ones run every plan step strictly in execution-sequence order and
merge the step results before analysis.  Validation and execution failures
end the request with a structured ``error``; every other stage degrades
locally and the request still returns a result.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from src.planning.complexity import classify_complexity
from src.planning.models import PlanStep, QueryPlan
from src.planning.planner import build_plan
from src.planning.scheduler import build_execution_sequence, run_sequence, sequence_warnings
from src.pipeline.sql_generator import SqlGenerationResult, generate_sql, generate_step_sql
from src.governance.sql_composer import compose_sql, is_dimensional
from src.governance.sql_safety import check_sql_safety
from src.analysis.aggregator import combine_results
from src.analysis.analyzer import analyze_data
from src.analysis.visualization import prepare_for_visualization
from src.narrative.composer import compose_narrative
from src.narrative.insights import merge_insights
from src.narrative.result_insights import extract_insights
from src.db.executor import QueryExecutor, SqlExecutor
from src.llm.client import LLMCallable
from src.schema.models import ColumnDescriptor, DatasetContext, coerce_columns, coerce_context
from src.core.errors import PipelineError
from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AnalysisResult:
    question: str
    sql: str = ""
    full_sql: str = ""
    plan: dict[str, Any] | None = None
    execution_sequence: list[dict[str, Any]] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    combined: dict[str, Any] | None = None
    visualization: dict[str, Any] | None = None
    step_results: list[dict[str, Any]] = field(default_factory=list)
    analysis: dict[str, Any] | None = None
    insights: list[dict[str, Any]] = field(default_factory=list)
    narrative: str = ""
    retries: int = 0
    warnings: list[str] = field(default_factory=list)
    error: dict[str, Any] | None = None
    latency_ms: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "success": self.success,
            "sql": self.sql,
            "full_sql": self.full_sql,
            "plan": self.plan,
            "execution_sequence": self.execution_sequence,
            "rows": self.rows,
            "combined": self.combined,
            "visualization": self.visualization,
            "step_results": self.step_results,
            "analysis": self.analysis,
            "insights": self.insights,
            "narrative": self.narrative,
            "retries": self.retries,
            "warnings": self.warnings,
            "error": self.error,
            "latency_ms": self.latency_ms,
            "metadata": self.metadata,
        }


# ── Request state ────────────────────────────────────────

@dataclass
class _Request:
    question: str
    columns: list[ColumnDescriptor]
    context: DatasetContext
    table_reference: str
    history: list[dict[str, Any]] | None
    mode: str
    llm: LLMCallable | None
    executor: QueryExecutor
    dataset_name: str
    plan: QueryPlan | None = None

    @property
    def plan_dict(self) -> dict[str, Any] | None:
        return self.plan.model_dump() if self.plan is not None else None


def _raise_generation_failure(req: _Request, gen: SqlGenerationResult, step_id: str | None = None) -> None:
    raise PipelineError(
        gen.stage or "validation",
        gen.error or "No SQL could be generated",
        question=req.question,
        sql=gen.sql,
        plan=req.plan_dict,
        retries=gen.retries,
        step_id=step_id,
    )


def _execute(req: _Request, sql: str, retries: int, step_id: str | None = None) -> tuple[str, dict[str, Any]]:
    """Compose, safety-check and run *sql*; returns (full_sql, executor output)."""
    full_sql = compose_sql(sql, req.table_reference)
    violations = check_sql_safety(full_sql)
    if violations:
        raise PipelineError(
            "validation", "; ".join(violations),
            question=req.question, sql=sql, full_sql=full_sql,
            plan=req.plan_dict, retries=retries, step_id=step_id,
        )
    try:
        output = req.executor.execute(full_sql, req.table_reference)
    except Exception as exc:
        logger.warning("Execution failed for %s: %s", step_id or "main query", exc)
        raise PipelineError(
            "execution", str(exc),
            question=req.question, sql=sql, full_sql=full_sql,
            plan=req.plan_dict, retries=retries, step_id=step_id,
        ) from exc
    return full_sql, output


# ── Paths ────────────────────────────────────────────────

def _run_simple(req: _Request, result: AnalysisResult) -> None:
    gen = generate_sql(
        req.question, req.columns, req.context, req.history,
        llm=req.llm, mode=req.mode, dataset_name=req.dataset_name,
    )
    result.retries = gen.retries
    result.sql = gen.sql
    if not gen.success:
        _raise_generation_failure(req, gen)

    result.full_sql, output = _execute(req, gen.sql, gen.retries)
    rows = list(output.get("rows") or [])
    result.rows = rows
    result.step_results = [{
        "id": "main-query", "sql": gen.sql, "full_sql": result.full_sql,
        "data": rows, "total_rows": output.get("total_rows", len(rows)),
    }]

    combined = combine_results(result.step_results, req.plan)
    result.visualization = prepare_for_visualization(combined)
    result.analysis = analyze_data(rows)
    result.insights = merge_insights(extract_insights(rows, result.full_sql), result.analysis.get("insights"))
    result.narrative = compose_narrative(
        req.question, rows, result.insights, req.dataset_name, llm=req.llm, mode=req.mode,
    )
    result.metadata.update({
        "total_rows": output.get("total_rows", len(rows)),
        "is_dimensional": is_dimensional(result.full_sql),
    })


def _run_complex(req: _Request, result: AnalysisResult) -> None:
    plan = req.plan
    sequence = build_execution_sequence(plan)
    result.execution_sequence = [s.model_dump() for s in sequence]
    result.warnings.extend(sequence_warnings(sequence))

    retries = {"total": 0}

    def run_step(step: PlanStep, done: dict[str, dict[str, Any]]) -> dict[str, Any]:
        gen = generate_step_sql(
            step, req.question, req.columns, req.context, req.history,
            llm=req.llm, mode=req.mode, dataset_name=req.dataset_name,
        )
        retries["total"] += gen.retries
        if not gen.success:
            _raise_generation_failure(req, gen, step_id=step.id)
        full_sql, output = _execute(req, gen.sql, retries["total"], step_id=step.id)
        rows = list(output.get("rows") or [])
        logger.info("Step '%s' returned %d rows (after %s)", step.id, len(rows), list(done) or "none")
        return {
            "id": step.id,
            "sql": gen.sql,
            "full_sql": full_sql,
            "data": rows,
            "total_rows": output.get("total_rows", len(rows)),
        }

    try:
        result.step_results = run_sequence(sequence, run_step)
    finally:
        result.retries = retries["total"]

    combined = combine_results(result.step_results, plan)
    if combined.get("error"):
        result.warnings.append(combined["error"])
    result.combined = combined
    result.visualization = prepare_for_visualization(combined)

    data = combined.get("data")
    if isinstance(data, list):
        result.rows = data
    result.analysis = analyze_data(data, plan.query_type)
    result.insights = merge_insights(result.analysis.get("insights"))
    result.narrative = compose_narrative(
        req.question, data, result.insights, req.dataset_name,
        llm=req.llm, mode=req.mode, is_complex=True,
    )
    result.metadata.update({
        "total_rows": sum(r.get("total_rows", 0) for r in result.step_results),
        "is_dimensional": any(is_dimensional(r["full_sql"]) for r in result.step_results),
        "combination_method": combined.get("metadata", {}).get("combination_method"),
    })


# ── Public API ───────────────────────────────────────────

def analyze(
    question: str,
    columns: list[ColumnDescriptor | dict],
    table_reference: str,
    dataset_context: DatasetContext | dict | None = None,
    conversation_history: list[dict[str, Any]] | None = None,
    mode: str = "mock",
    llm: LLMCallable | None = None,
    executor: QueryExecutor | None = None,
    dataset_name: str | None = None,
) -> AnalysisResult:
    """End-to-end: question -> data, insights and narrative.

    Parameters
    ----------
    question : str
        Natural-language analytical question.
    columns : list[ColumnDescriptor | dict]
        Schema of the dataset behind *table_reference*.
    table_reference : str
        Table the composed SQL runs against, quoted as the warehouse needs.
    dataset_context : DatasetContext | dict, optional
        Prompt enrichment.
    conversation_history : list[dict], optional
        Prior ``{"role", "content"}`` turns for SQL generation.
    mode : str
        "mock" (deterministic), "openai", or "anthropic".
    llm : LLMCallable, optional
        Injected LLM used by every stage instead of ``mode``'s provider.
    executor : QueryExecutor, optional
        Defaults to the SQLAlchemy executor on the configured warehouse.
    dataset_name : str, optional
        Display name; the table reference by default.
    """
    t0 = time.perf_counter()
    logger.info("Analysis.analyze | question=%s | mode=%s | table=%s", question, mode, table_reference)

    req = _Request(
        question=question,
        columns=coerce_columns(columns),
        context=coerce_context(dataset_context),
        table_reference=table_reference,
        history=conversation_history,
        mode=mode,
        llm=llm,
        executor=executor or SqlExecutor(),
        dataset_name=dataset_name or table_reference,
    )
    result = AnalysisResult(question=question, metadata={"dataset_name": req.dataset_name})

    try:
        verdict = classify_complexity(question, req.columns, req.context, llm=llm, mode=mode)
        req.plan = build_plan(question, req.columns, req.context, verdict, llm=llm, mode=mode)
        result.plan = req.plan_dict
        result.metadata["query_type"] = req.plan.query_type
        if req.plan.error:
            result.warnings.append(f"plan: {req.plan.error}")

        if req.plan.is_complex and req.plan.error is None and len(req.plan.steps) > 1:
            _run_complex(req, result)
        else:
            result.execution_sequence = [s.model_dump() for s in req.plan.steps]
            _run_simple(req, result)
    except PipelineError as exc:
        logger.warning("Analysis failed at %s: %s", exc.stage, exc.message)
        result.error = exc.to_dict()

    result.latency_ms = int((time.perf_counter() - t0) * 1000)
    logger.info(
        "Analysis done | success=%s | rows=%s | latency=%dms",
        result.success, result.metadata.get("total_rows"), result.latency_ms,
    )
    return result
