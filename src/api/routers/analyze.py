"""POST /analyze -- question in, data + insights + narrative out."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field
from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from src.pipeline.service import analyze
from src.planning.complexity import classify_complexity
from src.planning.planner import build_plan
from src.planning.scheduler import build_execution_sequence, sequence_warnings
from src.schema.models import ColumnDescriptor, DatasetContext
from src.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class ConversationTurn(BaseModel):
    role: str = Field("user", description="user | assistant")
    content: str = ""


class AnalyzeRequest(BaseModel):
    question: str = Field(..., min_length=3, max_length=1000, description="Natural-language analytical question")
    columns: list[ColumnDescriptor] = Field(..., min_length=1, description="Dataset schema")
    table_reference: str = Field(..., min_length=1, description="Table the SQL runs against")
    dataset_context: DatasetContext | None = None
    dataset_name: str | None = None
    conversation_history: list[ConversationTurn] = Field(default_factory=list)
    mode: str = Field("mock", description="mock | openai | anthropic")


class AnalyzeResponse(BaseModel):
    question: str
    success: bool
    sql: str
    full_sql: str
    plan: dict[str, Any] | None
    execution_sequence: list[dict[str, Any]]
    rows: list[dict[str, Any]]
    combined: dict[str, Any] | None
    visualization: dict[str, Any] | None
    insights: list[dict[str, Any]]
    narrative: str
    retries: int
    warnings: list[str]
    error: dict[str, Any] | None
    latency_ms: int
    metadata: dict[str, Any]


class PlanRequest(BaseModel):
    question: str = Field(..., min_length=3, max_length=1000)
    columns: list[ColumnDescriptor] = Field(..., min_length=1)
    dataset_context: DatasetContext | None = None
    mode: str = Field("mock", description="mock | openai | anthropic")


class PlanResponse(BaseModel):
    question: str
    is_complex: bool
    reason: str
    query_type: str | None
    plan: dict[str, Any]
    execution_sequence: list[dict[str, Any]]
    warnings: list[str]


@router.post("", response_model=AnalyzeResponse)
def analyze_endpoint(req: AnalyzeRequest):
    """Full pipeline; terminal validation / execution failures come back as 422."""
    try:
        result = analyze(
            req.question,
            req.columns,
            req.table_reference,
            dataset_context=req.dataset_context,
            conversation_history=[t.model_dump() for t in req.conversation_history],
            mode=req.mode,
            dataset_name=req.dataset_name,
        )
    except Exception as exc:
        logger.exception("Analysis failed")
        raise HTTPException(status_code=500, detail=str(exc))

    body = AnalyzeResponse(**{k: v for k, v in result.to_dict().items() if k in AnalyzeResponse.model_fields})
    if not result.success:
        return JSONResponse(status_code=422, content=body.model_dump(mode="json"))
    return body


@router.post("/plan", response_model=PlanResponse)
def plan_endpoint(req: PlanRequest):
    """Classification, plan and execution order without running anything."""
    try:
        verdict = classify_complexity(req.question, req.columns, req.dataset_context, mode=req.mode)
        query_plan = build_plan(req.question, req.columns, req.dataset_context, verdict, mode=req.mode)
        sequence = build_execution_sequence(query_plan)
    except Exception as exc:
        logger.exception("Planning failed")
        raise HTTPException(status_code=500, detail=str(exc))

    warnings = sequence_warnings(sequence)
    if query_plan.error:
        warnings.insert(0, f"plan: {query_plan.error}")
    return PlanResponse(
        question=req.question,
        is_complex=verdict.is_complex,
        reason=verdict.reason,
        query_type=query_plan.query_type,
        plan=query_plan.model_dump(),
        execution_sequence=[s.model_dump() for s in sequence],
        warnings=warnings,
    )
