"""
Complexity classifier -- decides whether a question needs one query or several.

Order of evaluation, first match wins:
  1. simple fast-path phrasings ("show me all ...", "list all ...")
  2. a fixed table of two-part analytical phrasings, one per query type
  3. the LLM Service (skipped in mock mode); any failure means "not complex"
"""
from __future__ import annotations

import re
from typing import Any

from src.planning.models import ComplexityVerdict
from src.llm.client import LLMCallable
from src.llm.parsing import parse_json_object
from src.schema.models import ColumnDescriptor, DatasetContext
from src.core.logging import get_logger

logger = get_logger(__name__)

# ── Pattern tables ──────────────────────────────────────

_SIMPLE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^show me all\b",
        r"^list all\b",
        r"^what are the\b",
        r"^get all\b",
        r"^display\b",
        r"^find records where\b",
    )
]

# (query_type, approach, reason, patterns)
_COMPLEX_PATTERNS: list[tuple[str, str, str, list[re.Pattern[str]]]] = [
    (
        "temporal-comparison",
        "multi-query-comparison",
        "Compares a measure across two time periods",
        [
            re.compile(r"compare .+ (between|with) .+ (and|vs) .+", re.IGNORECASE),
            re.compile(r"how does .+ (compare|differ) .+ (last|previous|before)", re.IGNORECASE),
        ],
    ),
    (
        "multi-dimensional-aggregation",
        "multi-query-aggregation",
        "Aggregates measures along more than one dimension",
        [
            re.compile(r"(breakdown|break down) .+ by .+ and .+ by .+", re.IGNORECASE),
            re.compile(r"show .+ by .+ and .+ by .+", re.IGNORECASE),
        ],
    ),
    (
        "trend-and-summary",
        "multi-query-mixed",
        "Combines a time trend with summary totals",
        [
            re.compile(r"(trend|trends|trending) .+ (and|with) .+ (summary|overview|totals)", re.IGNORECASE),
            re.compile(r"(summary|overview) .+ (and|with) .+ (trend|trends|changes)", re.IGNORECASE),
        ],
    ),
    (
        "performers-with-details",
        "multi-query-detail",
        "Identifies leading or trailing performers and their details",
        [
            re.compile(r"(top|bottom|best|worst) .+ (and|with) .+ details", re.IGNORECASE),
            re.compile(r"identify .+ (performers|performing) .+ (and|with) .+ (details|breakdown)", re.IGNORECASE),
        ],
    ),
    (
        "historical-prediction",
        "multi-query-predictive",
        "Projects forward from historical data",
        [
            re.compile(r"(forecast|predict|projection) .+ based on .+ (history|historical|past)", re.IGNORECASE),
            re.compile(r"(analyze|study) .+ (history|historical|past) .+ (and|to) .+ (forecast|predict)", re.IGNORECASE),
        ],
    ),
]


def _match_rules(question: str) -> ComplexityVerdict | None:
    q = question.strip()
    for pattern in _SIMPLE_PATTERNS:
        if pattern.search(q):
            return ComplexityVerdict(
                is_complex=False,
                reason="Simple data retrieval request",
                recommended_approach="single-query",
            )

    for query_type, approach, reason, patterns in _COMPLEX_PATTERNS:
        if any(p.search(q) for p in patterns):
            return ComplexityVerdict(
                is_complex=True,
                reason=reason,
                recommended_approach=approach,
                query_type=query_type,
            )
    return None


# ── LLM fallback ────────────────────────────────────────

_LLM_PROMPT = """\
Decide whether the analytical question below can be answered with ONE SQL query
over a single table, or needs several queries whose results are combined.

Columns: {columns}
Dataset context: {context}

Return a JSON object with exactly these fields:
  isComplex           : boolean
  reason              : string
  recommendedApproach : "single-query" or "multi-query-<kind>"
  queryType           : one of temporal-comparison, multi-dimensional-aggregation,
                        trend-and-summary, performers-with-details,
                        historical-prediction, or null

Question: {question}

JSON:"""


def _build_llm_prompt(
    question: str,
    columns: list[ColumnDescriptor],
    context: DatasetContext | None,
) -> str:
    cols = ", ".join(f"{c.name} ({c.type})" for c in columns) or "unknown"
    ctx = context.context if context and context.context else "none"
    return _LLM_PROMPT.format(columns=cols, context=ctx, question=question)


def _parse_llm_verdict(data: dict[str, Any]) -> ComplexityVerdict:
    is_complex = data.get("isComplex", data.get("is_complex", False))
    if isinstance(is_complex, str):
        is_complex = is_complex.strip().lower() == "true"
    query_type = data.get("queryType", data.get("query_type")) if is_complex else None
    return ComplexityVerdict(
        is_complex=bool(is_complex),
        reason=str(data.get("reason") or "LLM classification"),
        recommended_approach=str(
            data.get("recommendedApproach")
            or ("multi-query" if is_complex else "single-query")
        ),
        query_type=str(query_type) if query_type else None,
    )


# ── Public API ──────────────────────────────────────────

def classify_complexity(
    question: str,
    columns: list[ColumnDescriptor] | None = None,
    context: DatasetContext | None = None,
    llm: LLMCallable | None = None,
    mode: str = "mock",
) -> ComplexityVerdict:
    """Classify *question* as simple or complex.  Never raises.

    Parameters
    ----------
    question : str
        The natural-language question.
    columns, context
        Schema information forwarded to the LLM prompt.
    llm : LLMCallable, optional
        Injected LLM; when omitted and ``mode`` is not ``mock`` the configured
        provider for ``mode`` is used.
    mode : str
        ``mock`` classifies with the rule tables only.
    """
    try:
        verdict = _match_rules(question or "")
        if verdict is not None:
            logger.info("Complexity[rules] -> complex=%s type=%s", verdict.is_complex, verdict.query_type)
            return verdict

        if llm is None and mode == "mock":
            return ComplexityVerdict(reason="No multi-part analytical pattern detected")

        if llm is None:
            from src.llm.client import get_llm

            llm = get_llm(mode, json_mode=True)

        response = llm(_build_llm_prompt(question, columns or [], context))
        data = parse_json_object(response)
        if data is None:
            return ComplexityVerdict(reason="Unparseable classification response; defaulting to single query")

        verdict = _parse_llm_verdict(data)
        logger.info("Complexity[llm] -> complex=%s type=%s", verdict.is_complex, verdict.query_type)
        return verdict
    except Exception as exc:
        logger.warning("Complexity classification failed, defaulting to simple: %s", exc)
        return ComplexityVerdict(reason=f"Error during complexity analysis: {exc}")
