"""
SQL generation with bounded retries.

Every attempt drafts a FROM-less SELECT (keyword drafter in mock mode, LLM
otherwise), cleans it and validates it against the schema.  An invalid draft
is sent back to the LLM with the validator's error and the SQL rules restated.
The loop makes at most ``sql_max_attempts`` attempts; the last error is kept
on the result for the caller to surface.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any

from src.planning.drafter import draft_sql, frame_question, wants_all_rows
from src.planning.models import PlanStep
from src.governance.sql_composer import clean_sql, extract_components, strip_table_clause
from src.governance.sql_validator import validate_sql
from src.llm.client import LLMCallable
from src.llm.parsing import extract_sql
from src.schema.context import build_system_prompt
from src.schema.models import ColumnDescriptor, DatasetContext
from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_CORRECTION = """\
The SQL you wrote is invalid: {error}
Invalid SQL: {sql}

Rewrite it following these rules:
1. Column names containing spaces must be quoted with backticks, e.g. `Sales Date`
2. Do NOT include a FROM clause or any table name
3. String values use single quotes
4. Dates may be filtered with EXTRACT(YEAR FROM column) = 2023
5. Give every aggregate an alias with AS, e.g. SUM(Sales) AS total_sales
6. Use SELECT * only when every column is requested

Respond with the corrected SQL only."""


@dataclass
class SqlGenerationResult:
    """Outcome of the retry loop.

    ``sql`` holds the last cleaned candidate, valid or not; ``error`` is set
    when no attempt validated.  ``stage`` says whether the loop ended on a
    provider failure (``generation``) or on validation.
    """

    sql: str = ""
    prompt: str = ""
    response: str = ""
    retries: int = 0
    attempts: int = 0
    error: str | None = None
    stage: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and bool(self.sql)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── Prompt rendering ─────────────────────────────────────

def _render_history(history: list[dict[str, Any]] | None) -> list[str]:
    lines = []
    for turn in history or []:
        role = str(turn.get("role", "user")).capitalize()
        content = str(turn.get("content", "")).strip()
        if content:
            lines.append(f"{role}: {content}")
    return lines


def _render_prompt(
    system: str,
    question: str,
    history: list[dict[str, Any]] | None,
    corrections: list[tuple[str, str]],
    preamble: str = "",
) -> str:
    parts = [system]
    past = _render_history(history)
    if past:
        parts.append("Conversation so far:\n" + "\n".join(past))
    ask = f"{preamble}\n{question}" if preamble else question
    parts.append(f"User: {ask}\nRespond with a single SQL SELECT statement.")
    for bad_sql, response in corrections:
        parts.append(f"Assistant: {bad_sql}")
        parts.append(f"User: {response}")
    return "\n\n".join(parts)


# ── Draft post-processing ────────────────────────────────

def force_select_all(sql: str) -> str:
    """Replace the projection with ``*`` unless the draft aggregates."""
    parts = extract_components(sql)
    if parts.has_group_by or parts.select_part.strip() == "*":
        return sql
    out = "SELECT *"
    if parts.has_where:
        out += f" WHERE {parts.where_part}"
    if parts.has_order_by:
        out += f" ORDER BY {parts.order_by_part}"
    if parts.has_limit:
        out += f" LIMIT {parts.limit_part}"
    return out


# ── Public API ───────────────────────────────────────────

def generate_sql(
    question: str,
    columns: list[ColumnDescriptor],
    context: DatasetContext | None = None,
    conversation_history: list[dict[str, Any]] | None = None,
    llm: LLMCallable | None = None,
    mode: str = "mock",
    dataset_name: str = "dataset",
    max_attempts: int | None = None,
    preamble: str = "",
    strip_from: bool = False,
) -> SqlGenerationResult:
    """Generate a validated, FROM-less SELECT for *question*.

    Parameters
    ----------
    question : str
        The natural-language question (or plan sub-question).
    columns : list[ColumnDescriptor]
        Dataset schema the draft is validated against.
    context : DatasetContext, optional
        Prompt enrichment.
    conversation_history : list[dict], optional
        Prior ``{"role", "content"}`` turns, replayed into the prompt.
    llm : LLMCallable, optional
        Injected LLM; when omitted and ``mode`` is not ``mock`` the configured
        provider for ``mode`` is used.
    mode : str
        ``mock`` drafts with the keyword drafter.
    max_attempts : int, optional
        Attempt budget, ``sql_max_attempts`` from settings by default.
    preamble : str
        Extra framing placed before the question in LLM prompts.
    strip_from : bool
        Drop a table clause from LLM output before validating it.
    """
    max_attempts = max(1, max_attempts or get_settings().sql_max_attempts)
    use_llm = llm is not None or mode != "mock"
    if use_llm and llm is None:
        from src.llm.client import get_llm

        llm = get_llm(mode)

    system = build_system_prompt(columns, dataset_name, context, question) if use_llm else ""
    corrections: list[tuple[str, str]] = []
    result = SqlGenerationResult()

    for attempt in range(1, max_attempts + 1):
        result.attempts = attempt
        result.retries = attempt - 1
        try:
            if use_llm:
                result.prompt = _render_prompt(system, question, conversation_history, corrections, preamble)
                result.response = llm(result.prompt)
                candidate = extract_sql(result.response)
                if strip_from:
                    candidate = strip_table_clause(candidate)
            else:
                candidate = draft_sql(frame_question(question, columns))
                result.prompt, result.response = question, candidate
        except Exception as exc:
            logger.exception("SQL generation attempt %d failed", attempt)
            result.error = f"SQL generation failed: {exc}"
            result.stage = "generation"
            return result

        candidate = clean_sql(candidate)
        if candidate and wants_all_rows(question):
            candidate = force_select_all(candidate)
        result.sql = candidate

        check = validate_sql(candidate, columns)
        if check.valid:
            result.error = result.stage = None
            logger.info("SQL validated on attempt %d/%d: %s", attempt, max_attempts, candidate)
            return result

        logger.warning("Attempt %d/%d invalid: %s", attempt, max_attempts, check.error)
        result.error = check.error
        result.stage = "validation"
        corrections.append((candidate or "(empty)", _CORRECTION.format(error=check.error, sql=candidate)))

    logger.warning("Giving up after %d attempts: %s", max_attempts, result.error)
    return result


def generate_step_sql(
    step: PlanStep,
    question: str,
    columns: list[ColumnDescriptor],
    context: DatasetContext | None = None,
    conversation_history: list[dict[str, Any]] | None = None,
    llm: LLMCallable | None = None,
    mode: str = "mock",
    dataset_name: str = "dataset",
    max_attempts: int | None = None,
) -> SqlGenerationResult:
    """SQL for one plan step.

    A step that carries its own ``sql`` is used directly once its table clause
    is stripped and it validates; otherwise the step's sub-question goes
    through :func:`generate_sql`.
    """
    if step.sql:
        candidate = clean_sql(strip_table_clause(step.sql))
        check = validate_sql(candidate, columns)
        if check.valid:
            logger.info("Step '%s' uses its own SQL", step.id)
            return SqlGenerationResult(sql=candidate, prompt=step.query or "", response=step.sql)
        logger.warning("Step '%s' SQL invalid (%s); generating from its sub-question", step.id, check.error)

    sub_question = step.query or step.description or question
    preamble = (
        f"This is step '{step.id}' of a multi-step analysis answering: {question}\n"
        f"Step purpose: {step.description}"
    )
    return generate_sql(
        sub_question,
        columns,
        context,
        conversation_history,
        llm=llm,
        mode=mode,
        dataset_name=dataset_name,
        max_attempts=max_attempts,
        preamble=preamble,
        strip_from=True,
    )
