"""
Error types shared across the pipeline.

Only three stages surface hard failures to the caller: SQL generation (the LLM
call itself failed), SQL validation (after the retry budget is exhausted) and
execution.  Classification, planning, aggregation and analysis degrade locally
and tag their output with an ``error`` field instead, so they have no stage here.
"""
from __future__ import annotations

from typing import Any

STAGES = ("generation", "validation", "execution")


class PipelineError(Exception):
    """A terminal, user-visible failure of one pipeline stage."""

    def __init__(
        self,
        stage: str,
        message: str,
        question: str = "",
        sql: str = "",
        full_sql: str = "",
        plan: dict[str, Any] | None = None,
        retries: int = 0,
        step_id: str | None = None,
    ):
        if stage not in STAGES:
            raise ValueError(f"Unknown pipeline stage '{stage}'")
        super().__init__(message)
        self.stage = stage
        self.message = message
        self.question = question
        self.sql = sql
        self.full_sql = full_sql
        self.plan = plan
        self.retries = retries
        self.step_id = step_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "message": self.message,
            "question": self.question,
            "sql": self.sql,
            "full_sql": self.full_sql,
            "plan": self.plan,
            "retries": self.retries,
            "step_id": self.step_id,
        }


class QueryExecutionError(RuntimeError):
    """Raised by a query executor when the warehouse rejects a statement."""

    def __init__(self, message: str, sql: str = ""):
        super().__init__(message)
        self.sql = sql
