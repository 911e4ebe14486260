"""
Complexity verdicts, query plans and plan steps.

A plan is built once per request and never mutated; the scheduler works on
copies of its steps.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

QUERY_TYPES = (
    "temporal-comparison",
    "multi-dimensional-aggregation",
    "trend-and-summary",
    "performers-with-details",
    "historical-prediction",
)

OUTPUT_TYPES = ("raw-data", "aggregated", "comparison", "summary")

OutputType = Literal["raw-data", "aggregated", "comparison", "summary"]


class ComplexityVerdict(BaseModel):
    """Whether a question needs one query or a decomposed plan."""

    is_complex: bool = False
    reason: str = ""
    recommended_approach: str = "single-query"
    query_type: str | None = Field(None, description="One of QUERY_TYPES when complex")


class PlanStep(BaseModel):
    """One sub-query of a plan."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    description: str = ""
    query: str | None = Field(None, description="Natural-language sub-question")
    sql: str | None = Field(None, description="Direct SQL, bypasses generation")
    dependencies: list[str] = Field(default_factory=list)
    output_type: OutputType = Field("raw-data", alias="outputType")
    dependency_warning: str | None = Field(None, alias="dependencyWarning")

    @field_validator("output_type", mode="before")
    @classmethod
    def _normalise_output_type(cls, value: Any) -> str:
        text = str(value or "").strip().lower().replace("_", "-")
        return text if text in OUTPUT_TYPES else "raw-data"

    @field_validator("dependencies", mode="before")
    @classmethod
    def _normalise_dependencies(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, (str, int)):
            value = [value]
        return [str(v) for v in value]


class QueryPlan(BaseModel):
    """Decomposition of a question into dependent steps."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["simple", "complex"] = "simple"
    query_type: str | None = Field(None, alias="queryType")
    steps: list[PlanStep] = Field(default_factory=list)
    reason: str = ""
    error: str | None = None

    @property
    def is_complex(self) -> bool:
        return self.type == "complex"

    def step(self, step_id: str) -> PlanStep | None:
        for s in self.steps:
            if s.id == step_id:
                return s
        return None
