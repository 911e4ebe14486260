"""
Column Descriptor and Dataset Context -- the schema the pipeline reasons about.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ColumnType = Literal["string", "integer", "float", "date", "boolean"]

NUMERIC_TYPES = ("integer", "float")


class ColumnDescriptor(BaseModel):
    """One column of the target dataset, as supplied by the schema provider."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Column name, may contain spaces")
    type: ColumnType = Field("string", description="string | integer | float | date | boolean")
    nullable: bool = Field(True, description="Whether NULLs are allowed")
    primary_key: bool = Field(False, alias="primaryKey", description="Part of the primary key")
    description: str = Field("", description="Free-text column description")

    @property
    def needs_quoting(self) -> bool:
        return " " in self.name

    @property
    def is_numeric(self) -> bool:
        return self.type in NUMERIC_TYPES

    @property
    def sql_name(self) -> str:
        """Name as it must appear in SQL text."""
        return f"`{self.name}`" if self.needs_quoting else self.name


class DatasetContext(BaseModel):
    """Free-text metadata used only to enrich prompts."""

    model_config = ConfigDict(frozen=True)

    context: str = ""
    purpose: str = ""
    source: str = ""
    notes: str = ""


def coerce_columns(columns: list[ColumnDescriptor | dict]) -> list[ColumnDescriptor]:
    """Accept descriptors or plain dicts (e.g. straight from a JSON request)."""
    return [c if isinstance(c, ColumnDescriptor) else ColumnDescriptor.model_validate(c) for c in columns]


def coerce_context(context: DatasetContext | dict | None) -> DatasetContext:
    if context is None:
        return DatasetContext()
    if isinstance(context, DatasetContext):
        return context
    return DatasetContext.model_validate(context)
