"""
Column type inference and dimension / measure role detection.

Every heuristic about "which column is the dimension" lives here, with one
fallback order: declared schema types -> naming conventions -> sampled
values -> column position.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

import pandas as pd

from src.schema.models import ColumnDescriptor
from src.core.utils import is_number, to_datetime_series, to_numeric_series

Row = dict[str, Any]

TIME_NAME_CANDIDATES = ("date", "month", "year", "quarter", "week", "day", "time", "period")
VALUE_NAME_MARKERS = ("sum_", "avg_", "count_", "total_", "average_")
_AGGREGATE_NAME_RE = re.compile(
    r"^(sum|avg|count|total|average|min|max)_|_(sum|total|count|avg|average|diff|pct_change)$",
    re.IGNORECASE,
)

NUMERIC = "numeric"
DATE = "date"
CATEGORICAL = "categorical"
STRING = "string"
UNKNOWN = "unknown"


# ── Type inference ──────────────────────────────────────

def column_names(rows: Iterable[Row]) -> list[str]:
    """Union of row keys in first-seen order."""
    names: dict[str, None] = {}
    for row in rows:
        for key in row:
            names.setdefault(key, None)
    return list(names)


def column_values(rows: list[Row], column: str) -> list[Any]:
    """Non-null values of *column*."""
    return [row.get(column) for row in rows if row.get(column) is not None]


def rows_frame(rows: list[Row]) -> pd.DataFrame:
    """The row set as a DataFrame, columns in first-seen order."""
    return pd.DataFrame(list(rows))


def infer_type(values: Iterable[Any], threshold: float = 0.9) -> str:
    """Infer a column type from sampled values.

    numeric if >= 90% coerce to numbers, date if >= 90% coerce to dates,
    categorical if at most 15 distinct values and fewer than half the rows,
    otherwise string.
    """
    present = pd.Series(list(values), dtype=object).dropna()
    if present.empty:
        return UNKNOWN
    n = len(present)
    if to_numeric_series(present).notna().sum() >= threshold * n:
        return NUMERIC
    if to_datetime_series(present).notna().sum() >= threshold * n:
        return DATE
    unique = present.astype(str).nunique()
    if unique <= 15 and unique < n / 2:
        return CATEGORICAL
    return STRING


def infer_column_types(rows: list[Row]) -> dict[str, str]:
    frame = rows_frame(rows)
    return {col: infer_type(frame[col]) for col in frame.columns}


def _value_is_numeric(rows: list[Row], column: str) -> bool:
    if not rows:
        return False
    return is_number(rows[0].get(column))


# ── Naming conventions ──────────────────────────────────

def looks_aggregated(name: str) -> bool:
    return bool(_AGGREGATE_NAME_RE.search(name))


def looks_temporal(name: str) -> bool:
    lower = name.lower()
    return any(c in lower for c in TIME_NAME_CANDIDATES)


# ── Role detection ──────────────────────────────────────

@dataclass
class ColumnRoles:
    dimensions: list[str] = field(default_factory=list)
    measures: list[str] = field(default_factory=list)
    time: list[str] = field(default_factory=list)

    @property
    def primary_dimension(self) -> str | None:
        return self.dimensions[0] if self.dimensions else None

    @property
    def primary_measure(self) -> str | None:
        return self.measures[0] if self.measures else None


def detect_roles(rows: list[Row], declared: list[ColumnDescriptor] | None = None) -> ColumnRoles:
    """Assign every column of *rows* to the dimension or measure role."""
    roles = ColumnRoles()
    declared_types = {c.name: c.type for c in declared or []}
    types = infer_column_types(rows)

    for col in column_names(rows):
        kind = declared_types.get(col)
        if kind is not None:
            is_measure = kind in ("integer", "float")
            is_time = kind == "date"
        elif looks_aggregated(col):
            is_measure, is_time = True, False
        elif looks_temporal(col) and types.get(col) != NUMERIC:
            is_measure, is_time = False, True
        else:
            is_measure = types.get(col) == NUMERIC
            is_time = types.get(col) == DATE

        if is_measure:
            roles.measures.append(col)
        else:
            roles.dimensions.append(col)
            if is_time:
                roles.time.append(col)

    if not roles.dimensions and roles.measures and len(roles.measures) > 1:
        # Position: all-numeric results still get a leading dimension
        roles.dimensions.append(roles.measures.pop(0))
    return roles


# ── Join-key heuristics used by the aggregator ──────────

def find_common_dimension(rows1: list[Row], rows2: list[Row]) -> str | None:
    """First shared column, preferring one that is non-numeric in both inputs."""
    if not rows1 or not rows2:
        return None
    cols2 = set(rows2[0])
    common = [c for c in rows1[0] if c in cols2]
    if not common:
        return None
    for col in common:
        if not _value_is_numeric(rows1, col) and not _value_is_numeric(rows2, col):
            return col
    return common[0]


def find_time_dimension(rows: list[Row]) -> str | None:
    """Exact time-named column first, then a partial, case-insensitive match."""
    if not rows:
        return None
    cols = list(rows[0])
    for cand in TIME_NAME_CANDIDATES:
        if cand in cols:
            return cand
    for cand in TIME_NAME_CANDIDATES:
        for col in cols:
            if cand in col.lower():
                return col
    return None


def find_shared_time_column(rows1: list[Row], rows2: list[Row]) -> str | None:
    """Time column present under the same name in both inputs."""
    if not rows1 or not rows2:
        return None
    cols1, cols2 = list(rows1[0]), list(rows2[0])
    for cand in TIME_NAME_CANDIDATES:
        if cand in cols1 and cand in cols2:
            return cand
    for cand in TIME_NAME_CANDIDATES:
        m1 = next((c for c in cols1 if cand in c.lower()), None)
        m2 = next((c for c in cols2 if cand in c.lower()), None)
        if m1 is not None and m1 == m2:
            return m1
    return None


def value_columns(rows: list[Row]) -> list[str]:
    """Aggregate-named columns holding numbers (``total_sales``, ``avg_price``)."""
    if not rows:
        return []
    first = rows[0]
    return [
        col for col in first
        if is_number(first[col]) and any(marker in col.lower() for marker in VALUE_NAME_MARKERS)
    ]


def dimension_column(rows: list[Row], values: list[str]) -> str | None:
    """First column that is neither a value column nor aggregate-named."""
    if not rows:
        return None
    cols = list(rows[0])
    for col in cols:
        lower = col.lower()
        if col not in values and not any(m in lower for m in ("sum_", "avg_", "count_")):
            return col
    return cols[0] if cols else None


_DIMENSION_CATEGORY_HINTS = ("name", "category", "region", "product", "customer", "segment")


def find_label_column(rows: list[Row]) -> str | None:
    """Best column to label comparison rows with (mostly non-numeric, hint-named first)."""
    if not rows:
        return None
    cols = column_names(rows)
    candidates = []
    for col in cols:
        values = column_values(rows, col)
        if not values:
            continue
        non_numeric = sum(1 for v in values if not is_number(v))
        if non_numeric >= 0.8 * len(values):
            candidates.append(col)
    for col in candidates:
        if any(h in col.lower() for h in _DIMENSION_CATEGORY_HINTS):
            return col
    return candidates[0] if candidates else None
