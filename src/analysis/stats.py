"""
Descriptive statistics over result rows.

Everything runs on pandas: a column becomes a float Series through
``to_numeric_series`` and the row set a DataFrame through ``rows_frame``.
All functions degrade to ``None`` / ``0`` / empty results instead of
raising when the input is too short for the metric.  Returned values are
plain Python numbers so results stay JSON-serialisable.
"""
from __future__ import annotations

from typing import Any, Sequence

import pandas as pd

from src.analysis.roles import (
    CATEGORICAL,
    DATE,
    NUMERIC,
    STRING,
    Row,
    infer_type,
    rows_frame,
)
from src.core.utils import to_datetime_series, to_numeric_series

MIN_CORRELATION_POINTS = 3
MIN_OUTLIER_POINTS = 5


def _series(values: Sequence[Any]) -> pd.Series:
    return to_numeric_series(values).dropna().reset_index(drop=True)


def numbers(values: Sequence[Any]) -> list[float]:
    """The values that parse as finite numbers, in order."""
    return _series(values).tolist()


def mean(values: Sequence[Any]) -> float | None:
    s = _series(values)
    return None if s.empty else float(s.mean())


def median(values: Sequence[Any]) -> float | None:
    s = _series(values)
    return None if s.empty else float(s.median())


def percentile(values: Sequence[Any], pct: float) -> float | None:
    """Linearly interpolated percentile, *pct* in 0-100."""
    s = _series(values)
    return None if s.empty else float(s.quantile(pct / 100))


def std_dev(values: Sequence[Any]) -> float | None:
    """Population standard deviation."""
    s = _series(values)
    return None if s.empty else float(s.std(ddof=0))


def skewness(values: Sequence[Any]) -> float:
    """Adjusted Fisher-Pearson sample skewness; 0 below 3 points or for constant input."""
    s = _series(values)
    if len(s) < 3 or s.std(ddof=0) == 0:
        return 0.0
    skew = s.skew()
    return 0.0 if pd.isna(skew) else float(skew)


def correlation(values1: Sequence[Any], values2: Sequence[Any]) -> float:
    """Pearson correlation over paired numeric values.

    Pairs where either side is not a number are dropped.  Returns 0 for
    mismatched lengths, fewer than three pairs or a constant side.
    """
    if len(values1) != len(values2):
        return 0.0
    pairs = pd.DataFrame({"a": to_numeric_series(values1), "b": to_numeric_series(values2)}).dropna()
    if len(pairs) < MIN_CORRELATION_POINTS:
        return 0.0
    if pairs["a"].std(ddof=0) == 0 or pairs["b"].std(ddof=0) == 0:
        return 0.0
    r = pairs["a"].corr(pairs["b"])
    if pd.isna(r):
        return 0.0
    return max(-1.0, min(1.0, float(r)))


def find_outliers(values: Sequence[Any]) -> list[float]:
    """Values outside ``[Q1 - 1.5*IQR, Q3 + 1.5*IQR]``."""
    s = _series(values)
    if len(s) < MIN_OUTLIER_POINTS:
        return []
    q1, q3 = s.quantile(0.25), s.quantile(0.75)
    iqr = q3 - q1
    return s[(s < q1 - 1.5 * iqr) | (s > q3 + 1.5 * iqr)].tolist()


def numeric_summary(values: Sequence[Any]) -> dict[str, Any]:
    s = _series(values)
    quantiles = s.quantile([0.25, 0.5, 0.75, 0.9])
    return {
        "min": float(s.min()),
        "max": float(s.max()),
        "sum": float(s.sum()),
        "mean": float(s.mean()),
        "median": float(s.median()),
        "standard_deviation": float(s.std(ddof=0)),
        "percentiles": {
            "p25": float(quantiles[0.25]),
            "p50": float(quantiles[0.5]),
            "p75": float(quantiles[0.75]),
            "p90": float(quantiles[0.9]),
        },
        "outliers": find_outliers(s),
    }


def generate_basic_stats(rows: list[Row]) -> dict[str, Any]:
    """Per-column statistics keyed by column name.

    Parameters
    ----------
    rows : list[dict]
        Result rows.

    Returns
    -------
    dict
        ``{"row_count", "column_count", "columns": {name: {...}}}`` where each
        column carries ``type``, ``value_count``, ``null_count``,
        ``unique_count`` and type-specific fields.
    """
    if not rows:
        return {"row_count": 0, "column_count": 0, "columns": {}}

    frame = rows_frame(rows)
    stats: dict[str, Any] = {"row_count": len(frame), "column_count": len(frame.columns), "columns": {}}

    for col in frame.columns:
        present = frame[col].dropna()
        as_text = present.astype(str)
        entry: dict[str, Any] = {
            "value_count": int(present.size),
            "null_count": int(len(frame) - present.size),
            "unique_count": int(as_text.nunique()),
        }
        kind = infer_type(present)
        nums = to_numeric_series(present).dropna()

        if kind == NUMERIC and not nums.empty:
            entry.update(type=NUMERIC, **numeric_summary(nums))
        elif kind == DATE:
            dates = to_datetime_series(present).dropna()
            entry["type"] = DATE
            if not dates.empty:
                first, last = dates.min(), dates.max()
                entry.update(
                    min=first.date().isoformat(),
                    max=last.date().isoformat(),
                    range_days=int((last - first).days),
                )
        elif kind == CATEGORICAL:
            counts = as_text.value_counts(sort=False).sort_values(ascending=False, kind="stable")
            entry.update(
                type=CATEGORICAL,
                frequency={str(k): int(v) for k, v in counts.items()},
                most_frequent=str(counts.index[0]),
                most_frequent_count=int(counts.iloc[0]),
            )
        else:
            lengths = as_text.str.len()
            entry.update(
                type=STRING,
                avg_length=float(lengths.mean()) if not lengths.empty else 0,
                min_length=int(lengths.min()) if not lengths.empty else 0,
                max_length=int(lengths.max()) if not lengths.empty else 0,
            )
        stats["columns"][str(col)] = entry
    return stats
