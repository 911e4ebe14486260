"""
Small shared utilities: pandas-backed value coercion for result rows.

Rows come back from the warehouse as plain dicts, so a column can hold a mix
of numbers, numeric strings, dates and ISO strings.  The ``*_series`` helpers
coerce a whole column at once; the scalar helpers run the same rules on a
single value.
"""
from __future__ import annotations

import datetime
import warnings
from typing import Any, Iterable

import pandas as pd


def _numeric_candidate(value: Any) -> Any:
    # Booleans are not numbers here, and neither are blank strings
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    return value if pd.api.types.is_number(value) else None


def _date_candidate(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value
    return None


def to_numeric_series(values: Iterable[Any]) -> pd.Series:
    """Float Series with NaN wherever a value is not a finite number."""
    series = pd.Series(list(values), dtype=object)
    numeric = pd.to_numeric(series.map(_numeric_candidate), errors="coerce").astype(float)
    return numeric.where(numeric.abs() != float("inf"))


def to_datetime_series(values: Iterable[Any]) -> pd.Series:
    """Naive datetime Series with NaT wherever a value is not a date.

    Numbers and numeric strings never count as dates, so a ``2023`` year
    column stays numeric.
    """
    series = pd.Series(list(values), dtype=object)
    candidates = series.map(_date_candidate).where(to_numeric_series(series).isna())
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        parsed = pd.to_datetime(candidates, errors="coerce", utc=True, format="mixed")
    return parsed.dt.tz_localize(None)


def to_number(value: Any) -> float | None:
    """Parse *value* as a finite float, or return None."""
    number = to_numeric_series([value]).iloc[0]
    return None if pd.isna(number) else float(number)


def is_number(value: Any) -> bool:
    return to_number(value) is not None


def to_datetime(value: Any) -> datetime.datetime | None:
    """Best-effort conversion of a date-like value to a naive datetime."""
    moment = to_datetime_series([value]).iloc[0]
    return None if pd.isna(moment) else moment.to_pydatetime()


def humanize(name: str) -> str:
    """``total_sales`` -> ``total sales``."""
    return name.replace("_", " ")
