"""
Defensive parsing of LLM responses.

Providers wrap JSON and SQL in Markdown fences, prefix it with prose, or
return something else entirely.  These helpers never raise on bad input.
"""
from __future__ import annotations

import json
import re
from typing import Any

from src.core.logging import get_logger

logger = get_logger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```(?:json|sql)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_SQL_FENCE_RE = re.compile(r"```(?:sql)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_SELECT_RE = re.compile(r"\bSELECT\b.*", re.IGNORECASE | re.DOTALL)
_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN_RE.sub("", text)
        text = _FENCE_CLOSE_RE.sub("", text)
    return text.strip()


def parse_json_object(text: str | None) -> dict[str, Any] | None:
    """Return the first JSON object found in *text*, or None."""
    if not text:
        return None
    body = strip_fences(text)
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        match = _JSON_OBJECT_RE.search(body)
        if not match:
            logger.warning("LLM response contains no JSON object")
            return None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            logger.warning("LLM returned invalid JSON: %s", exc)
            return None
    if not isinstance(data, dict):
        logger.warning("LLM JSON response is a %s, expected an object", type(data).__name__)
        return None
    return data


def extract_sql(text: str | None) -> str:
    """Pull a SQL statement out of a free-form response ('' when none)."""
    if not text:
        return ""
    fenced = _SQL_FENCE_RE.search(text)
    if fenced:
        candidate = fenced.group(1).strip()
    else:
        match = _SELECT_RE.search(text)
        candidate = match.group(0).strip() if match else ""
    return candidate.rstrip(";").strip()
