"""
Narrative composer.

Turns a result (flat rows or a Combined Dataset) and its insights into
Markdown prose for the user.

Works in both ``mock`` mode (template-based, no API key needed) and LLM
mode (calls the configured provider with the insights and a small data
sample).  Any LLM failure falls back to the templates, and the templates
always produce non-empty text.
"""
from __future__ import annotations

import json
from typing import Any

from src.llm.client import LLMCallable
from src.narrative.insights import rank_insights
from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

NO_DATA_MESSAGE = (
    "The query didn't return any data. Please try a different question "
    "or check that the dataset contains the requested information."
)

# ── Template sections ───────────────────────────────────

_SECTIONS: list[tuple[str, frozenset[str]]] = [
    ("Key Statistics", frozenset({
        "total", "average", "median", "summary", "overview", "extremes", "observation",
    })),
    ("Trends", frozenset({
        "trend", "trend-direction", "seasonality", "trend-continuation", "trend-reversal",
        "period-comparison", "percentage-change", "change-pattern", "performance-shift",
        "growth-distribution",
    })),
    ("Key Performers", frozenset({
        "top-performer", "bottom-performer", "top-improver", "top-decliner",
        "standout-performers", "top-performer-details",
    })),
    ("Distribution Analysis", frozenset({
        "distribution", "concentration", "range", "frequency", "outliers", "category", "correlation",
    })),
]

_SUMMARY_LINES = {
    "Trends": "The data shows notable trends that may inform decisions.",
    "Key Performers": "Performance varies significantly across categories.",
    "Distribution Analysis": "The distribution of values shows patterns that merit attention.",
}


# ── Data helpers ────────────────────────────────────────

def _components(data: Any) -> list[tuple[str, list[dict[str, Any]]]]:
    """Named row lists inside *data* (a row list, or a dict of row lists)."""
    if isinstance(data, list):
        return [("Results", data)] if data else []
    if not isinstance(data, dict):
        return []
    out = []
    for key, value in data.items():
        rows = value.get("data") if isinstance(value, dict) else value
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            name = value.get("description") if isinstance(value, dict) and value.get("description") else key
            out.append((str(name), rows))
    return out


def has_data(data: Any) -> bool:
    return bool(_components(data))


def data_length(data: Any) -> int:
    if isinstance(data, list):
        return len(data)
    return sum(len(rows) for _, rows in _components(data))


# ── Deterministic narratives ────────────────────────────

def basic_narrative(question: str, data: Any, dataset_name: str, is_complex: bool = False) -> str:
    """Narrative used when no insights were produced."""
    components = _components(data)
    total = data_length(data)
    if not is_complex and isinstance(data, list):
        sample = data[:5]
        columns = ", ".join(data[0].keys()) if data and isinstance(data[0], dict) else ""
        lead = "Here is the complete result:" if len(sample) == len(data) else f"Here are the first {len(sample)} rows:"
        return "\n".join([
            "## Query Results",
            "",
            f'Your query "{question}" returned {total} rows from the {dataset_name} dataset.',
            "",
            f"The results include the following columns: {columns}.",
            "",
            lead,
            "",
            _sample_table(sample),
        ]).strip()

    parts = [
        "## Multi-Dataset Query Results",
        "",
        f'Your question "{question}" was answered from {len(components)} result sets '
        f"with {total} rows in total.",
    ]
    for name, rows in components:
        parts += ["", f"### {name}", f"- Rows: {len(rows)}", f"- Columns: {', '.join(rows[0].keys())}"]
    return "\n".join(parts)


def _sample_table(rows: list[dict[str, Any]]) -> str:
    if not rows:
        return ""
    cols = list(rows[0].keys())
    lines = ["| " + " | ".join(cols) + " |", "| " + " | ".join("---" for _ in cols) + " |"]
    for row in rows:
        lines.append("| " + " | ".join(str(row.get(c, "")) for c in cols) + " |")
    return "\n".join(lines)


def template_narrative(
    question: str,
    data: Any,
    insights: list[dict[str, Any]],
    dataset_name: str,
    is_complex: bool = False,
) -> str:
    """Markdown narrative assembled from per-category insight sections."""
    lines = [f"## Analysis of {dataset_name}", ""]
    if is_complex:
        lines.append(f'Your question "{question}" was answered with several related queries. Here\'s what we found:')
    else:
        lines.append(f'Your query "{question}" returned {data_length(data)} rows of data. Here\'s what we found:')
    lines.append("")

    ranked = rank_insights(insights)
    used: set[int] = set()
    present: list[str] = []
    for title, types in _SECTIONS:
        section = [i for i in ranked if i.get("type") in types]
        if not section:
            continue
        present.append(title)
        lines += [f"## {title}", ""]
        for insight in section:
            used.add(id(insight))
            lines.append(f"- {insight.get('description', '')}")
        lines.append("")

    rest = [i for i in ranked if id(i) not in used]
    if rest:
        lines += ["## Additional Findings", ""]
        lines += [f"- {i.get('description', '')}" for i in rest]
        lines.append("")

    lines += ["## Summary", ""]
    summary = []
    if is_complex:
        summary.append("This analysis combines several result sets into one view.")
    summary += [_SUMMARY_LINES[t] for t in present if t in _SUMMARY_LINES]
    summary.append("Review the visualizations and data table for more detailed information.")
    lines.append(" ".join(summary))
    return "\n".join(lines)


# ── LLM narrative ───────────────────────────────────────

def _build_prompt(
    question: str,
    data: Any,
    insights: list[dict[str, Any]],
    dataset_name: str,
    is_complex: bool,
    sample_rows: int,
) -> str:
    insight_text = "\n".join(
        f"- {i.get('title') or i.get('type', 'Insight')}: {i.get('description', '')}"
        for i in rank_insights(insights)
    )
    instructions = (
        "You are an expert data analyst who explains data insights in clear language.\n"
        "Write a concise, informative narrative about the data and insights below.\n"
        + ("This question spans several related result sets; explain how they connect.\n" if is_complex else "")
        + "Use Markdown with ## section headers where appropriate.\n"
        "Be factual: only describe what is in the data and insights.\n"
        "Answer the user's original question first. Keep it under 300 words.\n"
    )
    if is_complex:
        blocks = [
            f"{name} ({min(sample_rows, len(rows))} of {len(rows)} rows):\n"
            f"{json.dumps(rows[:sample_rows], indent=2, default=str)}"
            for name, rows in _components(data)
        ]
        sample_text = "\n\n".join(blocks)
    else:
        rows = data if isinstance(data, list) else []
        sample_text = json.dumps(rows[:sample_rows], indent=2, default=str)

    return (
        f"{instructions}\n"
        f'Original question: "{question}"\n'
        f"Dataset: {dataset_name}\n"
        f"Rows returned: {data_length(data)}\n\n"
        f"Insights extracted:\n{insight_text}\n\n"
        f"Sample data:\n{sample_text}\n"
    )


def compose_narrative(
    question: str,
    data: Any,
    insights: list[dict[str, Any]] | None,
    dataset_name: str = "dataset",
    llm: LLMCallable | None = None,
    mode: str = "mock",
    is_complex: bool = False,
) -> str:
    """Explain a result in prose.

    Parameters
    ----------
    question : str
        The user's question.
    data : list[dict] or dict
        Flat rows or the ``data`` of a Combined Dataset.
    insights : list[dict]
        Insight records for the result.
    dataset_name : str
        Shown in headings.
    llm : LLMCallable, optional
        Injected LLM; when omitted and ``mode`` is not ``mock`` the configured
        provider for ``mode`` is used.
    mode : str
        ``mock`` always uses the templates.
    is_complex : bool
        Whether *data* comes from a multi-step plan.

    Returns
    -------
    str
        Markdown narrative, never empty.
    """
    try:
        if not has_data(data):
            return NO_DATA_MESSAGE
        if not insights:
            return basic_narrative(question, data, dataset_name, is_complex)

        if llm is not None or mode != "mock":
            if llm is None:
                from src.llm.client import get_llm

                llm = get_llm(mode)
            prompt = _build_prompt(
                question, data, insights, dataset_name, is_complex,
                get_settings().narrative_sample_rows,
            )
            try:
                text = (llm(prompt) or "").strip()
                if text:
                    return text
                logger.warning("LLM returned an empty narrative, using templates")
            except Exception as exc:
                logger.warning("LLM narrative failed, falling back to templates: %s", exc)

        return template_narrative(question, data, insights, dataset_name, is_complex)
    except Exception:
        logger.exception("Error composing narrative")
        return f"Analysis complete. The query returned {data_length(data)} rows of data."
