"""
Execution scheduler -- orders plan steps by dependency and runs them in order.

Ordering is iterative resolution: each pass appends every step whose
dependencies are all processed.  A pass that makes no progress means a cycle;
the remaining steps are appended in declared order, each carrying a
``dependency_warning``.  The sequence always has one entry per plan step.
"""
from __future__ import annotations

from typing import Any, Callable

from src.planning.models import PlanStep, QueryPlan
from src.core.logging import get_logger

logger = get_logger(__name__)

CYCLE_WARNING = "Added out of order due to possible dependency cycle"

StepRunner = Callable[[PlanStep, dict[str, dict[str, Any]]], dict[str, Any]]


def build_execution_sequence(plan: QueryPlan) -> list[PlanStep]:
    """Return the plan's steps in dependency order.

    Steps are copies; the plan itself is left untouched.  Dependencies on ids
    that are not in the plan cannot be honoured: they are ignored for ordering
    and reported on the step's ``dependency_warning``.
    """
    if not plan.is_complex:
        return [s.model_copy() for s in plan.steps]

    known = {s.id for s in plan.steps}
    pending: list[PlanStep] = []
    for step in plan.steps:
        unknown = [d for d in step.dependencies if d not in known]
        if unknown:
            logger.warning("Step '%s' depends on unknown step(s): %s", step.id, unknown)
            step = step.model_copy(update={
                "dependencies": [d for d in step.dependencies if d in known],
                "dependency_warning": f"Depends on unknown step(s): {', '.join(unknown)}",
            })
        else:
            step = step.model_copy()
        pending.append(step)

    sequence: list[PlanStep] = []
    processed: set[str] = set()

    while pending:
        added = False
        remaining: list[PlanStep] = []
        for step in pending:
            if all(dep in processed for dep in step.dependencies):
                sequence.append(step)
                processed.add(step.id)
                added = True
            else:
                remaining.append(step)
        pending = remaining

        if pending and not added:
            logger.warning(
                "Dependency cycle among steps %s -- appending out of order",
                [s.id for s in pending],
            )
            for step in pending:
                warning = CYCLE_WARNING
                if step.dependency_warning:
                    warning = f"{step.dependency_warning}; {CYCLE_WARNING}"
                sequence.append(step.model_copy(update={"dependency_warning": warning}))
                processed.add(step.id)
            pending = []

    logger.info("Execution sequence: %s", " -> ".join(s.id for s in sequence))
    return sequence


def sequence_warnings(sequence: list[PlanStep]) -> list[str]:
    return [f"{s.id}: {s.dependency_warning}" for s in sequence if s.dependency_warning]


def run_sequence(sequence: list[PlanStep], run_step: StepRunner) -> list[dict[str, Any]]:
    """Run *sequence* strictly one step after another.

    ``run_step`` receives each step and the results produced so far (keyed by
    step id) and returns that step's result record.  Exceptions propagate: a
    failing step ends the run.
    """
    results: list[dict[str, Any]] = []
    by_id: dict[str, dict[str, Any]] = {}
    for step in sequence:
        logger.info("Running step '%s' (%s)", step.id, step.output_type)
        result = run_step(step, by_id)
        result.setdefault("id", step.id)
        result.setdefault("description", step.description)
        result.setdefault("output_type", step.output_type)
        if step.dependency_warning:
            result.setdefault("dependency_warning", step.dependency_warning)
        results.append(result)
        by_id[step.id] = result
    return results
