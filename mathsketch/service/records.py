"""Typed contracts for solution records returned to clients."""

from __future__ import annotations

import json
import math
from typing import Any, Dict, List, Mapping, TypedDict

PROBLEM_TYPES = ("algebra", "calculus", "arithmetic", "geometry", "other")
DEFAULT_PROBLEM_TYPE = "other"
DEFAULT_METHOD = "Direct calculation"
DEFAULT_EXPRESSION = "Unrecognized expression"

FALLBACK_EXPRESSION = "Unable to parse expression"
FALLBACK_RESULT = "Could not recognize the drawing"
FALLBACK_METHOD = "error_recovery"

_TRUTHY_STRINGS = {"true", "yes", "1"}
_NON_FINITE_TEXT = {math.inf: "Infinity", -math.inf: "-Infinity"}


class StepRecord(TypedDict):
    description: str
    expression: str


class SolutionRecord(TypedDict):
    expr: str
    result: Any
    assign: bool
    problem_type: str
    steps: List[StepRecord]
    method: str


def normalize_record(raw: Mapping[str, Any]) -> SolutionRecord:
    """Builds a fully populated record from an untrusted model object.

    Args:
        raw: One object decoded from the model reply.

    Returns:
        `SolutionRecord` with every key present and defaults applied.
    """
    expression = _as_text(raw.get("expr")).strip()
    method = _as_text(raw.get("method")).strip()
    return SolutionRecord(
        expr=expression or DEFAULT_EXPRESSION,
        result=_normalize_result(raw.get("result")),
        assign=_as_bool(raw.get("assign")),
        problem_type=_normalize_problem_type(raw.get("problem_type")),
        steps=_normalize_steps(raw.get("steps")),
        method=method or DEFAULT_METHOD,
    )


def fallback_record() -> SolutionRecord:
    """Returns the placeholder record used when the reply cannot be parsed."""
    return SolutionRecord(
        expr=FALLBACK_EXPRESSION,
        result=FALLBACK_RESULT,
        assign=False,
        problem_type=DEFAULT_PROBLEM_TYPE,
        steps=[],
        method=FALLBACK_METHOD,
    )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    return False


def _normalize_result(value: Any) -> Any:
    # JSON scalars pass through untouched; the result is opaque to the service.
    if value is None:
        return ""
    if isinstance(value, float) and not math.isfinite(value):
        # NaN and overflowing literals have no JSON form.
        return _NON_FINITE_TEXT.get(value, "NaN")
    if isinstance(value, (str, bool, int, float)):
        return value
    return _as_text(value)


def _normalize_problem_type(value: Any) -> str:
    candidate = _as_text(value).strip().lower()
    if candidate in PROBLEM_TYPES:
        return candidate
    return DEFAULT_PROBLEM_TYPE


def _normalize_steps(value: Any) -> List[StepRecord]:
    if not isinstance(value, list):
        return []
    steps: List[StepRecord] = []
    for item in value:
        if isinstance(item, dict):
            steps.append(
                StepRecord(
                    description=_as_text(item.get("description")).strip(),
                    expression=_as_text(item.get("expression")).strip(),
                )
            )
        elif isinstance(item, str) and item.strip():
            steps.append(StepRecord(description=item.strip(), expression=""))
    return steps


def record_summary(records: List[SolutionRecord]) -> Dict[str, Any]:
    """Compact view of a result list, used for log lines."""
    return {
        "count": len(records),
        "assignments": sum(1 for record in records if record["assign"]),
        "fallback": any(record["method"] == FALLBACK_METHOD for record in records),
    }
