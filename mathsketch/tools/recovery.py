"""Best-effort recovery of structured answers from quasi-JSON model replies.

The vision model is prompted for a JSON list but is not schema constrained.
Replies regularly arrive wrapped in code fences, surrounded by commentary,
quoted Python-style or with trailing commas. Each repair below is a pure
`str -> str` transform; `recover_json_text` chains them in a fixed order and
`parse_solution_text` turns the outcome into normalized solution records.
"""

from __future__ import annotations

import ast
import json
import re
from typing import Any, Callable, List, Optional, Tuple

from mathsketch.service.records import SolutionRecord, fallback_record, normalize_record
from mathsketch.utils.logger import get_logger

logger = get_logger("mathsketch.tools.recovery")

_CODE_FENCE_RE = re.compile(r"```(?:json)?", flags=re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
_PY_LITERAL_RE = re.compile(r"([:\[,]\s*)(True|False|None)\b")
_PY_LITERALS = {"True": "true", "False": "false", "None": "null"}

_RAW_PREVIEW_CHARS = 500


def strip_code_fences(text: str) -> str:
    """Removes every triple-backtick marker, with or without a `json` tag."""
    return _CODE_FENCE_RE.sub("", text)


def extract_array_span(text: str) -> str:
    """Slices `text` to the outermost `[...]` span when one exists."""
    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text


def normalize_quotes(text: str) -> str:
    return text.replace("'", '"')


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def quote_bare_keys(text: str) -> str:
    """Wraps unquoted identifier keys (`{expr: ...}`) in double quotes."""
    return _BARE_KEY_RE.sub(r'\1"\2":', text)


def normalize_python_literals(text: str) -> str:
    """Rewrites bare `True`/`False`/`None` values as JSON literals."""
    return _PY_LITERAL_RE.sub(lambda match: match.group(1) + _PY_LITERALS[match.group(2)], text)


RECOVERY_STEPS: Tuple[Callable[[str], str], ...] = (
    strip_code_fences,
    str.strip,
    extract_array_span,
    normalize_quotes,
    remove_trailing_commas,
    quote_bare_keys,
    normalize_python_literals,
)


def recover_json_text(text: str) -> str:
    """Applies every recovery step in order and returns the repaired text."""
    for step in RECOVERY_STEPS:
        text = step(text)
    return text


def decode_model_payload(text: str) -> Optional[List[Any]]:
    """Decodes the model reply into a list of raw items.

    The extracted span is tried as strict JSON first, so valid replies that
    contain apostrophes are not damaged by quote normalization. The fully
    repaired text comes next, then Python literal syntax.

    Args:
        text: Raw reply text.

    Returns:
        Decoded items, or None when every strategy fails.
    """
    span = extract_array_span(strip_code_fences(text).strip())

    for candidate in (span, recover_json_text(text)):
        try:
            return _as_item_list(json.loads(candidate))
        except (ValueError, RecursionError):
            continue

    try:
        return _as_item_list(ast.literal_eval(span))
    except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
        return None


def _as_item_list(decoded: Any) -> List[Any]:
    if isinstance(decoded, list):
        return decoded
    if isinstance(decoded, dict):
        return [decoded]
    raise ValueError("Decoded payload is neither a list nor an object")


def parse_solution_text(text: str) -> List[SolutionRecord]:
    """Turns raw model text into normalized solution records.

    Never raises. Unrecoverable text yields a single fallback record so the
    caller always has something displayable; an empty reply yields `[]`.

    Args:
        text: Raw reply from the vision model.

    Returns:
        Records in the order the model produced them.
    """
    if not text or not text.strip():
        return []

    items = decode_model_payload(text)
    if items is None:
        logger.warning("reply_unparseable raw=%r", text[:_RAW_PREVIEW_CHARS])
        return [fallback_record()]

    records: List[SolutionRecord] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            logger.warning("reply_item_skipped index=%s type=%s", index, type(item).__name__)
            continue
        records.append(normalize_record(item))

    if items and not records:
        return [fallback_record()]
    return records
