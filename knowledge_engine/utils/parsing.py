"""
Soft parsing of structured (JSON) model output.

Generative models often wrap JSON in markdown fences or add a sentence
before it. ``parse_json_output`` strips that, decodes, and reports the
outcome as a ParseResult instead of raising, so every caller applies its
fallback the same way.

Usage:
    result = parse_json_output(raw, expected_type=list)
    if not result.ok:
        logger.warning("extraction_parse_failed", error=result.error)
        return []
    entities = result.value
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing model output. ``value`` is None when not ok."""

    ok: bool
    value: Any = None
    error: str | None = None


def _strip_fences(text: str) -> str:
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    # Unterminated fence: drop the fence lines
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.startswith("```")]
        return "\n".join(lines).strip()
    return text


def _outermost_json(text: str) -> str | None:
    """Slice from the first '[' or '{' to its last matching closer."""
    starts = [i for i in (text.find("["), text.find("{")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    closer = "]" if text[start] == "[" else "}"
    end = text.rfind(closer)
    if end <= start:
        return None
    return text[start : end + 1]


def parse_json_output(
    text: str | None,
    expected_type: type | tuple[type, ...] | None = None,
) -> ParseResult:
    """
    Extract a JSON value from model output. Never raises.

    Args:
        text: Raw model output.
        expected_type: Optional type (e.g. list) the decoded value must have.

    Returns:
        ParseResult(ok=True, value=...) or ParseResult(ok=False, error=...).
    """
    if not text or not text.strip():
        return ParseResult(ok=False, error="empty output")

    candidate = _strip_fences(text.strip())

    try:
        value = json.loads(candidate)
    except json.JSONDecodeError as e:
        sliced = _outermost_json(candidate)
        if sliced is None:
            return ParseResult(ok=False, error=f"invalid JSON: {e.msg}")
        try:
            value = json.loads(sliced)
        except json.JSONDecodeError as inner:
            return ParseResult(ok=False, error=f"invalid JSON: {inner.msg}")

    if expected_type is not None and not isinstance(value, expected_type):
        return ParseResult(
            ok=False,
            error=f"expected {expected_type}, got {type(value).__name__}",
        )

    return ParseResult(ok=True, value=value)


__all__ = ["ParseResult", "parse_json_output"]
