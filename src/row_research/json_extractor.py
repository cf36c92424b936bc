"""Extract and validate ResearchResult JSON from free-form LLM output."""

from __future__ import annotations

import json
import math
import re
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from row_research.models.research import ResearchResult

logger = structlog.get_logger()

MALFORMED_SUMMARY = "Research completed but output was malformed"
SALVAGE_CONFIDENCE = 0.3

_FENCE_PATTERNS = [
    re.compile(r"```(?:json|javascript|js)?\s*\n?(.*?)\n?```", re.DOTALL),
    re.compile(r"```\s*\n?(.*?)\n?```", re.DOTALL),
]

# Labelled payload, summary+confidence block, trailing block.
_PROSE_PATTERNS = [
    re.compile(r"(?:json|result|response|output|data)\s*[:=]?\s*(\{.*\})", re.IGNORECASE | re.DOTALL),
    re.compile(r'(\{.*"summary".*"confidence".*\})', re.IGNORECASE | re.DOTALL),
    re.compile(r"(\{.*\})\s*$", re.DOTALL),
]


class ValidationFailure(BaseModel):
    issues: list[str] = []


def strip_code_fence(text: str) -> str:
    """Remove one markdown fence if it wraps the whole text."""
    for pattern in _FENCE_PATTERNS:
        match = pattern.fullmatch(text)
        if match:
            return match.group(1).strip()
    return text


def find_json_object(text: str) -> str | None:
    """Return the first brace-balanced region starting at the first '{'."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        char = text[i]
        if escape:
            escape = False
            continue
        if char == "\\" and in_string:
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def find_json_in_prose(text: str) -> str | None:
    for pattern in _PROSE_PATTERNS:
        match = pattern.search(text)
        if match:
            candidate = match.group(1).strip()
            if candidate.startswith("{") and candidate.endswith("}"):
                return candidate
    return None


def _loads_object(text: str) -> dict | None:
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None


def extract_json(text: str) -> dict | None:
    """Try fence stripping, direct parse, brace scan, then prose heuristics."""
    if not text or not isinstance(text, str):
        return None

    cleaned = strip_code_fence(text.strip())

    data = _loads_object(cleaned)
    if data is not None:
        return data

    candidate = find_json_object(cleaned)
    if candidate is not None:
        data = _loads_object(candidate)
        if data is not None:
            return data

    candidate = find_json_in_prose(cleaned)
    if candidate is not None:
        return _loads_object(candidate)

    return None


def validate_research(data: dict) -> ResearchResult | ValidationFailure:
    try:
        return ResearchResult.model_validate(data)
    except ValidationError as e:
        issues = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        return ValidationFailure(issues=issues)


def salvage_research(data: dict[str, Any]) -> ResearchResult:
    """Best-effort coercion of a schema-invalid object. Never raises."""
    summary_text = _salvage_summary(data.get("summary"))

    details = data.get("details")
    if not isinstance(details, dict):
        details = {}

    sources = data.get("sources")
    sources = [str(s) for s in sources] if isinstance(sources, list) else None

    return ResearchResult(
        summary=summary_text or MALFORMED_SUMMARY,
        details=details,
        sources=sources,
        confidence=_salvage_confidence(data.get("confidence")),
    )


def _salvage_summary(value: Any) -> str:
    if value is None:
        return ""
    try:
        return str(value).strip()
    except (ValueError, RecursionError):
        return ""


def _salvage_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return SALVAGE_CONFIDENCE
    try:
        number = float(value)
    except (OverflowError, ValueError):
        # ints past float range
        return 1.0 if value > 0 else 0.0
    if not math.isfinite(number):
        return SALVAGE_CONFIDENCE
    return min(max(number, 0.0), 1.0)


def extract_research_result(text: str) -> ResearchResult | None:
    """Extract a validated ResearchResult, salvaging invalid objects. None if no JSON."""
    data = extract_json(text)
    if data is None:
        logger.warning("json_extract_failed", raw_text=(text or "")[:200])
        return None

    validated = validate_research(data)
    if isinstance(validated, ResearchResult):
        return validated

    logger.warning("json_validation_failed", issues=validated.issues)
    return salvage_research(data)
