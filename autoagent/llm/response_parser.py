"""Response parsing utilities for planner output.

Extracts JSON objects from raw LLM replies and turns them into
PlannerResponse models. Replies that cannot be parsed fall back to a
lossy degraded mode that is always logged with ``[degraded-parse]``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from autoagent.core.exceptions import ResponseParseError
from autoagent.core.models import PlannerResponse

logger = logging.getLogger("autoagent.llm.parser")

DEGRADED_MARKER = "[degraded-parse]"
COMPLETION_KEYWORDS = ("completed", "terminé")

_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


def extract_code_blocks(text: str, language: Optional[str] = None) -> list[str]:
    """Extract fenced code blocks from LLM output.

    Args:
        text: Raw LLM response.
        language: If specified, only return blocks with this language tag.

    Returns:
        List of code block contents (without fences).
    """
    if language:
        pattern = rf"```{re.escape(language)}\s*\n(.*?)```"
    else:
        pattern = r"```(?:\w+)?\s*\n(.*?)```"

    matches = re.findall(pattern, text, re.DOTALL)
    return [m.strip() for m in matches]


def extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """Find and parse the JSON object in a reply.

    Tries a ```json fence, then the whole text, then the outermost
    ``{...}`` span (models often wrap JSON in prose).
    """
    candidates = extract_code_blocks(text, "json")
    candidates.append(text.strip())
    match = _OBJECT_PATTERN.search(text)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def require_json_object(text: str) -> dict[str, Any]:
    data = extract_json_object(text)
    if data is None:
        raise ResponseParseError(f"No JSON object in LLM response: {text[:500]}")
    return data


def parse_planner_response(text: str) -> PlannerResponse:
    """Turn a raw planner reply into a PlannerResponse.

    Never raises. A reply without any JSON becomes a bare thought; a reply
    whose JSON is broken or malformed falls back to the completion-keyword
    heuristic. Both paths set ``degraded``.
    """
    if not _OBJECT_PATTERN.search(text):
        logger.warning("%s planner reply has no JSON object; treating it as a thought",
                       DEGRADED_MARKER)
        return PlannerResponse(thought=text, completed=False, degraded=True)

    data = extract_json_object(text)
    if data is not None:
        try:
            return PlannerResponse.model_validate(data)
        except ValidationError as e:
            logger.warning("%s planner JSON has the wrong shape: %s",
                           DEGRADED_MARKER, e.errors()[0].get("msg", e))
    else:
        logger.warning("%s planner JSON could not be decoded", DEGRADED_MARKER)

    lowered = text.lower()
    completed = any(keyword in lowered for keyword in COMPLETION_KEYWORDS)
    return PlannerResponse(thought=text, completed=completed, degraded=True)
