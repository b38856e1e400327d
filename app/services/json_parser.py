"""
Tolerant JSON parsing for free-text model responses.
"""
import copy
import json
import re
from typing import Any, Dict

import structlog

logger = structlog.get_logger()

_CODE_FENCES = re.compile(r"```(?:json)?")
_CONTROL_CHARS = re.compile(r"[\u0000-\u001F]+")

ERROR_PLAN: Dict[str, Any] = {
    "title": "Formatting Error",
    "sections": [
        {
            "heading": "Error",
            "elements": [{"type": "text", "content": "Failed to parse AI response"}],
        }
    ],
}


def clean_model_output(text: str) -> str:
    """Strip code fences and control characters from a model response."""
    cleaned = _CODE_FENCES.sub("", text or "")
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    return cleaned.strip()


def loads_model_json(text: str) -> Any:
    """Parse a model response as JSON. Raises json.JSONDecodeError."""
    return json.loads(clean_model_output(text))


def safe_parse(text: str) -> Dict[str, Any]:
    """
    Parse a model response, returning the degraded error plan on failure.

    Args:
        text: Raw model output, possibly fenced

    Returns:
        Parsed JSON object, or a one-section "Formatting Error" plan
    """
    try:
        parsed = loads_model_json(text)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse JSON", error=str(e))
        return copy.deepcopy(ERROR_PLAN)

    if not isinstance(parsed, dict):
        logger.error("Model returned non-object JSON", json_type=type(parsed).__name__)
        return copy.deepcopy(ERROR_PLAN)
    return parsed
