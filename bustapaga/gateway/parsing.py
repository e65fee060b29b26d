"""Model output parsing utilities.

Even with ``responseMimeType: application/json`` the model occasionally
wraps its answer in markdown fences or leaves trailing commas. Output is
cleaned, decoded and validated against a pydantic schema.
"""

from __future__ import annotations

import json
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from bustapaga.gateway.errors import InvalidExtractionError

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_TRAILING_COMMA_PATTERN = re.compile(r",\s*([}\]])")

T = TypeVar("T", bound=BaseModel)


def parse_model_json(raw: str, schema: type[T]) -> T:
    """Parse model text output into a pydantic model.

    Args:
        raw: Raw text output from the model.
        schema: Pydantic model class to validate against.

    Returns:
        Validated model instance.

    Raises:
        InvalidExtractionError: If JSON decoding or schema validation fails.
    """
    cleaned = _strip_markdown_fences(raw.strip())
    cleaned = _fix_trailing_commas(cleaned)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise InvalidExtractionError(f"Invalid JSON from model: {exc}", raw_output=raw) from exc

    if not isinstance(data, dict):
        raise InvalidExtractionError(
            f"Expected a JSON object, got {type(data).__name__}",
            raw_output=raw,
        )

    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise InvalidExtractionError(f"Schema validation failed: {exc}", raw_output=raw) from exc


def _strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences wrapping JSON."""
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text


def _fix_trailing_commas(text: str) -> str:
    """Remove trailing commas before } or ]."""
    return _TRAILING_COMMA_PATTERN.sub(r"\1", text)
