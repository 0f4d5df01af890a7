"""
Response Parser

Turns raw model output into validated data. Providers wrap JSON in
conversational text and markdown code fences; all of that is stripped here,
in one place, before decoding.
"""

import json
import re
from typing import Any, Iterable, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError

from teach_me_engine.errors import MalformedModelOutputError

_LEADING_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\n?")
_TRAILING_FENCE_RE = re.compile(r"\n?```\s*$")

# How much raw output to keep on the error for logging
_RAW_PREVIEW_CHARS = 500


def _decodes(text: str) -> bool:
    try:
        json.loads(text)
    except json.JSONDecodeError:
        return False
    return True


def _strip_fence(text: str) -> str:
    text = _LEADING_FENCE_RE.sub("", text, count=1)
    return _TRAILING_FENCE_RE.sub("", text, count=1).strip()


def _outermost_span(text: str) -> str:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return text[start:]
    return text[start:end + 1]


def extract_json_text(raw: str) -> str:
    """
    Strip wrapping around a JSON payload.

    Tried in order, first decodable wins:
    1. the trimmed text as-is (backticks inside string values stay intact)
    2. the text with a leading ```lang and trailing ``` removed
    3. the body of a fence that follows a conversational preamble
    4. the span from the first ``{``/``[`` to the last matching ``}``/``]``
    """
    text = (raw or "").strip()
    if _decodes(text):
        return text

    unfenced = _strip_fence(text)
    if _decodes(unfenced):
        return unfenced

    opening = text.find("```")
    if opening > 0:
        body = _strip_fence(text[opening:])
        if _decodes(body):
            return body

    return _outermost_span(unfenced)


def parse_json(
    raw: str,
    required_fields: Iterable[str] = (),
    schema: Optional[Any] = None,
) -> Any:
    """
    Decode model output as JSON and check it has the expected shape.

    Args:
        raw: Raw model output
        required_fields: Keys that must be present in the decoded object
            (extra keys are tolerated)
        schema: Optional pydantic model class or TypeAdapter to validate into

    Returns:
        The decoded object, or the validated model instance when ``schema``
        is given

    Raises:
        MalformedModelOutputError: invalid JSON, missing fields, or schema mismatch
    """
    preview = (raw or "")[:_RAW_PREVIEW_CHARS]
    text = extract_json_text(raw)
    if not text:
        raise MalformedModelOutputError("Model returned empty output", raw_content=preview)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedModelOutputError(f"Model output is not valid JSON: {e.msg}", raw_content=preview) from e

    required = list(required_fields)
    if required:
        if not isinstance(data, dict):
            raise MalformedModelOutputError(
                f"Expected a JSON object, got {type(data).__name__}", raw_content=preview
            )
        missing = [name for name in required if name not in data]
        if missing:
            raise MalformedModelOutputError(
                f"Model output is missing required fields: {', '.join(missing)}", raw_content=preview
            )

    if schema is None:
        return data

    try:
        if isinstance(schema, TypeAdapter):
            return schema.validate_python(data)
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            return schema.model_validate(data)
    except ValidationError as e:
        raise MalformedModelOutputError(
            f"Model output does not match the expected schema: {e.error_count()} error(s): {e.errors()[0]['msg']}",
            raw_content=preview,
        ) from e

    raise TypeError(f"Unsupported schema type: {schema!r}")
