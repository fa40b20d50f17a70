"""Typed views over generateContent response bodies and SSE chunks."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from gemini_chat.errors import ApiError, ParseError, StreamParseError

_CODE_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*|\s*```$")


@dataclass(frozen=True, slots=True)
class GenerateChunk:
    """One decoded response object (a whole body or a single SSE frame).

    ``finish_reason`` is None when the field is absent or empty.
    """

    text: Optional[str] = None
    finish_reason: Optional[str] = None
    prompt_tokens: int = 0
    output_tokens: int = 0

    @property
    def finished(self) -> bool:
        return self.finish_reason is not None

    @classmethod
    def from_json(cls, data: Any) -> GenerateChunk:
        """Decode a parsed object; an ``error`` member raises ApiError."""
        if not isinstance(data, dict):
            raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
        error = data.get("error")
        if error is not None:
            raise _api_error(error)

        text: Optional[str] = None
        finish_reason: Optional[str] = None
        candidate = _first(_member(data, "candidates", list))
        if isinstance(candidate, dict):
            content = _member(candidate, "content", dict)
            part = _first(_member(content, "parts", list))
            if isinstance(part, dict) and part.get("text") is not None:
                text = str(part["text"])
            reason = candidate.get("finishReason")
            if reason:
                finish_reason = str(reason)

        usage = _member(data, "usageMetadata", dict)
        return cls(
            text=text,
            finish_reason=finish_reason,
            prompt_tokens=_token_count(usage, "promptTokenCount"),
            output_tokens=_token_count(usage, "candidatesTokenCount"),
        )

    @classmethod
    def from_sse_payload(cls, payload: str) -> GenerateChunk:
        """Decode one SSE data payload; anything unusable raises StreamParseError."""
        try:
            return cls.from_json(json.loads(payload))
        except json.JSONDecodeError as e:
            raise StreamParseError(f"Malformed SSE chunk: {e}") from e
        except StreamParseError:
            raise
        except ParseError as e:
            raise StreamParseError(f"Unusable SSE chunk: {e}") from e


def _member(data: dict, key: str, kind: type) -> Any:
    """Return ``data[key]``, an empty *kind* when absent, or ParseError on a type mismatch."""
    value = data.get(key)
    if value is None:
        return kind()
    if not isinstance(value, kind):
        raise ParseError(f"Expected '{key}' to be {kind.__name__}, got {type(value).__name__}")
    return value


def _first(items: list) -> Any:
    return items[0] if items else None


def _token_count(usage: dict, key: str) -> int:
    value = usage.get(key) or 0
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ParseError(f"Expected '{key}' to be a number, got {type(value).__name__}")
    try:
        return int(value)
    except ValueError as e:
        raise ParseError(f"Expected '{key}' to be a number, got {value!r}") from e


def _api_error(error: Any, status_code: int | None = None) -> ApiError:
    if isinstance(error, dict):
        message = str(error.get("message") or error.get("status") or "unknown error")
        code = error.get("code")
        if status_code is None and isinstance(code, int):
            status_code = code
    else:
        message = str(error)
    return ApiError(message, status_code=status_code)


def api_error_from_body(body: str, status_code: int, reason: str = "") -> ApiError:
    """Build an ApiError from an error response body, falling back to the status line."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict) and data.get("error") is not None:
        return _api_error(data["error"], status_code)
    return ApiError(f"HTTP {status_code} {reason}".strip(), status_code=status_code)


def parse_structured_text(text: str) -> Any:
    """Parse the JSON document a schema-constrained response carries.

    Tolerates surrounding whitespace and Markdown code fences.
    """
    cleaned = _CODE_FENCE.sub("", text.strip()).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(f"Response is not valid JSON: {e}") from e
