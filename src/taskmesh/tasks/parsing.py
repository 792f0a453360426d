"""Decoders for JSON that language models embed in free text.

Model output is untrusted: every helper here either returns a validated
structure or raises :class:`ResponseFormatError` with a readable cause.
"""

from __future__ import annotations

import json
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator

_DECODER = json.JSONDecoder()


class ResponseFormatError(ValueError):
    """The response does not contain the expected structure."""


class SubtaskDescriptor(BaseModel):
    """One subtask as proposed by the manager agent."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    required_capabilities: List[str] = Field(default_factory=list, alias="requiredCapabilities")
    dependencies: List[str] = Field(default_factory=list)
    complexity: int = 1
    expected_output: str = Field(default="", alias="expectedOutput")

    @field_validator("title", "description", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("required_capabilities", mode="before")
    @classmethod
    def _clean_capabilities(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return value

    @field_validator("dependencies", mode="before")
    @classmethod
    def _stringify_dependencies(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            # models often answer with positions instead of titles
            return [str(item).strip() for item in value if isinstance(item, (str, int)) and str(item).strip()]
        return value

    @field_validator("complexity", mode="before")
    @classmethod
    def _default_complexity(cls, value: Any) -> Any:
        return 1 if value is None else value

    @field_validator("complexity")
    @classmethod
    def _clamp_complexity(cls, value: int) -> int:
        return min(5, max(1, value))

    @field_validator("expected_output", mode="before")
    @classmethod
    def _default_expected_output(cls, value: Any) -> Any:
        return "" if value is None else value


class Verdict(BaseModel):
    """The manager's judgement of a subtask result."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_valid: StrictBool = Field(alias="isValid")
    feedback: str = ""
    suggested_improvements: List[str] = Field(default_factory=list, alias="suggestedImprovements")

    @field_validator("feedback", mode="before")
    @classmethod
    def _default_feedback(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("suggested_improvements", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


def _first_json(text: str, opener: str, kind: type) -> Any:
    index = text.find(opener)
    while index != -1:
        try:
            value, _ = _DECODER.raw_decode(text, index)
        except json.JSONDecodeError:
            pass
        else:
            if isinstance(value, kind):
                return value
        index = text.find(opener, index + 1)
    raise ResponseFormatError(f"No JSON {kind.__name__} found in response")


def extract_json_array(text: str) -> List[Any]:
    """Return the first well-formed JSON array embedded in ``text``."""
    if not isinstance(text, str):
        raise ResponseFormatError(f"Expected text response, got {type(text).__name__}")
    return _first_json(text, "[", list)


def extract_json_object(text: str) -> dict:
    if not isinstance(text, str):
        raise ResponseFormatError(f"Expected text response, got {type(text).__name__}")
    return _first_json(text, "{", dict)


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location or 'value'}: {error.get('msg')}")
    return "; ".join(parts)


def decode_subtasks(text: str) -> List[SubtaskDescriptor]:
    """Decode a subtask plan; any malformed element rejects the whole batch."""
    items = extract_json_array(text)
    if not items:
        raise ResponseFormatError("Subtask list is empty")
    descriptors = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ResponseFormatError(f"Invalid subtask data at index {index}: expected an object")
        try:
            descriptors.append(SubtaskDescriptor.model_validate(item))
        except ValidationError as exc:
            raise ResponseFormatError(f"Invalid subtask data at index {index}: {_describe(exc)}") from exc
    return descriptors


def decode_verdict(text: str) -> Verdict:
    payload = extract_json_object(text)
    try:
        return Verdict.model_validate(payload)
    except ValidationError as exc:
        raise ResponseFormatError(f"Invalid verdict: {_describe(exc)}") from exc
