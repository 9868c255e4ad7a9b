"""Typed results decoded from structured model output."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Union

import jsonschema

from ..editor.document_model import GoalSuggestion, Suggestion, SuggestionType
from .errors import MalformedOutputError
from .prompts import GOAL_RESPONSE_SCHEMA, SUGGESTION_RESPONSE_SCHEMA

__all__ = [
    "Advisory",
    "NoSuggestion",
    "Substitution",
    "SuggestionResult",
    "parse_goal_payload",
    "parse_suggestion_payload",
    "to_suggestion",
]

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.S)
_SUGGESTION_VALIDATOR = jsonschema.Draft202012Validator(SUGGESTION_RESPONSE_SCHEMA)
_GOAL_VALIDATOR = jsonschema.Draft202012Validator(GOAL_RESPONSE_SCHEMA)


@dataclass(slots=True, frozen=True)
class NoSuggestion:
    """The model found nothing worth changing."""


@dataclass(slots=True, frozen=True)
class Substitution:
    """Replace ``original`` (verbatim from the analysed text) with ``replacement``."""

    original: str
    replacement: str
    reason: str
    kind: SuggestionType = "style"


@dataclass(slots=True, frozen=True)
class Advisory:
    """Document-wide feedback with no span to substitute."""

    reason: str
    kind: SuggestionType = "idea"


SuggestionResult = Union[NoSuggestion, Substitution, Advisory]


def _load_json(raw: str | Mapping[str, Any]) -> Any:
    if isinstance(raw, Mapping):
        return dict(raw)
    text = (raw or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    if not text:
        raise MalformedOutputError("The model returned an empty response.", payload=raw)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedOutputError(f"Response is not valid JSON: {exc.msg}", payload=raw) from exc


def _validate(validator: jsonschema.Draft202012Validator, data: Any, raw: Any) -> None:
    error = jsonschema.exceptions.best_match(validator.iter_errors(data))
    if error is not None:
        location = "/".join(str(part) for part in error.absolute_path) or "<root>"
        raise MalformedOutputError(f"Response failed validation at {location}: {error.message}", payload=str(raw))


def parse_suggestion_payload(raw: str | Mapping[str, Any]) -> SuggestionResult:
    """Decode a proactive-analysis response into a :data:`SuggestionResult`.

    Raises:
        MalformedOutputError: when the payload is not JSON, violates the
            response schema, or claims a suggestion without any content.
    """

    data = _load_json(raw)
    _validate(_SUGGESTION_VALIDATOR, data, raw)
    if not data["hasSuggestion"]:
        return NoSuggestion()

    original = data.get("originalText") or ""
    replacement = data.get("suggestedText") or ""
    reason = (data.get("reason") or "").strip()
    if original:
        if not replacement:
            raise MalformedOutputError("Suggestion names a span but no replacement.", payload=str(raw))
        return Substitution(original=original, replacement=replacement, reason=reason, kind=data.get("type") or "style")
    if not reason:
        raise MalformedOutputError("Advisory suggestion carries no feedback.", payload=str(raw))
    return Advisory(reason=reason, kind=data.get("type") or "idea")


def to_suggestion(result: SuggestionResult) -> Suggestion | None:
    if isinstance(result, Substitution):
        return Suggestion(
            original_text=result.original,
            suggested_text=result.replacement,
            reason=result.reason,
            type=result.kind,
        )
    if isinstance(result, Advisory):
        return Suggestion(original_text="", suggested_text="", reason=result.reason, type=result.kind)
    return None


def parse_goal_payload(raw: str | Mapping[str, Any]) -> list[GoalSuggestion]:
    data = _load_json(raw)
    _validate(_GOAL_VALIDATOR, data, raw)
    return [
        GoalSuggestion(text=item["text"].strip(), explanation=item["explanation"].strip())
        for item in data["suggestions"]
        if item["text"].strip()
    ]
