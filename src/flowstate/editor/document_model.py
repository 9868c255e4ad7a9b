"""Dataclasses representing documents, selections, suggestions and snapshots."""

from __future__ import annotations

import base64
import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Optional

from ..chat.message_model import ChatMessage, parse_timestamp
from ..utils.readability import remove_tags

SnapshotTrigger = Literal["manual", "auto", "ai-pre-flight"]
SuggestionType = Literal["style", "grammar", "clarity", "flow", "idea", "structure", "argument"]

SNAPSHOT_TRIGGERS: tuple[str, ...] = ("manual", "auto", "ai-pre-flight")
SUGGESTION_TYPES: tuple[str, ...] = ("style", "grammar", "clarity", "flow", "idea", "structure", "argument")
UNTITLED_TITLE = "Untitled Draft"
ANCHOR_LENGTH = 20


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class WritingContext:
    """Audience, tone, goal and format the author declared for a document."""

    audience: str = ""
    tone: str = ""
    goal: str = ""
    format: str = ""

    def is_empty(self) -> bool:
        return not any((self.audience, self.tone, self.goal, self.format))

    def to_dict(self) -> Dict[str, str]:
        return {"audience": self.audience, "tone": self.tone, "goal": self.goal, "format": self.format}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "WritingContext":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            audience=str(payload.get("audience") or ""),
            tone=str(payload.get("tone") or ""),
            goal=str(payload.get("goal") or ""),
            format=str(payload.get("format") or ""),
        )


@dataclass(slots=True, frozen=True)
class ExpertPrompt:
    """A named persona whose prompt steers drafting and chat."""

    id: str
    name: str
    prompt: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name, "prompt": self.prompt}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ExpertPrompt":
        return cls(
            id=str(payload.get("id") or new_id()),
            name=str(payload.get("name") or ""),
            prompt=str(payload.get("prompt") or ""),
        )


@dataclass(slots=True, frozen=True)
class Attachment:
    """A named, typed blob sent along with a draft or chat request."""

    name: str
    mime_type: str
    data: bytes

    @property
    def digest(self) -> str:
        return hashlib.sha1(self.data).hexdigest()

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def as_text(self) -> str:
        return self.data.decode("utf-8")

    def as_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(slots=True, frozen=True)
class SelectionRange:
    """The user's current selection within the content string."""

    start: int
    end: int
    text: str

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"invalid selection range [{self.start}, {self.end})")

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def matches(self, content: str) -> bool:
        """Return True when the offsets still point at ``text`` inside ``content``."""

        return self.end <= len(content) and content[self.start : self.end] == self.text

    @classmethod
    def from_offsets(cls, content: str, start: int, end: int) -> "SelectionRange":
        length = len(content)
        start = max(0, min(int(start), length))
        end = max(0, min(int(end), length))
        if end < start:
            start, end = end, start
        return cls(start=start, end=end, text=content[start:end])


@dataclass(slots=True, frozen=True)
class Suggestion:
    """A model-proposed edit that has not been applied yet.

    An empty ``original_text`` marks an advisory suggestion: general feedback
    with nothing to substitute.
    """

    original_text: str
    suggested_text: str
    reason: str
    type: SuggestionType = "style"
    id: str = field(default_factory=new_id)

    @property
    def is_advisory(self) -> bool:
        return not self.original_text

    def anchor(self, length: int = ANCHOR_LENGTH) -> str:
        return self.original_text[:length]

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "original_text": self.original_text,
            "suggested_text": self.suggested_text,
            "reason": self.reason,
            "type": self.type,
        }


@dataclass(slots=True, frozen=True)
class GoalSuggestion:
    text: str
    explanation: str


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Immutable point-in-time copy of a document's content."""

    content: str
    label: str
    trigger: SnapshotTrigger = "manual"
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "content": self.content,
            "label": self.label,
            "trigger": self.trigger,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Snapshot":
        trigger = str(payload.get("trigger") or "manual")
        if trigger not in SNAPSHOT_TRIGGERS:
            trigger = "manual"
        return cls(
            content=str(payload.get("content") or ""),
            label=str(payload.get("label") or ""),
            trigger=trigger,  # type: ignore[arg-type]
            id=str(payload.get("id") or new_id()),
            timestamp=parse_timestamp(payload.get("timestamp")),
        )


@dataclass(slots=True)
class Document:
    """A persisted document together with its context and transcript."""

    id: str = field(default_factory=new_id)
    title: str = UNTITLED_TITLE
    content: str = ""
    last_modified: datetime = field(default_factory=_utcnow)
    writing_context: WritingContext = field(default_factory=WritingContext)
    chat_history: list[ChatMessage] = field(default_factory=list)
    experts: list[ExpertPrompt] = field(default_factory=list)
    pinned_title: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "last_modified": self.last_modified.isoformat(),
            "writing_context": self.writing_context.to_dict(),
            "chat_history": [message.to_dict() for message in self.chat_history],
            "experts": [expert.to_dict() for expert in self.experts],
            "pinned_title": self.pinned_title,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Document":
        chat_payload = payload.get("chat_history") or []
        experts_payload = payload.get("experts") or []
        return cls(
            id=str(payload.get("id") or new_id()),
            title=str(payload.get("title") or UNTITLED_TITLE),
            content=str(payload.get("content") or ""),
            last_modified=parse_timestamp(payload.get("last_modified")),
            writing_context=WritingContext.from_dict(payload.get("writing_context")),
            chat_history=[ChatMessage.from_dict(item) for item in chat_payload if isinstance(item, Mapping)],
            experts=[ExpertPrompt.from_dict(item) for item in experts_payload if isinstance(item, Mapping)],
            pinned_title=bool(payload.get("pinned_title", False)),
        )


def derive_title(content: str, fallback: Optional[str] = None, *, max_chars: int = 40) -> str:
    """Build a display title from the first line of ``content`` with markup removed."""

    plain = remove_tags(content)
    first_line = plain.split("\n", 1)[0][:max_chars].strip()
    return first_line or fallback or UNTITLED_TITLE


__all__ = [
    "ANCHOR_LENGTH",
    "Attachment",
    "Document",
    "ExpertPrompt",
    "GoalSuggestion",
    "SNAPSHOT_TRIGGERS",
    "SUGGESTION_TYPES",
    "SelectionRange",
    "Snapshot",
    "SnapshotTrigger",
    "Suggestion",
    "SuggestionType",
    "UNTITLED_TITLE",
    "WritingContext",
    "derive_title",
    "new_id",
]
