"""Chat transcript data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping

ChatRole = Literal["user", "model"]
_ROLES: tuple[str, ...] = ("user", "model")


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ChatMessage:
    """One row of a document's chat transcript."""

    role: ChatRole
    text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence."""

        return {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatMessage":
        role = str(payload.get("role") or "user")
        if role not in _ROLES:
            # Older transcripts used "assistant" for model replies.
            role = "model" if role == "assistant" else "user"
        return cls(
            role=role,  # type: ignore[arg-type]
            text=str(payload.get("text") or ""),
            id=str(payload.get("id") or uuid.uuid4().hex),
            timestamp=parse_timestamp(payload.get("timestamp")),
        )


def parse_timestamp(value: Any) -> datetime:
    """Accept ISO strings or epoch values (seconds or milliseconds)."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 10_000_000_000 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return _utcnow()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return _utcnow()


__all__ = ["ChatMessage", "ChatRole", "parse_timestamp"]
