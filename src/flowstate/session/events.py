"""Session events and the bus that delivers them to observers.

The session never talks to a UI directly. Anything a user should see
(notices, failures, staged suggestions) is published here and rendered
by whatever front end subscribed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Literal, TypeVar
from weakref import WeakMethod

from ..editor.document_model import SelectionRange, Snapshot, Suggestion

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")
Handler = Callable[[E], None]

NoticeLevel = Literal["info", "warning", "error"]


@dataclass(slots=True)
class Event:
    """Base class for every session event."""


@dataclass(slots=True)
class ContentChanged(Event):
    """The live content changed.

    Attributes:
        document_id: Active document.
        version_id: Editor version after the change.
        source: What caused the change (typing, restore, draft...).
    """

    document_id: str
    version_id: int
    source: str


@dataclass(slots=True)
class SelectionChanged(Event):
    document_id: str
    selection: SelectionRange | None


@dataclass(slots=True)
class SuggestionStaged(Event):
    document_id: str
    suggestion: Suggestion


@dataclass(slots=True)
class SuggestionCleared(Event):
    """A staged suggestion went away.

    ``reason`` is one of ``applied``, ``dismissed``, ``stale``,
    ``selection``, ``replaced`` or ``reset``.
    """

    document_id: str
    suggestion_id: str
    reason: str


@dataclass(slots=True)
class SnapshotCaptured(Event):
    document_id: str
    snapshot: Snapshot


@dataclass(slots=True)
class DocumentSaved(Event):
    document_id: str
    title: str


@dataclass(slots=True)
class DocumentSwitched(Event):
    previous_id: str | None
    document_id: str


@dataclass(slots=True)
class DocumentDeleted(Event):
    document_id: str


@dataclass(slots=True)
class GenerationStateChanged(Event):
    """A user-initiated generation started (``busy``) or finished."""

    operation: str
    busy: bool


@dataclass(slots=True)
class NoticePosted(Event):
    """A short, non-blocking message for the user."""

    message: str
    level: NoticeLevel = "info"


@dataclass(slots=True)
class OperationFailed(Event):
    """A foreground operation failed and the user should be told why.

    Attributes:
        operation: ``draft``, ``refine``, ``chat``, ``refine_goal``...
        message: Human-readable description.
        kind: Error category from :mod:`flowstate.ai.errors`.
        retryable: Whether trying again may succeed.
    """

    operation: str
    message: str
    kind: str = "unknown"
    retryable: bool = False


_QUIET_EVENT_TYPES: frozenset[type[Event]] = frozenset({ContentChanged, SelectionChanged})


class EventBus:
    """Synchronous publish/subscribe bus keyed by exact event type.

    Bound-method handlers are held weakly so a subscriber can simply go
    away; plain functions are held strongly. A handler that raises is
    logged and the remaining handlers still run.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: defaultdict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        self._handlers[event_type].append(_HandlerRef.create(handler))

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                del handlers[index]
                return

    def publish(self, event: Event) -> None:
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        if event_type not in _QUIET_EVENT_TYPES:
            LOGGER.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers or ()))
        if not handlers:
            return
        alive: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                continue
            alive.append(handler_ref)
            try:
                handler(event)
            except Exception:
                LOGGER.exception("Handler %s raised for %s", _handler_name(handler), event_type.__name__)
        if len(alive) != len(handlers):
            handlers[:] = [ref for ref in handlers if ref.resolve() is not None]

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[Event] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    __slots__ = ("_ref", "_weak")

    def __init__(self, target: object, weak: bool) -> None:
        self._ref = target
        self._weak = weak

    @classmethod
    def create(cls, handler: Handler) -> "_HandlerRef":
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), weak=True)
            except TypeError:
                pass
        return cls(handler, weak=False)

    def resolve(self) -> Handler | None:
        if self._weak:
            return self._ref()  # type: ignore[operator]
        return self._ref  # type: ignore[return-value]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    owner = getattr(handler, "__self__", None)
    if owner is not None and hasattr(handler, "__func__"):
        return f"{type(owner).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "ContentChanged",
    "DocumentDeleted",
    "DocumentSaved",
    "DocumentSwitched",
    "Event",
    "EventBus",
    "GenerationStateChanged",
    "Handler",
    "NoticePosted",
    "OperationFailed",
    "SelectionChanged",
    "SnapshotCaptured",
    "SuggestionCleared",
    "SuggestionStaged",
]
