"""Debounced background analysis that stages at most one suggestion."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Literal

from ...editor.document_model import SelectionRange, Suggestion, WritingContext
from ...editor.editor_state import ChangeSource, EditorState
from ...editor.timers import DebounceTimer
from ..errors import GeneratorError
from ..generator import SuggestionGenerator
from ..models import NoSuggestion, SuggestionResult, to_suggestion

__all__ = [
    "ClearReason",
    "ProactiveAnalysisLoop",
    "ProactiveState",
    "SuggestionChange",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 5.0
DEFAULT_MIN_CHARS = 100

ClearReason = Literal["applied", "dismissed", "stale", "selection", "replaced", "reset"]


class ProactiveState(str, enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    ANALYZING = "analyzing"
    SUGGESTED = "suggested"


@dataclass(slots=True, frozen=True)
class SuggestionChange:
    """Staging notification: ``kind`` is ``staged`` or ``cleared``."""

    kind: Literal["staged", "cleared"]
    suggestion: Suggestion
    reason: str = ""


ChangeListener = Callable[[SuggestionChange], None]
ContextProvider = Callable[[], "WritingContext | None"]


class ProactiveAnalysisLoop:
    """Decides when to ask the generator for feedback and what to keep.

    Every content, selection or busy-flag change re-arms a single debounce
    timer; analysis runs only when it fires undisturbed, proactive mode is
    on, the content is long enough, nothing is selected and no generation
    is in flight. At most one analysis runs at a time. Changes that arrive
    while it runs are remembered and trigger one more round afterwards.

    A result is staged only if it is advisory or its ``original_text`` is
    still verbatim in the content when the call returns. A staged
    suggestion whose anchor disappears from the content is dropped at once.
    Advisory suggestions never go stale on edits.
    """

    def __init__(
        self,
        editor: EditorState,
        generator: SuggestionGenerator,
        *,
        context_provider: ContextProvider | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        min_chars: int = DEFAULT_MIN_CHARS,
        enabled: bool = False,
    ) -> None:
        self._editor = editor
        self._generator = generator
        self._context_provider = context_provider or (lambda: None)
        self._min_chars = max(0, int(min_chars))
        self._enabled = enabled
        self._busy = False
        self._in_flight = False
        self._rerun_requested = False
        self._epoch = 0
        self._suggestion: Suggestion | None = None
        self._listeners: list[ChangeListener] = []
        self._analysis_count = 0
        self._timer = DebounceTimer(debounce_seconds, self._on_timer, name="proactive-analysis")
        editor.add_content_listener(self._on_content_changed)
        editor.add_selection_listener(self._on_selection_changed)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> ProactiveState:
        if self._in_flight:
            return ProactiveState.ANALYZING
        if self._timer.pending:
            return ProactiveState.SCHEDULED
        if self._suggestion is not None:
            return ProactiveState.SUGGESTED
        return ProactiveState.IDLE

    @property
    def suggestion(self) -> Suggestion | None:
        return self._suggestion

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def analysis_count(self) -> int:
        """Number of generator calls made so far."""

        return self._analysis_count

    @property
    def timer(self) -> DebounceTimer:
        return self._timer

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def set_enabled(self, enabled: bool) -> None:
        if enabled == self._enabled:
            return
        self._enabled = enabled
        LOGGER.info("Proactive analysis %s", "enabled" if enabled else "disabled")
        if not enabled:
            self.clear("reset")
        self._reschedule()

    def set_busy(self, busy: bool) -> None:
        """Record whether a user-initiated generation is in flight."""

        if busy == self._busy:
            return
        self._busy = busy
        self._reschedule()

    def notify_activity(self) -> None:
        """Re-arm the debounce after a change the editor does not see."""

        self._reschedule()

    def dismiss(self) -> None:
        self.clear("dismissed")

    def clear(self, reason: ClearReason) -> Suggestion | None:
        """Drop the staged suggestion, returning it."""

        previous = self._suggestion
        if previous is None:
            return None
        self._suggestion = None
        LOGGER.debug("Cleared suggestion %s (%s)", previous.id, reason)
        self._notify(SuggestionChange("cleared", previous, reason))
        return previous

    def reset(self) -> None:
        """Forget everything tied to the current document.

        Results of an analysis still in flight are discarded when they land.
        """

        self._epoch += 1
        self._timer.cancel()
        self._rerun_requested = False
        self.clear("reset")
        self._reschedule()

    async def analyze_now(self) -> Suggestion | None:
        """Run one analysis immediately, ignoring the debounce and mode switch."""

        self._timer.cancel()
        if not self._in_flight:
            await self._analyze()
        return self._suggestion

    async def aclose(self) -> None:
        self._timer.cancel()
        self._rerun_requested = False
        await self._timer.wait_idle()

    # ------------------------------------------------------------------
    # Editor callbacks
    # ------------------------------------------------------------------
    def _on_content_changed(self, text: str, source: ChangeSource) -> None:
        staged = self._suggestion
        if staged is not None and not staged.is_advisory and staged.anchor() not in text:
            self.clear("stale")
        self._reschedule()

    def _on_selection_changed(self, selection: SelectionRange | None) -> None:
        if selection is not None:
            self.clear("selection")
        self._reschedule()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def _eligible(self) -> bool:
        return (
            self._enabled
            and not self._busy
            and self._editor.selection is None
            and len(self._editor.content) > self._min_chars
        )

    def _reschedule(self) -> None:
        if self._in_flight:
            self._rerun_requested = True
            return
        if not self._eligible():
            self._timer.cancel()
            return
        self._timer.schedule()

    async def _on_timer(self) -> None:
        if self._in_flight or not self._eligible():
            return
        await self._analyze()

    async def _analyze(self) -> None:
        epoch = self._epoch
        version = self._editor.version_id
        text = self._editor.content
        self._in_flight = True
        self._rerun_requested = False
        self._analysis_count += 1
        try:
            result = await self._call_generator(text)
        finally:
            self._in_flight = False
        if epoch == self._epoch:
            self._accept(result)
        else:
            LOGGER.debug("Discarding analysis for a document that is no longer active")
        if self._rerun_requested or self._editor.version_id != version:
            self._rerun_requested = False
            self._reschedule()

    async def _call_generator(self, text: str) -> SuggestionResult:
        try:
            return await self._generator.analyze(text, self._context_provider())
        except GeneratorError as exc:
            LOGGER.info("Background analysis skipped: %s", exc)
        except Exception:
            LOGGER.exception("Background analysis failed")
        return NoSuggestion()

    def _accept(self, result: SuggestionResult) -> None:
        suggestion = to_suggestion(result)
        if suggestion is None:
            return
        content = self._editor.content
        if not suggestion.is_advisory and suggestion.original_text not in content:
            LOGGER.debug("Dropping suggestion %s: span no longer in the document", suggestion.id)
            return
        if self._editor.selection is not None:
            LOGGER.debug("Dropping suggestion %s: a selection became active", suggestion.id)
            return
        previous = self._suggestion
        self._suggestion = suggestion
        if previous is not None:
            self._notify(SuggestionChange("cleared", previous, "replaced"))
        LOGGER.info("Staged %s suggestion %s", suggestion.type, suggestion.id)
        self._notify(SuggestionChange("staged", suggestion))

    def _notify(self, change: SuggestionChange) -> None:
        for listener in list(self._listeners):
            listener(change)
