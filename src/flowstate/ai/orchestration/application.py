"""Applying a staged suggestion to the live document."""

from __future__ import annotations

import enum
import logging
from typing import Callable

from ...editor.document_model import Suggestion
from ...editor.editor_state import EditorState
from ...services.history import SnapshotHistory
from .proactive import ProactiveAnalysisLoop

__all__ = ["ApplyOutcome", "STALE_SUGGESTION_NOTICE", "SuggestionApplier"]

LOGGER = logging.getLogger(__name__)

STALE_SUGGESTION_NOTICE = "The text has changed, so this suggestion no longer applies."

NoticeSink = Callable[[str], None]


class ApplyOutcome(str, enum.Enum):
    APPLIED = "applied"
    STALE = "stale"
    ADVISORY = "advisory"


class SuggestionApplier:
    """Locates a suggestion's span by content and substitutes it.

    Applying the staged suggestion clears it, whatever the outcome. Another
    staged suggestion is left alone unless the edit removes its anchor. A
    successful substitution is preceded by an ``ai-pre-flight`` snapshot of
    the content as it stood.
    """

    def __init__(
        self,
        editor: EditorState,
        history: SnapshotHistory,
        loop: ProactiveAnalysisLoop,
        *,
        notice_sink: NoticeSink | None = None,
    ) -> None:
        self._editor = editor
        self._history = history
        self._loop = loop
        self._notice_sink = notice_sink

    def apply(self, suggestion: Suggestion | None = None) -> ApplyOutcome | None:
        """Apply ``suggestion`` (default: the staged one).

        Returns None when there is nothing to apply.
        """

        staged = self._loop.suggestion
        target = suggestion or staged
        if target is None:
            return None
        is_staged = staged is not None and staged.id == target.id
        if target.is_advisory:
            if is_staged:
                self._loop.clear("dismissed")
            return ApplyOutcome.ADVISORY

        before = self._editor.content
        if target.original_text not in before:
            LOGGER.info("Suggestion %s no longer matches the document", target.id)
            if is_staged:
                self._loop.clear("stale")
            if self._notice_sink is not None:
                self._notice_sink(STALE_SUGGESTION_NOTICE)
            return ApplyOutcome.STALE

        self._history.capture(before, _snapshot_label(target), "ai-pre-flight")
        # Cleared before the edit so the loop's anchor check does not report it stale.
        if is_staged:
            self._loop.clear("applied")
        self._editor.replace_text(target.original_text, target.suggested_text)
        LOGGER.info("Applied %s suggestion %s", target.type, target.id)
        return ApplyOutcome.APPLIED


def _snapshot_label(suggestion: Suggestion) -> str:
    return f"Before {suggestion.type} suggestion"
