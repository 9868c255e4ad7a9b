"""Live content string and selection owned by the editing surface."""

from __future__ import annotations

import hashlib
import logging
from typing import Callable, Literal

from .document_model import SelectionRange

LOGGER = logging.getLogger(__name__)

ChangeSource = Literal["typing", "selection", "suggestion", "restore", "load", "draft"]
ContentListener = Callable[[str, ChangeSource], None]
SelectionListener = Callable[[SelectionRange | None], None]


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


class EditorState:
    """Holds the document text and the active selection.

    All mutations are synchronous, so between awaits in the session they
    are atomic. Every content mutation clears the selection because its
    offsets no longer describe the new text.
    """

    def __init__(self, content: str = "") -> None:
        self._content = content
        self._selection: SelectionRange | None = None
        self._version_id = 1
        self._content_listeners: list[ContentListener] = []
        self._selection_listeners: list[SelectionListener] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def content(self) -> str:
        return self._content

    @property
    def selection(self) -> SelectionRange | None:
        return self._selection

    @property
    def version_id(self) -> int:
        return self._version_id

    @property
    def content_hash(self) -> str:
        return _hash_text(self._content)

    def add_content_listener(self, listener: ContentListener) -> None:
        self._content_listeners.append(listener)

    def add_selection_listener(self, listener: SelectionListener) -> None:
        self._selection_listeners.append(listener)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def update_content(self, text: str, *, source: ChangeSource = "typing") -> None:
        """Replace the entire content string. Always succeeds."""

        if text == self._content:
            return
        self._commit(text, source)

    def set_selection(self, selection: SelectionRange | None) -> None:
        if selection is not None and selection.is_empty:
            selection = None
        if selection == self._selection:
            return
        self._selection = selection
        for listener in list(self._selection_listeners):
            listener(selection)

    def select(self, start: int, end: int) -> SelectionRange | None:
        """Select ``[start, end)`` of the current content (clamped)."""

        self.set_selection(SelectionRange.from_offsets(self._content, start, end))
        return self._selection

    def replace_selection(self, text: str) -> bool:
        """Splice ``text`` over the active selection and clear it.

        Without a selection this is a no-op returning False. A selection
        whose offsets no longer match the content is cleared without
        touching the text.
        """

        selection = self._selection
        if selection is None or selection.is_empty:
            return False
        if not selection.matches(self._content):
            LOGGER.debug(
                "Selection [%s, %s) no longer matches content; clearing it",
                selection.start,
                selection.end,
            )
            self.set_selection(None)
            return False
        updated = self._content[: selection.start] + text + self._content[selection.end :]
        self._commit(updated, "selection")
        return True

    def replace_text(self, original: str, replacement: str, *, source: ChangeSource = "suggestion") -> bool:
        """Replace the first literal occurrence of ``original``.

        Only the first occurrence is touched, so a non-unique ``original``
        may alter a different passage than the one the caller meant. Returns
        False, leaving content unchanged, when ``original`` is empty or
        absent.
        """

        if not original:
            return False
        index = self._content.find(original)
        if index < 0:
            return False
        updated = self._content[:index] + replacement + self._content[index + len(original) :]
        self._commit(updated, source)
        return True

    def _commit(self, text: str, source: ChangeSource) -> None:
        self._content = text
        self._version_id += 1
        self.set_selection(None)
        for listener in list(self._content_listeners):
            listener(text, source)


__all__ = ["ChangeSource", "EditorState"]
