"""Per-document snapshot history with capture, dedup, cap and safe restore."""

from __future__ import annotations

import logging
from typing import Callable

from ..editor.document_model import Snapshot, SnapshotTrigger
from ..editor.editor_state import EditorState
from .storage import DocumentRepository, StorageError

__all__ = ["DEFAULT_SNAPSHOT_LIMIT", "SnapshotHistory"]

LOGGER = logging.getLogger(__name__)
DEFAULT_SNAPSHOT_LIMIT = 50
SAFETY_LABEL = "Backup before restore"

SnapshotListener = Callable[[Snapshot], None]


class SnapshotHistory:
    """Most-recent-first snapshot list for the active document.

    Histories are keyed by document id in the repository; :meth:`load` swaps
    in another document's list. Snapshots are never edited after capture.
    """

    def __init__(self, repository: DocumentRepository, *, limit: int = DEFAULT_SNAPSHOT_LIMIT) -> None:
        if limit < 1:
            raise ValueError("snapshot limit must be at least 1")
        self._repository = repository
        self._limit = limit
        self._document_id: str | None = None
        self._entries: list[Snapshot] = []
        self._listeners: list[SnapshotListener] = []

    @property
    def document_id(self) -> str | None:
        return self._document_id

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def entries(self) -> tuple[Snapshot, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def latest(self) -> Snapshot | None:
        return self._entries[0] if self._entries else None

    def find(self, snapshot_id: str) -> Snapshot | None:
        for snapshot in self._entries:
            if snapshot.id == snapshot_id:
                return snapshot
        return None

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def load(self, document_id: str | None) -> tuple[Snapshot, ...]:
        self._document_id = document_id
        self._entries = self._repository.load_snapshots(document_id) if document_id else []
        return self.entries

    def capture(self, content: str, label: str, trigger: SnapshotTrigger = "manual") -> Snapshot | None:
        """Capture ``content`` for the loaded document."""

        if self._document_id is None:
            return None
        return self.capture_snapshot(self._document_id, content, label, trigger)

    def capture_snapshot(
        self,
        document_id: str,
        content: str,
        label: str,
        trigger: SnapshotTrigger = "manual",
    ) -> Snapshot | None:
        """Front-insert a snapshot, skipping blank content and head duplicates.

        Returns the new snapshot, or None when nothing was stored.
        """

        if not document_id or not content.strip():
            return None
        active = document_id == self._document_id
        entries = self._entries if active else self._repository.load_snapshots(document_id)
        if entries and entries[0].content == content:
            LOGGER.debug("Skipping duplicate %s snapshot for %s", trigger, document_id)
            return None

        snapshot = Snapshot(content=content, label=label, trigger=trigger)
        updated = [snapshot, *entries][: self._limit]
        if active:
            self._entries = updated
        try:
            self._repository.save_snapshots(document_id, updated)
        except StorageError:
            LOGGER.exception("Failed to persist snapshot history for %s", document_id)
        LOGGER.info("Captured %s snapshot %r for %s (%d kept)", trigger, label, document_id, len(updated))
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot

    def restore(self, snapshot: Snapshot, editor: EditorState) -> Snapshot | None:
        """Overwrite the editor content with ``snapshot``.

        When the live content differs from the newest stored snapshot (or no
        snapshot exists yet) an ``auto`` safety snapshot of it is captured
        first. Returns that safety snapshot, if one was taken.
        """

        current = editor.content
        head = self.latest()
        safety: Snapshot | None = None
        if head is None or head.content != current:
            safety = self.capture(current, SAFETY_LABEL, "auto")
        editor.update_content(snapshot.content, source="restore")
        return safety
