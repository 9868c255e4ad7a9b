"""Tests for the per-document snapshot history."""

from __future__ import annotations

import pytest

from flowstate.editor.document_model import Snapshot
from flowstate.editor.editor_state import EditorState
from flowstate.services.history import SAFETY_LABEL, SnapshotHistory
from flowstate.services.storage import DocumentRepository, MemoryStore


@pytest.fixture
def repository() -> DocumentRepository:
    return DocumentRepository(MemoryStore())


@pytest.fixture
def history(repository: DocumentRepository) -> SnapshotHistory:
    history = SnapshotHistory(repository, limit=5)
    history.load("doc-1")
    return history


class TestCapture:
    def test_capture_front_inserts_and_persists(
        self, history: SnapshotHistory, repository: DocumentRepository
    ) -> None:
        first = history.capture("first draft", "one")
        second = history.capture("second draft", "two", "auto")

        assert [snap.id for snap in history.entries] == [second.id, first.id]
        assert second.trigger == "auto"
        stored = repository.load_snapshots("doc-1")
        assert [snap.content for snap in stored] == ["second draft", "first draft"]

    def test_blank_content_is_never_captured(self, history: SnapshotHistory) -> None:
        assert history.capture("   \n", "blank") is None
        assert len(history) == 0

    def test_duplicate_of_head_is_skipped(self, history: SnapshotHistory) -> None:
        history.capture("same text", "first")

        assert history.capture("same text", "again") is None
        assert len(history) == 1

    def test_duplicate_of_older_entry_is_kept(self, history: SnapshotHistory) -> None:
        history.capture("a", "1")
        history.capture("b", "2")

        assert history.capture("a", "3") is not None
        assert len(history) == 3

    def test_history_is_capped_dropping_oldest(self, history: SnapshotHistory) -> None:
        for index in range(8):
            history.capture(f"version {index}", f"v{index}")

        assert len(history) == 5
        assert history.latest().content == "version 7"
        assert history.entries[-1].content == "version 3"

    def test_listener_receives_new_snapshot(self, history: SnapshotHistory) -> None:
        captured: list[Snapshot] = []
        history.add_listener(captured.append)

        snapshot = history.capture("content", "label")

        assert captured == [snapshot]

    def test_capture_for_another_document_leaves_loaded_list_alone(
        self, history: SnapshotHistory, repository: DocumentRepository
    ) -> None:
        history.capture("mine", "mine")

        other = history.capture_snapshot("doc-2", "theirs", "theirs")

        assert other is not None
        assert [snap.content for snap in history.entries] == ["mine"]
        assert [snap.content for snap in repository.load_snapshots("doc-2")] == ["theirs"]

    def test_without_loaded_document_nothing_is_captured(self, repository: DocumentRepository) -> None:
        history = SnapshotHistory(repository)
        assert history.capture("text", "label") is None

    def test_limit_must_be_positive(self, repository: DocumentRepository) -> None:
        with pytest.raises(ValueError):
            SnapshotHistory(repository, limit=0)


class TestRestore:
    def test_restore_backs_up_unsaved_content_first(self, history: SnapshotHistory) -> None:
        target = history.capture("version one", "one")
        editor = EditorState("version one, edited")

        safety = history.restore(target, editor)

        assert editor.content == "version one"
        assert safety is not None
        assert safety.label == SAFETY_LABEL
        assert safety.trigger == "auto"
        assert safety.content == "version one, edited"
        assert len(history) == 2
        assert history.latest() is safety

    def test_restore_skips_backup_when_head_matches(self, history: SnapshotHistory) -> None:
        old = history.capture("old text", "old")
        history.capture("new text", "new")
        editor = EditorState("new text")

        safety = history.restore(old, editor)

        assert safety is None
        assert editor.content == "old text"
        assert len(history) == 2

    def test_restore_with_empty_history_still_backs_up(self, history: SnapshotHistory) -> None:
        foreign = Snapshot(content="from elsewhere", label="x")
        editor = EditorState("current work")

        safety = history.restore(foreign, editor)

        assert safety is not None
        assert [snap.content for snap in history.entries] == ["current work"]
        assert editor.content == "from elsewhere"

    def test_restore_publishes_restore_source(self, history: SnapshotHistory) -> None:
        target = history.capture("v1", "one")
        editor = EditorState("v2")
        sources: list[str] = []
        editor.add_content_listener(lambda text, source: sources.append(source))

        history.restore(target, editor)

        assert sources == ["restore"]

    def test_safety_snapshot_can_itself_be_restored(self, history: SnapshotHistory) -> None:
        target = history.capture("v1", "one")
        editor = EditorState("v2")
        safety = history.restore(target, editor)

        history.restore(safety, editor)

        assert editor.content == "v2"


class TestLoad:
    def test_load_swaps_lists_between_documents(self, history: SnapshotHistory) -> None:
        history.capture("doc one text", "one")

        history.load("doc-2")
        assert history.entries == ()
        history.capture("doc two text", "two")

        history.load("doc-1")
        assert [snap.content for snap in history.entries] == ["doc one text"]

    def test_find_returns_matching_snapshot(self, history: SnapshotHistory) -> None:
        snapshot = history.capture("text", "label")

        assert history.find(snapshot.id) is snapshot
        assert history.find("missing") is None
