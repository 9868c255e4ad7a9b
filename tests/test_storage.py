"""Tests for the key-value stores and the document repository."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from flowstate.chat.message_model import ChatMessage
from flowstate.editor.document_model import Document, ExpertPrompt, Snapshot, WritingContext
from flowstate.services.storage import (
    ACTIVE_DOCUMENT_KEY,
    DOCUMENTS_KEY,
    LEGACY_SESSION_KEY,
    DocumentRepository,
    JsonFileStore,
    MemoryStore,
    StorageError,
    history_key,
)


def _document(**kwargs) -> Document:
    return Document(**kwargs)


class TestMemoryStore:
    def test_values_are_copied_on_the_way_in_and_out(self) -> None:
        store = MemoryStore()
        payload = {"items": [1, 2]}
        store.set("key", payload)
        payload["items"].append(3)

        loaded = store.get("key")
        loaded["items"].append(4)

        assert store.get("key") == {"items": [1, 2]}

    def test_delete_missing_key_is_silent(self) -> None:
        store = MemoryStore({"a": 1})
        store.delete("b")
        assert list(store.keys()) == ["a"]


class TestJsonFileStore:
    def test_use_before_open_raises(self, tmp_path) -> None:
        store = JsonFileStore(tmp_path / "data")

        with pytest.raises(StorageError):
            store.get("anything")

    def test_roundtrip_and_keys(self, tmp_path) -> None:
        with JsonFileStore(tmp_path / "data") as store:
            store.set("beta", {"value": 2})
            store.set("alpha", [1, "two"])

            assert store.get("alpha") == [1, "two"]
            assert store.get("missing") is None
            assert list(store.keys()) == ["alpha", "beta"]

            store.delete("alpha")
            assert store.get("alpha") is None

    def test_unsafe_key_characters_are_replaced(self, tmp_path) -> None:
        store = JsonFileStore(tmp_path).open()

        store.set("../escape/attempt", {"ok": True})

        assert (tmp_path / ".._escape_attempt.json").exists()
        assert store.get("../escape/attempt") == {"ok": True}

    def test_corrupt_file_reads_as_missing(self, tmp_path) -> None:
        store = JsonFileStore(tmp_path).open()
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

        assert store.get("broken") is None


class TestDocumentRepository:
    def test_save_and_load_roundtrip(self) -> None:
        repository = DocumentRepository(MemoryStore())
        document = _document(
            title="Essay",
            content="<p>Body</p>",
            last_modified=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            writing_context=WritingContext(audience="Students", tone="Warm"),
            chat_history=[ChatMessage(role="user", text="hi"), ChatMessage(role="model", text="hello")],
            experts=[ExpertPrompt("custom", "Custom", "Be brief.")],
            pinned_title=True,
        )

        repository.save_document(document)
        loaded = repository.get_document(document.id)

        assert loaded == document

    def test_new_documents_go_first_and_updates_stay_in_place(self) -> None:
        repository = DocumentRepository(MemoryStore())
        first = _document(title="First")
        second = _document(title="Second")
        repository.save_document(first)
        repository.save_document(second)

        first.title = "First, renamed"
        repository.save_document(first)

        assert [doc.title for doc in repository.load_documents()] == ["Second", "First, renamed"]

    def test_delete_removes_history_and_active_pointer(self) -> None:
        store = MemoryStore()
        repository = DocumentRepository(store)
        document = _document(title="Doomed")
        repository.save_document(document)
        repository.save_snapshots(document.id, [Snapshot(content="x", label="x")])
        repository.set_active_id(document.id)

        assert repository.delete_document(document.id) is True

        assert repository.load_documents() == []
        assert store.get(history_key(document.id)) is None
        assert repository.get_active_id() is None

    def test_delete_unknown_document_reports_false(self) -> None:
        repository = DocumentRepository(MemoryStore())
        assert repository.delete_document("nope") is False

    def test_snapshots_roundtrip(self) -> None:
        repository = DocumentRepository(MemoryStore())
        snapshots = [
            Snapshot(content="newer", label="b", trigger="ai-pre-flight"),
            Snapshot(content="older", label="a", trigger="auto"),
        ]

        repository.save_snapshots("doc", snapshots)

        assert repository.load_snapshots("doc") == snapshots

    def test_malformed_collection_is_ignored(self) -> None:
        repository = DocumentRepository(MemoryStore({DOCUMENTS_KEY: "garbage"}))
        assert repository.load_documents() == []

    def test_unknown_snapshot_trigger_falls_back_to_manual(self) -> None:
        store = MemoryStore({history_key("doc"): [{"content": "x", "label": "y", "trigger": "bogus"}]})
        repository = DocumentRepository(store)

        assert repository.load_snapshots("doc")[0].trigger == "manual"

    def test_active_pointer_roundtrip(self) -> None:
        store = MemoryStore()
        repository = DocumentRepository(store)

        repository.set_active_id("abc")

        assert repository.get_active_id() == "abc"
        assert store.get(ACTIVE_DOCUMENT_KEY) == "abc"


class TestLegacyMigration:
    def test_single_session_becomes_one_document(self) -> None:
        store = MemoryStore(
            {
                LEGACY_SESSION_KEY: {
                    "content": "Old draft text",
                    "lastModified": 1_700_000_000_000,
                    "writingContext": {"audience": "Kids", "tone": "Playful"},
                }
            }
        )
        repository = DocumentRepository(store)

        documents = repository.load_documents()

        assert len(documents) == 1
        migrated = documents[0]
        assert migrated.title == "Migrated Draft"
        assert migrated.content == "Old draft text"
        assert migrated.writing_context.audience == "Kids"
        assert migrated.last_modified.year == 2023
        assert [doc.id for doc in repository.load_documents()] == [migrated.id]

    def test_no_legacy_data_means_no_documents(self) -> None:
        assert DocumentRepository(MemoryStore()).load_documents() == []
