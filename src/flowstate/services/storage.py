"""Key-value persistence for documents, snapshot histories and the active pointer."""

from __future__ import annotations

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Iterator, Mapping, Protocol

from ..chat.message_model import parse_timestamp
from ..editor.document_model import Document, Snapshot, WritingContext

__all__ = [
    "DocumentRepository",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "StorageError",
]

LOGGER = logging.getLogger(__name__)

DOCUMENTS_KEY = "flowstate_documents_v1"
LEGACY_SESSION_KEY = "flowstate_session_v1"
ACTIVE_DOCUMENT_KEY = "flowstate_active_doc_id"
_HISTORY_PREFIX = "flowstate_history_"
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class StorageError(RuntimeError):
    """Raised when the backing medium rejects a read or write."""


class KeyValueStore(Protocol):
    """Durable JSON-value store the repository is built on."""

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self) -> Iterator[str]:
        ...


class MemoryStore:
    """In-process store; values are deep-copied so callers cannot alias them."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


class JsonFileStore:
    """Stores each key as a JSON file inside ``root``.

    The store must be opened before use; writes go through a temporary file
    that replaces the target so a crash never leaves half-written JSON.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._opened = False

    @property
    def root(self) -> Path:
        return self._root

    def open(self) -> "JsonFileStore":
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Unable to create storage directory {self._root}: {exc}") from exc
        self._opened = True
        return self

    def close(self) -> None:
        self._opened = False

    def __enter__(self) -> "JsonFileStore":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get(self, key: str) -> Any | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            LOGGER.warning("Stored value %s is not valid JSON: %s", path, exc)
            return None
        except OSError as exc:
            raise StorageError(f"Unable to read {path}: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        body = json.dumps(value, ensure_ascii=False, indent=2)
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(body, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            raise StorageError(f"Unable to write {path}: {exc}") from exc

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Unable to delete {path}: {exc}") from exc

    def keys(self) -> Iterator[str]:
        self._require_open()
        return iter(sorted(path.stem for path in self._root.glob("*.json")))

    def _path_for(self, key: str) -> Path:
        self._require_open()
        return self._root / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def _require_open(self) -> None:
        if not self._opened:
            raise StorageError("JsonFileStore used before open()")


class DocumentRepository:
    """Document, snapshot-history and active-pointer CRUD over a key-value store."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @property
    def store(self) -> KeyValueStore:
        return self._store

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def load_documents(self) -> list[Document]:
        """Return every stored document, most recently created first."""

        raw = self._store.get(DOCUMENTS_KEY)
        if raw is None:
            migrated = self._migrate_legacy_session()
            return [migrated] if migrated is not None else []
        if not isinstance(raw, list):
            LOGGER.warning("Ignoring malformed documents collection of type %s", type(raw).__name__)
            return []
        return [Document.from_dict(item) for item in raw if isinstance(item, Mapping)]

    def get_document(self, document_id: str) -> Document | None:
        for document in self.load_documents():
            if document.id == document_id:
                return document
        return None

    def save_document(self, document: Document) -> None:
        """Upsert ``document``; new documents go to the front of the list."""

        documents = self.load_documents()
        for index, existing in enumerate(documents):
            if existing.id == document.id:
                documents[index] = document
                break
        else:
            documents.insert(0, document)
        self._write_documents(documents)

    def delete_document(self, document_id: str) -> bool:
        """Remove the document and its snapshot history."""

        documents = self.load_documents()
        remaining = [document for document in documents if document.id != document_id]
        removed = len(remaining) != len(documents)
        self._write_documents(remaining)
        self._store.delete(history_key(document_id))
        if self.get_active_id() == document_id:
            self._store.delete(ACTIVE_DOCUMENT_KEY)
        return removed

    def get_active_id(self) -> str | None:
        value = self._store.get(ACTIVE_DOCUMENT_KEY)
        return str(value) if value else None

    def set_active_id(self, document_id: str) -> None:
        self._store.set(ACTIVE_DOCUMENT_KEY, document_id)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def load_snapshots(self, document_id: str) -> list[Snapshot]:
        if not document_id:
            return []
        raw = self._store.get(history_key(document_id))
        if not isinstance(raw, list):
            return []
        return [Snapshot.from_dict(item) for item in raw if isinstance(item, Mapping)]

    def save_snapshots(self, document_id: str, snapshots: list[Snapshot]) -> None:
        self._store.set(history_key(document_id), [snapshot.to_dict() for snapshot in snapshots])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _write_documents(self, documents: list[Document]) -> None:
        self._store.set(DOCUMENTS_KEY, [document.to_dict() for document in documents])

    def _migrate_legacy_session(self) -> Document | None:
        legacy = self._store.get(LEGACY_SESSION_KEY)
        if not isinstance(legacy, Mapping):
            return None
        document = Document(
            title="Migrated Draft",
            content=str(legacy.get("content") or ""),
            last_modified=parse_timestamp(legacy.get("last_modified") or legacy.get("lastModified")),
            writing_context=WritingContext.from_dict(legacy.get("writing_context") or legacy.get("writingContext")),
        )
        LOGGER.info("Migrating legacy session into document %s", document.id)
        self._write_documents([document])
        return document


def history_key(document_id: str) -> str:
    return f"{_HISTORY_PREFIX}{document_id}"
