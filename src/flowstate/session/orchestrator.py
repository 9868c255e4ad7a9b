"""Session orchestrator wiring editor, analysis, history and persistence."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Iterable, Sequence

from ..ai.client import AIClient, ClientSettings
from ..ai.errors import GeneratorError, classify_exception
from ..ai.generator import OpenAISuggestionGenerator, SuggestionGenerator
from ..ai.orchestration.application import ApplyOutcome, SuggestionApplier
from ..ai.orchestration.proactive import ProactiveAnalysisLoop, SuggestionChange
from ..ai.prompts import DEFAULT_EXPERTS
from ..chat.message_model import ChatMessage
from ..editor.document_model import (
    Attachment,
    Document,
    ExpertPrompt,
    GoalSuggestion,
    SelectionRange,
    Snapshot,
    SnapshotTrigger,
    Suggestion,
    WritingContext,
    derive_title,
)
from ..editor.editor_state import ChangeSource, EditorState
from ..editor.timers import DebounceTimer
from ..services.exporters import ExportFormat, ExportResult, export_document
from ..services.history import SnapshotHistory
from ..services.settings import Settings
from ..services.storage import DocumentRepository, JsonFileStore, KeyValueStore, StorageError
from ..utils.logging import document_logger
from ..utils.readability import DocumentStats, document_stats
from .events import (
    ContentChanged,
    DocumentDeleted,
    DocumentSaved,
    DocumentSwitched,
    EventBus,
    GenerationStateChanged,
    NoticePosted,
    OperationFailed,
    SelectionChanged,
    SnapshotCaptured,
    SuggestionCleared,
    SuggestionStaged,
)

__all__ = ["DocumentNotFoundError", "SessionOrchestrator"]

LOGGER = logging.getLogger(__name__)

CHAT_ERROR_REPLY = "I encountered an error trying to process your request. Please try again in a moment."
SELECTION_MOVED_NOTICE = "The selection changed while the rewrite was running; nothing was replaced."
DOCUMENT_SWITCHED_NOTICE = "The document was switched before the draft finished; it was not inserted."
DRAFT_LABEL_CHARS = 15


class DocumentNotFoundError(LookupError):
    """Raised when a document id does not exist in the store."""


class SessionOrchestrator:
    """Owns the active document and composes the session components.

    Content, writing-context, chat and expert changes mark the document
    dirty; it is written back after ``persist_debounce_seconds`` of quiet.
    User-initiated generations raise the busy flag that suspends
    proactive analysis. Foreground failures are published as
    :class:`OperationFailed` and re-raised; background failures are only
    logged.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        generator: SuggestionGenerator,
        *,
        settings: Settings | None = None,
        bus: EventBus | None = None,
        editor: EditorState | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._repository = repository
        self._generator = generator
        self._bus = bus or EventBus()
        self._editor = editor or EditorState()
        self._history = SnapshotHistory(repository, limit=self._settings.snapshot_limit)
        self._loop = ProactiveAnalysisLoop(
            self._editor,
            generator,
            context_provider=self._writing_context,
            debounce_seconds=self._settings.proactive_debounce_seconds,
            min_chars=self._settings.proactive_min_chars,
            enabled=self._settings.proactive_enabled,
        )
        self._applier = SuggestionApplier(self._editor, self._history, self._loop, notice_sink=self._post_warning)
        self._persist_timer = DebounceTimer(
            self._settings.persist_debounce_seconds, self._persist_now, name="persist"
        )
        self._active: Document | None = None
        self._active_expert: ExpertPrompt | None = None
        self._busy_operations = 0
        self._closed = False

        self._editor.add_content_listener(self._on_content_changed)
        self._editor.add_selection_listener(self._on_selection_changed)
        self._loop.add_listener(self._on_suggestion_change)
        self._history.add_listener(self._on_snapshot_captured)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: KeyValueStore | None = None,
        bus: EventBus | None = None,
    ) -> "SessionOrchestrator":
        """Build a session backed by the JSON store in ``settings.data_dir``."""

        if store is None:
            store = JsonFileStore(Path(settings.data_dir)).open()
        client = AIClient(
            ClientSettings(
                base_url=settings.base_url,
                api_key=settings.api_key,
                model=settings.model,
                organization=settings.organization,
                request_timeout=settings.request_timeout,
                max_retries=settings.max_retries,
                retry_min_seconds=settings.retry_min_seconds,
                retry_max_seconds=settings.retry_max_seconds,
                default_headers=settings.default_headers or None,
                metadata=settings.metadata or None,
                debug_logging=settings.debug_logging,
            )
        )
        generator = OpenAISuggestionGenerator(
            client,
            draft_model=settings.draft_model,
            temperature=settings.temperature,
            analysis_max_tokens=settings.proactive_max_context_tokens,
            chat_max_tokens=settings.chat_max_context_tokens,
        )
        return cls(DocumentRepository(store), generator, settings=settings, bus=bus)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def editor(self) -> EditorState:
        return self._editor

    @property
    def history(self) -> SnapshotHistory:
        return self._history

    @property
    def proactive(self) -> ProactiveAnalysisLoop:
        return self._loop

    @property
    def repository(self) -> DocumentRepository:
        return self._repository

    @property
    def active_document(self) -> Document:
        if self._active is None:
            raise RuntimeError("Session has not been started")
        return self._active

    @property
    def suggestion(self) -> Suggestion | None:
        return self._loop.suggestion

    @property
    def is_generating(self) -> bool:
        return self._busy_operations > 0

    @property
    def experts(self) -> list[ExpertPrompt]:
        """The document's personas, or the default catalogue when it has none."""

        return list(self.active_document.experts) or list(DEFAULT_EXPERTS)

    @property
    def active_expert(self) -> ExpertPrompt | None:
        return self._active_expert

    @property
    def persist_pending(self) -> bool:
        return self._persist_timer.pending or self._persist_timer.running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> Document:
        """Load the last active document, the first stored one, or a new one."""

        documents = self._repository.load_documents()
        active_id = self._repository.get_active_id()
        target = next((doc for doc in documents if doc.id == active_id), None)
        if target is None and documents:
            target = documents[0]
        if target is None:
            return await self.create_document()
        self._activate(target)
        return target

    async def flush(self) -> None:
        """Write any pending change now."""

        await self._persist_timer.flush()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.flush()
        await self._loop.aclose()
        close = getattr(self._repository.store, "close", None)
        if callable(close):
            close()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def list_documents(self) -> list[Document]:
        return self._repository.load_documents()

    async def create_document(self, title: str | None = None) -> Document:
        document = Document()
        if title:
            document.title = title
            document.pinned_title = True
        self._flush_pending_sync()
        self._save(document)
        LOGGER.info("Created document %s", document.id)
        self._activate(document)
        return document

    async def switch_document(self, document_id: str) -> Document:
        if self._active is not None and self._active.id == document_id:
            return self._active
        document = self._repository.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        self._flush_pending_sync()
        self._activate(document)
        return document

    async def delete_document(self, document_id: str) -> Document:
        """Delete a document and its history; returns the document now active."""

        is_active = self._active is not None and self._active.id == document_id
        if is_active:
            self._persist_timer.cancel()
        else:
            self._flush_pending_sync()
        if not self._repository.delete_document(document_id):
            raise DocumentNotFoundError(document_id)
        LOGGER.info("Deleted document %s", document_id)
        self._bus.publish(DocumentDeleted(document_id=document_id))
        if not is_active:
            return self.active_document
        self._active = None
        remaining = self._repository.load_documents()
        if remaining:
            self._activate(remaining[0])
            return remaining[0]
        return await self.create_document()

    def rename_document(self, title: str) -> None:
        """Pin an explicit title; an empty title returns to the derived one."""

        document = self.active_document
        document.title = title.strip() or derive_title(self._editor.content)
        document.pinned_title = bool(title.strip())
        self._mark_dirty()

    # ------------------------------------------------------------------
    # Document settings
    # ------------------------------------------------------------------
    def set_writing_context(self, context: WritingContext) -> None:
        self.active_document.writing_context = replace(context)
        self._mark_dirty()
        self._loop.notify_activity()

    def set_experts(self, experts: Iterable[ExpertPrompt]) -> None:
        self.active_document.experts = list(experts)
        if self._active_expert is not None and self._active_expert not in self.experts:
            self._active_expert = None
        self._mark_dirty()

    def set_active_expert(self, expert_id: str | None) -> ExpertPrompt | None:
        if expert_id is None:
            self._active_expert = None
            return None
        for expert in self.experts:
            if expert.id == expert_id:
                self._active_expert = expert
                return expert
        raise KeyError(f"Unknown expert {expert_id!r}")

    def set_proactive_enabled(self, enabled: bool) -> None:
        self._settings.proactive_enabled = enabled
        self._loop.set_enabled(enabled)

    # ------------------------------------------------------------------
    # Editing surface
    # ------------------------------------------------------------------
    def update_content(self, text: str) -> None:
        self._editor.update_content(text, source="typing")

    def select(self, start: int, end: int) -> SelectionRange | None:
        return self._editor.select(start, end)

    def clear_selection(self) -> None:
        self._editor.set_selection(None)

    def stats(self) -> DocumentStats:
        return document_stats(self._editor.content)

    def export(self, fmt: ExportFormat) -> ExportResult:
        return export_document(self._editor.content, self._current_title(), fmt)

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------
    async def analyze_now(self) -> Suggestion | None:
        return await self._loop.analyze_now()

    def apply_suggestion(self, suggestion: Suggestion | None = None) -> ApplyOutcome | None:
        return self._applier.apply(suggestion)

    def dismiss_suggestion(self) -> None:
        self._loop.dismiss()

    # ------------------------------------------------------------------
    # Foreground generation
    # ------------------------------------------------------------------
    async def draft(
        self,
        prompt: str,
        attachments: Sequence[Attachment] = (),
        tools: Iterable[str] = (),
    ) -> str:
        """Generate text for ``prompt`` and append it to the document."""

        if not prompt.strip():
            raise ValueError("Draft prompt is empty")
        document = self.active_document
        async with self._generating("draft"):
            try:
                text = await self._generator.draft(
                    prompt,
                    attachments,
                    tools,
                    self._editor.content,
                    self.active_document.writing_context,
                    self._active_expert,
                )
            except GeneratorError as exc:
                self._fail("draft", exc)
                raise
        if self._active is not document:
            self._post_warning(DOCUMENT_SWITCHED_NOTICE)
            return text
        current = self._editor.content
        self._history.capture(current, f"AI Draft: {prompt[:DRAFT_LABEL_CHARS]}", "ai-pre-flight")
        self._editor.update_content(f"{current}\n\n{text}" if current else text, source="draft")
        return text

    async def refine_selection(self, instruction: str) -> str | None:
        """Rewrite the active selection following ``instruction``.

        Returns the replacement text, or None when the selection changed
        during the call. On generator failure the selection is kept and the
        error re-raised.
        """

        selection = self._editor.selection
        if selection is None or selection.is_empty:
            raise ValueError("No text is selected")
        if not instruction.strip():
            raise ValueError("Refinement instruction is empty")
        async with self._generating("refine"):
            try:
                replacement = await self._generator.rewrite_span(selection.text, instruction, self._editor.content)
            except GeneratorError as exc:
                self._fail("refine", exc)
                raise
        current = self._editor.selection
        if current != selection or not selection.matches(self._editor.content):
            self._post_warning(SELECTION_MOVED_NOTICE)
            return None
        self._history.capture(self._editor.content, instruction.strip(), "ai-pre-flight")
        self._editor.replace_selection(replacement)
        return replacement

    async def send_message(
        self,
        text: str,
        attachments: Sequence[Attachment] = (),
        expert: ExpertPrompt | None = None,
    ) -> ChatMessage | None:
        """Append a user message and the model's reply to the chat.

        A failed call appends an apologetic model message instead and
        publishes :class:`OperationFailed`.
        """

        if not text.strip() and not attachments:
            return None
        document = self.active_document
        prior = list(document.chat_history)
        suffix = f" [Sent {len(attachments)} attachment(s)]" if attachments else ""
        self._append_chat(document.id, ChatMessage(role="user", text=text + suffix))
        async with self._generating("chat"):
            try:
                reply_text = await self._generator.chat(
                    prior,
                    text,
                    self._editor.content,
                    attachments,
                    expert or self._active_expert,
                )
            except GeneratorError as exc:
                self._fail("chat", exc)
                reply_text = None
        reply = ChatMessage(role="model", text=reply_text if reply_text is not None else CHAT_ERROR_REPLY)
        self._append_chat(document.id, reply)
        return reply

    def clear_chat(self) -> None:
        self.active_document.chat_history = []
        self._mark_dirty()

    async def refine_goal(self, goal: str | None = None) -> list[GoalSuggestion]:
        """Suggest sharper phrasings of the goal; empty on failure."""

        target = goal if goal is not None else self.active_document.writing_context.goal
        if not target.strip():
            return []
        async with self._generating("refine_goal"):
            try:
                return await self._generator.refine_goal(target)
            except GeneratorError as exc:
                self._fail("refine_goal", exc)
                return []

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def capture_snapshot(self, label: str = "Manual snapshot", trigger: SnapshotTrigger = "manual") -> Snapshot | None:
        return self._history.capture(self._editor.content, label, trigger)

    def restore_snapshot(self, snapshot: Snapshot | str) -> Snapshot | None:
        """Restore a snapshot (or snapshot id); returns the safety snapshot if one was taken."""

        target = self._history.find(snapshot) if isinstance(snapshot, str) else snapshot
        if target is None:
            raise KeyError(f"Unknown snapshot {snapshot!r}")
        return self._history.restore(target, self._editor)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _activate(self, document: Document) -> None:
        previous = self._active.id if self._active is not None else None
        self._active = document
        self._active_expert = None
        try:
            self._repository.set_active_id(document.id)
        except StorageError:
            LOGGER.exception("Failed to record active document %s", document.id)
        self._editor.set_selection(None)
        self._editor.update_content(document.content, source="load")
        self._history.load(document.id)
        self._loop.reset()
        document_logger(LOGGER, document.id).info("Activated document %r", document.title)
        self._bus.publish(DocumentSwitched(previous_id=previous, document_id=document.id))

    def _writing_context(self) -> WritingContext | None:
        return self._active.writing_context if self._active is not None else None

    def _current_title(self) -> str:
        document = self.active_document
        if document.pinned_title:
            return document.title
        return derive_title(self._editor.content)

    def _mark_dirty(self) -> None:
        if self._active is None or self._closed:
            return
        self._persist_timer.schedule()

    def _flush_pending_sync(self) -> None:
        if self._persist_timer.pending:
            self._persist_timer.cancel()
            self._persist_now()

    def _persist_now(self) -> None:
        document = self._active
        if document is None:
            return
        document.content = self._editor.content
        document.title = self._current_title()
        document.last_modified = datetime.now(timezone.utc)
        if self._save(document):
            self._bus.publish(DocumentSaved(document_id=document.id, title=document.title))

    def _save(self, document: Document) -> bool:
        try:
            self._repository.save_document(document)
        except StorageError:
            document_logger(LOGGER, document.id).exception("Failed to save document; keeping changes in memory")
            return False
        return True

    def _append_chat(self, document_id: str, message: ChatMessage) -> None:
        active = self._active
        if active is not None and active.id == document_id:
            active.chat_history.append(message)
            self._mark_dirty()
            return
        # Switching documents replaces the in-memory object, so reload by id.
        stored = self._repository.get_document(document_id)
        if stored is None:
            LOGGER.warning("Dropping chat message for missing document %s", document_id)
            return
        stored.chat_history.append(message)
        self._save(stored)

    @contextlib.asynccontextmanager
    async def _generating(self, operation: str) -> AsyncIterator[None]:
        self._busy_operations += 1
        self._loop.set_busy(True)
        self._bus.publish(GenerationStateChanged(operation=operation, busy=True))
        try:
            yield
        finally:
            self._busy_operations -= 1
            if self._busy_operations == 0:
                self._loop.set_busy(False)
            self._bus.publish(GenerationStateChanged(operation=operation, busy=False))

    def _fail(self, operation: str, exc: BaseException) -> None:
        error = classify_exception(exc)
        LOGGER.error("%s failed: %s", operation, error)
        self._bus.publish(
            OperationFailed(operation=operation, message=error.message, kind=error.kind, retryable=error.retryable)
        )

    def _post_warning(self, message: str) -> None:
        self._bus.publish(NoticePosted(message=message, level="warning"))

    # ------------------------------------------------------------------
    # Component callbacks
    # ------------------------------------------------------------------
    def _on_content_changed(self, text: str, source: ChangeSource) -> None:
        if self._active is None:
            return
        self._bus.publish(ContentChanged(document_id=self._active.id, version_id=self._editor.version_id, source=source))
        if source != "load":
            self._mark_dirty()

    def _on_selection_changed(self, selection: SelectionRange | None) -> None:
        if self._active is not None:
            self._bus.publish(SelectionChanged(document_id=self._active.id, selection=selection))

    def _on_suggestion_change(self, change: SuggestionChange) -> None:
        document_id = self._active.id if self._active is not None else ""
        if change.kind == "staged":
            self._bus.publish(SuggestionStaged(document_id=document_id, suggestion=change.suggestion))
        else:
            self._bus.publish(
                SuggestionCleared(document_id=document_id, suggestion_id=change.suggestion.id, reason=change.reason)
            )

    def _on_snapshot_captured(self, snapshot: Snapshot) -> None:
        document_id = self._history.document_id or ""
        self._bus.publish(SnapshotCaptured(document_id=document_id, snapshot=snapshot))
