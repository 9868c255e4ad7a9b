"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
import os
from typing import Any, Callable

import pytest

from flowstate.ai.models import NoSuggestion
from flowstate.services.settings import Settings
from flowstate.services.storage import DocumentRepository, MemoryStore
from flowstate.session.events import EventBus
from flowstate.session.orchestrator import SessionOrchestrator


class FakeGenerator:
    """Scripted stand-in for the language model.

    Results are returned in order; an exception instance in a queue is
    raised instead. Setting a gate makes the matching call wait until the
    test releases it.
    """

    def __init__(self) -> None:
        self.analysis_results: list[Any] = []
        self.analysis_calls: list[str] = []
        self.analysis_gate: asyncio.Event | None = None
        self.rewrite_result: Any = "rewritten text"
        self.rewrite_calls: list[tuple[str, str]] = []
        self.rewrite_gate: asyncio.Event | None = None
        self.draft_result: Any = "A drafted paragraph."
        self.draft_calls: list[dict[str, Any]] = []
        self.draft_gate: asyncio.Event | None = None
        self.chat_result: Any = "Happy to help."
        self.chat_calls: list[dict[str, Any]] = []
        self.chat_gate: asyncio.Event | None = None
        self.goal_result: Any = []
        self.goal_calls: list[str] = []

    async def analyze(self, document_text, writing_context=None):
        self.analysis_calls.append(document_text)
        if self.analysis_gate is not None:
            await self.analysis_gate.wait()
        result = self.analysis_results.pop(0) if self.analysis_results else NoSuggestion()
        return _resolve(result)

    async def rewrite_span(self, selected_text, instruction, document_context):
        self.rewrite_calls.append((selected_text, instruction))
        if self.rewrite_gate is not None:
            await self.rewrite_gate.wait()
        return _resolve(self.rewrite_result)

    async def draft(self, prompt, attachments=(), tools=(), document_context="", writing_context=None, expert=None):
        self.draft_calls.append(
            {
                "prompt": prompt,
                "attachments": list(attachments),
                "tools": list(tools),
                "document_context": document_context,
                "expert": expert,
            }
        )
        if self.draft_gate is not None:
            await self.draft_gate.wait()
        return _resolve(self.draft_result)

    async def chat(self, history, message, document_context, attachments=(), expert=None):
        self.chat_calls.append(
            {"history": list(history), "message": message, "attachments": list(attachments), "expert": expert}
        )
        if self.chat_gate is not None:
            await self.chat_gate.wait()
        return _resolve(self.chat_result)

    async def refine_goal(self, goal):
        self.goal_calls.append(goal)
        return _resolve(self.goal_result)


def _resolve(value: Any) -> Any:
    if isinstance(value, BaseException):
        raise value
    return value


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in list(os.environ):
        if name.startswith("FLOWSTATE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FLOWSTATE_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def make_session(fake_generator: FakeGenerator, tmp_path) -> Callable[..., SessionOrchestrator]:
    """Factory building a session over an in-memory store with short debounces."""

    def _factory(store: MemoryStore | None = None, **overrides: Any) -> SessionOrchestrator:
        options: dict[str, Any] = {
            "persist_debounce_seconds": 0.01,
            "proactive_debounce_seconds": 0.01,
            "data_dir": str(tmp_path / "data"),
        }
        options.update(overrides)
        return SessionOrchestrator(
            DocumentRepository(store if store is not None else MemoryStore()),
            fake_generator,
            settings=Settings(**options),
            bus=EventBus(),
        )

    return _factory
