"""Tests for the OpenAI-backed suggestion generator."""

from __future__ import annotations

import json
from typing import Any

import pytest

from flowstate.ai.errors import MalformedOutputError
from flowstate.ai.generator import EMPTY_CHAT_REPLY, MIN_ANALYSIS_CHARS, OpenAISuggestionGenerator
from flowstate.ai.models import NoSuggestion, Substitution
from flowstate.chat.message_model import ChatMessage
from flowstate.editor.document_model import Attachment, ExpertPrompt, GoalSuggestion, WritingContext

DOCUMENT = "Our quarterly results were very good and we are pleased about them overall. " * 2


class _StubClient:
    """Records completion requests and replays canned responses."""

    def __init__(self, *responses: str) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.truncations: list[int] = []

    async def complete(self, messages, **kwargs: Any) -> str:
        self.calls.append({"messages": list(messages), **kwargs})
        return self._responses.pop(0) if self._responses else ""

    def truncate(self, text: str, max_tokens: int) -> str:
        self.truncations.append(max_tokens)
        return text


def _generator(*responses: str) -> tuple[OpenAISuggestionGenerator, _StubClient]:
    client = _StubClient(*responses)
    generator = OpenAISuggestionGenerator(client, draft_model="gpt-draft", analysis_max_tokens=123)  # type: ignore[arg-type]
    return generator, client


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_short_documents_skip_the_model(self) -> None:
        generator, client = _generator()

        result = await generator.analyze("x" * (MIN_ANALYSIS_CHARS - 1))

        assert result == NoSuggestion()
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_structured_response_is_parsed(self) -> None:
        payload = {
            "hasSuggestion": True,
            "originalText": "very good",
            "suggestedText": "strong",
            "reason": "More precise",
            "type": "style",
        }
        generator, client = _generator(json.dumps(payload))

        result = await generator.analyze(DOCUMENT, WritingContext(audience="Investors", tone="Confident"))

        assert result == Substitution(original="very good", replacement="strong", reason="More precise", kind="style")
        call = client.calls[0]
        assert call["response_format"]["type"] == "json_schema"
        assert call["response_format"]["json_schema"]["name"] == "proactive_suggestion"
        assert "Target audience: Investors" in call["messages"][1]["content"]
        assert client.truncations == [123]

    @pytest.mark.asyncio
    async def test_invalid_json_raises_malformed(self) -> None:
        generator, _ = _generator("Sure! Here's my suggestion...")

        with pytest.raises(MalformedOutputError):
            await generator.analyze(DOCUMENT)


class TestRewrite:
    @pytest.mark.asyncio
    async def test_rewrite_returns_stripped_text(self) -> None:
        generator, client = _generator("  We are delighted.  ")

        result = await generator.rewrite_span("we are pleased", "Make it warmer", DOCUMENT)

        assert result == "We are delighted."
        prompt = client.calls[0]["messages"][1]["content"]
        assert 'Target text to change: "we are pleased"' in prompt
        assert "User instruction: Make it warmer" in prompt

    @pytest.mark.asyncio
    async def test_empty_rewrite_is_malformed(self) -> None:
        generator, _ = _generator("   ")

        with pytest.raises(MalformedOutputError):
            await generator.rewrite_span("x", "y", "z")


class TestDraft:
    @pytest.mark.asyncio
    async def test_draft_uses_draft_model_expert_and_tools(self) -> None:
        generator, client = _generator("A new paragraph.")
        expert = ExpertPrompt("critic", "The Critic", "Audit the logic.")

        text = await generator.draft(
            "Write a conclusion",
            tools=["web_search"],
            document_context=DOCUMENT,
            writing_context=WritingContext(goal="Persuade"),
            expert=expert,
        )

        assert text == "A new paragraph."
        call = client.calls[0]
        assert call["model"] == "gpt-draft"
        assert call["extra_params"] == {"web_search_options": {}}
        system = call["messages"][0]["content"]
        assert "EXPERT FOCUS (The Critic)" in system
        assert "Primary goal: Persuade" in system
        assert "CURRENT DOCUMENT CONTEXT" in system

    @pytest.mark.asyncio
    async def test_unknown_tool_is_rejected(self) -> None:
        generator, client = _generator("unused")

        with pytest.raises(ValueError):
            await generator.draft("Write", tools=["maps"])
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_image_attachments_become_content_parts(self) -> None:
        generator, client = _generator("Described.")
        image = Attachment(name="chart.png", mime_type="image/png", data=b"\x89PNG")

        await generator.draft("Describe the chart", attachments=[image])

        content = client.calls[0]["messages"][1]["content"]
        assert content[0] == {"type": "text", "text": "Describe the chart"}
        assert content[1]["type"] == "image_url"
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_text_attachments_are_inlined(self) -> None:
        generator, client = _generator("Summary.")
        notes = Attachment(name="notes.txt", mime_type="text/plain", data=b"Remember the deadline.")
        binary = Attachment(name="blob.bin", mime_type="application/octet-stream", data=b"\xff\xfe\x00")

        await generator.draft("Summarise my notes", attachments=[notes, binary])

        content = client.calls[0]["messages"][1]["content"]
        assert content == "Summarise my notes\n\n[Attachment: notes.txt]\nRemember the deadline."

    @pytest.mark.asyncio
    async def test_empty_draft_is_malformed(self) -> None:
        generator, _ = _generator("")

        with pytest.raises(MalformedOutputError):
            await generator.draft("Write")


class TestChat:
    @pytest.mark.asyncio
    async def test_history_roles_are_mapped(self) -> None:
        generator, client = _generator("Try a shorter title.")
        history = [ChatMessage(role="user", text="Help?"), ChatMessage(role="model", text="Sure.")]

        reply = await generator.chat(history, "Title ideas?", DOCUMENT)

        assert reply == "Try a shorter title."
        messages = client.calls[0]["messages"]
        assert [message["role"] for message in messages] == ["system", "user", "assistant", "user"]
        assert messages[-1]["content"] == "Title ideas?"

    @pytest.mark.asyncio
    async def test_empty_reply_gets_placeholder(self) -> None:
        generator, _ = _generator("")

        assert await generator.chat([], "Hello", "") == EMPTY_CHAT_REPLY


class TestRefineGoal:
    @pytest.mark.asyncio
    async def test_goal_suggestions_are_parsed(self) -> None:
        payload = {"suggestions": [{"text": "Win budget approval", "explanation": "Concrete outcome."}]}
        generator, client = _generator(json.dumps(payload))

        result = await generator.refine_goal("get money")

        assert result == [GoalSuggestion(text="Win budget approval", explanation="Concrete outcome.")]
        assert 'Refine this goal: "get money"' in client.calls[0]["messages"][1]["content"]
