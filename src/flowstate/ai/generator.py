"""Text-generation capabilities used by the session."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Sequence

from ..chat.message_model import ChatMessage
from ..editor.document_model import Attachment, ExpertPrompt, GoalSuggestion, WritingContext
from . import prompts
from .client import AIClient
from .errors import MalformedOutputError
from .models import NoSuggestion, SuggestionResult, parse_goal_payload, parse_suggestion_payload

__all__ = [
    "GROUNDING_TOOLS",
    "MIN_ANALYSIS_CHARS",
    "OpenAISuggestionGenerator",
    "SuggestionGenerator",
]

LOGGER = logging.getLogger(__name__)

MIN_ANALYSIS_CHARS = 50
EMPTY_CHAT_REPLY = "I couldn't generate a response."

# Optional grounding capabilities mapped to the request parameters enabling them.
GROUNDING_TOOLS: Mapping[str, Mapping[str, Any]] = {
    "web_search": {"web_search_options": {}},
}


class SuggestionGenerator(Protocol):
    """What the session needs from a language model."""

    async def analyze(self, document_text: str, writing_context: WritingContext | None = None) -> SuggestionResult:
        ...

    async def rewrite_span(self, selected_text: str, instruction: str, document_context: str) -> str:
        ...

    async def draft(
        self,
        prompt: str,
        attachments: Sequence[Attachment] = (),
        tools: Iterable[str] = (),
        document_context: str = "",
        writing_context: WritingContext | None = None,
        expert: ExpertPrompt | None = None,
    ) -> str:
        ...

    async def chat(
        self,
        history: Sequence[ChatMessage],
        message: str,
        document_context: str,
        attachments: Sequence[Attachment] = (),
        expert: ExpertPrompt | None = None,
    ) -> str:
        ...

    async def refine_goal(self, goal: str) -> list[GoalSuggestion]:
        ...


class OpenAISuggestionGenerator:
    """:class:`SuggestionGenerator` backed by :class:`~flowstate.ai.client.AIClient`.

    Analysis, rewrites and goal refinement use the client's default (fast)
    model; drafting and chat use ``draft_model``. Documents are truncated
    to a token budget before they are sent.
    """

    def __init__(
        self,
        client: AIClient,
        *,
        draft_model: str | None = None,
        temperature: float | None = 0.4,
        analysis_max_tokens: int = 3_000,
        chat_max_tokens: int = 3_000,
    ) -> None:
        self._client = client
        self._draft_model = draft_model
        self._temperature = temperature
        self._analysis_max_tokens = analysis_max_tokens
        self._chat_max_tokens = chat_max_tokens

    @property
    def client(self) -> AIClient:
        return self._client

    async def analyze(self, document_text: str, writing_context: WritingContext | None = None) -> SuggestionResult:
        if not document_text or len(document_text) < MIN_ANALYSIS_CHARS:
            return NoSuggestion()
        excerpt = self._client.truncate(document_text, self._analysis_max_tokens)
        raw = await self._client.complete(
            [
                {"role": "system", "content": prompts.PROACTIVE_SYSTEM_PROMPT},
                {"role": "user", "content": prompts.analysis_prompt(excerpt, writing_context)},
            ],
            response_format=prompts.json_schema_format("proactive_suggestion", prompts.SUGGESTION_RESPONSE_SCHEMA),
            temperature=self._temperature,
            metadata={"operation": "analyze"},
        )
        result = parse_suggestion_payload(raw)
        LOGGER.debug("Analysis of %d chars produced %s", len(excerpt), type(result).__name__)
        return result

    async def rewrite_span(self, selected_text: str, instruction: str, document_context: str) -> str:
        LOGGER.info("Rewriting %d selected chars: %s", len(selected_text), instruction)
        raw = await self._client.complete(
            [
                {"role": "system", "content": prompts.EDITOR_SYSTEM_PROMPT},
                {"role": "user", "content": prompts.rewrite_prompt(selected_text, instruction, document_context)},
            ],
            temperature=self._temperature,
            metadata={"operation": "rewrite"},
        )
        text = raw.strip()
        if not text:
            raise MalformedOutputError("The model returned an empty rewrite.", payload=raw)
        return text

    async def draft(
        self,
        prompt: str,
        attachments: Sequence[Attachment] = (),
        tools: Iterable[str] = (),
        document_context: str = "",
        writing_context: WritingContext | None = None,
        expert: ExpertPrompt | None = None,
    ) -> str:
        LOGGER.info("Generating draft (prompt %d chars, %d attachment(s))", len(prompt), len(attachments))
        extra = [prompts.writing_context_block(writing_context)]
        if document_context:
            extra.append(prompts.document_context_block(self._client.truncate(document_context, self._chat_max_tokens)))
        raw = await self._client.complete(
            [
                {"role": "system", "content": prompts.system_prompt(prompts.EDITOR_SYSTEM_PROMPT, expert=expert, extra=extra)},
                {"role": "user", "content": _user_content(prompt, attachments)},
            ],
            model=self._draft_model,
            temperature=self._temperature,
            metadata={"operation": "draft"},
            extra_params=_tool_params(tools),
        )
        text = raw.strip()
        if not text:
            raise MalformedOutputError("The model returned an empty draft.", payload=raw)
        return text

    async def chat(
        self,
        history: Sequence[ChatMessage],
        message: str,
        document_context: str,
        attachments: Sequence[Attachment] = (),
        expert: ExpertPrompt | None = None,
    ) -> str:
        context = self._client.truncate(document_context or "", self._chat_max_tokens)
        system = prompts.system_prompt(
            prompts.CHAT_SYSTEM_PROMPT,
            expert=expert,
            extra=[prompts.document_context_block(context)],
        )
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        for entry in history:
            messages.append({"role": "assistant" if entry.role == "model" else "user", "content": entry.text})
        messages.append({"role": "user", "content": _user_content(message, attachments)})
        raw = await self._client.complete(
            messages,
            model=self._draft_model,
            temperature=self._temperature,
            metadata={"operation": "chat"},
        )
        return raw.strip() or EMPTY_CHAT_REPLY

    async def refine_goal(self, goal: str) -> list[GoalSuggestion]:
        raw = await self._client.complete(
            [
                {"role": "system", "content": prompts.GOAL_SYSTEM_PROMPT},
                {"role": "user", "content": f'Refine this goal: "{goal}"'},
            ],
            response_format=prompts.json_schema_format("goal_refinements", prompts.GOAL_RESPONSE_SCHEMA),
            temperature=self._temperature,
            metadata={"operation": "refine_goal"},
        )
        return parse_goal_payload(raw)


def _user_content(text: str, attachments: Sequence[Attachment]) -> str | list[Dict[str, Any]]:
    """Plain string, or content parts when images are attached."""

    if not attachments:
        return text
    parts: list[Dict[str, Any]] = [{"type": "text", "text": text}]
    for attachment in attachments:
        if attachment.is_image:
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{attachment.mime_type};base64,{attachment.as_base64()}"},
                }
            )
            continue
        try:
            body = attachment.as_text()
        except UnicodeDecodeError:
            LOGGER.warning("Skipping attachment %s: not UTF-8 text", attachment.name)
            continue
        parts.append({"type": "text", "text": f"[Attachment: {attachment.name}]\n{body}"})
    if all(part["type"] == "text" for part in parts):
        return "\n\n".join(part["text"] for part in parts)
    return parts


def _tool_params(tools: Iterable[str]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for name in tools:
        try:
            params.update(GROUNDING_TOOLS[name])
        except KeyError:
            raise ValueError(f"Unknown grounding tool {name!r}") from None
    return params
