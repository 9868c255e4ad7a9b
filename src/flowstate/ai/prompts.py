"""Prompt templates and expert personas."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from ..editor.document_model import ExpertPrompt, WritingContext

EDITOR_SYSTEM_PROMPT = """You are an experienced editor and writing collaborator.
Keep the document cohesive and stylistically consistent.

When writing or revising:
- Match the existing tone, pacing and vocabulary of the document.
- Make new text flow from what precedes it and into what follows.
- Prefer concrete imagery and varied sentence structure over generic phrasing.
- Preserve the author's voice; remove friction and gaps in logic.
- Keep each section in service of the document's overall goal."""

PROACTIVE_SYSTEM_PROMPT = """You are a writing coach reviewing a whole document.
Look for the single most valuable improvement: dropped metaphors, jarring
jumps between ideas, monotonous rhythm, or claims that contradict each other.

Answer with JSON only. When proposing a replacement, "originalText" MUST be
copied character-for-character from the document. For a document-wide remark
with no specific span, leave "originalText" and "suggestedText" empty.
If nothing needs improving, return {"hasSuggestion": false}."""

CHAT_SYSTEM_PROMPT = """You are a versatile writing companion. You help with
brainstorming, outlining, tone analysis, grammar, word choice, fact-checking
guidance, character development, plot holes, rewriting, summarising,
translation, titles and prompts for writer's block.

Always answer in the context of the user's current document.
Be concise, helpful and encouraging."""

GOAL_SYSTEM_PROMPT = """You are a strategic writing coach. Offer three sharper
versions of the author's goal as JSON, each with a one-sentence explanation."""

REWRITE_INSTRUCTIONS = "Return ONLY the rewritten text. No markdown, no quotes, no commentary."

REWRITE_CONTEXT_CHARS = 2_000

SUGGESTION_RESPONSE_SCHEMA: Mapping[str, Any] = {
    "type": "object",
    "properties": {
        "hasSuggestion": {"type": "boolean"},
        "originalText": {"type": "string"},
        "suggestedText": {"type": "string"},
        "reason": {"type": "string"},
        "type": {
            "type": "string",
            "enum": ["style", "grammar", "clarity", "flow", "idea", "structure", "argument"],
        },
    },
    "required": ["hasSuggestion"],
}

GOAL_RESPONSE_SCHEMA: Mapping[str, Any] = {
    "type": "object",
    "properties": {
        "suggestions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "explanation": {"type": "string"},
                },
                "required": ["text", "explanation"],
            },
        }
    },
    "required": ["suggestions"],
}

DEFAULT_EXPERTS: tuple[ExpertPrompt, ...] = (
    ExpertPrompt(
        "plot",
        "The Plot Auditor",
        "Focus on narrative causality. Find plot holes, weak motivations and breaks in cause and effect.",
    ),
    ExpertPrompt(
        "arc",
        "The Arc Architect",
        "Develop character growth. Make internal conflicts mirror external stakes.",
    ),
    ExpertPrompt(
        "theme",
        "Thematic Weaver",
        "Track recurring motifs and subtext, and reinforce the core themes through imagery and dialogue.",
    ),
    ExpertPrompt(
        "tension",
        "The Tension Tuner",
        "Analyse pacing and stakes. Point out where the story sags and how to raise urgency.",
    ),
    ExpertPrompt(
        "world",
        "The World Builder",
        "Keep settings and rules internally consistent so the world feels lived-in.",
    ),
    ExpertPrompt(
        "arch",
        "The Structuralist",
        "Make every paragraph serve a clear function in the overall narrative or argument.",
    ),
    ExpertPrompt(
        "muse",
        "The Muse",
        "Brainstorm ideas that connect distant parts of the document into surprising insights.",
    ),
    ExpertPrompt(
        "critic",
        "The Critic",
        "Audit the logic. Find contradictions between early premises and later conclusions.",
    ),
    ExpertPrompt(
        "polish",
        "The Polisher",
        "Focus on prosody and texture so the music of the prose stays consistent.",
    ),
    ExpertPrompt(
        "simple",
        "The Simplifier",
        "Remove explanations the document has already established elsewhere.",
    ),
)


def default_experts() -> list[ExpertPrompt]:
    return list(DEFAULT_EXPERTS)


def writing_context_block(context: WritingContext | None) -> str:
    """Render the writing context as a prompt preamble, or ``""`` when unset."""

    if context is None or context.is_empty():
        return ""
    lines = [
        "WRITING CONTEXT:",
        f"- Target audience: {context.audience or 'General'}",
        f"- Desired tone: {context.tone or 'Neutral'}",
        f"- Primary goal: {context.goal or 'Inform'}",
    ]
    if context.format:
        lines.append(f"- Format: {context.format}")
    return "\n".join(lines)


def system_prompt(base: str, *, expert: ExpertPrompt | None = None, extra: Iterable[str] = ()) -> str:
    sections = [base]
    if expert is not None:
        sections.append(f"EXPERT FOCUS ({expert.name}):\n{expert.prompt}")
    sections.extend(section for section in extra if section)
    return "\n\n".join(sections)


def rewrite_prompt(selected_text: str, instruction: str, document_context: str) -> str:
    context = document_context[:REWRITE_CONTEXT_CHARS]
    return (
        f'Full document context (for tone reference): "{context}"\n'
        f'Target text to change: "{selected_text}"\n'
        f"User instruction: {instruction}\n"
        f"{REWRITE_INSTRUCTIONS}"
    )


def analysis_prompt(document_text: str, context: WritingContext | None) -> str:
    block = writing_context_block(context)
    body = f"DOCUMENT CONTENT:\n{document_text}"
    return f"{block}\n\n{body}" if block else body


def document_context_block(document_text: str) -> str:
    return f'CURRENT DOCUMENT CONTEXT:\n"""{document_text}"""'


def json_schema_format(name: str, schema: Mapping[str, Any]) -> dict[str, Any]:
    """``response_format`` payload asking for JSON matching ``schema``."""

    return {"type": "json_schema", "json_schema": {"name": name, "schema": dict(schema)}}
