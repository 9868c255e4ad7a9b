"""Tests for prompt assembly helpers."""

from __future__ import annotations

from flowstate.ai import prompts
from flowstate.editor.document_model import ExpertPrompt, WritingContext


def test_writing_context_block_is_empty_without_context() -> None:
    assert prompts.writing_context_block(None) == ""
    assert prompts.writing_context_block(WritingContext()) == ""


def test_writing_context_block_fills_defaults() -> None:
    block = prompts.writing_context_block(WritingContext(audience="Engineers", format="Memo"))

    assert "Target audience: Engineers" in block
    assert "Desired tone: Neutral" in block
    assert "Primary goal: Inform" in block
    assert "Format: Memo" in block


def test_system_prompt_orders_sections_and_skips_blanks() -> None:
    expert = ExpertPrompt("x", "The Tester", "Check everything.")

    prompt = prompts.system_prompt("BASE", expert=expert, extra=["", "EXTRA"])

    assert prompt == "BASE\n\nEXPERT FOCUS (The Tester):\nCheck everything.\n\nEXTRA"


def test_rewrite_prompt_limits_context() -> None:
    prompt = prompts.rewrite_prompt("span", "Shorten", "c" * 5_000)

    assert "c" * prompts.REWRITE_CONTEXT_CHARS in prompt
    assert "c" * (prompts.REWRITE_CONTEXT_CHARS + 1) not in prompt
    assert prompt.endswith(prompts.REWRITE_INSTRUCTIONS)


def test_analysis_prompt_without_context_is_just_the_document() -> None:
    assert prompts.analysis_prompt("Body", None) == "DOCUMENT CONTENT:\nBody"


def test_default_experts_are_unique() -> None:
    experts = prompts.default_experts()

    assert len(experts) == 10
    assert len({expert.id for expert in experts}) == 10


def test_json_schema_format_wraps_schema() -> None:
    payload = prompts.json_schema_format("goal_refinements", prompts.GOAL_RESPONSE_SCHEMA)

    assert payload["type"] == "json_schema"
    assert payload["json_schema"]["name"] == "goal_refinements"
    assert payload["json_schema"]["schema"]["required"] == ["suggestions"]
