"""Unit tests for PromptBuilder."""

from __future__ import annotations

import pytest

from row_research.prompt_builder import REPAIR_EXCERPT_CHARS, PromptBuilder


@pytest.fixture
def builder():
    return PromptBuilder()


class TestResearchMessages:
    def test_single_user_message(self, builder):
        messages = builder.build_research_messages("Who is the CEO?", {"company": "Acme"})
        assert len(messages) == 1
        assert messages[0].role == "user"

    def test_includes_query_and_fields(self, builder):
        messages = builder.build_research_messages(
            "Who is the CEO?", {"company": "Acme", "country": "US"}
        )
        content = messages[0].content
        assert '"Who is the CEO?"' in content
        assert "company: Acme\ncountry: US" in content
        assert '"summary"' in content
        assert '"confidence"' in content


class TestRepairPrompt:
    def test_short_response_embedded_verbatim(self, builder):
        prompt = builder.build_repair_prompt("Find revenue", "not { json")
        assert "not { json" in prompt
        assert "Original request: Find revenue" in prompt
        assert "not { json..." not in prompt

    def test_long_response_truncated(self, builder):
        malformed = "x" * 1200
        prompt = builder.build_repair_prompt("q", malformed)
        assert "x" * REPAIR_EXCERPT_CHARS + "..." in prompt
        assert "x" * (REPAIR_EXCERPT_CHARS + 1) not in prompt


class TestAggregationPrompt:
    def test_numbered_summaries(self, builder):
        prompt = builder.build_aggregation_prompt(["first", "second", "third"], "market size")
        assert "1. first\n\n2. second\n\n3. third" in prompt
        assert '"market size"' in prompt
        assert "Do not use bullet points" in prompt


class TestVoicePrompt:
    def test_mentions_entity_count(self, builder):
        prompt = builder.build_voice_prompt("All good.", 7)
        assert "I've researched 7 items for you." in prompt
        assert "Summary: All good." in prompt
        assert "under 100 words" in prompt
