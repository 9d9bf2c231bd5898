"""Tests for memory-aware prompt assembly."""

import pytest

from agentmem.context import ContextBuilder, confidence_label, estimate_tokens

from conftest import axis, similar_to


class TestHelpers:
    def test_confidence_label(self):
        assert confidence_label(0.7) == "high"
        assert confidence_label(0.69) == "medium"
        assert confidence_label(0.4) == "medium"
        assert confidence_label(0.39) == "low"

    def test_estimate_tokens(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("abcd", None, "abcd") == 2
        assert estimate_tokens() == 0


class TestContextBuilder:
    """System prompt with ranked memories."""

    @pytest.mark.asyncio
    async def test_without_query_returns_role_prompt(self, store):
        context = await ContextBuilder(store).build_context("You are a planner.", task_details="Plan the sprint")

        assert context.system_prompt == "You are a planner."
        assert context.memories == []
        assert context.estimated_tokens == estimate_tokens("You are a planner.", "Plan the sprint")

    @pytest.mark.asyncio
    async def test_memories_listed_with_labels(self, store, provider):
        provider.add("frontend stack", axis(0))
        provider.add("I prefer React", axis(0))
        provider.add("Team uses TypeScript everywhere", similar_to(0, 0.9, 1))
        await store.store("personal", "u1", "knowledge", "I prefer React", importance=0.9)
        await store.store("team", "t1", "knowledge", "Team uses TypeScript everywhere")

        context = await ContextBuilder(store).build_context(
            "You are a frontend engineer.", user_id="u1", team_id="t1", query="frontend stack"
        )

        assert [m.content for m in context.memories] == ["I prefer React", "Team uses TypeScript everywhere"]
        assert "## Relevant Context from Memory" in context.system_prompt
        assert "- [high relevance] I prefer React" in context.system_prompt
        assert context.estimated_tokens == estimate_tokens(context.system_prompt)

    @pytest.mark.asyncio
    async def test_recalled_memories_are_reinforced(self, store, provider):
        provider.add("frontend stack", axis(0))
        provider.add("I prefer React", axis(0))
        entry = await store.store("personal", "u1", "knowledge", "I prefer React")

        await ContextBuilder(store).build_context("Role.", user_id="u1", query="frontend stack")
        await store.drain()

        assert (await store.get(entry.id)).access_count == 1

    @pytest.mark.asyncio
    async def test_to_dict(self, store, provider):
        provider.add("frontend stack", axis(0))
        provider.add("I prefer React", axis(0))
        await store.store("personal", "u1", "knowledge", "I prefer React")

        context = await ContextBuilder(store).build_context("Role.", user_id="u1", query="frontend stack")
        data = context.to_dict()

        assert data["memories"][0]["content"] == "I prefer React"
        assert data["memories"][0]["scope"] == "personal"
        assert set(data) == {"system_prompt", "memories", "task_details", "estimated_tokens"}
