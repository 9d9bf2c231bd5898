"""Tests for permanent project memory and planning extraction."""

import pytest

from agentmem.project_memory import (
    ProjectMemoryService,
    analyze_sentence,
    extract_facts,
    extract_insights,
)
from agentmem.scope import MemoryScope

from conftest import axis, similar_to


@pytest.fixture
def projects(store):
    return ProjectMemoryService(store)


class TestExtraction:
    """Regex classification of planning messages."""

    def test_requirement_sentence(self):
        fact = analyze_sentence("We need to build a booking app for dentists")
        assert fact.is_project_requirement
        assert not fact.is_user_info

    def test_personal_sentence(self):
        fact = analyze_sentence("I prefer dark mode in my editor")
        assert fact.is_user_info
        assert fact.importance == 0.6

    def test_personal_phrase_about_the_project_stays_project(self):
        fact = analyze_sentence("I prefer the app to use Postgres")
        assert fact.is_project_requirement

    def test_small_talk_ignored(self):
        assert analyze_sentence("Thanks a lot for that") is None

    def test_short_messages_skipped(self):
        assert extract_facts("Ok, build it") == []

    def test_splits_sentences(self):
        facts = extract_facts("We need to build a booking app. Users must log in with SSO!")
        assert [f.content for f in facts] == ["We need to build a booking app", "Users must log in with SSO"]

    def test_insights(self):
        response = (
            "Based on what you said, this is a scheduling product for small dental clinics.\n"
            "- What payment providers should we support?\n"
            "I recommend starting with a single clinic pilot."
        )
        contents = [i.content for i in extract_insights(response)]

        assert "CLARIFICATION NEEDED: What payment providers should we support?" in contents
        assert any(c.startswith("AI UNDERSTANDING:") for c in contents)
        assert "RECOMMENDATION: starting with a single clinic pilot." in contents


class TestProjectMemory:
    """Permanent, project-scoped storage."""

    @pytest.mark.asyncio
    async def test_requirement_is_permanent_team_memory(self, projects, provider):
        provider.add("[auth] Must support SSO", axis(0))

        entry = await projects.store_requirement("p1", "auth", "Must support SSO")

        assert entry.scope == MemoryScope.TEAM
        assert entry.scope_owner_id == "p1"
        assert entry.decay_rate == 0.0
        assert entry.importance == 0.9
        assert entry.source == "conversation"
        assert entry.type == "knowledge"

    @pytest.mark.asyncio
    async def test_decision_format(self, projects, provider):
        provider.add("DECISION: Use Postgres\nRationale: Team knows it", axis(1))

        entry = await projects.store_decision("p1", "Use Postgres", "Team knows it")

        assert entry.content == "DECISION: Use Postgres\nRationale: Team knows it"
        assert entry.type == "reflection"
        assert entry.importance == 0.85

    @pytest.mark.asyncio
    async def test_relevant_context_does_not_reinforce(self, projects, store, provider, clock):
        provider.add("authentication", axis(0))
        provider.add("[auth] Must support SSO", axis(0))
        provider.add("[auth] Other project", axis(0))
        entry = await projects.store_requirement("p1", "auth", "Must support SSO")
        await projects.store_requirement("p2", "auth", "Other project")
        clock.advance(hours=1000)

        results = await projects.get_relevant_context("p1", "authentication")
        await store.drain()

        assert [r.id for r in results] == [entry.id]
        assert results[0].effective_strength == 1.0
        assert (await store.get(entry.id)).access_count == 0

    @pytest.mark.asyncio
    async def test_comprehensive_knowledge_follows_links(self, projects, store, provider):
        provider.add("authentication", axis(0))
        provider.add("[auth] Must support SSO", axis(0))
        provider.add("[infra] Okta tenant per clinic", axis(3))
        sso = await projects.store_requirement("p1", "auth", "Must support SSO")
        okta = await projects.store_requirement("p1", "infra", "Okta tenant per clinic")
        await store.graph.link(sso.id, okta.id, 0.9)

        results = await projects.get_comprehensive_knowledge("p1", "authentication", limit=1)

        assert [r.id for r in results] == [sso.id]

        results = await projects.get_comprehensive_knowledge("p1", "authentication")
        assert [r.id for r in results] == [sso.id, okta.id]

    @pytest.mark.asyncio
    async def test_consolidate_project_knowledge(self, projects, provider):
        texts = {
            "project requirements features goals": axis(0),
            "[auth] Must support SSO": similar_to(0, 0.9, 1),
            "DECISION: Use Postgres\nRationale: Team knows it": similar_to(0, 0.8, 2),
            "[budget] Budget constraint of 10k": similar_to(0, 0.7, 3),
            "[ux] Calendar feature for patients": similar_to(0, 0.6, 4),
        }
        for text, vec in texts.items():
            provider.add(text, vec)

        await projects.store_requirement("p1", "auth", "Must support SSO")
        await projects.store_decision("p1", "Use Postgres", "Team knows it")
        await projects.store_requirement("p1", "budget", "Budget constraint of 10k")
        await projects.store_requirement("p1", "ux", "Calendar feature for patients")

        buckets = await projects.consolidate_project_knowledge("p1")

        assert buckets["requirements"] == ["[auth] Must support SSO"]
        assert buckets["decisions"] == ["DECISION: Use Postgres\nRationale: Team knows it"]
        assert buckets["constraints"] == ["[budget] Budget constraint of 10k"]
        assert buckets["features"] == ["[ux] Calendar feature for patients"]


class TestPlanningExtraction:
    """One planning exchange -> stored memories."""

    @pytest.fixture
    def exchange(self, provider):
        provider.add("We need to build a booking app for dentists", axis(0))
        provider.add("I prefer dark mode in my editor", axis(1))
        provider.add("CLARIFICATION NEEDED: What payment providers should we support?", axis(2))
        return (
            "We need to build a booking app for dentists. I prefer dark mode in my editor.",
            "Great idea.\n- What payment providers should we support?",
        )

    @pytest.mark.asyncio
    async def test_routes_facts_to_scopes(self, projects, store, exchange):
        user_message, ai_response = exchange

        counts = await projects.extract_planning_memories("p1", user_message, ai_response, user_id="u1")

        assert counts == {"memories_stored": 2, "user_memories_stored": 1}

        project = await store.list_entries("team", "p1")
        assert {e.content for e in project} == {
            "We need to build a booking app for dentists",
            "CLARIFICATION NEEDED: What payment providers should we support?",
        }
        assert all(e.is_permanent for e in project)

        personal = await store.list_entries("personal", "u1")
        assert [e.content for e in personal] == ["I prefer dark mode in my editor"]
        assert not personal[0].is_permanent

    @pytest.mark.asyncio
    async def test_personal_facts_dropped_without_user(self, projects, exchange):
        user_message, ai_response = exchange

        counts = await projects.extract_planning_memories("p1", user_message, ai_response)

        assert counts == {"memories_stored": 2, "user_memories_stored": 0}

    @pytest.mark.asyncio
    async def test_failed_fact_is_skipped(self, projects, provider):
        provider.add("We need to build a booking app for dentists", axis(0))

        # the second sentence has no embedding registered, so storing it fails
        counts = await projects.extract_planning_memories(
            "p1", "We need to build a booking app for dentists. Users must log in with SSO.", "Sure."
        )

        assert counts == {"memories_stored": 1, "user_memories_stored": 0}
