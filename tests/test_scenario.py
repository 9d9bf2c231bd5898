"""End-to-end: personal facts never leak into project search."""

import pytest

from agentmem.project_memory import ProjectMemoryService

from conftest import axis, similar_to


@pytest.mark.asyncio
async def test_project_deadline_search_ignores_closer_personal_memories(store, provider):
    # Personal vectors sit closer to the query than the deadline does
    provider.add("deadline", axis(0))
    provider.add("I prefer React", axis(0))
    provider.add("I live in Lisbon", similar_to(0, 0.95, 1))
    provider.add("The project deadline is March 1", similar_to(0, 0.3, 2))

    await store.store("personal", "user-u", "knowledge", "I prefer React")
    await store.store("personal", "user-u", "knowledge", "I live in Lisbon")
    deadline = await ProjectMemoryService(store).store_project_memory(
        "project-p", "knowledge", "The project deadline is March 1", importance=0.9
    )

    results = await store.search("deadline", "team", "project-p")

    assert [r.id for r in results] == [deadline.id]
    assert results[0].decay_rate == 0.0
    assert results[0].scope.value == "team"

    personal = await store.search("deadline", "personal", "user-u", strengthen_on_recall=False)
    assert {r.content for r in personal} == {"I prefer React", "I live in Lisbon"}


@pytest.mark.asyncio
async def test_all_scopes_search_combines_only_own_keys(store, provider):
    provider.add("deadline", axis(0))
    provider.add("I prefer React", axis(0))
    provider.add("Someone else's note", axis(0))
    provider.add("The project deadline is March 1", similar_to(0, 0.3, 2))

    await store.store("personal", "user-u", "knowledge", "I prefer React")
    await store.store("personal", "user-v", "knowledge", "Someone else's note")
    await ProjectMemoryService(store).store_project_memory(
        "project-p", "knowledge", "The project deadline is March 1", importance=0.9
    )

    results = await store.search_all_scopes("deadline", user_id="user-u", team_id="project-p")

    assert {r.content for r in results} == {"I prefer React", "The project deadline is March 1"}
