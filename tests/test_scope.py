"""Tests for scope keys and store-level validation."""

import pytest

from agentmem.errors import MemoryNotFoundError, ScopeError
from agentmem.scope import MemoryScope, ScopeKey

from conftest import axis


class TestScopeKey:
    """Validation of (scope, owner) pairs."""

    def test_personal_requires_owner(self):
        with pytest.raises(ScopeError):
            ScopeKey.of("personal", None)

    def test_team_requires_owner(self):
        with pytest.raises(ScopeError):
            ScopeKey.of("team", "")

    def test_global_rejects_owner(self):
        with pytest.raises(ScopeError):
            ScopeKey.of("global", "u1")

    def test_unknown_scope(self):
        with pytest.raises(ScopeError, match="Invalid scope"):
            ScopeKey.of("org", "o1")

    def test_scope_error_is_value_error(self):
        with pytest.raises(ValueError):
            ScopeKey.of("org", "o1")

    def test_project_is_team_scope(self):
        assert ScopeKey.project("p1") == ScopeKey(scope=MemoryScope.TEAM, owner_id="p1")

    def test_matches(self):
        key = ScopeKey.personal("u1")
        assert key.matches("personal", "u1")
        assert not key.matches("personal", "u2")
        assert not key.matches("team", "u1")
        assert ScopeKey.global_().matches("global", None)

    def test_str(self):
        assert str(ScopeKey.team("t1")) == "team:t1"
        assert str(ScopeKey.global_()) == "global"


class TestStoreValidation:
    """Store-level input checks."""

    @pytest.mark.asyncio
    async def test_store_rejects_bad_scope(self, store, provider):
        provider.add("fact", axis(0))
        with pytest.raises(ScopeError):
            await store.store("personal", None, "knowledge", "fact")
        assert (await store.get_statistics())["total_memories"] == 0

    @pytest.mark.asyncio
    async def test_store_rejects_empty_content(self, store):
        with pytest.raises(ValueError):
            await store.store("personal", "u1", "knowledge", "   ")

    @pytest.mark.asyncio
    async def test_store_clamps_importance(self, store, provider):
        provider.add("fact", axis(0))
        entry = await store.store("personal", "u1", "knowledge", "fact", importance=3.0)
        assert entry.importance == 1.0

    @pytest.mark.asyncio
    async def test_permanent_entry(self, store, provider):
        provider.add("fact", axis(0))
        entry = await store.store("team", "p1", "knowledge", "fact", decay_rate=0.0)
        assert entry.is_permanent
        assert entry.scope_key == ScopeKey.project("p1")

    @pytest.mark.asyncio
    async def test_get_and_delete(self, store, provider):
        provider.add("fact", axis(0))
        entry = await store.store("personal", "u1", "knowledge", "fact")

        assert (await store.get(entry.id)).content == "fact"
        assert await store.delete(entry.id) is True

        with pytest.raises(MemoryNotFoundError):
            await store.get(entry.id)
        with pytest.raises(MemoryNotFoundError):
            await store.delete(entry.id)


class TestListing:
    """Scope-filtered listing."""

    @pytest.mark.asyncio
    async def test_list_entries_newest_first(self, store, provider, clock):
        for i in range(3):
            provider.add(f"fact {i}", axis(i))
            await store.store("personal", "u1", "knowledge", f"fact {i}")
            clock.advance(hours=1)
        provider.add("other user", axis(5))
        await store.store("personal", "u2", "knowledge", "other user")

        entries = await store.list_entries("personal", "u1", limit=2)

        assert [e.content for e in entries] == ["fact 2", "fact 1"]

    @pytest.mark.asyncio
    async def test_list_entries_by_type(self, store, provider):
        provider.add("a", axis(0))
        provider.add("b", axis(1))
        await store.store("team", "t1", "knowledge", "a")
        await store.store("team", "t1", "reflection", "b")

        entries = await store.list_entries("team", "t1", type="reflection")

        assert [e.content for e in entries] == ["b"]

    @pytest.mark.asyncio
    async def test_list_by_importance(self, store, provider):
        for i, importance in enumerate((0.5, 0.95, 0.7)):
            provider.add(f"fact {i}", axis(i))
            await store.store("team", "p1", "knowledge", f"fact {i}", importance=importance)

        entries = await store.list_by_importance("team", "p1")

        assert [e.importance for e in entries] == [0.95, 0.7]

    @pytest.mark.asyncio
    async def test_statistics(self, store, provider):
        provider.add("a", axis(0))
        provider.add("b", axis(0))
        await store.store("personal", "u1", "knowledge", "a")
        await store.store("personal", "u1", "knowledge", "b")
        await store.store("team", "p1", "reflection", "a", decay_rate=0.0)

        stats = await store.get_statistics()

        assert stats["total_memories"] == 3
        assert stats["by_scope"] == {"personal": 2, "team": 1}
        assert stats["by_type"] == {"knowledge": 2, "reflection": 1}
        assert stats["permanent_memories"] == 1
        assert stats["associations"] == 1
        assert stats["embeddings"] == 3
        assert stats["embedding_dimension"] == 8
        assert stats["meta"] == {"embedding_dimension": "8"}
