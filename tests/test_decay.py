"""Tests for the decay engine: forgetting curve, reinforcement, decay persistence."""

import asyncio
import math
from datetime import timedelta

import pytest
from sqlalchemy import update

from agentmem.decay import (
    compute_effective_strength,
    effective_strength,
    frequency_score,
    on_batch_recall,
    on_recall,
    persist_decay,
    recency_score,
)
from agentmem.models import Memory
from agentmem.schemas import MemoryEntry

from conftest import EPOCH, axis


def make_entry(**overrides) -> MemoryEntry:
    fields = dict(
        id="m1",
        scope="personal",
        scope_owner_id="u1",
        content="fact",
        importance=0.5,
        strength=1.0,
        decay_rate=0.15,
        access_count=0,
        last_accessed_at=EPOCH,
        created_at=EPOCH,
    )
    fields.update(overrides)
    return MemoryEntry(**fields)


async def set_fields(store, entry_id, **values):
    async with store.db.get_session() as session:
        await session.execute(update(Memory).where(Memory.id == entry_id).values(**values))


class TestEffectiveStrength:
    """Pure forgetting-curve math."""

    def test_fresh_entry_has_full_strength(self):
        assert effective_strength(make_entry(), EPOCH) == pytest.approx(1.0)

    def test_formula(self):
        entry = make_entry(importance=0.0)
        later = EPOCH + timedelta(hours=10)
        assert effective_strength(entry, later) == pytest.approx(math.exp(-1.5))

    def test_importance_damps_decay(self):
        later = EPOCH + timedelta(hours=10)
        unimportant = effective_strength(make_entry(importance=0.0), later)
        important = effective_strength(make_entry(importance=1.0), later)
        assert important > unimportant
        # importance 1.0 keeps 30% of the decay rate
        assert important == pytest.approx(math.exp(-0.15 * 0.3 * 10))

    def test_monotonic_without_recall(self):
        entry = make_entry()
        values = [effective_strength(entry, EPOCH + timedelta(hours=h)) for h in (0, 1, 5, 24, 100)]
        for earlier, later in zip(values, values[1:]):
            assert later < earlier

    def test_zero_decay_is_time_invariant(self):
        entry = make_entry(decay_rate=0.0, strength=0.8)
        for hours in (0, 1, 72, 10_000):
            assert effective_strength(entry, EPOCH + timedelta(hours=hours)) == 0.8

    def test_clock_before_last_access_does_not_amplify(self):
        entry = make_entry(strength=0.6)
        assert effective_strength(entry, EPOCH - timedelta(hours=5)) == pytest.approx(0.6)

    def test_stays_in_unit_interval(self):
        value = compute_effective_strength(1.0, 0.15, 0.5, EPOCH, EPOCH + timedelta(days=365))
        assert 0.0 <= value <= 1.0


class TestRecencyAndFrequency:
    """Recency half-life and log-scaled frequency."""

    def test_recency_half_life(self):
        entry = make_entry()
        assert recency_score(entry, EPOCH) == pytest.approx(1.0)
        assert recency_score(entry, EPOCH + timedelta(hours=72)) == pytest.approx(0.5, abs=1e-3)

    def test_recency_uses_creation_not_access(self):
        entry = make_entry(last_accessed_at=EPOCH + timedelta(hours=72))
        assert recency_score(entry, EPOCH + timedelta(hours=72)) == pytest.approx(0.5, abs=1e-3)

    def test_frequency_scale(self):
        assert frequency_score(make_entry(access_count=0)) == 0.0
        assert frequency_score(make_entry(access_count=10)) == pytest.approx(math.log(11) / math.log(101))
        assert frequency_score(make_entry(access_count=100)) == pytest.approx(1.0)
        assert frequency_score(make_entry(access_count=5000)) == 1.0


class TestReinforcement:
    """Recall reinforcement against the database."""

    @pytest.fixture
    async def entry(self, store, provider):
        provider.add("reinforce me", axis(0))
        return await store.store("personal", "u1", "knowledge", "reinforce me")

    @pytest.mark.asyncio
    async def test_recall_strengthens_and_slows_decay(self, store, entry, clock):
        await set_fields(store, entry.id, strength=0.5)
        now = clock.advance(hours=1)

        assert await on_recall(store.db, entry.id, now=now)

        after = await store.get(entry.id)
        assert after.strength == pytest.approx(0.55)
        assert after.decay_rate == pytest.approx(0.15 * 0.85)
        assert after.access_count == 1
        assert after.last_accessed_at == now

    @pytest.mark.asyncio
    async def test_full_strength_stays_full(self, store, entry):
        await on_recall(store.db, entry.id)
        after = await store.get(entry.id)
        assert after.strength == 1.0

    @pytest.mark.asyncio
    async def test_bounds_after_many_recalls(self, store, entry):
        await set_fields(store, entry.id, strength=0.01)
        for _ in range(40):
            await on_recall(store.db, entry.id)

        after = await store.get(entry.id)
        assert 0.0 <= after.strength <= 1.0
        assert after.decay_rate == pytest.approx(0.01)
        assert after.access_count == 40

    @pytest.mark.asyncio
    async def test_permanent_entry_stays_permanent(self, store, provider):
        provider.add("permanent fact", axis(1))
        entry = await store.store("team", "proj", "knowledge", "permanent fact", decay_rate=0.0)

        await on_recall(store.db, entry.id)

        after = await store.get(entry.id)
        assert after.decay_rate == 0.0
        assert after.access_count == 1

    @pytest.mark.asyncio
    async def test_missing_entry(self, store):
        assert await on_recall(store.db, "does-not-exist") is False

    @pytest.mark.asyncio
    async def test_batch_recall_updates_each_once(self, store, provider, entry):
        provider.add("second", axis(2))
        second = await store.store("personal", "u1", "knowledge", "second")

        result = await on_batch_recall(store.db, [entry.id, second.id, entry.id])

        assert result.ok
        assert result.updated == 2
        assert (await store.get(entry.id)).access_count == 1
        assert (await store.get(second.id)).access_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_recalls_are_not_lost(self, store, entry):
        await asyncio.gather(*[on_recall(store.db, entry.id) for _ in range(10)])
        after = await store.get(entry.id)
        assert after.access_count == 10


class TestPersistDecay:
    """Folding decay into stored strength."""

    @pytest.mark.asyncio
    async def test_persists_idle_entries(self, store, provider, clock):
        provider.add("idle", axis(0))
        entry = await store.store("personal", "u1", "knowledge", "idle", importance=0.0)
        now = clock.advance(hours=48)

        assert await persist_decay(store.db, now=now) == 1

        after = await store.get(entry.id)
        assert after.strength == pytest.approx(math.exp(-0.15 * 48))
        assert after.last_accessed_at == now

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, store, provider, clock):
        provider.add("idle", axis(0))
        entry = await store.store("personal", "u1", "knowledge", "idle")
        now = clock.advance(hours=30)

        assert await persist_decay(store.db, now=now) == 1
        stored = (await store.get(entry.id)).strength

        assert await persist_decay(store.db, now=now) == 0
        assert (await store.get(entry.id)).strength == stored

    @pytest.mark.asyncio
    async def test_recent_and_permanent_entries_untouched(self, store, provider, clock):
        provider.add("old permanent", axis(0))
        provider.add("recent", axis(1))
        permanent = await store.store("team", "proj", "knowledge", "old permanent", decay_rate=0.0)
        clock.advance(hours=40)
        recent = await store.store("personal", "u1", "knowledge", "recent")
        now = clock.advance(hours=2)

        assert await persist_decay(store.db, now=now) == 0
        assert (await store.get(permanent.id)).strength == 1.0
        assert (await store.get(recent.id)).strength == 1.0

    @pytest.mark.asyncio
    async def test_store_wrapper_uses_injected_clock(self, store, provider, clock):
        provider.add("idle", axis(0))
        await store.store("personal", "u1", "knowledge", "idle")
        clock.advance(hours=25)
        assert await store.persist_decay() == 1
