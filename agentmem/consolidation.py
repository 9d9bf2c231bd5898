"""
Memory Consolidation - periodic reorganization of stored memories.

One cycle runs four independent steps:
1. Decay persistence: fold elapsed decay into stored strength
2. Pruning: delete memories that have effectively been forgotten
3. Deduplication: merge near-identical memories of the same scope
4. Association cleanup: drop weak links and links to deleted memories

A failing step is logged and recorded in the result; the others still run.
Safe to run every few hours alongside normal traffic.
"""

import logging
from typing import List, Set, Tuple

import numpy as np
from sqlalchemy import delete, func, or_, select, update

from .memory import MemoryStore
from .models import Memory, MemoryAssociation, MemoryEmbedding
from .schemas import ConsolidationResult, MemoryEntry
from .scope import MemoryScope, ScopeKey

logger = logging.getLogger(__name__)

# Entries written by consolidation itself are never pruned
CONSOLIDATION_SOURCE = "consolidation"

MERGE_STRENGTH_BOOST = 0.05


def keep_score(entry: MemoryEntry) -> float:
    """Which of two duplicates survives: importance + strength + 1% per access."""
    return entry.importance + entry.strength + entry.access_count * 0.01


class ConsolidationService:
    """
    Usage:
        consolidation = ConsolidationService(store)
        result = await consolidation.consolidate()
    """

    def __init__(self, store: MemoryStore):
        self.store = store
        self.db = store.db
        self.config = store.config

    async def consolidate(self) -> ConsolidationResult:
        """Run a full consolidation cycle."""
        await self.store.initialize()
        logger.info("Starting memory consolidation cycle")
        result = ConsolidationResult()

        steps = (
            ("decay", "memories_decayed", self.store.persist_decay),
            ("prune", "memories_pruned", self.prune),
            ("deduplicate", "memories_merged", self.deduplicate),
            ("clean_associations", "associations_cleaned", self.clean_associations),
        )
        for name, field, step in steps:
            try:
                setattr(result, field, await step())
            except Exception as e:
                logger.error(f"Consolidation step '{name}' failed: {e}", exc_info=True)
                result.errors[name] = str(e)

        logger.info(
            f"Consolidation complete: decayed={result.memories_decayed} "
            f"pruned={result.memories_pruned} merged={result.memories_merged} "
            f"associations_cleaned={result.associations_cleaned}"
        )
        return result

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------

    def _prunable_conditions(self):
        return (
            Memory.strength < self.config.prune_threshold,
            Memory.importance < self.config.prune_protect_importance,
            Memory.source != CONSOLIDATION_SOURCE,
        )

    async def find_prunable(self) -> List[MemoryEntry]:
        """
        Memories eligible for deletion by the maintenance job.

        Looks at stored strength, so call persist_decay() first.
        """
        await self.store.initialize()
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Memory).where(*self._prunable_conditions()).order_by(Memory.strength, Memory.id)
            )
            return [MemoryEntry.from_row(m) for m in result.scalars().all()]

    async def prune(self) -> int:
        """Delete forgotten memories together with their vectors and links."""
        async with self.db.get_session() as session:
            result = await session.execute(select(Memory.id).where(*self._prunable_conditions()))
            ids = list(result.scalars().all())
            if not ids:
                return 0

            await session.execute(
                delete(MemoryAssociation).where(or_(
                    MemoryAssociation.source_entry_id.in_(ids),
                    MemoryAssociation.target_entry_id.in_(ids),
                ))
            )
            await session.execute(delete(MemoryEmbedding).where(MemoryEmbedding.entry_id.in_(ids)))
            await session.execute(delete(Memory).where(Memory.id.in_(ids)))

        logger.info(f"Pruned {len(ids)} forgotten memories")
        return len(ids)

    # ------------------------------------------------------------------
    # Deduplication
    # ------------------------------------------------------------------

    async def _scope_keys(self) -> List[ScopeKey]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Memory.scope, Memory.scope_owner_id)
                .distinct()
                .order_by(Memory.scope, Memory.scope_owner_id)
            )
            return [ScopeKey(scope=MemoryScope(scope), owner_id=owner) for scope, owner in result.all()]

    def _duplicate_pairs(self, items: List[Tuple[MemoryEntry, List[float]]]) -> List[Tuple[int, int, float]]:
        """Index pairs (i, j, similarity) above the dedup threshold, most similar first."""
        if len(items) < 2:
            return []
        matrix = np.asarray([vec for _, vec in items], dtype=np.float32)
        sims = matrix @ matrix.T
        rows, cols = np.triu_indices(len(items), k=1)
        pair_sims = sims[rows, cols]
        mask = pair_sims > self.config.dedup_threshold
        pairs = [
            (int(i), int(j), float(s))
            for i, j, s in zip(rows[mask], cols[mask], pair_sims[mask])
        ]
        pairs.sort(key=lambda p: (-p[2], p[0], p[1]))
        return pairs

    async def _merge(self, keep: MemoryEntry, remove: MemoryEntry) -> None:
        async with self.db.get_session() as session:
            await self.store.graph.reassign(session, remove.id, keep.id)
            await session.execute(
                update(Memory)
                .where(Memory.id == keep.id)
                .values(
                    strength=func.min(Memory.strength + MERGE_STRENGTH_BOOST, 1.0),
                    access_count=Memory.access_count + remove.access_count,
                )
                .execution_options(synchronize_session=False)
            )
            await session.execute(delete(MemoryEmbedding).where(MemoryEmbedding.entry_id == remove.id))
            await session.execute(delete(Memory).where(Memory.id == remove.id))

    async def deduplicate(self) -> int:
        """
        Merge near-duplicate memories within each scope key.

        At most dedup_batch_limit pairs are merged per cycle.
        """
        merged = 0
        budget = self.config.dedup_batch_limit

        for key in await self._scope_keys():
            if merged >= budget:
                break
            items = await self.store.index.scan(key)
            removed: Set[str] = set()

            for i, j, similarity in self._duplicate_pairs(items):
                if merged >= budget:
                    break
                a, b = items[i][0], items[j][0]
                if a.id in removed or b.id in removed:
                    continue

                keep, remove = (a, b) if keep_score(a) >= keep_score(b) else (b, a)
                try:
                    await self._merge(keep, remove)
                except Exception as e:
                    logger.warning(f"Could not merge memory {remove.id} into {keep.id}: {e}")
                    continue

                removed.add(remove.id)
                merged += 1
                logger.debug(f"Merged {remove.id} into {keep.id} (similarity {similarity:.3f})")

        return merged

    # ------------------------------------------------------------------
    # Associations
    # ------------------------------------------------------------------

    async def clean_associations(self) -> int:
        return await self.store.graph.clean(self.config.association_prune_weight)
