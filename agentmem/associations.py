"""
Association Graph - automatic same-scope links and spreading activation.

On store: every existing entry of the same scope whose similarity to the new
entry is >= 0.70 gets a weighted link (0.2 at the threshold, 1.0 at identity,
linear in between). Re-linking a pair keeps the larger weight.

On search: the top results activate their neighbors. A neighbor receives
score(seed) * weight * 0.5, keeps the best activation it was reached by, and
competes with the seeds for the final slots.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, settings as default_settings
from .database import DatabaseManager
from .models import Memory, MemoryAssociation
from .schemas import LinkResult, ScoredMemoryEntry, sort_by_score
from .scope import ScopeKey
from .vector_index import ScopedVectorIndex

logger = logging.getLogger(__name__)

# Loads scored entries for ids missing from the candidate pool
FetchMissing = Callable[[List[str]], Awaitable[Dict[str, ScoredMemoryEntry]]]


def canonical_pair(a: str, b: str) -> Tuple[str, str]:
    """One row per unordered pair: the smaller id is always the source."""
    return (a, b) if a < b else (b, a)


def link_weight(similarity: float, config: Optional[Settings] = None) -> Optional[float]:
    """
    Weight for a pair with the given similarity, or None below the threshold.
    """
    config = config or default_settings
    threshold = config.association_threshold
    min_weight = config.association_min_weight
    if similarity < threshold:
        return None
    scaled = min_weight + (1.0 - min_weight) * (similarity - threshold) / (1.0 - threshold)
    return max(min_weight, min(1.0, scaled))


class AssociationGraph:
    """
    Manages memory associations.

    Usage:
        graph = AssociationGraph(db, index)
        await graph.auto_link(entry_id, scope_key, vector)
        expanded = await graph.expand(seeds, candidates, limit, fetch_missing)
    """

    def __init__(self, db: DatabaseManager, index: ScopedVectorIndex, config: Optional[Settings] = None):
        self.db = db
        self.index = index
        self.config = config or default_settings

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    async def upsert(self, session: AsyncSession, entry_a: str, entry_b: str, weight: float) -> None:
        """Create the link or raise its weight to `weight` if stronger."""
        if entry_a == entry_b:
            return
        source, target = canonical_pair(entry_a, entry_b)
        weight = max(0.0, min(1.0, weight))
        now = datetime.now(timezone.utc)

        stmt = sqlite_insert(MemoryAssociation).values(
            source_entry_id=source,
            target_entry_id=target,
            weight=weight,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_entry_id", "target_entry_id"],
            set_={
                "weight": func.max(MemoryAssociation.__table__.c.weight, stmt.excluded.weight),
                "updated_at": now,
            },
        )
        await session.execute(stmt)

    async def link(self, entry_a: str, entry_b: str, weight: float) -> None:
        async with self.db.get_session() as session:
            await self.upsert(session, entry_a, entry_b, weight)

    async def unlink(self, entry_a: str, entry_b: str) -> bool:
        """Remove the link between two memories. Returns False if there was none."""
        source, target = canonical_pair(entry_a, entry_b)
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(MemoryAssociation).where(
                    MemoryAssociation.source_entry_id == source,
                    MemoryAssociation.target_entry_id == target,
                )
            )
        return result.rowcount > 0

    async def auto_link(self, entry_id: str, key: ScopeKey, vector: Sequence[float]) -> LinkResult:
        """
        Link a freshly stored entry to its close neighbors in the same scope.

        Best effort: failures are logged and reported in the result, never raised.
        """
        try:
            neighbors = await self.index.nearest(
                key, vector,
                limit=self.config.association_neighbors,
                exclude={entry_id}
            )

            linked = 0
            async with self.db.get_session() as session:
                for neighbor, similarity in neighbors:
                    weight = link_weight(similarity, self.config)
                    if weight is None:
                        break  # neighbors are sorted, the rest are further away
                    await self.upsert(session, entry_id, neighbor.id, weight)
                    linked += 1

            if linked:
                logger.debug(f"Linked memory {entry_id} to {linked} neighbor(s) in {key}")
            return LinkResult(entry_id=entry_id, linked=linked)

        except Exception as e:
            logger.warning(f"Auto-linking failed for memory {entry_id} (non-fatal): {e}")
            return LinkResult(entry_id=entry_id, error=str(e))

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def edges_touching(self, entry_ids: Iterable[str]) -> List[MemoryAssociation]:
        ids = list(entry_ids)
        if not ids:
            return []
        async with self.db.get_session() as session:
            result = await session.execute(
                select(MemoryAssociation)
                .where(or_(
                    MemoryAssociation.source_entry_id.in_(ids),
                    MemoryAssociation.target_entry_id.in_(ids),
                ))
                .order_by(MemoryAssociation.id)
            )
            return list(result.scalars().all())

    async def neighbors(self, entry_id: str) -> List[Dict]:
        """
        List the entries linked to `entry_id`, strongest first.

        Returns:
            List of {"entry_id", "weight"} dicts
        """
        edges = await self.edges_touching([entry_id])
        linked = [
            {
                "entry_id": e.target_entry_id if e.source_entry_id == entry_id else e.source_entry_id,
                "weight": e.weight,
            }
            for e in edges
        ]
        linked.sort(key=lambda item: (-item["weight"], item["entry_id"]))
        return linked

    async def count(self) -> int:
        async with self.db.get_session() as session:
            result = await session.execute(select(func.count(MemoryAssociation.id)))
            return result.scalar() or 0

    # ------------------------------------------------------------------
    # Spreading activation
    # ------------------------------------------------------------------

    async def expand(
        self,
        seeds: Sequence[ScoredMemoryEntry],
        candidates: Dict[str, ScoredMemoryEntry],
        limit: Optional[int],
        fetch_missing: FetchMissing,
        hops: int = 1
    ) -> List[ScoredMemoryEntry]:
        """
        Grow the seed set along association edges.

        Args:
            seeds: Already-ranked top results
            candidates: Full scored candidate pool, by id
            limit: Truncate the merged result to this many (None = no limit)
            fetch_missing: Loads and scores neighbors absent from the pool.
                It must restrict itself to the caller's scope key.
            hops: How many times to propagate; each hop starts from the
                entries reached by the previous one

        Returns:
            Seeds plus activated neighbors, sorted by final score.
        """
        damping = self.config.spread_damping
        results: Dict[str, ScoredMemoryEntry] = {s.id: s for s in seeds}
        frontier: List[ScoredMemoryEntry] = list(seeds)

        for _ in range(max(0, hops)):
            if not frontier:
                break

            score_of = {s.id: s.final_score for s in frontier}
            edges = await self.edges_touching(score_of.keys())

            # neighbor id -> (best propagated score, activating entry id)
            propagated: Dict[str, Tuple[float, str]] = {}
            for edge in edges:
                for origin, neighbor in (
                    (edge.source_entry_id, edge.target_entry_id),
                    (edge.target_entry_id, edge.source_entry_id),
                ):
                    if origin not in score_of or neighbor in results:
                        continue
                    score = score_of[origin] * edge.weight * damping
                    best = propagated.get(neighbor)
                    if best is None or score > best[0]:
                        propagated[neighbor] = (score, origin)

            if not propagated:
                break

            missing = [nid for nid in propagated if nid not in candidates]
            fetched = await fetch_missing(missing) if missing else {}

            frontier = []
            for neighbor_id, (score, origin) in propagated.items():
                base = candidates.get(neighbor_id) or fetched.get(neighbor_id)
                if base is None:
                    # Deleted, or outside the caller's scope
                    continue
                activated = base.model_copy(update={
                    "final_score": max(base.final_score, score),
                    "activated_by": origin,
                })
                results[neighbor_id] = activated
                frontier.append(activated)

        ranked = sort_by_score(results.values())
        return ranked[:limit] if limit is not None else ranked

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def reassign(self, session: AsyncSession, from_id: str, to_id: str) -> int:
        """
        Move every link of `from_id` onto `to_id` (max weight on collisions)
        and delete the originals. Used when merging duplicates.
        """
        result = await session.execute(
            select(MemoryAssociation).where(or_(
                MemoryAssociation.source_entry_id == from_id,
                MemoryAssociation.target_entry_id == from_id,
            ))
        )
        edges = list(result.scalars().all())

        moved = 0
        for edge in edges:
            other = edge.target_entry_id if edge.source_entry_id == from_id else edge.source_entry_id
            weight = edge.weight
            await session.delete(edge)
            await session.flush()
            if other != to_id:
                await self.upsert(session, to_id, other, weight)
                moved += 1
        return moved

    async def clean(self, min_weight: float) -> int:
        """Delete weak links and links whose endpoints no longer exist."""
        existing = select(Memory.id)
        async with self.db.get_session() as session:
            orphaned = await session.execute(
                delete(MemoryAssociation).where(or_(
                    MemoryAssociation.source_entry_id.not_in(existing),
                    MemoryAssociation.target_entry_id.not_in(existing),
                ))
            )
            weak = await session.execute(
                delete(MemoryAssociation).where(MemoryAssociation.weight < min_weight)
            )
        return max(orphaned.rowcount, 0) + max(weak.rowcount, 0)
