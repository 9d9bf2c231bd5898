"""
Memory Store - The core of AgentMem's long-term memory.

This module handles:
- Storing memories (entry + embedding in one transaction, then best-effort
  auto-linking to similar memories of the same scope)
- Hybrid retrieval: similarity, decayed strength, recency, importance and
  recall frequency blended into one score
- Spreading activation along association links
- Recall reinforcement (spaced repetition) scheduled in the background
- Scope-filtered listing, deletion and statistics
"""

import asyncio
import logging
import math
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Union

from sqlalchemy import delete, desc, func, or_, select

from .associations import AssociationGraph
from .config import Settings, settings as default_settings
from .database import DatabaseManager
from .decay import (
    effective_strength,
    frequency_score,
    on_batch_recall,
    persist_decay,
    recency_score,
    utcnow,
)
from .embeddings import EmbeddingService
from .errors import MemoryNotFoundError
from .migrations.reembed import ensure_embedding_dimension
from .models import Memory, MemoryAssociation, MemoryEmbedding
from .schemas import (
    DEFAULT_WEIGHTS,
    HybridWeights,
    MemoryEntry,
    ReinforcementResult,
    ScoredMemoryEntry,
    sort_by_score,
)
from .scope import MemoryScope, ScopeKey
from .vector_index import ScopedVectorIndex
from . import vectors

logger = logging.getLogger(__name__)

# Share of the limit given to each scope by search_all_scopes (percent).
# Personal memories answer first.
SCOPE_SHARES = (
    (MemoryScope.PERSONAL, 40),
    (MemoryScope.TEAM, 30),
    (MemoryScope.GLOBAL, 30),
)

WeightsArg = Union[None, HybridWeights, Dict[str, float]]


def score_entry(
    entry: MemoryEntry,
    similarity: float,
    weights: HybridWeights,
    now: datetime,
    config: Optional[Settings] = None
) -> ScoredMemoryEntry:
    """Compute the hybrid score of one candidate."""
    config = config or default_settings
    strength = effective_strength(entry, now, config)
    recency = recency_score(entry, now, config)
    frequency = frequency_score(entry, config)

    final = (
        weights.similarity * similarity
        + weights.strength * strength
        + weights.recency * recency
        + weights.importance * entry.importance
        + weights.frequency * frequency
    )
    return ScoredMemoryEntry(
        **entry.model_dump(),
        similarity=similarity,
        effective_strength=strength,
        recency_score=recency,
        frequency_score=frequency,
        final_score=final,
    )


def resolve_weights(weights: WeightsArg, base: HybridWeights = DEFAULT_WEIGHTS) -> HybridWeights:
    """Accept a full weight profile, a dict of overrides, or None."""
    if weights is None:
        return base
    if isinstance(weights, HybridWeights):
        return weights
    return base.with_overrides(weights)


class MemoryStore:
    """
    Manages the storage and retrieval of memories.

    All collaborators are injected; nothing is process-global. The store is
    safe to share between concurrent tasks.
    """

    def __init__(
        self,
        db: DatabaseManager,
        embeddings: Optional[EmbeddingService] = None,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.config = config or default_settings
        self.embeddings = embeddings or EmbeddingService(config=self.config)
        self.index = ScopedVectorIndex(db, self.embeddings.dimension)
        self.graph = AssociationGraph(db, self.index, self.config)
        self._clock = clock or utcnow

        # One-time storage / dimension check, shared by concurrent first calls
        self._ready = False
        self._ready_lock = asyncio.Lock()

        # Background reinforcement writes not yet finished
        self._pending: Set[asyncio.Task] = set()

    def now(self) -> datetime:
        return self._clock()

    async def initialize(self) -> None:
        """Create tables and verify the stored embedding dimension (once)."""
        if self._ready:
            return
        async with self._ready_lock:
            if self._ready:
                return
            await self.db.init_db()
            await ensure_embedding_dimension(
                self.db,
                self.embeddings.dimension,
                policy=self.config.embedding_dimension_policy
            )
            self._ready = True

    async def close(self) -> None:
        await self.drain()
        await self.db.close()
        self._ready = False

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def store(
        self,
        scope: Union[str, MemoryScope],
        scope_owner_id: Optional[str],
        type: str,
        content: str,
        importance: float = 0.5,
        source: str = "explicit",
        decay_rate: Optional[float] = None
    ) -> MemoryEntry:
        """
        Store a new memory.

        Args:
            scope: personal, team or global
            scope_owner_id: User / team / project id (None for global)
            type: Semantic category (knowledge, conversation, reflection, ...)
            content: The fact itself; keep it to one fact per entry
            importance: Salience 0-1
            source: Provenance tag
            decay_rate: Override the default decay (0.0 = permanent)

        Returns:
            The created entry

        Raises:
            ScopeError: invalid scope / owner combination
            EmbeddingError: the embedding provider failed; nothing was stored
        """
        key = ScopeKey.of(scope, scope_owner_id)
        if not content or not content.strip():
            raise ValueError("Memory content must not be empty")

        await self.initialize()

        # Embed first: an entry without a vector is never written
        vector = await self.embeddings.embed_for_store(content)

        now = self.now()
        rate = self.config.default_decay_rate if decay_rate is None else max(0.0, decay_rate)

        async with self.db.get_session() as session:
            memory = Memory(
                id=uuid.uuid4().hex,
                scope=key.scope.value,
                scope_owner_id=key.owner_id,
                type=type,
                content=content,
                importance=max(0.0, min(1.0, importance)),
                strength=1.0,
                decay_rate=rate,
                access_count=0,
                last_accessed_at=now,
                created_at=now,
                source=source,
            )
            session.add(memory)
            await self.index.put(session, memory.id, vector)
            entry = MemoryEntry.from_row(memory)

        link = await self.graph.auto_link(entry.id, key, vector)

        logger.info(
            f"Stored {type} memory {entry.id} in {key}: {content[:50]}"
            + (f" [+{link.linked} links]" if link.linked else "")
        )
        return entry

    async def delete(self, entry_id: str) -> bool:
        """
        Delete a memory with its embeddings and associations.

        Raises:
            MemoryNotFoundError: no such memory
        """
        await self.initialize()
        async with self.db.get_session() as session:
            memory = await session.get(Memory, entry_id)
            if memory is None:
                raise MemoryNotFoundError(entry_id)

            await session.execute(
                delete(MemoryAssociation).where(or_(
                    MemoryAssociation.source_entry_id == entry_id,
                    MemoryAssociation.target_entry_id == entry_id,
                ))
            )
            await session.execute(
                delete(MemoryEmbedding).where(MemoryEmbedding.entry_id == entry_id)
            )
            await session.delete(memory)

        logger.info(f"Deleted memory {entry_id}")
        return True

    async def persist_decay(self) -> int:
        """Fold elapsed decay into stored strength (periodic maintenance)."""
        await self.initialize()
        return await persist_decay(self.db, now=self.now(), config=self.config)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get(self, entry_id: str) -> MemoryEntry:
        await self.initialize()
        async with self.db.get_session() as session:
            memory = await session.get(Memory, entry_id)
            if memory is None:
                raise MemoryNotFoundError(entry_id)
            return MemoryEntry.from_row(memory)

    async def list_entries(
        self,
        scope: Union[str, MemoryScope],
        scope_owner_id: Optional[str] = None,
        limit: int = 50,
        type: Optional[str] = None
    ) -> List[MemoryEntry]:
        """Most recent memories of one scope key."""
        key = ScopeKey.of(scope, scope_owner_id)
        await self.initialize()

        stmt = select(Memory).where(*key.filter(Memory))
        if type:
            stmt = stmt.where(Memory.type == type)
        stmt = stmt.order_by(desc(Memory.created_at), Memory.id).limit(limit)

        async with self.db.get_session() as session:
            result = await session.execute(stmt)
            return [MemoryEntry.from_row(m) for m in result.scalars().all()]

    async def list_by_importance(
        self,
        scope: Union[str, MemoryScope],
        scope_owner_id: Optional[str] = None,
        min_importance: float = 0.7,
        limit: int = 20
    ) -> List[MemoryEntry]:
        """Memories of one scope key at or above an importance floor, most important first."""
        key = ScopeKey.of(scope, scope_owner_id)
        await self.initialize()

        async with self.db.get_session() as session:
            result = await session.execute(
                select(Memory)
                .where(*key.filter(Memory), Memory.importance >= min_importance)
                .order_by(desc(Memory.importance), desc(Memory.created_at), Memory.id)
                .limit(limit)
            )
            return [MemoryEntry.from_row(m) for m in result.scalars().all()]

    async def _candidates(
        self,
        query: str,
        key: ScopeKey,
        pool_size: int,
        weights: HybridWeights,
        now: datetime
    ):
        """Embed the query and score the nearest neighbors of one scope."""
        query_vector = await self.embeddings.embed_query(query)
        nearest = await self.index.nearest(key, query_vector, limit=pool_size)
        pool = {
            entry.id: score_entry(entry, similarity, weights, now, self.config)
            for entry, similarity in nearest
        }
        return query_vector, pool

    def _pool_size(self, limit: int) -> int:
        return min(limit * self.config.search_candidate_multiplier, self.config.search_max_candidates)

    async def _run_search(
        self,
        query: str,
        key: ScopeKey,
        limit: int,
        weights: HybridWeights,
        hops: int,
        timeout: Optional[float]
    ) -> List[ScoredMemoryEntry]:
        now = self.now()

        # Embedding + candidate fetch are the cancellable part
        query_vector, pool = await asyncio.wait_for(
            self._candidates(query, key, self._pool_size(limit), weights, now),
            timeout=timeout
        )
        seeds = sort_by_score(pool.values())[:limit]

        async def fetch_missing(ids: List[str]) -> Dict[str, ScoredMemoryEntry]:
            found = await self.index.fetch(key, ids)
            return {
                entry_id: score_entry(
                    entry, vectors.cosine_similarity(query_vector, vec), weights, now, self.config
                )
                for entry_id, (entry, vec) in found.items()
            }

        try:
            return await self.graph.expand(seeds, pool, limit, fetch_missing, hops=hops)
        except Exception as e:
            logger.warning(f"Association expansion failed, returning direct matches (non-fatal): {e}")
            return seeds

    async def search(
        self,
        query: str,
        scope: Union[str, MemoryScope],
        scope_owner_id: Optional[str] = None,
        limit: Optional[int] = None,
        weights: WeightsArg = None,
        strengthen_on_recall: bool = True,
        timeout: Optional[float] = None
    ) -> List[ScoredMemoryEntry]:
        """
        Hybrid search within exactly one scope key.

        Args:
            query: Free text
            scope / scope_owner_id: The isolation key
            limit: Max results (default 10)
            weights: HybridWeights or a dict of overrides
            strengthen_on_recall: Reinforce the returned memories
            timeout: Seconds allowed for embedding + candidate fetch

        Returns:
            Results sorted by final score (ties: newest first)
        """
        key = ScopeKey.of(scope, scope_owner_id)
        limit = self.config.search_default_limit if limit is None else limit
        if limit <= 0:
            return []
        await self.initialize()

        results = await self._run_search(
            query, key, limit,
            resolve_weights(weights),
            hops=1,
            timeout=timeout if timeout is not None else self.config.search_timeout_seconds
        )

        if strengthen_on_recall and results:
            self._schedule_reinforcement([r.id for r in results])

        logger.debug(f"search in {key} returned {len(results)} result(s) for: {query[:50]}")
        return results

    async def deep_search(
        self,
        query: str,
        scope: Union[str, MemoryScope],
        scope_owner_id: Optional[str] = None,
        limit: int = 50,
        hops: int = 3,
        weights: WeightsArg = None,
        timeout: Optional[float] = None
    ) -> List[ScoredMemoryEntry]:
        """
        Multi-hop search: spreading activation repeats up to `hops` times.

        Never reinforces what it returns.
        """
        key = ScopeKey.of(scope, scope_owner_id)
        if limit <= 0:
            return []
        await self.initialize()

        return await self._run_search(
            query, key, limit,
            resolve_weights(weights),
            hops=hops,
            timeout=timeout if timeout is not None else self.config.search_timeout_seconds
        )

    async def search_all_scopes(
        self,
        query: str,
        user_id: Optional[str] = None,
        team_id: Optional[str] = None,
        limit: Optional[int] = None,
        weights: WeightsArg = None,
        strengthen_on_recall: bool = True,
        timeout: Optional[float] = None
    ) -> List[ScoredMemoryEntry]:
        """
        Search the caller's personal, team and the global scope.

        Each scope gets its share of the limit (40/30/30, rounded up). Only
        the caller's own ids are ever used, so nothing crosses between users.
        """
        limit = self.config.search_default_limit if limit is None else limit
        if limit <= 0:
            return []

        owners = {
            MemoryScope.PERSONAL: user_id,
            MemoryScope.TEAM: team_id,
            MemoryScope.GLOBAL: None,
        }
        calls = []
        for scope, share in SCOPE_SHARES:
            if scope != MemoryScope.GLOBAL and not owners[scope]:
                continue
            calls.append(self.search(
                query, scope, owners[scope],
                limit=math.ceil(limit * share / 100),
                weights=weights,
                strengthen_on_recall=False,
                timeout=timeout,
            ))

        merged: Dict[str, ScoredMemoryEntry] = {}
        for results in await asyncio.gather(*calls):
            for entry in results:
                merged.setdefault(entry.id, entry)

        final = sort_by_score(merged.values())[:limit]
        if strengthen_on_recall and final:
            self._schedule_reinforcement([r.id for r in final])
        return final

    # ------------------------------------------------------------------
    # Reinforcement
    # ------------------------------------------------------------------

    def _schedule_reinforcement(self, entry_ids: List[str]) -> None:
        """Reinforce in the background so the caller gets results at once."""
        task = asyncio.create_task(self._reinforce(entry_ids, self.now()))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _reinforce(self, entry_ids: List[str], now: datetime) -> ReinforcementResult:
        try:
            return await on_batch_recall(self.db, entry_ids, now=now, config=self.config)
        except Exception as e:
            logger.warning(f"Recall reinforcement failed for {len(entry_ids)} memories (non-fatal): {e}")
            return ReinforcementResult(entry_ids=list(entry_ids), error=str(e))

    async def drain(self) -> List[ReinforcementResult]:
        """Wait for every scheduled reinforcement write to finish."""
        if not self._pending:
            return []
        return list(await asyncio.gather(*list(self._pending)))

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_statistics(self) -> Dict[str, Any]:
        """Get memory statistics."""
        await self.initialize()
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Memory.scope, func.count(Memory.id)).group_by(Memory.scope)
            )
            by_scope = {row[0]: row[1] for row in result.all()}

            result = await session.execute(
                select(Memory.type, func.count(Memory.id)).group_by(Memory.type)
            )
            by_type = {row[0]: row[1] for row in result.all()}

            result = await session.execute(
                select(func.count(Memory.id)).where(Memory.decay_rate == 0.0)
            )
            permanent = result.scalar() or 0

        return {
            "total_memories": sum(by_scope.values()),
            "by_scope": by_scope,
            "by_type": by_type,
            "permanent_memories": permanent,
            "associations": await self.graph.count(),
            "embeddings": await self.index.get_count(),
            "embedding_dimension": self.embeddings.dimension,
            "embedding_cache": self.embeddings.cache_stats,
            "pending_reinforcements": len(self._pending),
            "meta": await self.db.list_meta(),
        }
