"""
Scoped Vector Index - nearest-neighbor search over stored embeddings.

This module provides:
- Embedding persistence in the memory_embeddings table (same transaction as
  the entry row, so an entry is never searchable without its vector)
- Nearest-neighbor ranking restricted to exactly one scope key
- Hard failure on dimension mismatch instead of comparing incompatible vectors
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .database import DatabaseManager
from .errors import EmbeddingDimensionError
from .models import Memory, MemoryEmbedding
from .schemas import MemoryEntry
from .scope import ScopeKey
from . import vectors

logger = logging.getLogger(__name__)

ENTRY_TYPE_MEMORY = "memory"


class ScopedVectorIndex:
    """
    Vector storage and similarity search backed by SQLite + numpy.

    Every search is filtered by a full scope key before any similarity is
    computed, so candidates from other scopes are never even loaded.
    """

    def __init__(self, db: DatabaseManager, dimension: int):
        self.db = db
        self.dimension = dimension

    def _checked(self, dimension: int, data: bytes) -> List[float]:
        if dimension != self.dimension:
            raise EmbeddingDimensionError(self.dimension, dimension)
        return vectors.unpack(data)

    async def put(
        self,
        session: AsyncSession,
        entry_id: str,
        vector: Sequence[float],
        entry_type: str = ENTRY_TYPE_MEMORY
    ) -> None:
        """
        Store or replace the vector for (entry_id, entry_type) inside the
        caller's transaction.
        """
        if len(vector) != self.dimension:
            raise EmbeddingDimensionError(self.dimension, len(vector))

        await session.execute(
            delete(MemoryEmbedding).where(
                MemoryEmbedding.entry_id == entry_id,
                MemoryEmbedding.entry_type == entry_type
            )
        )
        session.add(MemoryEmbedding(
            entry_id=entry_id,
            entry_type=entry_type,
            dimension=len(vector),
            vector=vectors.pack(vector)
        ))

    async def nearest(
        self,
        key: ScopeKey,
        query_vector: Sequence[float],
        limit: int,
        exclude: Optional[Iterable[str]] = None
    ) -> List[Tuple[MemoryEntry, float]]:
        """
        Rank the memories of one scope by cosine similarity to the query.

        Ties keep newest-first order.

        Returns:
            List of (entry, similarity) sorted by similarity descending.
        """
        excluded = set(exclude or ())

        async with self.db.get_session() as session:
            result = await session.execute(
                select(Memory, MemoryEmbedding.dimension, MemoryEmbedding.vector)
                .join(
                    MemoryEmbedding,
                    (MemoryEmbedding.entry_id == Memory.id)
                    & (MemoryEmbedding.entry_type == ENTRY_TYPE_MEMORY)
                )
                .where(*key.filter(Memory))
                .order_by(Memory.created_at.desc(), Memory.id)
            )
            rows = result.all()

        entries: Dict[str, MemoryEntry] = {}
        items = []
        for mem, dimension, data in rows:
            if mem.id in excluded:
                continue
            entries[mem.id] = MemoryEntry.from_row(mem)
            items.append((mem.id, self._checked(dimension, data)))

        ranked = vectors.rank_by_similarity(query_vector, items, top_k=limit)
        return [(entries[entry_id], sim) for entry_id, sim in ranked]

    async def fetch(
        self,
        key: ScopeKey,
        entry_ids: Iterable[str]
    ) -> Dict[str, Tuple[MemoryEntry, List[float]]]:
        """
        Load specific entries (and their vectors) by id, restricted to one
        scope key. Ids outside the scope are silently absent from the result.
        """
        ids = list(entry_ids)
        if not ids:
            return {}

        async with self.db.get_session() as session:
            result = await session.execute(
                select(Memory, MemoryEmbedding.dimension, MemoryEmbedding.vector)
                .join(
                    MemoryEmbedding,
                    (MemoryEmbedding.entry_id == Memory.id)
                    & (MemoryEmbedding.entry_type == ENTRY_TYPE_MEMORY)
                )
                .where(Memory.id.in_(ids), *key.filter(Memory))
            )
            return {
                mem.id: (MemoryEntry.from_row(mem), self._checked(dimension, data))
                for mem, dimension, data in result.all()
            }

    async def get_vector(self, entry_id: str, entry_type: str = ENTRY_TYPE_MEMORY) -> Optional[List[float]]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(MemoryEmbedding.dimension, MemoryEmbedding.vector).where(
                    MemoryEmbedding.entry_id == entry_id,
                    MemoryEmbedding.entry_type == entry_type
                )
            )
            row = result.first()
        if row is None:
            return None
        return self._checked(row.dimension, row.vector)

    async def get_count(self) -> int:
        """Number of stored memory vectors."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.count(MemoryEmbedding.id)).where(
                    MemoryEmbedding.entry_type == ENTRY_TYPE_MEMORY
                )
            )
            return result.scalar() or 0

    async def scan(self, key: ScopeKey, limit: Optional[int] = None) -> List[Tuple[MemoryEntry, List[float]]]:
        """All (entry, vector) pairs of one scope key, newest first."""
        stmt = (
            select(Memory, MemoryEmbedding.dimension, MemoryEmbedding.vector)
            .join(
                MemoryEmbedding,
                (MemoryEmbedding.entry_id == Memory.id)
                & (MemoryEmbedding.entry_type == ENTRY_TYPE_MEMORY)
            )
            .where(*key.filter(Memory))
            .order_by(Memory.created_at.desc(), Memory.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.db.get_session() as session:
            result = await session.execute(stmt)
            return [
                (MemoryEntry.from_row(mem), self._checked(dimension, data))
                for mem, dimension, data in result.all()
            ]
