"""
AgentMem Models - Schema for decaying, associative agent memory.

Tables:
- memory_entries: Facts, conversation residue and project knowledge
- memory_embeddings: One unit vector per entry
- memory_associations: Weighted same-scope links between entries
- meta: Key/value bookkeeping (active embedding dimension)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, Float, LargeBinary, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class Memory(Base):
    """
    A memory entry is one unit of stored knowledge.

    Scopes:
    - personal: owned by a user (scope_owner_id = user id)
    - team: owned by a team or a project (scope_owner_id = team/project id)
    - global: shared, no owner

    Normal entries decay (decay_rate 0.15 per hour). Permanent project
    knowledge is stored with decay_rate 0.0 and never fades.
    """
    __tablename__ = "memory_entries"

    id = Column(String(32), primary_key=True, default=_new_id)

    # Isolation key
    scope = Column(String, nullable=False)  # personal, team, global
    scope_owner_id = Column(String, nullable=True)

    # Semantic category (knowledge, conversation, reflection, observation)
    type = Column(String, nullable=False, default="knowledge")

    # The actual content
    content = Column(Text, nullable=False)

    # Caller-assigned salience, 0-1
    importance = Column(Float, nullable=False, default=0.5)

    # Stored retrievability, 0-1 (decay is applied at query time)
    strength = Column(Float, nullable=False, default=1.0)

    # Per-hour decay coefficient; 0.0 = permanent
    decay_rate = Column(Float, nullable=False, default=0.15)

    # Recall tracking
    access_count = Column(Integer, nullable=False, default=0)
    last_accessed_at = Column(DateTime, nullable=False, default=_utcnow)

    # Provenance (explicit, conversation, consolidation, inference)
    source = Column(String, nullable=False, default="explicit")

    created_at = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index('ix_memory_entries_scope_key', 'scope', 'scope_owner_id'),
        Index('ix_memory_entries_last_accessed', 'last_accessed_at'),
    )


class MemoryEmbedding(Base):
    """
    Vector embedding for a memory entry.

    Keyed by (entry_id, entry_type). The vector is stored as packed
    float32 bytes together with its dimension so that a provider change
    can be detected instead of comparing incompatible vectors.
    """
    __tablename__ = "memory_embeddings"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(String(32), nullable=False, index=True)
    entry_type = Column(String, nullable=False, default="memory")
    dimension = Column(Integer, nullable=False)
    vector = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        UniqueConstraint('entry_id', 'entry_type', name='uq_memory_embeddings_entry'),
    )


class MemoryAssociation(Base):
    """
    Weighted link between two memories of the same scope.

    Created automatically when two entries are semantically close. The pair
    is stored in canonical order (smaller id as source), so there is at most
    one row per unordered pair and traversal treats it as undirected.
    """
    __tablename__ = "memory_associations"

    id = Column(Integer, primary_key=True, index=True)
    source_entry_id = Column(String(32), ForeignKey("memory_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    target_entry_id = Column(String(32), ForeignKey("memory_entries.id", ondelete="CASCADE"), nullable=False, index=True)

    # Link strength, (0, 1]
    weight = Column(Float, nullable=False)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint('source_entry_id', 'target_entry_id', name='uq_memory_associations_pair'),
    )


class Meta(Base):
    """Key/value bookkeeping."""
    __tablename__ = "meta"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
