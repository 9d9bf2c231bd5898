"""
Typed records exchanged with callers.

ORM rows never leave the store: each is converted once, through
MemoryEntry.from_row, into a validated pydantic model.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .scope import MemoryScope, ScopeKey


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class MemoryEntry(BaseModel):
    """A unit of stored knowledge."""

    model_config = ConfigDict(frozen=True)

    id: str
    scope: MemoryScope
    scope_owner_id: Optional[str] = None
    type: str = "knowledge"
    content: str
    importance: float = 0.5
    strength: float = 1.0
    decay_rate: float = 0.15
    access_count: int = 0
    last_accessed_at: datetime
    created_at: datetime
    source: str = "explicit"

    @field_validator("importance", "strength")
    @classmethod
    def _unit_interval(cls, v: float) -> float:
        return _clamp01(v)

    @field_validator("decay_rate")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        return max(0.0, float(v))

    @field_validator("access_count")
    @classmethod
    def _count(cls, v: int) -> int:
        return max(0, int(v))

    @field_validator("last_accessed_at", "created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @classmethod
    def from_row(cls, row: Any) -> "MemoryEntry":
        """Map a `Memory` ORM row to a MemoryEntry."""
        return cls(
            id=row.id,
            scope=row.scope,
            scope_owner_id=row.scope_owner_id,
            type=row.type,
            content=row.content,
            importance=row.importance,
            strength=row.strength,
            decay_rate=row.decay_rate,
            access_count=row.access_count,
            last_accessed_at=row.last_accessed_at,
            created_at=row.created_at,
            source=row.source,
        )

    @property
    def scope_key(self) -> ScopeKey:
        return ScopeKey(scope=self.scope, owner_id=self.scope_owner_id)

    @property
    def is_permanent(self) -> bool:
        return self.decay_rate == 0.0

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class ScoredMemoryEntry(MemoryEntry):
    """A search result: the entry plus the scores it was ranked by. Never persisted."""

    similarity: float = 0.0
    effective_strength: float = 0.0
    recency_score: float = 0.0
    frequency_score: float = 0.0
    final_score: float = 0.0
    # Set when the entry was pulled in by spreading activation
    activated_by: Optional[str] = None


class HybridWeights(BaseModel):
    """Blend of the five ranking signals. Defaults sum to 1.0."""

    model_config = ConfigDict(frozen=True)

    similarity: float = Field(default=0.40, ge=0.0)
    strength: float = Field(default=0.25, ge=0.0)
    recency: float = Field(default=0.15, ge=0.0)
    importance: float = Field(default=0.15, ge=0.0)
    frequency: float = Field(default=0.05, ge=0.0)

    def with_overrides(self, overrides: Optional[Dict[str, float]] = None) -> "HybridWeights":
        """Return a copy with some weights replaced."""
        if not overrides:
            return self
        unknown = set(overrides) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown weight(s): {', '.join(sorted(unknown))}")
        return type(self)(**{**self.model_dump(), **overrides})


DEFAULT_WEIGHTS = HybridWeights()

# Strength carries no signal when decay is disabled, so project retrieval
# leans on importance and similarity instead.
PERMANENT_WEIGHTS = HybridWeights(
    similarity=0.40,
    strength=0.15,
    recency=0.10,
    importance=0.35,
    frequency=0.00,
)


class LinkResult(BaseModel):
    """Outcome of best-effort auto-linking for one new entry."""

    entry_id: str
    linked: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReinforcementResult(BaseModel):
    """Outcome of best-effort recall reinforcement."""

    entry_ids: list = Field(default_factory=list)
    updated: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConsolidationResult(BaseModel):
    memories_decayed: int = 0
    memories_pruned: int = 0
    memories_merged: int = 0
    associations_cleaned: int = 0
    errors: Dict[str, str] = Field(default_factory=dict)


def rank_key(entry: ScoredMemoryEntry):
    """Sort key: final score desc, then newest first, then id for total order."""
    return (-entry.final_score, -entry.created_at.timestamp(), entry.id)


def sort_by_score(entries) -> list:
    return sorted(entries, key=rank_key)
