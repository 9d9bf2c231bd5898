"""
Decay Engine - Ebbinghaus forgetting curve with spaced-repetition reinforcement.

    effective_strength = strength * exp(-decay_rate * (1 - importance * 0.7) * hours_since_access)

- Memories fade over time unless recalled
- Each recall boosts strength toward 1.0 and slows future decay by 15%
- High importance damps decay by up to 70%
- Effective strength is computed at query time; persist_decay() periodically
  folds it into the stored value so the curve never spans huge intervals
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import bindparam, case, select, update

from .config import Settings, settings as default_settings
from .database import DatabaseManager
from .models import Memory
from .schemas import ReinforcementResult, as_utc

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _hours_between(earlier: datetime, later: datetime) -> float:
    return max(0.0, (as_utc(later) - as_utc(earlier)).total_seconds() / 3600.0)


def effective_decay_rate(decay_rate: float, importance: float, config: Optional[Settings] = None) -> float:
    """Per-hour decay after importance damping."""
    config = config or default_settings
    return decay_rate * (1.0 - importance * config.importance_decay_damping)


def compute_effective_strength(
    strength: float,
    decay_rate: float,
    importance: float,
    last_accessed_at: datetime,
    now: datetime,
    config: Optional[Settings] = None
) -> float:
    rate = effective_decay_rate(decay_rate, importance, config)
    hours = _hours_between(last_accessed_at, now)
    value = strength * math.exp(-rate * hours)
    return max(0.0, min(1.0, value))


def effective_strength(entry, now: Optional[datetime] = None, config: Optional[Settings] = None) -> float:
    """
    Current retrievability of an entry, in [0, 1].

    A decay_rate of 0 makes this equal to the stored strength at all times.
    """
    return compute_effective_strength(
        entry.strength,
        entry.decay_rate,
        entry.importance,
        entry.last_accessed_at,
        now or utcnow(),
        config,
    )


def recency_score(entry, now: Optional[datetime] = None, config: Optional[Settings] = None) -> float:
    """
    Freshness of creation (not of recall): 1.0 when new, halving every 72 hours.
    """
    config = config or default_settings
    hours = _hours_between(entry.created_at, now or utcnow())
    return math.exp(-0.693 * hours / config.recency_half_life_hours)


def frequency_score(entry, config: Optional[Settings] = None) -> float:
    """
    Log-scaled access frequency: 0 accesses = 0, 10 ~= 0.52, 100+ = 1.0.
    """
    config = config or default_settings
    return min(1.0, math.log1p(entry.access_count) / math.log1p(config.frequency_saturation))


def _recall_values(now: datetime, config: Settings) -> dict:
    """
    Server-side update expressions for a recall.

    Evaluated by the database in a single UPDATE, so two concurrent recalls
    of the same row both land (no read-modify-write in Python).
    Permanent entries (decay_rate 0) stay permanent.
    """
    boosted = Memory.strength + config.recall_strength_boost * (1.0 - Memory.strength)
    slowed = Memory.decay_rate * config.recall_decay_factor
    return {
        "strength": case((boosted > 1.0, 1.0), (boosted < 0.0, 0.0), else_=boosted),
        "decay_rate": case(
            (Memory.decay_rate <= 0.0, 0.0),
            (slowed < config.min_decay_rate, config.min_decay_rate),
            else_=slowed,
        ),
        "access_count": Memory.access_count + 1,
        "last_accessed_at": now,
    }


async def on_recall(
    db: DatabaseManager,
    entry_id: str,
    now: Optional[datetime] = None,
    config: Optional[Settings] = None
) -> bool:
    """Strengthen one recalled memory. Returns False if it no longer exists."""
    result = await on_batch_recall(db, [entry_id], now=now, config=config)
    return result.updated == 1


async def on_batch_recall(
    db: DatabaseManager,
    entry_ids: Iterable[str],
    now: Optional[datetime] = None,
    config: Optional[Settings] = None
) -> ReinforcementResult:
    """
    Strengthen many recalled memories in one atomic statement.

    Either every listed row is reinforced or (on failure) none is.
    """
    config = config or default_settings
    ids = list(dict.fromkeys(entry_ids))
    if not ids:
        return ReinforcementResult()

    stmt = (
        update(Memory)
        .where(Memory.id.in_(ids))
        .values(**_recall_values(now or utcnow(), config))
        .execution_options(synchronize_session=False)
    )
    async with db.get_session() as session:
        result = await session.execute(stmt)

    logger.debug(f"Reinforced {result.rowcount} recalled memories")
    return ReinforcementResult(entry_ids=ids, updated=result.rowcount)


async def persist_decay(
    db: DatabaseManager,
    now: Optional[datetime] = None,
    config: Optional[Settings] = None,
    batch_size: int = 500
) -> int:
    """
    Fold time decay into stored strength for memories idle > 24 hours.

    Each row is rewritten with a conditional update that only applies if
    last_accessed_at is still the value we read. A concurrent recall
    therefore wins, and running this twice in a row is a no-op the second
    time (the first run bumped last_accessed_at to now).

    Returns:
        Number of memories whose strength was persisted.
    """
    config = config or default_settings
    now = now or utcnow()
    cutoff = now - timedelta(hours=config.decay_persist_after_hours)

    async with db.get_session() as session:
        result = await session.execute(
            select(
                Memory.id,
                Memory.strength,
                Memory.decay_rate,
                Memory.importance,
                Memory.last_accessed_at,
            ).where(
                Memory.last_accessed_at < cutoff,
                Memory.decay_rate > 0.0,
                Memory.strength > 0.0,
            )
        )
        rows = result.all()

    if not rows:
        return 0

    params = [
        {
            "b_id": row.id,
            "b_seen": row.last_accessed_at,
            "b_strength": compute_effective_strength(
                row.strength, row.decay_rate, row.importance,
                row.last_accessed_at, now, config
            ),
        }
        for row in rows
    ]

    stmt = (
        update(Memory.__table__)
        .where(
            Memory.__table__.c.id == bindparam("b_id"),
            Memory.__table__.c.last_accessed_at == bindparam("b_seen"),
        )
        .values(strength=bindparam("b_strength"), last_accessed_at=now)
    )

    updated = 0
    # Short transactions so readers and recalls interleave with the batch
    for start in range(0, len(params), batch_size):
        chunk = params[start:start + batch_size]
        async with db.get_session() as session:
            result = await session.execute(stmt, chunk)
            updated += max(result.rowcount, 0)

    logger.info(f"Persisted decay for {updated} of {len(rows)} idle memories")
    return updated
