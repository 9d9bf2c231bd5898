"""
Embedding Dimension Check and Re-embedding.

Stored vectors must have exactly the active provider's dimension. A mismatch
(typically after switching embedding models) is a data-integrity fault: it is
detected once per store instance and either fails loudly or, with the
"migrate" policy, discards the stale vectors.

After a provider upgrade, regenerate every vector with:

    python -m agentmem.migrations.reembed [--storage-path PATH]
"""

import argparse
import asyncio
import logging
import sys
from typing import Callable, Optional

from sqlalchemy import delete, distinct, select

from ..config import Settings
from ..database import DatabaseManager
from ..errors import EmbeddingDimensionError
from ..models import Memory, MemoryEmbedding
from ..vector_index import ENTRY_TYPE_MEMORY, ScopedVectorIndex

logger = logging.getLogger(__name__)

DIMENSION_META_KEY = "embedding_dimension"


async def ensure_embedding_dimension(
    db: DatabaseManager,
    dimension: int,
    policy: str = "fail"
) -> dict:
    """
    Verify that storage holds vectors of `dimension` only.

    Args:
        db: Initialized DatabaseManager
        dimension: Active provider dimension
        policy: "fail" raises on mismatch; "migrate" deletes stale vectors
            and records the new dimension

    Returns:
        {"dimension", "removed"}

    Raises:
        EmbeddingDimensionError: mismatch under the "fail" policy
    """
    async with db.get_session() as session:
        result = await session.execute(select(distinct(MemoryEmbedding.dimension)))
        found = {d for d in result.scalars().all() if d is not None}

    recorded = await db.get_meta(DIMENSION_META_KEY)
    if recorded is not None:
        found.add(int(recorded))

    stale = sorted(d for d in found if d != dimension)
    removed = 0

    if stale:
        if policy != "migrate":
            raise EmbeddingDimensionError(dimension, stale[0])

        async with db.get_session() as session:
            result = await session.execute(
                delete(MemoryEmbedding).where(MemoryEmbedding.dimension != dimension)
            )
            removed = max(result.rowcount, 0)
        logger.warning(
            f"Discarded {removed} stale {stale}-d vector(s); run reembed to restore "
            f"search coverage for the affected memories"
        )

    if recorded is None or int(recorded) != dimension:
        await db.set_meta(DIMENSION_META_KEY, str(dimension))

    return {"dimension": dimension, "removed": removed}


async def reembed_all(
    db: DatabaseManager,
    embeddings,
    batch_size: int = 64,
    progress_callback: Optional[Callable[[int, int], None]] = None
) -> dict:
    """
    Regenerate the vector of every memory with the active provider.

    Args:
        db: DatabaseManager
        embeddings: EmbeddingService for the new provider
        batch_size: Memories embedded per provider call
        progress_callback: Optional callback(current, total)

    Returns:
        {"total", "reembedded", "dimension"}
    """
    await db.init_db()
    index = ScopedVectorIndex(db, embeddings.dimension)

    async with db.get_session() as session:
        result = await session.execute(
            select(Memory.id, Memory.content).order_by(Memory.created_at, Memory.id)
        )
        rows = result.all()

    # Vectors of any other kind (and any old dimension) are dropped outright
    async with db.get_session() as session:
        await session.execute(
            delete(MemoryEmbedding).where(MemoryEmbedding.entry_type != ENTRY_TYPE_MEMORY)
        )

    total = len(rows)
    done = 0
    for start in range(0, total, batch_size):
        chunk = rows[start:start + batch_size]
        batch = await embeddings.embed_batch([row.content for row in chunk])
        async with db.get_session() as session:
            for row, vector in zip(chunk, batch):
                await index.put(session, row.id, vector)
        done += len(chunk)
        if progress_callback:
            progress_callback(done, total)

    await db.set_meta(DIMENSION_META_KEY, str(embeddings.dimension))
    logger.info(f"Re-embedded {done} memories at {embeddings.dimension} dimensions")
    return {"total": total, "reembedded": done, "dimension": embeddings.dimension}


async def run_reembed(storage_path: Optional[str] = None, batch_size: int = 64) -> dict:
    """Re-embed the configured storage with the configured provider."""
    from ..embeddings import EmbeddingService

    config = Settings(storage_path=storage_path) if storage_path else Settings()
    db = DatabaseManager(storage_path=config.get_storage_path(), db_name=config.db_name)
    embeddings = EmbeddingService(config=config)

    def progress_reporter(current: int, total: int):
        percent = (current / total) * 100 if total > 0 else 0
        logger.info(f"Re-embedding progress: {current}/{total} ({percent:.1f}%)")

    try:
        return await reembed_all(db, embeddings, batch_size=batch_size, progress_callback=progress_reporter)
    finally:
        await db.close()


def main():
    """CLI entry point for the re-embedding script."""
    parser = argparse.ArgumentParser(
        description="Regenerate all stored embeddings with the active provider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Re-embed the default storage
    python -m agentmem.migrations.reembed

    # Re-embed a specific storage directory
    python -m agentmem.migrations.reembed --storage-path /path/to/storage
        """
    )
    parser.add_argument("--storage-path", "-s", default=None, help="Storage directory")
    parser.add_argument("--batch-size", "-b", type=int, default=64, help="Memories per embedding call")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        result = asyncio.run(run_reembed(args.storage_path, args.batch_size))
    except KeyboardInterrupt:
        print("\nRe-embedding cancelled by user.")
        return 130
    except Exception as e:
        logger.exception("Re-embedding failed")
        print(f"\nRe-embedding failed: {e}")
        return 1

    print(f"Re-embedded {result['reembedded']} of {result['total']} memories "
          f"({result['dimension']} dimensions).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
