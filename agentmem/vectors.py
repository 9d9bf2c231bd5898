"""
Vector helpers - packing, similarity and nearest-neighbor ranking.

Vectors are stored in SQLite as packed float32 bytes. Ranking is done
with numpy over the (already scope-filtered) candidate rows.
"""

import struct
from typing import List, Optional, Sequence, Tuple

import numpy as np


def pack(vector: Sequence[float]) -> bytes:
    """Pack a vector as float32 bytes for SQLite storage."""
    return struct.pack(f'{len(vector)}f', *vector)


def unpack(data: bytes) -> Optional[List[float]]:
    """Decode vector bytes back to a list of floats."""
    if not data:
        return None

    num_floats = len(data) // 4  # 4 bytes per float
    return list(struct.unpack(f'{num_floats}f', data))


def normalize(vector: Sequence[float]) -> List[float]:
    """Scale a vector to unit length (zero vectors are returned unchanged)."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr.tolist()
    return (arr / norm).tolist()


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors."""
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


def rank_by_similarity(
    query: Sequence[float],
    items: Sequence[Tuple[str, Sequence[float]]],
    top_k: int,
    threshold: Optional[float] = None
) -> List[Tuple[str, float]]:
    """
    Rank (id, vector) pairs by cosine similarity to the query.

    Args:
        query: Query vector
        items: Candidate (id, vector) pairs, all of the query's dimension
        top_k: Maximum results
        threshold: Optional minimum similarity

    Returns:
        List of (id, similarity) tuples, sorted by similarity descending.
        Equal similarities keep input order.
    """
    if not items or top_k <= 0:
        return []

    q = np.asarray(query, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    if q_norm == 0:
        return []

    matrix = np.asarray([vec for _, vec in items], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    norms[norms == 0] = np.inf  # zero vectors score 0
    sims = (matrix @ q) / (norms * q_norm)

    # Stable sort so ties resolve deterministically by input order
    order = np.argsort(-sims, kind="stable")

    results = []
    for idx in order:
        sim = float(sims[idx])
        if threshold is not None and sim < threshold:
            break
        results.append((items[idx][0], sim))
        if len(results) >= top_k:
            break
    return results
