"""
AgentMem Migrations Package.

- schema: versioned SQLite schema migrations
- reembed: embedding dimension check and re-embedding after a provider change
"""

from .schema import run_migrations, MIGRATIONS
from .reembed import ensure_embedding_dimension, reembed_all

__all__ = [
    "run_migrations",
    "MIGRATIONS",
    "ensure_embedding_dimension",
    "reembed_all",
]
