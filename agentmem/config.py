"""
Centralized configuration using Pydantic Settings.

All settings are loaded from environment variables with AGENTMEM_ prefix.
Example: AGENTMEM_LOG_LEVEL=DEBUG
"""

from pathlib import Path
from typing import Literal, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """AgentMem configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="AGENTMEM_",
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # Core paths
    storage_path: Optional[str] = None  # Defaults to ~/.agentmem/storage
    db_name: str = "agentmem.db"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Embedding model
    embedding_backend: Literal["sentence-transformers", "hash"] = "sentence-transformers"
    embedding_model: str = "BAAI/bge-base-en-v1.5"
    embedding_dimension: int = Field(default=768, gt=0)
    embedding_cache_ttl_seconds: float = Field(default=300.0, ge=0.0)
    embedding_cache_size: int = Field(default=512, ge=1)
    embedding_dimension_policy: Literal["fail", "migrate"] = "fail"
    store_fallback_enabled: bool = False  # Allow store() to persist hash vectors

    # Decay (Ebbinghaus curve)
    default_decay_rate: float = Field(default=0.15, ge=0.0)
    permanent_decay_rate: float = Field(default=0.0, ge=0.0)
    importance_decay_damping: float = Field(default=0.7, ge=0.0, le=1.0)
    recency_half_life_hours: float = Field(default=72.0, gt=0.0)
    frequency_saturation: int = Field(default=100, ge=1)
    recall_strength_boost: float = Field(default=0.1, ge=0.0, le=1.0)
    recall_decay_factor: float = Field(default=0.85, gt=0.0, le=1.0)
    min_decay_rate: float = Field(default=0.01, ge=0.0)
    decay_persist_after_hours: float = Field(default=24.0, ge=0.0)

    # Association graph
    association_threshold: float = Field(default=0.70, ge=0.0, lt=1.0)
    association_neighbors: int = Field(default=50, ge=1)
    association_min_weight: float = Field(default=0.2, gt=0.0, le=1.0)
    spread_damping: float = Field(default=0.5, ge=0.0, le=1.0)

    # Search
    search_default_limit: int = Field(default=10, ge=1)
    search_candidate_multiplier: int = Field(default=4, ge=1)
    search_max_candidates: int = Field(default=100, ge=1)
    search_timeout_seconds: Optional[float] = None

    # Consolidation
    prune_threshold: float = Field(default=0.05, ge=0.0, le=1.0)
    prune_protect_importance: float = Field(default=0.8, ge=0.0, le=1.0)
    dedup_threshold: float = Field(default=0.92, ge=0.0, le=1.0)
    dedup_batch_limit: int = Field(default=100, ge=1)
    association_prune_weight: float = Field(default=0.1, ge=0.0, le=1.0)

    def get_storage_path(self) -> str:
        """
        Determine the storage directory, creating it if needed.

        Priority:
        1. storage_path setting (explicit override via AGENTMEM_STORAGE_PATH)
        2. ~/.agentmem/storage
        """
        import logging
        logger = logging.getLogger(__name__)

        if self.storage_path:
            storage = Path(self.storage_path)
        else:
            storage = Path.home() / ".agentmem" / "storage"
            logger.info(f"Using default storage: {storage}")

        storage.mkdir(parents=True, exist_ok=True)
        return str(storage)


# Singleton instance
settings = Settings()
