# tests/conftest.py
"""
Pytest configuration for AgentMem tests.

Embeddings come from StaticEmbeddingProvider: every text a test uses is
mapped to a hand-built 8-d vector, so cosine similarities are exact and no
model is downloaded.
"""

import math
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from agentmem.config import Settings
from agentmem.database import DatabaseManager
from agentmem.embeddings import EmbeddingService
from agentmem.memory import MemoryStore
from agentmem.vectors import normalize

# Register pytest-asyncio plugin
pytest_plugins = ('pytest_asyncio',)

DIM = 8
EPOCH = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def axis(i: int, dim: int = DIM) -> List[float]:
    """Unit vector along axis i."""
    vec = [0.0] * dim
    vec[i] = 1.0
    return vec


def similar_to(base: int, similarity: float, other: int, dim: int = DIM) -> List[float]:
    """Unit vector whose cosine with axis(base) is exactly `similarity`."""
    vec = [0.0] * dim
    vec[base] = similarity
    vec[other] = math.sqrt(1.0 - similarity ** 2)
    return vec


class StaticEmbeddingProvider:
    """Deterministic provider backed by a text -> vector table."""

    def __init__(self, vectors: Optional[Dict[str, Sequence[float]]] = None, dimension: int = DIM):
        self.dimension = dimension
        self.vectors: Dict[str, List[float]] = {}
        self.calls = 0
        self.fail = False
        for text, vec in (vectors or {}).items():
            self.add(text, vec)

    def add(self, text: str, vector: Sequence[float]) -> None:
        assert len(vector) == self.dimension
        self.vectors[text] = normalize(vector)

    def embed(self, text: str) -> List[float]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        return list(self.vectors[text])

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [self.embed(t) for t in texts]


class FakeClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, start: datetime = EPOCH):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, hours: float = 0.0, seconds: float = 0.0) -> datetime:
        self.current = self.current + timedelta(hours=hours, seconds=seconds)
        return self.current


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test."
    )


@pytest.fixture
def temp_storage():
    """Create a temporary storage directory."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def config(temp_storage):
    return Settings(
        storage_path=temp_storage,
        embedding_backend="hash",
        embedding_dimension=DIM,
    )


@pytest.fixture
def provider():
    return StaticEmbeddingProvider()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def store(temp_storage, provider, clock, config):
    """A memory store on a fresh database with deterministic embeddings."""
    db = DatabaseManager(temp_storage)
    embeddings = EmbeddingService(provider=provider, config=config)
    memory_store = MemoryStore(db, embeddings=embeddings, config=config, clock=clock)
    await memory_store.initialize()
    yield memory_store
    await memory_store.close()
