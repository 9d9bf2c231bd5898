"""Exception types raised by the memory subsystem."""


class AgentMemoryError(Exception):
    """Base class for all AgentMem errors."""


class ScopeError(AgentMemoryError, ValueError):
    """A scope / owner combination is invalid (e.g. personal memory without an owner)."""


class EmbeddingError(AgentMemoryError):
    """The embedding provider failed and no fallback was allowed."""


class EmbeddingDimensionError(AgentMemoryError):
    """
    Stored vectors do not match the active provider's dimension.

    This is a data-integrity fault. Repair it once with
    ``python -m agentmem.migrations.reembed`` rather than per request.
    """

    def __init__(self, expected: int, found: int):
        self.expected = expected
        self.found = found
        super().__init__(
            f"Embedding dimension mismatch: provider produces {expected}-d vectors, "
            f"storage holds {found}-d vectors"
        )


class MemoryNotFoundError(AgentMemoryError, KeyError):
    """No memory entry exists with the requested id."""

    def __str__(self) -> str:
        return f"Memory {self.args[0]} not found" if self.args else "Memory not found"
