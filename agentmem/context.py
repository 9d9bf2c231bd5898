"""
Context Builder - assembles an agent's system prompt from ranked memories.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional

from .memory import MemoryStore
from .schemas import ScoredMemoryEntry

HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.4

# Rough estimate: one token per four characters
CHARS_PER_TOKEN = 4


def confidence_label(final_score: float) -> str:
    if final_score >= HIGH_CONFIDENCE:
        return "high"
    if final_score >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


def estimate_tokens(*texts: Optional[str]) -> int:
    return math.ceil(sum(len(t) for t in texts if t) / CHARS_PER_TOKEN)


@dataclass
class AgentContext:
    system_prompt: str
    memories: List[ScoredMemoryEntry] = field(default_factory=list)
    task_details: Optional[str] = None
    estimated_tokens: int = 0

    def to_dict(self) -> dict:
        return {
            "system_prompt": self.system_prompt,
            "memories": [m.to_dict() for m in self.memories],
            "task_details": self.task_details,
            "estimated_tokens": self.estimated_tokens,
        }


def format_memory_section(memories: List[ScoredMemoryEntry]) -> str:
    if not memories:
        return ""
    lines = [
        f"- [{confidence_label(m.final_score)} relevance] {m.content}"
        for m in memories
    ]
    return "\n\n## Relevant Context from Memory\n" + "\n".join(lines)


class ContextBuilder:
    """Builds the memory-aware prompt an agent starts a turn with."""

    def __init__(self, store: MemoryStore):
        self.store = store

    async def build_context(
        self,
        agent_role_prompt: str,
        user_id: Optional[str] = None,
        team_id: Optional[str] = None,
        task_details: Optional[str] = None,
        query: Optional[str] = None,
        limit: int = 10
    ) -> AgentContext:
        memories: List[ScoredMemoryEntry] = []
        if query:
            memories = await self.store.search_all_scopes(
                query, user_id=user_id, team_id=team_id, limit=limit, strengthen_on_recall=True
            )

        system_prompt = agent_role_prompt + format_memory_section(memories)
        return AgentContext(
            system_prompt=system_prompt,
            memories=memories,
            task_details=task_details,
            estimated_tokens=estimate_tokens(system_prompt, task_details),
        )
