"""
Project Memory - permanent knowledge captured while planning a project.

Long planning sessions outgrow any context window. Instead of replaying the
conversation, key requirements and decisions are extracted into memories that:
- live in the team scope keyed by the project id (never mixed with a user's
  personal memories or with other projects)
- never decay (decay_rate 0.0)
- are retrieved semantically, with weights that favor importance over strength

Personal facts mentioned in passing ("I prefer React") go to the speaker's
personal scope with normal decay instead.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from .memory import MemoryStore
from .schemas import MemoryEntry, PERMANENT_WEIGHTS, ScoredMemoryEntry
from .scope import MemoryScope, ScopeKey

logger = logging.getLogger(__name__)

# Sentence classifiers: (pattern, importance). Later matches override earlier ones.
PROJECT_PATTERNS = [
    (re.compile(r"\b(want to|need to|goal|objective|purpose|solve|build|project)\b", re.I), 0.95),
    (re.compile(r"\b(must have|required|requirement|should|need|expect)\b", re.I), 0.9),
    (re.compile(r"\b(use|using|prefer|technology|framework|database|platform|deploy)\b", re.I), 0.85),
    (re.compile(r"\b(user|users|audience|customer|people who|target)\b", re.I), 0.8),
    (re.compile(r"\b(feature|function|capability|can|will|allow|enable)\b", re.I), 0.75),
    (re.compile(r"\b(design|interface|UI|UX|look|feel|style|layout)\b", re.I), 0.7),
    (re.compile(r"\b(limit|constraint|restriction|cannot|shouldn't|avoid)\b", re.I), 0.85),
    (re.compile(r"\b(MVP|priority|first|later|phase|version|deadline|timeline)\b", re.I), 0.8),
    (re.compile(r"\b(integrate|integration|connect|API|third-party|service)\b", re.I), 0.8),
]
PERSONAL_PATTERN = re.compile(r"\b(I am|my name|I work|I'm a|I prefer|I like|I usually)\b", re.I)
PROJECT_OVERRIDE = re.compile(r"\b(want to build|need to create|project|application|app)\b", re.I)
PERSONAL_IMPORTANCE = 0.6

SENTENCE_SPLIT = re.compile(r"[.!?\n]+")
QUESTION_LINE = re.compile(r"^[?-]\s*(.+?)$", re.M)
SUMMARY_PATTERN = re.compile(r"(?:Based on|I understand|Summary:)(.{50,500})", re.I | re.S)
RECOMMENDATION_PATTERN = re.compile(r"(?:recommend|suggest|propose|consider using)\s+(.{20,200})", re.I)

# Buckets for consolidate_project_knowledge, checked in order
REQUIREMENT_PATTERN = re.compile(r"\b(must|required|requirement|need)\b", re.I)
CONSTRAINT_PATTERN = re.compile(r"\b(constraint|limit|cannot|restriction)\b", re.I)
FEATURE_PATTERN = re.compile(r"\b(feature|function|capability)\b", re.I)


@dataclass
class ExtractedFact:
    content: str
    importance: float
    is_project_requirement: bool = False
    is_user_info: bool = False


def analyze_sentence(sentence: str) -> Optional[ExtractedFact]:
    """Classify one sentence, or return None if it is not worth storing."""
    fact = None
    for pattern, importance in PROJECT_PATTERNS:
        if pattern.search(sentence):
            fact = ExtractedFact(sentence, importance, is_project_requirement=True)

    if PERSONAL_PATTERN.search(sentence) and not PROJECT_OVERRIDE.search(sentence):
        fact = ExtractedFact(sentence, PERSONAL_IMPORTANCE, is_user_info=True)

    return fact


def extract_facts(message: str) -> List[ExtractedFact]:
    """Split a user message into sentences and keep the informative ones."""
    if len(message) < 15:
        return []
    facts = []
    for sentence in SENTENCE_SPLIT.split(message):
        sentence = sentence.strip()
        if len(sentence) <= 10:
            continue
        fact = analyze_sentence(sentence)
        if fact:
            facts.append(fact)
    return facts


def extract_insights(response: str) -> List[ExtractedFact]:
    """Pull open questions, summaries and recommendations out of an assistant reply."""
    insights = []

    for match in QUESTION_LINE.finditer(response):
        question = match.group(1).strip()
        if len(question) > 10:
            insights.append(ExtractedFact(f"CLARIFICATION NEEDED: {question}", 0.7))

    summary = SUMMARY_PATTERN.search(response)
    if summary:
        insights.append(ExtractedFact(f"AI UNDERSTANDING: {summary.group(1).strip()}", 0.75))

    for match in RECOMMENDATION_PATTERN.finditer(response):
        insights.append(ExtractedFact(f"RECOMMENDATION: {match.group(1).strip()}", 0.65))

    return insights


class ProjectMemoryService:
    """
    Permanent, project-scoped memory on top of a MemoryStore.

    Usage:
        projects = ProjectMemoryService(store)
        await projects.store_requirement("proj-1", "scope", "Must support SSO")
        context = await projects.get_relevant_context("proj-1", "authentication")
    """

    def __init__(self, store: MemoryStore):
        self.store = store

    async def store_project_memory(
        self,
        project_id: str,
        type: str,
        content: str,
        importance: float
    ) -> MemoryEntry:
        """Store a memory that never decays, owned by the project."""
        key = ScopeKey.project(project_id)
        return await self.store.store(
            key.scope,
            key.owner_id,
            type,
            content,
            importance=importance,
            source="conversation",
            decay_rate=self.store.config.permanent_decay_rate,
        )

    async def store_requirement(
        self,
        project_id: str,
        category: str,
        content: str,
        importance: float = 0.9
    ) -> MemoryEntry:
        return await self.store_project_memory(
            project_id, "knowledge", f"[{category}] {content}", importance
        )

    async def store_decision(
        self,
        project_id: str,
        decision: str,
        rationale: str,
        importance: float = 0.85
    ) -> MemoryEntry:
        return await self.store_project_memory(
            project_id, "reflection", f"DECISION: {decision}\nRationale: {rationale}", importance
        )

    async def extract_planning_memories(
        self,
        project_id: str,
        user_message: str,
        ai_response: str,
        user_id: Optional[str] = None
    ) -> Dict[str, int]:
        """
        Store what is worth keeping from one planning exchange.

        Project requirements become permanent project memories; personal
        facts go to the user's personal scope (only when user_id is known);
        the assistant's open questions and recommendations become project
        reflections. A fact that fails to store is logged and skipped.

        Returns:
            {"memories_stored", "user_memories_stored"}
        """
        stored = 0
        user_stored = 0

        for fact in extract_facts(user_message):
            try:
                if fact.is_project_requirement:
                    await self.store_project_memory(project_id, "knowledge", fact.content, fact.importance)
                    stored += 1
                elif fact.is_user_info and user_id:
                    await self.store.store(
                        MemoryScope.PERSONAL, user_id, "conversation", fact.content,
                        importance=fact.importance, source="conversation",
                    )
                    user_stored += 1
            except Exception as e:
                logger.warning(f"Failed to store planning fact for project {project_id}: {e}")

        for insight in extract_insights(ai_response):
            try:
                await self.store_project_memory(project_id, "reflection", insight.content, insight.importance)
                stored += 1
            except Exception as e:
                logger.warning(f"Failed to store planning insight for project {project_id}: {e}")

        logger.info(f"Project {project_id}: stored {stored} project and {user_stored} personal memories")
        return {"memories_stored": stored, "user_memories_stored": user_stored}

    async def get_relevant_context(
        self,
        project_id: str,
        query: str,
        limit: int = 15
    ) -> List[ScoredMemoryEntry]:
        """Project-scope search with the permanent weight profile."""
        key = ScopeKey.project(project_id)
        return await self.store.search(
            query, key.scope, key.owner_id,
            limit=limit,
            weights=PERMANENT_WEIGHTS,
            strengthen_on_recall=False,
        )

    async def get_comprehensive_knowledge(
        self,
        project_id: str,
        query: str,
        limit: int = 50
    ) -> List[ScoredMemoryEntry]:
        """Three-hop associative recall over the whole project."""
        key = ScopeKey.project(project_id)
        return await self.store.deep_search(query, key.scope, key.owner_id, limit=limit, hops=3)

    async def consolidate_project_knowledge(self, project_id: str) -> Dict[str, List[str]]:
        """Group project memories into requirements, decisions, constraints and features."""
        key = ScopeKey.project(project_id)
        memories = await self.store.search(
            "project requirements features goals",
            key.scope, key.owner_id,
            limit=100,
            strengthen_on_recall=False,
        )

        buckets: Dict[str, List[str]] = {
            "requirements": [],
            "decisions": [],
            "constraints": [],
            "features": [],
        }
        for memory in memories:
            content = memory.content
            if "DECISION:" in content:
                buckets["decisions"].append(content)
            elif REQUIREMENT_PATTERN.search(content):
                buckets["requirements"].append(content)
            elif CONSTRAINT_PATTERN.search(content):
                buckets["constraints"].append(content)
            elif FEATURE_PATTERN.search(content):
                buckets["features"].append(content)
            else:
                buckets["requirements"].append(content)
        return buckets
