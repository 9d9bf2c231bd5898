"""
AgentMem Server - long-term memory for agents over MCP.

NOTE: On Windows, stdio may hang. Set PYTHONUNBUFFERED=1 or run with -u flag.

Memories are scoped (personal / team / global), fade over time unless
recalled, link themselves to similar memories, and are retrieved by a hybrid
score of similarity, strength, recency, importance and recall frequency.

10 Tools:
- store_memory: Store a fact in one scope
- search_memories: Hybrid search within one scope
- search_all_scopes: Personal + team + global search for context assembly
- store_project_requirement: Permanent project requirement
- store_project_decision: Permanent project decision with rationale
- get_project_context: Relevant permanent knowledge for a project
- list_memories: Most recent memories of one scope
- delete_memory: Remove a memory and its links
- consolidate: Run decay, pruning, deduplication and link cleanup
- get_statistics: Storage statistics
"""

import asyncio
import logging
import sys
from typing import Any, Dict, Optional

try:
    from mcp.server.fastmcp import FastMCP
except ImportError:
    print("ERROR: mcp not installed. Run: pip install mcp", file=sys.stderr)
    sys.exit(1)

from .config import settings
from .consolidation import ConsolidationService
from .database import DatabaseManager
from .errors import AgentMemoryError, EmbeddingDimensionError, EmbeddingError, MemoryNotFoundError, ScopeError
from .logging_config import configure_logging, with_request_id
from .memory import MemoryStore
from .project_memory import ProjectMemoryService

logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("AgentMem")


# ============================================================================
# Service wiring - created lazily inside the server's event loop
# ============================================================================
_store: Optional[MemoryStore] = None
_store_lock = asyncio.Lock()


async def get_store() -> MemoryStore:
    """Get (or create on first use) the process's memory store."""
    global _store
    if _store is not None:
        return _store
    async with _store_lock:
        if _store is None:
            db = DatabaseManager(storage_path=settings.get_storage_path(), db_name=settings.db_name)
            store = MemoryStore(db, config=settings)
            await store.initialize()
            _store = store
    return _store


def _error(e: Exception) -> Dict[str, Any]:
    """Convert a service exception into a tool error payload."""
    if isinstance(e, ScopeError):
        code = "INVALID_SCOPE"
    elif isinstance(e, MemoryNotFoundError):
        code = "NOT_FOUND"
    elif isinstance(e, EmbeddingDimensionError):
        code = "EMBEDDING_DIMENSION_MISMATCH"
    elif isinstance(e, EmbeddingError):
        code = "EMBEDDING_UNAVAILABLE"
    elif isinstance(e, asyncio.TimeoutError):
        code = "TIMEOUT"
    elif isinstance(e, ValueError):
        code = "INVALID_ARGUMENT"
    else:
        code = "INTERNAL_ERROR"
    return {"error": code, "message": str(e) or type(e).__name__}


def _results(results) -> Dict[str, Any]:
    return {"count": len(results), "results": [r.to_dict() for r in results]}


# ============================================================================
# Tool 1: STORE_MEMORY
# ============================================================================
@mcp.tool()
@with_request_id
async def store_memory(
    scope: str,
    content: str,
    scope_owner_id: Optional[str] = None,
    type: str = "knowledge",
    importance: float = 0.5,
    source: str = "explicit"
) -> Dict[str, Any]:
    """
    Store one fact in long-term memory.

    Args:
        scope: 'personal' (owner = user id), 'team' (owner = team id) or 'global' (no owner)
        content: The fact; keep it to one fact per memory
        scope_owner_id: Owner of the scope
        type: knowledge, conversation, reflection, observation
        importance: 0-1; important memories decay more slowly
        source: Provenance tag

    Returns:
        The created memory
    """
    try:
        store = await get_store()
        entry = await store.store(scope, scope_owner_id, type, content, importance=importance, source=source)
        return entry.to_dict()
    except (AgentMemoryError, ValueError) as e:
        return _error(e)


# ============================================================================
# Tool 2: SEARCH_MEMORIES
# ============================================================================
@mcp.tool()
@with_request_id
async def search_memories(
    query: str,
    scope: str,
    scope_owner_id: Optional[str] = None,
    limit: int = 10,
    weights: Optional[Dict[str, float]] = None,
    strengthen_on_recall: bool = True
) -> Dict[str, Any]:
    """
    Hybrid search within exactly one scope.

    Args:
        query: What to look for
        scope: personal, team or global
        scope_owner_id: Owner of the scope
        limit: Max results
        weights: Optional overrides for similarity/strength/recency/importance/frequency
        strengthen_on_recall: Reinforce the returned memories

    Returns:
        Ranked memories with their scores
    """
    try:
        store = await get_store()
        results = await store.search(
            query, scope, scope_owner_id,
            limit=limit, weights=weights, strengthen_on_recall=strengthen_on_recall
        )
        return _results(results)
    except (AgentMemoryError, ValueError, asyncio.TimeoutError) as e:
        return _error(e)


# ============================================================================
# Tool 3: SEARCH_ALL_SCOPES
# ============================================================================
@mcp.tool()
@with_request_id
async def search_all_scopes(
    query: str,
    user_id: Optional[str] = None,
    team_id: Optional[str] = None,
    limit: int = 10
) -> Dict[str, Any]:
    """
    Search the caller's personal memories, their team's, and global ones.

    Personal memories get 40% of the limit, team and global 30% each.
    """
    try:
        store = await get_store()
        results = await store.search_all_scopes(query, user_id=user_id, team_id=team_id, limit=limit)
        return _results(results)
    except (AgentMemoryError, ValueError, asyncio.TimeoutError) as e:
        return _error(e)


# ============================================================================
# Tools 4-6: PROJECT MEMORY (permanent, never decays)
# ============================================================================
@mcp.tool()
@with_request_id
async def store_project_requirement(
    project_id: str,
    category: str,
    content: str,
    importance: float = 0.9
) -> Dict[str, Any]:
    """
    Store a project requirement. Project knowledge never decays.

    Args:
        project_id: The project
        category: e.g. 'feature', 'constraint', 'audience'
        content: The requirement
        importance: 0-1
    """
    try:
        store = await get_store()
        entry = await ProjectMemoryService(store).store_requirement(project_id, category, content, importance)
        return entry.to_dict()
    except (AgentMemoryError, ValueError) as e:
        return _error(e)


@mcp.tool()
@with_request_id
async def store_project_decision(
    project_id: str,
    decision: str,
    rationale: str,
    importance: float = 0.85
) -> Dict[str, Any]:
    """Store a project design decision with its rationale. Never decays."""
    try:
        store = await get_store()
        entry = await ProjectMemoryService(store).store_decision(project_id, decision, rationale, importance)
        return entry.to_dict()
    except (AgentMemoryError, ValueError) as e:
        return _error(e)


@mcp.tool()
@with_request_id
async def get_project_context(
    project_id: str,
    query: str,
    limit: int = 15,
    comprehensive: bool = False
) -> Dict[str, Any]:
    """
    Retrieve permanent project knowledge relevant to a query.

    Args:
        project_id: The project
        query: What the agent is working on
        limit: Max memories
        comprehensive: Follow association links three hops deep (for full write-ups)
    """
    try:
        store = await get_store()
        projects = ProjectMemoryService(store)
        if comprehensive:
            results = await projects.get_comprehensive_knowledge(project_id, query, limit=limit)
        else:
            results = await projects.get_relevant_context(project_id, query, limit=limit)
        return _results(results)
    except (AgentMemoryError, ValueError, asyncio.TimeoutError) as e:
        return _error(e)


# ============================================================================
# Tools 7-8: LISTING AND DELETION
# ============================================================================
@mcp.tool()
@with_request_id
async def list_memories(
    scope: str,
    scope_owner_id: Optional[str] = None,
    limit: int = 50,
    min_importance: Optional[float] = None
) -> Dict[str, Any]:
    """
    List memories of one scope, newest first (or most important first when
    min_importance is given).
    """
    try:
        store = await get_store()
        if min_importance is not None:
            entries = await store.list_by_importance(scope, scope_owner_id, min_importance=min_importance, limit=limit)
        else:
            entries = await store.list_entries(scope, scope_owner_id, limit=limit)
        return {"count": len(entries), "memories": [e.to_dict() for e in entries]}
    except (AgentMemoryError, ValueError) as e:
        return _error(e)


@mcp.tool()
@with_request_id
async def delete_memory(memory_id: str) -> Dict[str, Any]:
    """Delete a memory together with its embedding and association links."""
    try:
        store = await get_store()
        await store.delete(memory_id)
        return {"status": "deleted", "id": memory_id}
    except (AgentMemoryError, ValueError) as e:
        return _error(e)


# ============================================================================
# Tools 9-10: MAINTENANCE
# ============================================================================
@mcp.tool()
@with_request_id
async def consolidate() -> Dict[str, Any]:
    """
    Run a consolidation cycle: persist decay, prune forgotten memories,
    merge near-duplicates, clean up weak links.
    """
    try:
        store = await get_store()
        result = await ConsolidationService(store).consolidate()
        return result.model_dump()
    except AgentMemoryError as e:
        return _error(e)


@mcp.tool()
@with_request_id
async def get_statistics() -> Dict[str, Any]:
    """Memory counts per scope and type, link and embedding counts."""
    try:
        store = await get_store()
        return await store.get_statistics()
    except AgentMemoryError as e:
        return _error(e)


# ============================================================================
# Entry point
# ============================================================================
def main():
    """Run the MCP server."""
    import argparse

    parser = argparse.ArgumentParser(description="AgentMem Server")
    parser.add_argument(
        "--transport", "-t",
        choices=["stdio", "sse"],
        default="stdio",
        help="Transport type: stdio (default) or sse (HTTP server)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8765,
        help="Port for SSE transport (default: 8765)"
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host for SSE transport (default: 127.0.0.1)"
    )
    args = parser.parse_args()

    configure_logging(settings.log_level, settings.log_json)

    logger.info("Starting AgentMem server...")
    logger.info(f"Storage: {settings.get_storage_path()}")
    logger.info(f"Transport: {args.transport}")

    # The store is created on the first tool call, inside FastMCP's event loop
    try:
        if args.transport == "sse":
            mcp.settings.host = args.host
            mcp.settings.port = args.port
            logger.info(f"SSE server at http://{args.host}:{args.port}/sse")
            mcp.run(transport="sse")
        else:
            mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise


if __name__ == "__main__":
    main()
