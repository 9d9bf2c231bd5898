"""
AgentMem CLI - Command-line interface for the memory store.

Used for maintenance jobs (cron) and direct inspection.

Usage:
    python -m agentmem.cli [--json] [--storage-path PATH] <command>

    python -m agentmem.cli store --scope SCOPE [--owner ID] --content TEXT [--type TYPE] [--importance N] [--permanent]
    python -m agentmem.cli search QUERY --scope SCOPE [--owner ID] [--limit N] [--no-strengthen]
    python -m agentmem.cli consolidate
    python -m agentmem.cli persist-decay
    python -m agentmem.cli stats
    python -m agentmem.cli reembed [--batch-size N]

Global Options:
    --json              Output as JSON for automation/scripting
    --storage-path PATH Storage directory (sets AGENTMEM_STORAGE_PATH)
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from .config import Settings
from .consolidation import ConsolidationService
from .context import confidence_label
from .database import DatabaseManager
from .errors import AgentMemoryError
from .logging_config import configure_logging
from .memory import MemoryStore
from .migrations.reembed import reembed_all


def safe_print(text: str, file=None) -> None:
    """Print text safely, handling Unicode encoding errors on Windows."""
    output = file or sys.stdout
    try:
        print(text, file=output)
    except UnicodeEncodeError:
        encoding = output.encoding or 'utf-8'
        safe_text = text.encode(encoding, errors='replace').decode(encoding, errors='replace')
        print(safe_text, file=output)


async def store_command(store: MemoryStore, args) -> dict:
    entry = await store.store(
        args.scope,
        args.owner,
        args.type,
        args.content,
        importance=args.importance,
        source=args.source,
        decay_rate=store.config.permanent_decay_rate if args.permanent else None,
    )
    return entry.to_dict()


async def search_command(store: MemoryStore, args) -> dict:
    results = await store.search(
        args.query,
        args.scope,
        args.owner,
        limit=args.limit,
        strengthen_on_recall=not args.no_strengthen,
    )
    await store.drain()
    return {"query": args.query, "count": len(results), "results": [r.to_dict() for r in results]}


async def consolidate_command(store: MemoryStore, args) -> dict:
    result = await ConsolidationService(store).consolidate()
    return result.model_dump()


async def persist_decay_command(store: MemoryStore, args) -> dict:
    return {"memories_decayed": await store.persist_decay()}


async def stats_command(store: MemoryStore, args) -> dict:
    return await store.get_statistics()


async def reembed_command(store: MemoryStore, args) -> dict:
    return await reembed_all(store.db, store.embeddings, batch_size=args.batch_size)


COMMANDS = {
    "store": store_command,
    "search": search_command,
    "consolidate": consolidate_command,
    "persist-decay": persist_decay_command,
    "stats": stats_command,
    "reembed": reembed_command,
}


def format_result(command: str, result: dict) -> str:
    """Human-readable rendering of a command result."""
    if command == "store":
        return f"Memory stored: {result['id']} ({result['scope']}, decay {result['decay_rate']})"

    if command == "search":
        if not result["results"]:
            return f"No memories found for: {result['query']}"
        lines = [f"{result['count']} result(s) for: {result['query']}"]
        for r in result["results"]:
            via = f" (via {r['activated_by']})" if r.get("activated_by") else ""
            lines.append(
                f"  [{confidence_label(r['final_score'])} {r['final_score']:.3f}] {r['content'][:80]}{via}"
            )
        return "\n".join(lines)

    if command == "consolidate":
        lines = [
            "Consolidation complete:",
            f"  Memories decayed:      {result['memories_decayed']}",
            f"  Memories pruned:       {result['memories_pruned']}",
            f"  Memories merged:       {result['memories_merged']}",
            f"  Associations cleaned:  {result['associations_cleaned']}",
        ]
        for step, error in result.get("errors", {}).items():
            lines.append(f"  ! {step} failed: {error}")
        return "\n".join(lines)

    if command == "persist-decay":
        return f"Persisted decay for {result['memories_decayed']} memories"

    if command == "stats":
        return "\n".join([
            f"Total memories: {result.get('total_memories', 0)}",
            f"By scope: {result.get('by_scope', {})}",
            f"By type: {result.get('by_type', {})}",
            f"Permanent: {result.get('permanent_memories', 0)}",
            f"Associations: {result.get('associations', 0)}",
            f"Embeddings: {result.get('embeddings', 0)} ({result.get('embedding_dimension')}-d)",
        ])

    if command == "reembed":
        return f"Re-embedded {result['reembedded']} of {result['total']} memories ({result['dimension']} dimensions)"

    return json.dumps(result, default=str)


async def run_command(store: MemoryStore, args) -> dict:
    try:
        return await COMMANDS[args.command](store, args)
    finally:
        await store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AgentMem CLI")

    # Global options
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--storage-path", help="Storage directory")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # store command
    store_parser = subparsers.add_parser("store", help="Store a memory")
    store_parser.add_argument("--scope", required=True, choices=["personal", "team", "global"])
    store_parser.add_argument("--owner", default=None, help="Scope owner id (user, team or project)")
    store_parser.add_argument("--content", required=True, help="The memory content")
    store_parser.add_argument("--type", default="knowledge", help="Memory type")
    store_parser.add_argument("--importance", type=float, default=0.5, help="Importance 0-1")
    store_parser.add_argument("--source", default="explicit", help="Provenance tag")
    store_parser.add_argument("--permanent", action="store_true", help="Never decay")

    # search command
    search_parser = subparsers.add_parser("search", help="Search memories in one scope")
    search_parser.add_argument("query", help="Search text")
    search_parser.add_argument("--scope", required=True, choices=["personal", "team", "global"])
    search_parser.add_argument("--owner", default=None, help="Scope owner id")
    search_parser.add_argument("--limit", type=int, default=10, help="Max results")
    search_parser.add_argument("--no-strengthen", action="store_true", help="Do not reinforce results")

    subparsers.add_parser("consolidate", help="Run a consolidation cycle")
    subparsers.add_parser("persist-decay", help="Fold elapsed decay into stored strength")
    subparsers.add_parser("stats", help="Show memory statistics")

    reembed_parser = subparsers.add_parser("reembed", help="Regenerate all embeddings")
    reembed_parser.add_argument("--batch-size", type=int, default=64, help="Memories per embedding call")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = Settings(storage_path=args.storage_path) if args.storage_path else Settings()
    configure_logging(config.log_level, config.log_json)

    db = DatabaseManager(config.get_storage_path(), db_name=config.db_name)
    store = MemoryStore(db, config=config)

    try:
        result = asyncio.run(run_command(store, args))
    except KeyboardInterrupt:
        print("\nCancelled by user.")
        return 130
    except (AgentMemoryError, ValueError) as e:
        if args.json:
            print(json.dumps({"error": type(e).__name__, "message": str(e)}))
        else:
            safe_print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result, default=str))
    else:
        safe_print(format_result(args.command, result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
