"""
Command-line interface for local-memory.

Sub-commands
------------
init        – Create the backing collection if it does not exist.
add         – Store a piece of text for a user.
search      – Retrieve a user's most relevant memories for a query.
chat        – Chat with the model using the user's memories as context.
delete      – Delete a memory chunk by its ID.
delete-user – Delete every memory of a user.
stats       – Print the number of stored memories.
health      – Check that ChromaDB and Ollama are reachable.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from .config import MemoryConfig
from .errors import LocalMemoryError
from .logging import setup_logging
from .memory import MemoryManager


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="local-memory",
        description="Local long-term memory for LLM chat sessions.",
    )
    parser.add_argument(
        "--chroma-url",
        default=None,
        metavar="URL",
        help="Chroma server URL (default: use the local persistent store).",
    )
    parser.add_argument(
        "--db",
        default=None,
        metavar="PATH",
        help="Path to the local ChromaDB store (default: ~/.cache/local-memory).",
    )
    parser.add_argument(
        "--collection",
        default=None,
        metavar="NAME",
        help="ChromaDB collection name (default: memories).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # init
    sub.add_parser("init", help="Initialize the memory store.")

    # add
    p_add = sub.add_parser("add", help="Add a memory.")
    p_add.add_argument("-u", "--user", required=True, help="User ID.")
    p_add.add_argument("-c", "--content", required=True, help="Memory content.")
    p_add.add_argument("-m", "--metadata", default=None, metavar="JSON", help="Metadata as a JSON object.")

    # search
    p_search = sub.add_parser("search", help="Search memories.")
    p_search.add_argument("-u", "--user", required=True, help="User ID.")
    p_search.add_argument("-q", "--query", required=True, help="Search query.")
    p_search.add_argument(
        "-l",
        "--limit",
        type=int,
        default=5,
        metavar="N",
        help="Number of results (default: 5).",
    )
    p_search.add_argument(
        "-t",
        "--threshold",
        type=float,
        default=0.5,
        metavar="SCORE",
        help="Minimum similarity score (default: 0.5).",
    )
    p_search.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Output results as JSON.",
    )

    # chat
    p_chat = sub.add_parser("chat", help="Chat with memory context.")
    p_chat.add_argument("-u", "--user", required=True, help="User ID.")
    p_chat.add_argument("-m", "--message", required=True, help="Your message.")
    p_chat.add_argument(
        "--no-memory",
        action="store_false",
        dest="memory",
        help="Disable memory context.",
    )
    p_chat.add_argument("-s", "--stream", action="store_true", help="Stream the response.")

    # delete
    p_delete = sub.add_parser("delete", help="Delete a memory by ID.")
    p_delete.add_argument("-i", "--id", required=True, help="Memory ID to delete.")

    # delete-user
    p_delete_user = sub.add_parser("delete-user", help="Delete all memories of a user.")
    p_delete_user.add_argument("-u", "--user", required=True, help="User ID.")

    # stats
    p_stats = sub.add_parser("stats", help="Print memory statistics.")
    p_stats.add_argument("-u", "--user", default=None, help="User ID (default: all users).")

    # health
    sub.add_parser("health", help="Check system health.")

    return parser


def _config_from_args(args: argparse.Namespace) -> MemoryConfig:
    overrides = {
        "chroma_url": args.chroma_url,
        "chroma_path": args.db,
        "collection_name": args.collection,
    }
    return MemoryConfig(**{k: v for k, v in overrides.items() if v is not None})


async def _run(manager: MemoryManager, args: argparse.Namespace) -> int:
    # Health probes must work even when the store cannot be provisioned.
    if args.command != "health":
        await manager.initialize()

    if args.command == "init":
        print("Memory system initialized.")

    elif args.command == "add":
        metadata = json.loads(args.metadata) if args.metadata else {}
        if not isinstance(metadata, dict):
            print("Error: metadata must be a JSON object.", file=sys.stderr)
            return 1
        ids = await manager.add_memory(args.user, args.content, metadata)
        print(f"Added {len(ids)} memory chunk(s): {', '.join(ids)}")

    elif args.command == "search":
        results = await manager.search_memories(
            args.user,
            args.query,
            limit=args.limit,
            score_threshold=args.threshold,
        )
        if args.as_json:
            print(json.dumps([r.to_dict() for r in results], indent=2))
            return 0
        if not results:
            print("No memories found.")
            return 0
        print(f"Found {len(results)} result(s):\n")
        for i, r in enumerate(results, 1):
            print(f"[{i}] Score: {r.score * 100:.1f}%")
            print(f"    {r.text}")
            print(f"    (ID: {r.id})")
            print()

    elif args.command == "chat":
        if args.stream:
            print("Assistant: ", end="", flush=True)
            async for fragment in manager.chat_stream(
                args.user, args.message, include_memory_context=args.memory
            ):
                print(fragment, end="", flush=True)
            print()
        else:
            result = await manager.chat(
                args.user, args.message, include_memory_context=args.memory
            )
            print(f"Assistant: {result.response}")
            print(f"\n(Used {result.memories_used} memories)")

    elif args.command == "delete":
        await manager.delete_memory(args.id)
        print(f"Deleted memory {args.id}.")

    elif args.command == "delete-user":
        await manager.delete_user_memories(args.user)
        print(f"Deleted all memories for user {args.user}.")

    elif args.command == "stats":
        count = await manager.get_memory_count(args.user)
        if args.user:
            print(f"User {args.user} has {count} memories")
        else:
            print(f"Total memories: {count}")

    elif args.command == "health":
        health = await manager.health_check()
        print("System Health:")
        print(f"  ChromaDB: {'healthy' if health.vector_store else 'UNHEALTHY'}")
        print(f"  Ollama:   {'healthy' if health.embedding_service else 'UNHEALTHY'}")
        return 0 if health.healthy else 1

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = _config_from_args(args)
    setup_logging(config.log_level, config.log_json)
    manager = MemoryManager(config)

    try:
        return asyncio.run(_run(manager, args))
    except json.JSONDecodeError as e:
        print(f"Error: invalid metadata JSON: {e}", file=sys.stderr)
        return 1
    except LocalMemoryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
