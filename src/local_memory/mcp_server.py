"""
MCP (Model Context Protocol) server for local-memory.

Exposes the MemoryManager as a set of tools so that coding assistants
(VS Code / Copilot, Claude Desktop, ...) can persist and retrieve
per-user memories.

Run as a stdio server:
    python -m local_memory.mcp_server

Or over streamable HTTP via the installed entry-point:
    local-memory-mcp --http

Configuration is read from ``LOCAL_MEMORY_*`` environment variables
(see :class:`local_memory.config.MemoryConfig`).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import MemoryConfig
from .errors import LocalMemoryError
from .logging import setup_logging
from .memory import REFINE_SCORE_THRESHOLD, MemoryManager

# Lazily built and initialised on first tool call, shared by all tools.
_manager: MemoryManager | None = None
_manager_lock = asyncio.Lock()


async def _get_manager() -> MemoryManager:
    global _manager
    async with _manager_lock:
        if _manager is None:
            manager = MemoryManager(MemoryConfig())
            await manager.initialize()
            _manager = manager
    return _manager


def _error(e: Exception) -> str:
    return json.dumps({"error": str(e)})


# ---------------------------------------------------------------------------
# FastMCP server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "memory-context-provider",
    instructions=(
        "Long-term memory for the user you are assisting. "
        "Call `refine_prompt_with_memories` BEFORE answering to pull in "
        "relevant context, and `store_conversation` AFTER answering to "
        "remember the exchange. "
        "Use `search_memories` and `add_memory` for direct access, and "
        "`get_memory_stats` to see how many memories a user has."
    ),
)


@mcp.tool()
async def search_memories(user_id: str, query: str, limit: int = 5) -> str:
    """
    Search for relevant memories based on a query.

    Args:
        user_id: User ID to search memories for.
        query:   Search query to find relevant memories.
        limit:   Maximum number of results to return (default 5).

    Returns:
        JSON object with ``results`` (text, score, timestamp) and ``count``.
    """
    try:
        manager = await _get_manager()
        results = await manager.search_memories(
            user_id, query, limit=limit, score_threshold=REFINE_SCORE_THRESHOLD
        )
    except LocalMemoryError as e:
        return _error(e)
    return json.dumps(
        {
            "results": [
                {"text": r.text, "score": r.score, "timestamp": r.timestamp}
                for r in results
            ],
            "count": len(results),
        },
        indent=2,
    )


@mcp.tool()
async def add_memory(
    user_id: str,
    content: str,
    metadata: dict[str, Any] | None = None,
) -> str:
    """
    Store new information in the memory system for future reference.

    Args:
        user_id:  User ID to store memory for.
        content:  Content to remember.
        metadata: Optional metadata (tags, category, etc.).

    Returns:
        JSON object with ``success``, ``memory_ids`` and ``count``.
    """
    try:
        manager = await _get_manager()
        ids = await manager.add_memory(user_id, content, metadata)
    except LocalMemoryError as e:
        return _error(e)
    return json.dumps({"success": True, "memory_ids": ids, "count": len(ids)})


@mcp.tool()
async def get_memory_stats(user_id: str) -> str:
    """
    Get statistics about a user's stored memories.

    Args:
        user_id: User ID to get stats for.
    """
    try:
        manager = await _get_manager()
        count = await manager.get_memory_count(user_id)
    except LocalMemoryError as e:
        return _error(e)
    return json.dumps({"user_id": user_id, "total_memories": count})


@mcp.tool()
async def refine_prompt_with_memories(
    user_id: str,
    prompt: str,
    auto_store: bool = False,
) -> str:
    """
    Search memories and refine the user prompt with relevant context.

    Use this BEFORE generating a response to provide context-aware answers.

    Args:
        user_id:    User ID to search memories for.
        prompt:     The user's original prompt or question.
        auto_store: Also store the question as a memory (default False).
    """
    try:
        manager = await _get_manager()
        refined = await manager.refine_prompt(user_id, prompt, auto_store=auto_store)
    except LocalMemoryError as e:
        return _error(e)
    return json.dumps(
        {
            "original_prompt": refined.original_prompt,
            "refined_prompt": refined.refined_prompt,
            "memories_used": refined.memories_used,
            "memories": [m.text for m in refined.memories],
        }
    )


@mcp.tool()
async def store_conversation(
    user_id: str,
    question: str,
    answer: str,
    metadata: dict[str, Any] | None = None,
) -> str:
    """
    Store a Q&A pair for future reference.

    Use this AFTER generating a response to remember the interaction.

    Args:
        user_id:  User ID to store the conversation for.
        question: The user's question.
        answer:   The generated answer.
        metadata: Optional metadata about the conversation.
    """
    try:
        manager = await _get_manager()
        ids = await manager.store_conversation(user_id, question, answer, metadata)
    except LocalMemoryError as e:
        return _error(e)
    return json.dumps({"success": True, "memory_ids": ids, "stored": "conversation"})


@mcp.resource("memory://recent", mime_type="application/json")
def recent_memories() -> str:
    """Pointer for clients that browse resources instead of calling tools."""
    return json.dumps(
        {
            "message": "Use the search_memories tool to query memories",
            "generated_at": int(time.time() * 1000),
        }
    )


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Run the MCP server over stdio (default) or streamable HTTP."""
    parser = argparse.ArgumentParser(prog="local-memory-mcp")
    parser.add_argument("--http", action="store_true", help="Serve over streamable HTTP.")
    args = parser.parse_args(argv)

    config = MemoryConfig()
    setup_logging(config.log_level, config.log_json)

    if args.http:
        mcp.settings.host = config.host
        mcp.settings.port = config.port
        mcp.run(transport="streamable-http")
    else:
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
