"""local-memory HTTP API.

FastAPI application exposing the memory pipeline over REST:

- ``/health`` and ``/api/*`` for memories, search, chat and stats
- ``/api/copilot/*`` for editor integrations that refine prompts and
  store conversations automatically

Field names on the wire are camelCase.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import MemoryConfig
from .errors import LocalMemoryError, ValidationError
from .logging import setup_logging
from .memory import MemoryManager
from .models import SearchResult

log = structlog.get_logger()

#: Search text that matches stored "Q: ...\nA: ..." exchanges.
CONVERSATION_QUERY = "Q: A:"


# Pydantic models for API
class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AddMemoryRequest(_Request):
    user_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    metadata: Optional[dict[str, Any]] = None


class SearchRequest(_Request):
    user_id: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1)
    limit: int = Field(default=5, ge=1, le=50)
    score_threshold: float = Field(default=0.5, ge=0.0, le=1.0)


class ChatRequest(_Request):
    user_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    system_prompt: Optional[str] = None
    include_memory_context: bool = True
    max_context_memories: int = Field(default=5, ge=1, le=20)
    stream: bool = False


class CopilotChatRequest(_Request):
    user_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    auto_refine: bool = True
    auto_store: bool = True
    include_memory_context: bool = True
    system_prompt: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class RefinePromptRequest(_Request):
    user_id: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    limit: int = Field(default=5, ge=1, le=50)


class StoreConversationRequest(_Request):
    user_id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
    metadata: Optional[dict[str, Any]] = None


def _result(r: SearchResult) -> dict[str, Any]:
    return {
        "id": r.id,
        "score": r.score,
        "text": r.text,
        "timestamp": r.timestamp,
        "metadata": r.metadata,
    }


def create_app(
    config: MemoryConfig | None = None,
    manager: MemoryManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Pipeline settings, read from the environment when omitted
        manager: Pre-built pipeline (tests inject one backed by fakes)

    Returns:
        Configured FastAPI application
    """
    memory = manager or MemoryManager(config or MemoryConfig())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await memory.initialize()
        log.info("memory_api_started")
        yield
        log.info("memory_api_shutdown")

    app = FastAPI(
        title="local-memory",
        description="Long-term memory for local LLM assistants",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.memory = memory

    # ===== Error handlers =====

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Validation error",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(LocalMemoryError)
    async def memory_error(request: Request, exc: LocalMemoryError):
        status = 400 if isinstance(exc, ValidationError) else 500
        log.error("request_failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=status, content={"success": False, "error": str(exc)})

    # ===== Health =====

    @app.get("/health", tags=["System"])
    async def health():
        status = await memory.health_check()
        return JSONResponse(
            status_code=200 if status.healthy else 503,
            content={
                "status": "healthy" if status.healthy else "unhealthy",
                "services": {
                    "vectorStore": status.vector_store,
                    "embeddingService": status.embedding_service,
                },
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    # ===== Memory endpoints =====

    @app.post("/api/memories", tags=["Memories"])
    async def add_memory(request: AddMemoryRequest):
        ids = await memory.add_memory(request.user_id, request.content, request.metadata)
        return {"success": True, "memoryIds": ids, "count": len(ids)}

    @app.post("/api/search", tags=["Memories"])
    async def search(request: SearchRequest):
        results = await memory.search_memories(
            request.user_id,
            request.query,
            limit=request.limit,
            score_threshold=request.score_threshold,
        )
        return {"success": True, "results": [_result(r) for r in results], "count": len(results)}

    @app.delete("/api/memories/{memory_id}", tags=["Memories"])
    async def delete_memory(memory_id: str):
        await memory.delete_memory(memory_id)
        return {"success": True, "message": "Memory deleted"}

    @app.delete("/api/users/{user_id}/memories", tags=["Memories"])
    async def delete_user_memories(user_id: str):
        await memory.delete_user_memories(user_id)
        return {"success": True, "message": "User memories deleted"}

    @app.get("/api/stats", tags=["Memories"])
    async def stats(user_id: Optional[str] = Query(default=None, alias="userId")):
        count = await memory.get_memory_count(user_id)
        return {"success": True, "count": count, "userId": user_id or "all"}

    # ===== Chat =====

    @app.post("/api/chat", tags=["Chat"])
    async def chat(request: ChatRequest):
        options = dict(
            system_prompt=request.system_prompt,
            include_memory_context=request.include_memory_context,
            max_context_memories=request.max_context_memories,
        )
        if not request.stream:
            result = await memory.chat(request.user_id, request.message, **options)
            return {"success": True, "response": result.response, "memoriesUsed": result.memories_used}

        stream = memory.chat_stream(request.user_id, request.message, **options)
        # Pull the first fragment now so context-assembly failures still
        # produce an error status instead of a broken 200.
        try:
            first: str | None = await stream.__anext__()
        except StopAsyncIteration:
            first = None

        async def body() -> AsyncIterator[str]:
            try:
                if first is not None:
                    yield first
                async for fragment in stream:
                    yield fragment
            finally:
                await stream.aclose()

        return StreamingResponse(body(), media_type="text/plain; charset=utf-8")

    # ===== Copilot integration =====

    @app.post("/api/copilot/chat", tags=["Copilot"])
    async def copilot_chat(request: CopilotChatRequest):
        result = await memory.assisted_chat(
            request.user_id,
            request.message,
            system_prompt=request.system_prompt,
            auto_refine=request.auto_refine and request.include_memory_context,
            auto_store=request.auto_store,
            metadata=request.metadata,
        )
        return {
            "response": result.response,
            "memoriesUsed": result.memories_used,
            "memories": result.memories,
            "stored": result.stored,
            "refined": result.refined,
        }

    @app.post("/api/copilot/refine-prompt", tags=["Copilot"])
    async def refine_prompt(request: RefinePromptRequest):
        refined = await memory.refine_prompt(request.user_id, request.prompt, limit=request.limit)
        return {
            "originalPrompt": refined.original_prompt,
            "refinedPrompt": refined.refined_prompt,
            "memoriesUsed": refined.memories_used,
            "memories": [
                {"text": m.text, "score": m.score, "timestamp": m.timestamp}
                for m in refined.memories
            ],
        }

    @app.post("/api/copilot/store-conversation", tags=["Copilot"])
    async def store_conversation(request: StoreConversationRequest):
        ids = await memory.store_conversation(
            request.user_id, request.question, request.answer, request.metadata
        )
        return {"success": True, "memoryIds": ids, "stored": "conversation"}

    @app.get("/api/copilot/conversations/{user_id}", tags=["Copilot"])
    async def conversations(user_id: str):
        """Recent stored exchanges for a user, best-matching first."""
        found = await memory.search_memories(
            user_id, CONVERSATION_QUERY, limit=20, score_threshold=0.1
        )
        return {
            "userId": user_id,
            "conversations": [
                {"text": m.text, "timestamp": m.timestamp, "metadata": m.metadata}
                for m in found
            ],
            "count": len(found),
        }

    @app.get("/api/copilot/health", tags=["Copilot"])
    async def copilot_health():
        # Always 200; the status is reported in the body.
        status = await memory.health_check()
        return {
            "status": "healthy" if status.healthy else "unhealthy",
            "services": {
                "vectorStore": status.vector_store,
                "embeddingService": status.embedding_service,
            },
        }

    return app


def main() -> None:
    """Run the API with uvicorn."""
    config = MemoryConfig()
    setup_logging(config.log_level, config.log_json)
    log.info(
        "memory_api_starting",
        host=config.host,
        port=config.port,
        embedding_model=config.embedding_model,
        chat_model=config.chat_model,
    )
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
