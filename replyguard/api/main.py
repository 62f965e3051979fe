"""
HTTP surface for the verification pipeline.
One process-wide runtime (semantic memory plus orchestrator), one rolling
memory per session id.
"""

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from collections import OrderedDict
from typing import Optional

from util.logging import logger
from .schemas import (
    FlushResponse,
    HealthResponse,
    KnowledgeRequest,
    KnowledgeResponse,
    ProcessRequest,
    ProcessResponse,
)
from ..agents.orchestrator import ConversationSession, PipelineOrchestrator, create_orchestrator
from ..core.config import (
    MAX_SESSIONS,
    VERSION,
    debug_enabled,
    get_persistent_cache,
    get_pipeline_options,
    is_cache_enabled,
    validate_config,
)
from ..vector.semantic_memory import SemanticMemoryService

# Initialize the FastAPI application
app = FastAPI(
    title="ReplyGuard API",
    version=VERSION,
    description="Retrieval-grounded hallucination screening for therapeutic chat responses",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class Runtime:
    """Shared services for every request."""

    def __init__(self, semantic_memory: SemanticMemoryService, orchestrator: PipelineOrchestrator,
                 max_sessions: int = MAX_SESSIONS):
        self.semantic_memory = semantic_memory
        self.orchestrator = orchestrator
        self.max_sessions = max_sessions
        self.sessions: "OrderedDict[str, ConversationSession]" = OrderedDict()

    def session(self, session_id: str) -> ConversationSession:
        """Get or create the session, evicting the least recently used past ``max_sessions``."""
        if session_id in self.sessions:
            self.sessions.move_to_end(session_id)
            return self.sessions[session_id]

        self.sessions[session_id] = ConversationSession(
            self.orchestrator, self.semantic_memory, session_id=session_id
        )
        while len(self.sessions) > self.max_sessions:
            evicted_id, _ = self.sessions.popitem(last=False)
            self.semantic_memory.clear_recent(evicted_id)
            logger.log_operation("session.evict", "success", {"session_id": evicted_id})
        return self.sessions[session_id]


_runtime: Optional[Runtime] = None


async def get_runtime() -> Runtime:
    """Build the runtime on first use and warm it from the cache."""
    global _runtime
    if _runtime is None:
        cache = get_persistent_cache() if is_cache_enabled() else None
        semantic_memory = SemanticMemoryService(cache=cache)
        await semantic_memory.init()
        _runtime = Runtime(semantic_memory, create_orchestrator(semantic_memory))
    return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    """Install (or drop, with None) the process-wide runtime."""
    global _runtime
    _runtime = runtime


@app.get("/health", response_model=HealthResponse)
async def health_check_endpoint():
    """Check system health."""
    runtime = await get_runtime()
    memory_health = runtime.semantic_memory.health_check()
    agents = await runtime.orchestrator.health_check()
    degraded = memory_health["embeddings"]["degraded"]
    cache_status = memory_health["cache"].get("status")

    status = "healthy"
    if degraded or cache_status == "unavailable":
        status = "degraded"
    if not (agents["reasoner"] and agents["detector"]):
        status = "unhealthy"

    return HealthResponse(
        status=status,
        version=VERSION,
        degraded_embeddings=degraded,
        collections=memory_health["collections"],
        cache=memory_health["cache"],
        agents=agents,
        config_issues=validate_config(),
    )


@app.post("/process", response_model=ProcessResponse)
async def process_endpoint(request: ProcessRequest):
    """Verify a candidate response and return the (possibly revised) text."""
    runtime = await get_runtime()
    options = get_pipeline_options().with_overrides(
        enable_rag=request.enable_rag,
        enable_reasoning=request.enable_reasoning,
        enable_detection=request.enable_detection,
        enable_reranking=request.enable_reranking,
        detection_sensitivity=request.detection_sensitivity,
        timeout_ms=request.timeout_ms,
    )

    session = runtime.session(request.session_id)
    result = await session.process_response(request.response, request.user_input, request.history, options)
    return ProcessResponse(session_id=session.session_id, **result.to_dict())


@app.post("/knowledge", response_model=KnowledgeResponse)
async def knowledge_endpoint(request: KnowledgeRequest):
    """Embed and index knowledge entries."""
    runtime = await get_runtime()
    try:
        ids = await runtime.semantic_memory.load_knowledge(
            [entry.model_dump() for entry in request.entries], request.collection
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Knowledge indexing failed: {str(e)}")

    return KnowledgeResponse(
        indexed_ids=ids,
        skipped=len(request.entries) - len(ids),
        total_processed=len(request.entries),
    )


@app.post("/flush", response_model=FlushResponse)
async def flush_endpoint():
    """Persist every collection through the eviction policy."""
    runtime = await get_runtime()
    flushed = await runtime.semantic_memory.flush()
    cache = runtime.semantic_memory.cache
    stats = cache.get_stats() if cache is not None else {"available": False}
    return FlushResponse(flushed=flushed, stats=stats)


@app.on_event("shutdown")
async def shutdown_event():
    if _runtime is not None:
        await _runtime.semantic_memory.shutdown()


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(
        status_code=500,
        content=content,
    )
