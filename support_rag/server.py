from __future__ import annotations

import asyncio
import hmac
import threading
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import ORJSONResponse, Response
from loguru import logger

from support_rag import config as CFG
from support_rag.errors import (
    InvalidQueryError,
    LLMAuthError,
    LLMRateLimitError,
    LLMTransientError,
    RequestCancelledError,
    SupportRAGError,
    format_error_for_logging,
    is_user_retryable,
    needs_attention,
)
from support_rag.keywords import match_keywords
from support_rag.llm_client import LLMClient, close_http_client
from support_rag.logging_config import log_error, setup_logging
from support_rag.metrics import get_content_type, get_metrics, track_request
from support_rag.models import (
    ChatRequest,
    ChatResponse,
    HistoryResponse,
    RatingRequest,
    SearchResponse,
    SessionResponse,
    SessionSummary,
    SourceKind,
)
from support_rag.pipeline import SupportPipeline, require_valid_query
from support_rag.session_manager import TRANSCRIPT_FORMATS, SessionManager, render_transcript
from support_rag.store import load_seed_file
from support_rag.usage import UsageFeedback

pipeline: Optional[SupportPipeline] = None
usage_feedback: Optional[UsageFeedback] = None
llm_client: Optional[LLMClient] = None
sessions = SessionManager(
    ttl_seconds=CFG.SESSION_TTL_SECONDS,
    max_sessions=CFG.MAX_SESSIONS,
    max_messages=CFG.MAX_SESSION_MESSAGES,
)

# How often the chat endpoint checks whether the client went away.
DISCONNECT_POLL_SECONDS = 0.25


def _startup() -> None:
    """Load the knowledge stores and wire the pipeline."""
    global pipeline, usage_feedback, llm_client
    setup_logging()
    logger.info("Support assistant startup: loading knowledge stores...")

    if CFG.ENV == "prod" and CFG.ADMIN_TOKEN == "change-me":
        logger.error("ADMIN_TOKEN must not be 'change-me' in production")
        raise RuntimeError("Invalid production config: ADMIN_TOKEN not configured")

    faq_store, document_store = load_seed_file(CFG.KNOWLEDGE_SEED_PATH)
    usage_feedback = UsageFeedback(
        {SourceKind.FAQ: faq_store, SourceKind.DOCUMENT: document_store},
        max_workers=CFG.USAGE_WORKERS,
    )
    llm_client = LLMClient()
    if llm_client.mock:
        logger.info("MOCK_LLM mode enabled: answers echo the top-ranked context item")

    pipeline = SupportPipeline(
        faq_store,
        document_store,
        llm_client,
        usage=usage_feedback,
        search_limit=CFG.SEARCH_LIMIT,
        context_budget=CFG.CONTEXT_BUDGET,
        store_timeout=CFG.STORE_TIMEOUT_SECONDS,
    )
    logger.info(
        f"Support assistant ready: faqs={len(faq_store)}, documents={len(document_store)}, "
        f"search_limit={CFG.SEARCH_LIMIT}, context_budget={CFG.CONTEXT_BUDGET}"
    )


def _shutdown() -> None:
    """Let in-flight usage writes finish, then release clients."""
    global pipeline, usage_feedback
    if usage_feedback is not None:
        usage_feedback.shutdown(wait_for_pending=True)
        usage_feedback = None
    if pipeline is not None:
        pipeline.close()
        pipeline = None
    try:
        close_http_client()
    except Exception as e:
        logger.warning(f"Error closing HTTP client: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    _startup()
    yield
    _shutdown()


app = FastAPI(default_response_class=ORJSONResponse, lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests with timing and status information."""
    request_id = str(uuid4())
    start_time = time.time()

    logger.info(
        f"[{request_id}] → {request.method} {request.url.path} "
        f"client={request.client.host if request.client else 'unknown'}"
    )

    response = await call_next(request)
    duration = time.time() - start_time

    if request.url.path != "/metrics":
        track_request(
            endpoint=request.url.path,
            method=request.method,
            status=response.status_code,
            duration=duration,
        )

    logger.info(
        f"[{request_id}] ← {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s"
    )
    return response


# --------- Error mapping ---------

def _status_for(error: SupportRAGError) -> int:
    if isinstance(error, InvalidQueryError):
        return 400
    if isinstance(error, LLMAuthError):
        return 502
    if isinstance(error, LLMRateLimitError):
        return 429
    if isinstance(error, LLMTransientError):
        return 503
    if isinstance(error, RequestCancelledError):
        return 499
    return 502


@app.exception_handler(SupportRAGError)
async def support_error_handler(request: Request, exc: SupportRAGError):
    status = _status_for(exc)
    if needs_attention(exc):
        fields = format_error_for_logging(exc)
        fields.pop("error_type")
        log_error(type(exc).__name__, exc.message, path=request.url.path, **fields)
    else:
        logger.info(f"{request.method} {request.url.path} -> {status} {exc.error_code}")

    body: Dict[str, Any] = {"success": False, "retryable": is_user_retryable(exc), **exc.to_dict()}
    headers: Dict[str, str] = {}
    if isinstance(exc, LLMRateLimitError):
        body["error"] = "The assistant is busy right now. Please try again later."
        if exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(int(exc.retry_after_seconds))
    elif isinstance(exc, LLMAuthError):
        # never echo provider credential details to end users
        body["error"] = "The assistant is temporarily unavailable."
        body["context"] = {}
    return ORJSONResponse(status_code=status, content=body, headers=headers)


def require_admin(token: Optional[str]) -> None:
    """Debug tooling is open in dev; in prod the admin token must match."""
    if CFG.ENV != "prod":
        return
    if not token or not hmac.compare_digest(token, CFG.ADMIN_TOKEN):
        logger.warning("Invalid admin token attempt")
        raise HTTPException(status_code=401, detail="unauthorized")


def _require_pipeline() -> SupportPipeline:
    if pipeline is None:
        raise HTTPException(status_code=503, detail="service not ready")
    return pipeline


async def _watch_disconnect(request: Request, cancel_event: threading.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


# --------- Routes ---------

@app.get("/health")
def health() -> Dict[str, Any]:
    ready = pipeline is not None
    out: Dict[str, Any] = {
        "ok": ready,
        "config": CFG.health_summary(),
        "sessions": sessions.get_stats(),
    }
    if ready:
        out["stores"] = {
            "faq": len(pipeline.faq_store),
            "document": len(pipeline.document_store),
        }
        out["llm"] = llm_client.health_check() if llm_client else {"ok": False, "details": "not configured"}
        out["usage_pending"] = usage_feedback.pending if usage_feedback else 0
    return out


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=get_metrics(), media_type=get_content_type())


@app.post("/chat/session", response_model=SessionResponse)
def create_session() -> SessionResponse:
    session = sessions.create_session()
    return SessionResponse(
        session_id=session["session_id"],
        created_at=session["created_at"],
        ttl_seconds=session["ttl_seconds"],
    )


@app.get("/chat/history/{session_id}", response_model=HistoryResponse)
def chat_history(session_id: str) -> HistoryResponse:
    messages = sessions.get_history(session_id)
    return HistoryResponse(session_id=session_id, messages=messages, total_messages=len(messages))


@app.delete("/chat/session/{session_id}")
def delete_session(session_id: str) -> Dict[str, Any]:
    if not sessions.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Chat session not found")
    return {"success": True, "session_id": session_id}


@app.put("/chat/session/{session_id}/close", response_model=SessionSummary)
def close_session(session_id: str) -> SessionSummary:
    session = sessions.close_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")
    return SessionSummary.from_session(session)


@app.post("/chat/session/{session_id}/rating", response_model=SessionSummary)
def rate_session(session_id: str, req: RatingRequest) -> SessionSummary:
    session = sessions.rate_session(session_id, req.rating, req.feedback)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")
    return SessionSummary.from_session(session)


@app.get("/chat/download/{session_id}")
def download_transcript(session_id: str, format: str = Query(default="txt")) -> Response:
    """Transcript of a session as a file attachment."""
    if format not in TRANSCRIPT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format; use one of {', '.join(TRANSCRIPT_FORMATS)}")
    session = sessions.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")

    media_type = "application/json" if format == "json" else "text/plain; charset=utf-8"
    return Response(
        content=render_transcript(session, format),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="chat-{session_id}.{format}"'},
    )


@app.get("/chat/stats")
def chat_stats() -> Dict[str, Any]:
    return {"success": True, "stats": sessions.get_stats()}


@app.post("/chat", response_model=ChatResponse)
async def chat(req: ChatRequest, request: Request) -> ChatResponse:
    """Answer a user message from the ranked FAQ/document context."""
    active = _require_pipeline()
    message = require_valid_query(req.message)
    request_id = str(uuid4())

    session = sessions.get_or_create(req.session_id)
    session_id = session["session_id"]
    history = sessions.get_history(session_id)

    cancel_event = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        result = await run_in_threadpool(active.answer, message, history, cancel_event, request_id)
    finally:
        watcher.cancel()

    sessions.add_message(session_id, "user", message)
    sessions.add_message(session_id, "assistant", result.answer_text)

    return ChatResponse(
        answer=result.answer_text,
        session_id=session_id,
        context_used=result.context_items_used_count > 0,
        context_items_used_count=result.context_items_used_count,
        metadata=result.metadata,
    )


@app.get("/search", response_model=SearchResponse)
def search(
    q: str = Query(..., max_length=2000),
    limit: Optional[int] = Query(default=None, ge=0),
    x_admin_token: Optional[str] = Header(default=None),
) -> SearchResponse:
    """Debug view: each store's own ranking plus the merged context."""
    require_admin(x_admin_token)
    active = _require_pipeline()
    effective_limit = min(limit if limit is not None else CFG.SEARCH_LIMIT, CFG.SEARCH_MAX_LIMIT)

    retrieval = active.retrieve(q, limit=effective_limit)
    return SearchResponse(
        query=q,
        keywords=sorted(match_keywords(q)),
        faqs=[item.model_dump(mode="json") for item in retrieval.faq_results],
        documents=[item.model_dump(mode="json") for item in retrieval.document_results],
        context=retrieval.context,
        degraded_stores=retrieval.degraded_stores,
        latency_ms=retrieval.latency_ms,
    )


if __name__ == "__main__":
    import os
    import uvicorn

    uvicorn.run(app, host=os.getenv("API_HOST", "0.0.0.0"), port=int(os.getenv("API_PORT", "7001")))
