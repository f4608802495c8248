from datetime import datetime, timezone
from functools import lru_cache
import json
import secrets
import time

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from telecom_rag.config import settings
from telecom_rag.logging_config import get_logger, setup_logging
from telecom_rag.logging_utils import new_request_id, request_id_ctx
from telecom_rag.models import (
    AskRequest,
    AskResponse,
    CacheQuestionsResponse,
    CacheStatsModel,
    CacheStatusResponse,
    CacheWarmResponse,
    ErrorResponse,
    MessageResponse,
    QueryLogModel,
    QueryLogResponse,
    QueryLogsResponse,
    SearchRequest,
    SearchResponse,
    StreamDonePayload,
    TimingStatsModel,
    TimingStatsResponse,
)
from telecom_rag.query_log import QueryLog
from telecom_rag.rag_service import PipelineError, RAGPipeline, build_pipeline
from telecom_rag.sse import format_sse

logger = get_logger(__name__)
request_logger = get_logger("telecom_rag.request")


# ============== Rate Limiting ==============

limiter = Limiter(key_func=get_remote_address)


# ============== Security ==============

def verify_api_key(x_api_key: str | None = Header(None, alias="X-API-Key")):
    """
    Verify API key for operator endpoints.
    If API_KEY is not configured, authentication is disabled (for development).
    """
    if not settings.api_key:
        return True

    if not x_api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide X-API-Key header.",
        )

    if not secrets.compare_digest(x_api_key, settings.api_key):
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
        )

    return True


@lru_cache
def get_pipeline() -> RAGPipeline:
    """Process-wide pipeline; the cache and query logs live as long as the process."""
    return build_pipeline(settings)


# ============== App ==============

app = FastAPI(title="telecom-rag API")
setup_logging(settings.log_level)


SCRUBBED_HEADERS = ("authorization", "x-api-key", "cookie")


def _sentry_before_send(event, hint):
    # Questions can carry customer details: never ship request bodies
    req = event.get("request") or {}
    req.pop("data", None)
    req.pop("cookies", None)
    req["headers"] = {
        k: v for k, v in (req.get("headers") or {}).items()
        if k.lower() not in SCRUBBED_HEADERS
    }
    event["request"] = req
    return event


if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[FastApiIntegration()],
        environment=settings.sentry_environment,
        send_default_pii=False,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        before_send=_sentry_before_send,
    )


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or new_request_id()
    token = request_id_ctx.set(rid)

    start = time.perf_counter()
    try:
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)

        response.headers["X-Request-ID"] = rid

        request_logger.info(
            "%s %s -> %s (%dms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response
    finally:
        request_id_ctx.reset(token)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    logger.error(f"pipeline_error | path={request.url.path} | status={exc.status_code} | error={exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message).model_dump(by_alias=True),
    )


# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

logger.info(f"CORS enabled for origins: {settings.cors_origins}")


# ============== Chat ==============

def _wants_stream(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "text/event-stream" in accept or request.query_params.get("stream") == "true"


def _event_stream(pipeline: RAGPipeline, body: AskRequest) -> StreamingResponse:
    async def generate():
        async for event in pipeline.stream_answer(body.question, top_k=body.top_k):
            if event.kind == "chunk":
                yield format_sse(event.text)
            elif event.kind == "done":
                payload = StreamDonePayload(sources=event.sources, query_log=event.query_log)
                yield format_sse(payload.model_dump_json(by_alias=True), event="done")
            else:
                yield format_sse(json.dumps({"message": event.text}), event="error")

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/api/chat", response_model=AskResponse)
@limiter.limit(settings.rate_limit_ask)
async def chat(request: Request, body: AskRequest, pipeline: RAGPipeline = Depends(get_pipeline)):
    """
    Answer a question from the indexed documents.

    Streams SSE when the client sends Accept: text/event-stream or ?stream=true.
    """
    if _wants_stream(request):
        return _event_stream(pipeline, body)
    return await pipeline.answer(body.question, top_k=body.top_k)


@app.post("/api/chat/stream")
@limiter.limit(settings.rate_limit_ask)
async def chat_stream(request: Request, body: AskRequest, pipeline: RAGPipeline = Depends(get_pipeline)):
    """Always-streaming variant of /api/chat."""
    return _event_stream(pipeline, body)


# ============== Search ==============

@app.post("/api/search", response_model=SearchResponse)
@limiter.limit(settings.rate_limit_ask)
async def search(request: Request, body: SearchRequest, pipeline: RAGPipeline = Depends(get_pipeline)):
    """Semantic search across documents, grouped by file."""
    return await pipeline.search(body.query, top_k=body.top_k)


# ============== Cache (operator) ==============

@app.post("/api/cache/index", response_model=CacheWarmResponse)
async def cache_index(
    pipeline: RAGPipeline = Depends(get_pipeline),
    _auth: bool = Depends(verify_api_key),
):
    """Warm the cache from the common questions file."""
    result = await pipeline.warm_cache()
    message = (
        f"Cache warming complete. Processed {result.processed} questions."
        if result.success
        else "Cache warming failed"
    )
    return CacheWarmResponse(
        success=result.success,
        message=message,
        questions_processed=result.processed,
        errors=result.errors or None,
    )


@app.get("/api/cache/status", response_model=CacheStatusResponse)
def cache_status(pipeline: RAGPipeline = Depends(get_pipeline)):
    stats = pipeline.cache.get_stats()
    lookups = stats.hit_count + stats.miss_count
    last_warm = (
        datetime.fromtimestamp(stats.last_warm_time / 1000, tz=timezone.utc).isoformat()
        if stats.last_warm_time
        else None
    )
    return CacheStatusResponse(
        stats=CacheStatsModel(
            total_questions=stats.total_questions,
            cached_questions=stats.cached_questions,
            hit_count=stats.hit_count,
            miss_count=stats.miss_count,
            evictions=stats.evictions,
            hit_rate=f"{stats.hit_rate * 100:.2f}%" if lookups else "N/A",
            last_warm_time=last_warm,
        )
    )


@app.delete("/api/cache/clear", response_model=MessageResponse)
def cache_clear(
    pipeline: RAGPipeline = Depends(get_pipeline),
    _auth: bool = Depends(verify_api_key),
):
    pipeline.cache.clear_cache()
    return MessageResponse(message="Cache cleared successfully")


@app.get("/api/cache/questions", response_model=CacheQuestionsResponse)
def cache_questions(pipeline: RAGPipeline = Depends(get_pipeline)):
    return CacheQuestionsResponse(questions=pipeline.cache.cached_questions())


# ============== Query logs ==============

def _log_model(log: QueryLog) -> QueryLogModel:
    return QueryLogModel.model_validate(log, from_attributes=True)


@app.get("/api/logs", response_model=QueryLogsResponse)
def list_logs(limit: int = 10, pipeline: RAGPipeline = Depends(get_pipeline)):
    """Most recent query logs, newest first."""
    return QueryLogsResponse(logs=[_log_model(log) for log in pipeline.logs.get_recent(limit)])


@app.get("/api/logs/stats", response_model=TimingStatsResponse)
def log_stats(pipeline: RAGPipeline = Depends(get_pipeline)):
    return TimingStatsResponse(stats=TimingStatsModel(**pipeline.logs.timing_stats()))


@app.get("/api/logs/{query_id}", response_model=QueryLogResponse)
def get_log(query_id: str, pipeline: RAGPipeline = Depends(get_pipeline)):
    log = pipeline.logs.get(query_id)
    if log is None:
        raise HTTPException(status_code=404, detail="Query log not found")
    return QueryLogResponse(log=_log_model(log))


@app.get("/health")
def health():
    return {"status": "ok"}
