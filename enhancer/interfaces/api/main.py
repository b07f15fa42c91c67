"""
Name: FastAPI Application Entry Point

Responsibilities:
  - Initialize FastAPI application with metadata (title, version)
  - Configure middleware (CORS, request context)
  - Mount router with enhancement endpoints under /v1 prefix
  - Expose health check and metrics endpoints

Collaborators:
  - FastAPI: ASGI web framework
  - CORSMiddleware: Cross-Origin Resource Sharing handler
  - RequestContextMiddleware: Request ID and logging context
  - routes.router: enhancement, cache and summary endpoints

Constraints:
  - CORS configurable via ALLOWED_ORIGINS env var (comma-separated)
  - No authentication (the caller owns the provider keys via settings)
  - Health check validates the chunk store only (no provider call)

Notes:
  - /v1 prefix allows API versioning
  - /healthz follows Kubernetes health check convention
  - /metrics exposes Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from ... import __version__
from ...container import get_chunk_cache, get_chunk_store
from ...crosscutting.config import get_settings
from ...crosscutting.logger import logger
from ...crosscutting.metrics import get_metrics_response
from .errors import register_exception_handlers
from .middleware import RequestContextMiddleware
from .routes import router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle. Validates settings and runs the cache migration."""
    # This will raise ValidationError if env vars are missing/invalid
    settings = get_settings()

    # R: One-time legacy sweep before the first request touches the cache
    removed = get_chunk_cache().migrate_legacy()

    logger.info(
        "Chapter Enhancer API starting up",
        extra={
            "model_id": settings.model_id,
            "fake_llm": settings.fake_llm,
            "api_keys": len(settings.get_api_keys()),
            "rotation": settings.api_key_rotation,
            "chunk_size_words": settings.chunk_size_words,
            "cache_store": type(get_chunk_store()).__name__,
            "legacy_removed": removed,
        },
    )
    yield
    logger.info("Chapter Enhancer API shutting down")


def _get_allowed_origins() -> list[str]:
    """Get CORS origins from settings, with fallback for import-time errors."""
    try:
        return get_settings().get_allowed_origins_list()
    except Exception:
        # Fallback for tests that don't set env vars
        return ["http://localhost:3000"]


# R: Create FastAPI application instance with API metadata
app = FastAPI(
    title="Chapter Enhancer API",
    version=__version__,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "enhancements",
            "description": "Chunked chapter enhancement, cache and summaries",
        },
    ],
)

# R: Add request context middleware
app.add_middleware(RequestContextMiddleware)

# R: Configure CORS with secure defaults
app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-Id"],
    expose_headers=["X-Request-Id", "X-Content-Identity"],
)

# R: Register API routes under /v1 prefix for versioning
app.include_router(router, prefix="/v1")

# R: Register exception handlers for structured error responses
register_exception_handlers(app)


# R: Health check endpoint for monitoring/orchestration (Kubernetes, Docker)
@app.get("/healthz")
def healthz(request: Request):
    """
    R: Health check that verifies the chunk store.

    Returns:
        ok: True if the store answers
        cache: "memory", "redis" or "unavailable"
        request_id: Correlation ID for this request
    """
    store = get_chunk_store()
    cache_status = "memory"
    ok = True
    client = getattr(store, "client", None)
    if client is not None:
        try:
            client.ping()
            cache_status = "redis"
        except Exception as e:
            logger.warning("Health check: Redis unavailable", extra={"error": str(e)})
            cache_status = "unavailable"
            ok = False

    return {
        "ok": ok,
        "cache": cache_status,
        "request_id": getattr(request.state, "request_id", None),
    }


# R: Prometheus metrics endpoint
@app.get("/metrics")
def metrics():
    """
    R: Expose Prometheus metrics.

    Returns:
        Prometheus text format metrics
    """
    body, content_type = get_metrics_response()
    return Response(content=body, media_type=content_type)
