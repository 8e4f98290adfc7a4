"""Search service main application."""

import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from .api.routes import router as api_router
from .encoders.embedding_manager import BaseEmbedder, EmbeddingManager
from .hybrid.search_manager import SearchBackendError, SearchManager
from .ingestion.chunker import ChunkingConfig
from .ingestion.indexer import DocumentIndexer
from .ranking.fusion import FusionConfig
from .runtime.metrics import get_metrics_collector
from libs.common.auth import create_api_key_dependency
from libs.common.config import SearchConfig
from libs.common.logging import configure_logging
from libs.document_store.base import (
    DocumentStoreConflictError,
    DocumentStoreError,
    DocumentStoreNotFoundError,
)
from libs.document_store.factory import create_document_store

logger = structlog.get_logger("search_service")

SERVICE_NAME = "search-service"


def error_body(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    """Uniform error payload."""
    body: Dict[str, Any] = {"status": status_code, "error": message}
    body.update(extra)
    return body


def route_template(request: Request) -> str:
    """Matched route path (``/clients/{client_id}/...``), never the raw URL."""
    route = request.scope.get("route")
    path = getattr(route, "path_format", None) or getattr(route, "path", None)
    return path or "unmatched"


def create_app(config: Optional[SearchConfig] = None, embedder: Optional[BaseEmbedder] = None) -> FastAPI:
    """Build the FastAPI application.

    Parameters
    - config: ``SearchConfig``; read from the environment when omitted
    - embedder: Embedder to use instead of loading the configured model
    """
    config = config or SearchConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        configure_logging(SERVICE_NAME, config.ml_log_level, config.ml_log_format)
        logger.info("Starting search service", backend=config.ml_vector_backend)

        metrics_collector = get_metrics_collector(SERVICE_NAME)
        app.state.metrics_collector = metrics_collector

        store = create_document_store(config)
        await store.initialize()
        app.state.document_store = store

        app.state.embedder = embedder or EmbeddingManager(config, metrics=metrics_collector)
        try:
            await app.state.embedder.initialize()
        except Exception:
            await store.close()
            raise

        app.state.search_manager = SearchManager(
            store,
            app.state.embedder,
            fusion_config=FusionConfig.from_config(config),
            semantic_candidates=config.ml_search_semantic_candidates,
            metrics=metrics_collector,
        )
        app.state.indexer = DocumentIndexer(
            store,
            app.state.embedder,
            chunking_config=ChunkingConfig.from_config(config),
            metrics=metrics_collector,
        )

        logger.info("Search service started successfully")

        yield

        # Shutdown
        logger.info("Shutting down search service")
        await app.state.embedder.cleanup()
        await store.close()
        logger.info("Search service shutdown complete")

    app = FastAPI(
        title="Search Service",
        description="Hybrid semantic and lexical search over clients and documents",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Protected API routes
    app.include_router(
        api_router,
        prefix="/api/v1",
        dependencies=[Depends(create_api_key_dependency(config))],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.status_code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors: Dict[str, str] = {}
        for error in exc.errors():
            if error.get("type") == "json_invalid":
                return JSONResponse(status_code=400, content=error_body(400, "Malformed JSON request body"))
            location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
            field = ".".join(location) or "body"
            errors.setdefault(field, error.get("msg", "Invalid value"))
        return JSONResponse(status_code=400, content=error_body(400, "Bad Request", errors=errors))

    @app.exception_handler(DocumentStoreNotFoundError)
    async def not_found_handler(request: Request, exc: DocumentStoreNotFoundError):
        return JSONResponse(status_code=404, content=error_body(404, str(exc)))

    @app.exception_handler(DocumentStoreConflictError)
    async def conflict_handler(request: Request, exc: DocumentStoreConflictError):
        return JSONResponse(status_code=409, content=error_body(409, str(exc)))

    @app.exception_handler(DocumentStoreError)
    async def store_error_handler(request: Request, exc: DocumentStoreError):
        logger.error("Document store failure", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content=error_body(503, "Document store unavailable"))

    @app.exception_handler(SearchBackendError)
    async def search_backend_handler(request: Request, exc: SearchBackendError):
        return JSONResponse(status_code=503, content=error_body(503, "Search backend unavailable"))

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time header to responses."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests."""
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path, error=str(e))
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content=error_body(500, "An unexpected error occurred"),
            )

        duration = time.time() - start_time

        if hasattr(app.state, "metrics_collector"):
            app.state.metrics_collector.record_http_request(
                method=request.method,
                endpoint=route_template(request),
                status=status_code,
                duration=duration,
            )

        return response

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        if hasattr(app.state, "search_manager") and await app.state.search_manager.health_check():
            return {"status": "healthy", "service": SERVICE_NAME}
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": SERVICE_NAME},
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        if hasattr(app.state, "metrics_collector"):
            metrics_data = app.state.metrics_collector.get_metrics()
            return Response(content=metrics_data, media_type="text/plain")
        return Response(content="# No metrics available\n", media_type="text/plain")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "clients": "/api/v1/clients",
                "documents": "/api/v1/clients/{client_id}/documents",
                "search": "/api/v1/search",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=SearchConfig().ml_search_port,
        log_level="info",
    )
