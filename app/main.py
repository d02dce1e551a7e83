"""
Application entry point with database pool, Redis cache and enrichment client lifecycle.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.db.helpers import DatabaseError
from app.db.pool import db_pool
from app.features.visitor_ingest.api.router import admin_router, cron_router, pixel_router
from app.features.visitor_ingest.errors import IngestError, UpstreamApiError
from app.features.visitor_ingest.imports.service import ImportService
from app.features.visitor_ingest.pipeline.fetching import EnrichmentApiClient
from app.features.visitor_ingest.services.api_keys import ApiKeyProvider
from app.features.visitor_ingest.services.sync_service import VisitorSyncService
from app.infrastructure.cache import ResponseCache
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing Redis cache")
        cache = ResponseCache()
        await cache.initialize()
        startup_tasks.append("redis")

        logger.info("Initializing enrichment API client")
        api_client = EnrichmentApiClient()
        startup_tasks.append("enrichment_client")

        api_keys = ApiKeyProvider(cache)
        app.state.cache = cache
        app.state.api_client = api_client
        app.state.import_service = ImportService(api_client, api_keys, cache)
        app.state.sync_service = VisitorSyncService(api_client, api_keys)

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "enrichment_client" in startup_tasks:
            try:
                await api_client.close()
            except Exception as cleanup_error:
                logger.error("Error closing enrichment client", error=str(cleanup_error))

        if "redis" in startup_tasks:
            try:
                await cache.close()
            except Exception as cleanup_error:
                logger.error("Error closing Redis cache", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        logger.info("Closing enrichment API client")
        await app.state.api_client.close()
    except Exception as e:
        logger.error("Error closing enrichment client", error=str(e))
        shutdown_errors.append(f"Enrichment client: {e}")

    try:
        logger.info("Closing Redis cache")
        await app.state.cache.close()
    except Exception as e:
        logger.error("Error closing Redis cache", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    # Close database pool last (may have active connections)
    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Visitor Ingest",
    description="Enrichment API ingestion, visitor aggregation and chunked audience imports",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(admin_router)
app.include_router(pixel_router)
app.include_router(cron_router)


@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError) -> JSONResponse:
    content = {"error": exc.message}
    if isinstance(exc, UpstreamApiError):
        content["upstream_status"] = exc.upstream_status
        content["body_snippet"] = exc.body_snippet
    logger.warning(
        "Request failed",
        path=request.url.path,
        status_code=exc.status_code,
        error=exc.message,
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(DatabaseError)
async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    logger.error("Storage failure", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Storage failure"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in errors
    )
    return JSONResponse(status_code=400, content={"error": message or "Invalid request"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
