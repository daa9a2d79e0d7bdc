"""
LMS FastAPI Backend

Thin API layer over Supabase for the learning-management dashboard
(courses, tasks, submissions, grading, chat). Reads go through named
in-memory caches and the request manager so repeated dashboard polling does
not hammer Supabase.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from cache_registry import init_cache_registry, close_cache_registry, get_cache_registry
from coordination import init_request_manager, close_request_manager, get_request_manager
from auth.supabase_client import supabase_client
from middleware.error_handlers import add_error_handlers
from routers import admin, auth, chat, courses, dashboard, system

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("LMS Backend starting...")
    logger.info(f"   Environment: {settings.environment}")

    # Validate required settings
    missing_settings = settings.validate_required_settings()
    if missing_settings:
        for missing in missing_settings:
            logger.warning(f"   Missing: {missing}")
        if settings.environment == "production":
            logger.critical("   Cannot start in production with missing required settings!")
            raise RuntimeError(f"Missing required settings: {', '.join(missing_settings)}")

    # Initialize Supabase (auth + data)
    if settings.supabase_configured:
        supabase_client.initialize(
            settings.supabase_url,
            settings.supabase_anon_key,
            settings.supabase_service_role_key,
        )
        logger.info("   Supabase: configured")
    else:
        logger.warning("   Supabase: NOT configured (authenticated endpoints will return 503)")

    # Named caches with their periodic expiry sweep
    init_cache_registry(settings)
    logger.info(f"   Caches: user/course/task/submission/default (sweep every {settings.cache_sweep_interval}s)")

    # Request deduplication / throttling / circuit breaking
    init_request_manager(
        throttle_delay=settings.throttle_delay,
        max_failures=settings.max_failures,
        circuit_timeout=settings.circuit_timeout,
        cleanup_interval=settings.request_cleanup_interval,
        cleanup_max_age=settings.request_cleanup_max_age,
    )
    logger.info(
        f"   Request manager: circuit opens after {settings.max_failures} failures "
        f"for {settings.circuit_timeout}s"
    )

    yield

    # Shutdown
    logger.info("LMS Backend shutting down...")

    await close_request_manager()
    logger.info("   Request manager stopped")

    await close_cache_registry()
    logger.info("   Caches cleared and sweepers stopped")

    supabase_client.reset()


app = FastAPI(
    title="LMS API",
    description="Learning-management backend with cached Supabase reads",
    version="0.1.0",
    lifespan=lifespan,
)

add_error_handlers(app)

# CORS middleware
_cors_origins = settings.cors_origins_list or []
if settings.environment == "development":
    _cors_origins = list(set(_cors_origins + [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]))

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
)

# Include routers
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
app.include_router(chat.router, prefix="/api/chat", tags=["Chat"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
app.include_router(courses.router, prefix="/api/courses", tags=["Courses"])
app.include_router(courses.tasks_router, prefix="/api/tasks", tags=["Tasks"])
app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(system.router, prefix="/api/system", tags=["System"])


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "status": "healthy",
        "service": "LMS API",
        "version": "0.1.0",
    }


@app.get("/health")
async def health_check():
    """
    Detailed health check.

    Returns 503 Service Unavailable if Supabase is not configured.
    """
    cache_stats = get_cache_registry().get_stats()
    request_stats = get_request_manager().get_all_stats()
    # Counts only: circuit keys can contain user ids
    open_circuits = {
        context: len(stats["open_circuit_breakers"])
        for context, stats in request_stats.items()
        if stats["open_circuit_breakers"]
    }

    is_healthy = supabase_client.is_configured()
    response_data = {
        "status": "healthy" if is_healthy else "unhealthy",
        "supabase": "configured" if is_healthy else "not configured",
        "caches": {name: stats["size"] for name, stats in cache_stats.items()},
        "open_circuits": open_circuits,
        "environment": settings.environment,
    }

    if not is_healthy:
        raise HTTPException(status_code=503, detail=response_data)

    return response_data


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=True)
