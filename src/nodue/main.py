"""
No Due API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database and Redis connections
- The clearance registry and its collaborators
- Background job scheduler
- CORS middleware
- API routing
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nodue import __version__
from nodue.api import api_router
from nodue.core.config import settings
from nodue.core.database import close_db, init_db
from nodue.core.redis import close_redis, get_redis, init_redis
from nodue.core.scheduler import clear_jobs, start_scheduler, stop_scheduler
from nodue.modules.audit import register_audit_jobs
from nodue.modules.clearance.dependencies import build_registry

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Redis connection (distributed locks)
    - Database connection
    - Clearance registry wiring
    - Background job scheduler
    """
    # Startup
    print(f"Starting No Due API in {settings.python_env} mode...")

    # Initialize Redis
    if settings.use_redis_locks:
        try:
            await init_redis()
            print("[OK] Redis connected")
        except Exception as e:
            print(f"[FAIL] Redis connection failed: {e}")
            if settings.is_production:
                raise

    # Initialize Database
    if not settings.uses_memory_storage:
        try:
            await init_db()
            print("[OK] Database connected")
        except Exception as e:
            print(f"[FAIL] Database connection failed: {e}")
            if settings.is_production:
                raise

    # Wire the registry
    app.state.registry = build_registry(settings, await get_redis())
    print(f"[OK] Clearance registry ready ({settings.storage_backend} storage)")

    # Initialize Background Job Scheduler
    try:
        register_audit_jobs(app.state.registry.audit)
        await start_scheduler()
        print("[OK] Background scheduler started")
    except Exception as e:
        print(f"[FAIL] Background scheduler failed to start: {e}")
        if settings.is_production:
            raise

    yield  # Application runs here

    # Shutdown
    print("Shutting down No Due API...")

    # Stop the scheduler first (wait for running jobs)
    await stop_scheduler()
    clear_jobs()
    print("[OK] Background scheduler stopped")

    await close_redis()
    await close_db()
    print("[OK] Cleanup complete")


app = FastAPI(
    title="No Due API",
    description="Institutional no due clearance service",
    version=__version__,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": f"Welcome to the {settings.institution_name} No Due API",
        "status": "running",
        "environment": settings.python_env,
        "academic_year": settings.academic_year,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}
