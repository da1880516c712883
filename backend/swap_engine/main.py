"""
Booking Swap Targeting API - Main Application Entry Point

Serves the swap targeting and proposal matching engine:
- Targeting validation (ownership, self-target, duplicates, auction window, cycles)
- Atomic accept that commits both listings and cancels every competing proposal
- Auction-mode listings with deadline expiry
- Transactional outbox relayed to the ledger and notification services
"""

import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from swap_engine.api.deps import get_engine
from swap_engine.api.middleware import RequestLoggingMiddleware
from swap_engine.api.router import api_router
from swap_engine.core.config import get_settings
from swap_engine.core.errors import SwapError
from swap_engine.core.logging import get_logger, setup_logging
from swap_engine.core.metrics import metrics_endpoint
from swap_engine.db.base import Base
from swap_engine.services.factory import SwapEngine, build_swap_engine

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: build the engine, start the background workers, tear down."""
    setup_logging()

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    engine = build_swap_engine(settings)
    app.state.engine = engine

    if settings.DATABASE_URL.startswith("sqlite"):
        # Development convenience; PostgreSQL schemas come from alembic
        async with engine.db.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    redis_client = await engine.cache.get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    tasks: list[asyncio.Task] = []
    if settings.SWEEPER_ENABLED:
        tasks.append(asyncio.create_task(engine.sweeper.run_forever(), name="expiry-sweeper"))
    if settings.OUTBOX_RELAY_ENABLED:
        tasks.append(asyncio.create_task(engine.emitter.run_forever(), name="outbox-relay"))

    yield

    for task in tasks:
        task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError):
            await task

    await engine.aclose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Swap targeting and proposal matching engine for a booking-swap marketplace",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(SwapError)
async def swap_error_handler(request: Request, exc: SwapError) -> JSONResponse:
    logger.info("request_rejected", code=exc.code, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health", tags=["Health"])
async def health_check(engine: SwapEngine = Depends(get_engine)):
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await engine.cache.stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"])
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
