"""
FastAPI application and entry point.

This module creates and configures the FastAPI application:
  1. Lifespan manager: logging, DB tables, Redis client, ledger wiring
  2. CORS middleware and request logging
  3. Exception handlers: maps domain errors to HTTP responses
  4. Router registration: mounts all API endpoint groups

Running locally:
    uvicorn wallet.main:app --reload
"""

import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from wallet.config import settings
from wallet.database import AsyncSessionLocal, Base, engine
from wallet.exceptions import register_exception_handlers
from wallet.logging_config import configure_logging
from wallet.routers import me, transactions, transfers, users
from wallet.services.ledger import AccountLocks
from wallet.services.wallet_service import build_wallet_service

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Configures logging, creates tables if they don't exist (use real
      migrations in production), connects to Redis, and builds the
      WalletService with ONE process-wide account lock registry.

    Shutdown:
      Closes the Redis client and disposes of the database engine.
    """
    # --- Startup ---
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    redis = Redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    app.state.wallet_service = build_wallet_service(
        AsyncSessionLocal, redis, settings, locks=AccountLocks()
    )
    logger.info("Wallet ledger started", version=settings.APP_VERSION)
    yield
    # --- Shutdown ---
    await redis.aclose()
    await engine.dispose()
    logger.info("Wallet ledger stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Wallet API with idempotent deposits, withdrawals, and transfers",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(users.router, prefix="/v1/users", tags=["Users"])
app.include_router(transactions.router, prefix="/v1", tags=["Transactions"])
app.include_router(transfers.router, prefix="/v1/transfers", tags=["Transfers"])
app.include_router(me.router, prefix="/v1/me", tags=["Me"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness probe for deployment orchestrators."""
    return {"status": "ok", "version": settings.APP_VERSION}
