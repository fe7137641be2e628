import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.client import close_cache, init_cache
from src.config.settings import settings
from src.database import client as db_client
from src.database.dependencies import get_db_session
from src.features.auth.router import router as auth_router
from src.features.auth.sessions import run_token_sweeper
from src.features.role.router import router as role_router
from src.features.user.router import router as user_router
from src.shared.middlewares.docs_middleware import admin_docs_middleware

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Per-address request limit on every route, shared across workers through Redis
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.global_rate_limit],
    storage_uri=settings.redis_url or "memory://",
)


async def rate_limit_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded"},
    )


async def database_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log storage failures and hide their details from the caller."""
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def cache_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log cache failures and hide their details from the caller."""
    logger.error(f"Cache error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    await db_client.init_db()
    await init_cache(settings.redis_url, socket_timeout=settings.redis_socket_timeout)
    sweeper = asyncio.create_task(
        run_token_sweeper(db_client.get_session_factory(), settings.token_sweep_interval),
        name="refresh-token-sweeper",
    )
    yield
    # Shutdown
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await close_cache()
    await db_client.close_db()


# Admin-only API documentation (see admin_docs_middleware)
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Add rate limiting middleware
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)

# Storage failures map to a generic 500
app.add_exception_handler(SQLAlchemyError, database_error_handler)
app.add_exception_handler(RedisError, cache_error_handler)

# Add admin-only documentation middleware
app.middleware("http")(admin_docs_middleware)

# Router Registration
routers: list[APIRouter] = [
    auth_router,
    user_router,
    role_router,
]

for router in routers:
    app.include_router(router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"message": "Hotel ERP API", "status": "running"}


@app.get("/health")
async def health(session: AsyncSession = Depends(get_db_session)):
    """Liveness plus a database round trip. Storage errors surface as 500."""
    await session.execute(text("SELECT 1"))
    return {"status": "healthy", "database": "ok"}
