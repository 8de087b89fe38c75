"""FastAPI main application for the urna voting backend."""

from contextlib import asynccontextmanager
import time

import asyncpg
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from urna.api.routes import (
    audit,
    auth,
    booths,
    candidates,
    elections,
    realtime,
    results,
    voters,
    voting,
)
from urna.core.config import settings
from urna.core.database import close_db_pool, get_db_connection, get_pool, init_db_pool
from urna.core.logging_config import get_logger, setup_logging
from urna.core.responses import error_response, error_response_dict, success_response
from urna.services.realtime import get_broadcaster
from urna.services.voting import VoteCastingError

# Setup logging
setup_logging()
logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; frame-ancestors 'none'"
        )

        # HSTS only behind HTTPS in production
        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    logger.info("Starting urna backend...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    # Tests install their own pool or override dependencies
    if settings.ENVIRONMENT != "test":
        await init_db_pool(settings)

    yield

    if settings.ENVIRONMENT != "test":
        await close_db_pool()
    logger.info("Shutting down urna backend...")


app = FastAPI(
    title="Urna Backend",
    description="""
    **Urna Backend** - electronic voting booth management

    Features:
    - Elections, candidates, voter registry and booth management
    - Atomic vote casting: at most one ballot per voter per election
    - Results with turnout and per-booth totals, CSV export
    - Live vote and booth updates over WebSocket (`/ws/elections`)
    - Audit trail of administrative and booth actions

    ## Authentication

    Include the JWT token in the Authorization header:

    ```
    Authorization: Bearer <your_jwt_token>
    ```

    ## Roles

    - **admin**: manages elections, candidates, voters, booths and operators
    - **operator**: runs a booth (validate voters, show the ballot, cast votes)

    ## API Versioning

    - `/v1/*` - Version 1 (current stable)
    - `/*` - Latest version (may change)
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(SecurityHeadersMiddleware)

if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )
else:
    logger.info(f"CORS allowed origins: {settings.cors_origins_list}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "User-Agent"],
    )


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with standardized error responses."""
    if isinstance(exc.detail, dict):
        return error_response_dict(exc.detail, exc.status_code)
    return error_response_dict(
        {"success": False, "message": exc.detail, "data": None, "errors": None},
        exc.status_code,
    )


@app.exception_handler(VoteCastingError)
async def vote_casting_exception_handler(request: Request, exc: VoteCastingError):
    """Render vote rejections with their machine-readable code."""
    return error_response_dict(
        {
            "success": False,
            "message": exc.message,
            "data": None,
            "errors": {"code": exc.code, "retryable": exc.retryable},
        },
        exc.status_code,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors[field] = error["msg"]

    return error_response_dict(
        {
            "success": False,
            "message": "Validation failed",
            "data": None,
            "errors": errors,
        },
        422,
    )


@app.exception_handler(asyncpg.exceptions.PostgresError)
async def database_exception_handler(
    request: Request, exc: asyncpg.exceptions.PostgresError
):
    """Handle database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return error_response_dict(
        {
            "success": False,
            "message": "Database error occurred",
            "data": None,
            "errors": None,
        },
        500,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response_dict(
        {
            "success": False,
            "message": "An unexpected error occurred",
            "data": None,
            "errors": None,
        },
        500,
    )


API_ROUTERS = [
    auth.router,
    elections.router,
    candidates.router,
    voters.router,
    booths.router,
    voting.router,
    results.router,
    audit.router,
]

# Create versioned API router
v1_router = APIRouter(prefix="/v1")
for router in API_ROUTERS:
    v1_router.include_router(router)
app.include_router(v1_router)

# Also include routers at root level (latest version)
for router in API_ROUTERS:
    app.include_router(router)

app.include_router(realtime.router)


@app.get("/health")
async def health_check():
    """
    Health check for monitoring and load balancers.

    Returns 200 when the database answers through the pool, 503 otherwise.
    """
    health_status = {"status": "healthy", "timestamp": time.time(), "checks": {}}
    health_status["checks"]["api"] = {"status": "healthy", "message": "API is running"}
    health_status["checks"]["realtime"] = {
        "status": "healthy",
        **get_broadcaster().stats(),
    }

    try:
        async with get_db_connection() as conn:
            await conn.fetchval("SELECT 1")
        pool = get_pool()
        pool_size = pool.get_size()
        pool_idle = pool.get_idle_size()
        health_status["checks"]["database"] = {
            "status": "healthy",
            "message": "Database is accessible",
            "pool": {
                "size": pool_size,
                "max": pool.get_max_size(),
                "idle": pool_idle,
                "active": pool_size - pool_idle,
            },
        }
    except (RuntimeError, OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": f"Database check failed: {e!s}",
        }
        return error_response(
            message="Health check failed", data=health_status, status_code=503
        )

    return success_response(data=health_status)
