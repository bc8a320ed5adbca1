"""FastAPI application for dynamic tool synthesis and execution."""

import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from toolforge.infra.config import config
from toolforge.infra.logging import app_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    # Startup
    from toolforge.infra.database import engine
    app_logger.info("Application starting up")

    if config.DATABASE_URL.startswith("sqlite"):
        # Local development database; server databases are migrated with alembic
        from toolforge.infra.schema import create_all
        create_all(engine)

    yield

    # Shutdown
    app_logger.info("Application shutting down")
    engine.dispose()

    from toolforge.infra.tenant_locks import tenant_locks
    await tenant_locks.close()


app = FastAPI(
    title="Toolforge API",
    description="""
    Toolforge turns natural-language integration requests ("read my Slack channels")
    into callable tools, merges them into a per-tenant tool program, gates them behind
    OAuth when the service requires it, and executes them in a sandbox.

    ## Authentication

    Endpoints under `/api/tools` require `X-API-Key: <your-api-key>`. The master key
    additionally requires `X-Tenant-ID`.
    """,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Tools",
            "description": "Build, list, execute and remove synthesized tools",
        },
        {
            "name": "OAuth",
            "description": "OAuth provider callback",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
from toolforge.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors
from toolforge.infra.timeout import TimeoutMiddleware, REQUEST_TIMEOUT

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
setup_cors(app)

# Import and register routers
from toolforge.api.routers import health, oauth, tools

app.include_router(health.router)
app.include_router(oauth.router)
app.include_router(tools.router)

MAX_REQUEST_SIZE = 1024 * 1024  # 1MB


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next):
    """Enforce request size limits."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
        return JSONResponse(
            status_code=413,
            content={"detail": f"Request too large. Maximum size: {MAX_REQUEST_SIZE} bytes"},
        )
    return await call_next(request)


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
