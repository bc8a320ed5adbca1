"""Request correlation, access logging and CORS setup."""

import logging
import os
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from toolforge.infra.config import config
from toolforge.infra.logging import request_id_var
from toolforge.infra.metrics import request_count

logger = logging.getLogger("toolforge.request")

# Probe traffic is logged at debug level
QUIET_PATHS = {"/health", "/health/live", "/health/ready", "/metrics"}


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate X-Request-ID, generating one when the caller sent none."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_var.set(request.state.request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request.state.request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Access log plus the request counter.

    Only the path is logged: OAuth callbacks carry authorization codes in the
    query string. Metrics are labelled with the route template so tool names
    and tool ids do not explode label cardinality.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Response-Time-Ms"] = str(int((time.time() - start_time) * 1000))
            return response
        except Exception as e:
            logger.error(
                "Request failed",
                extra={"method": request.method, "path": request.url.path, "error": str(e)},
                exc_info=True,
            )
            raise
        finally:
            route = request.scope.get("route")
            endpoint = getattr(route, "path", "unmatched")
            request_count.labels(method=request.method, endpoint=endpoint, status=str(status_code)).inc()

            level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
            logger.log(
                level,
                f"{request.method} {endpoint} -> {status_code}",
                extra={
                    "request_id": getattr(request.state, "request_id", "unknown"),
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
            )


def setup_cors(app):
    """Setup CORS middleware from CORS_ORIGINS (wildcard only in development)."""
    origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()]
    if not origins and config.APP_ENV == "development":
        origins = ["*"]
    if config.APP_ENV != "development":
        origins = [origin for origin in origins if origin != "*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key", "X-Tenant-ID", "X-Request-ID"],
        expose_headers=["X-Request-ID", "X-Response-Time-Ms"],
    )
