"""Request timeout configuration and middleware."""

import asyncio
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce request timeouts."""

    def __init__(self, app, timeout: int = 60):
        """
        Initialize timeout middleware.

        Args:
            app: FastAPI application
            timeout: Request timeout in seconds (default: 60)
        """
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next):
        """Process request with timeout."""
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={"success": False, "error": f"Request timeout after {self.timeout} seconds"},
            )


# Timeout configurations (seconds)
REQUEST_TIMEOUT = 180  # covers two reasoning calls plus storage for a build
REASONING_CALL_TIMEOUT = 60
OAUTH_EXCHANGE_TIMEOUT = 15
SANDBOX_EXECUTION_TIMEOUT = 30
WORKFLOW_REPORT_TIMEOUT = 5
TENANT_LOCK_TIMEOUT = 120
DATABASE_POOL_TIMEOUT = 10
