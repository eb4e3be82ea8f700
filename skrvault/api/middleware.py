"""
Custom middleware for the FastAPI application.
Provides rate limiting, logging, and security headers.
"""

import hashlib
import time
from datetime import datetime
from typing import Callable, Dict

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.responses import JSONResponse

import structlog

from skrvault.core.config import settings


logger = structlog.get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        # Query strings are not logged; they may carry credentials
        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.perf_counter() - start_time
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                process_time=process_time,
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "code": "INTERNAL_ERROR",
                    "message": "An internal server error occurred",
                    "timestamp": datetime.utcnow().isoformat()
                }
            )

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = str(process_time)

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=process_time,
        )
        return response


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiting using in-memory storage."""

    def __init__(self, app: FastAPI, max_requests: int = 100, window_seconds: int = 60):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, list] = {}

    def _get_client_key(self, request: Request) -> str:
        """Session token digest when present, else the client IP."""
        auth_header = request.headers.get("authorization")
        if auth_header and auth_header.startswith("Bearer "):
            digest = hashlib.sha256(auth_header[7:].encode("utf-8")).hexdigest()[:32]
            return f"session:{digest}"

        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def _is_rate_limited(self, client_key: str) -> bool:
        window_start = time.time() - self.window_seconds

        self.requests[client_key] = [
            req_time for req_time in self.requests.get(client_key, [])
            if req_time > window_start
        ]
        return len(self.requests[client_key]) >= self.max_requests

    def _add_request(self, client_key: str) -> None:
        self.requests.setdefault(client_key, []).append(time.time())

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_key = self._get_client_key(request)

        if self._is_rate_limited(client_key):
            logger.warning(
                "Rate limit exceeded",
                client_key=client_key,
                path=request.url.path,
                method=request.method
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "code": "RATE_LIMIT_ERROR",
                    "message": f"Rate limit exceeded. Max {self.max_requests} requests per {self.window_seconds} seconds",
                    "timestamp": datetime.utcnow().isoformat()
                },
                headers={
                    "X-RateLimit-Limit": str(self.max_requests),
                    "X-RateLimit-Window": str(self.window_seconds),
                    "Retry-After": str(self.window_seconds)
                }
            )

        self._add_request(client_key)
        response = await call_next(request)

        remaining = self.max_requests - len(self.requests.get(client_key, []))
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(0, remaining))
        response.headers["X-RateLimit-Window"] = str(self.window_seconds)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-API-Version"] = settings.app_version
        return response


def add_middleware(app: FastAPI) -> None:
    """Add all middleware to the FastAPI app."""

    # CORS middleware (first to handle preflight requests)
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Custom middleware (order matters - last added is executed first)
    app.add_middleware(SecurityHeadersMiddleware)

    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitingMiddleware,
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window
        )

    app.add_middleware(LoggingMiddleware)

    logger.info("Middleware configured successfully")
