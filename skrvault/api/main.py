"""
Main FastAPI application for the SKR Vault backend.
Configures the API server with routes, middleware, error handlers and documentation.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import structlog

from skrvault.core.config import settings
from skrvault.core.database import DatabaseManager, close_database, init_database
from skrvault.core.exceptions import IntegrityError, SkrVaultException
from skrvault.core.logging import get_audit_logger, setup_logging
from skrvault.api.dependencies import Services, build_services
from skrvault.api.middleware import add_middleware
from skrvault.api.routes import auth, rewards, tokens, wallet
from skrvault.api.schemas.common import APIResponse, HealthCheckResponse


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting SKR Vault API server", version=settings.app_version)

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        try:
            await init_database()
            await DatabaseManager.create_tables()
            app.state.services = build_services(settings)
            logger.info("Services initialized")

            if app.state.services.scheduler:
                await app.state.services.scheduler.start()
        except Exception as e:
            logger.error("Startup failed", error=str(e))
            raise

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down SKR Vault API server")
    if owns_services:
        try:
            await app.state.services.close()
            await close_database()
            logger.info("Database connections closed")
        except Exception as e:
            logger.error("Shutdown error", error=str(e))

    logger.info("Application shutdown complete")


def _error_body(message: str, code: str, details=None) -> dict:
    return jsonable_encoder({
        "success": False,
        "message": message,
        "code": code,
        "details": details or None,
        "timestamp": datetime.utcnow()
    })


async def skrvault_exception_handler(request: Request, exc: SkrVaultException) -> JSONResponse:
    if isinstance(exc, IntegrityError):
        get_audit_logger().critical(
            "Key integrity failure surfaced to API",
            path=request.url.path,
            details=exc.details
        )
    elif exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.info("Request rejected", path=request.url.path, code=exc.code)

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.code, exc.details)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("Invalid request", "VALIDATION_ERROR", {"errors": errors})
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", path=request.url.path, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("An unexpected error occurred", "INTERNAL_ERROR")
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure FastAPI application.

    When ``services`` is given the app uses it as-is and the lifespan
    neither builds nor closes anything.
    """
    setup_logging()

    app = FastAPI(
        title="SKR Vault API",
        description="""
        Custodial wallet and creator reward backend.

        ## Authentication

        ```
        Authorization: Bearer <session-token>
        ```

        Session tokens come from `/api/v1/auth/signup` or `/api/v1/auth/login`.

        ## Error Handling

        Errors share one shape: `success`, `message`, a stable `code` and optional `details`.
        """,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.services = services

    add_middleware(app)

    app.add_exception_handler(SkrVaultException, skrvault_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
        description="Check API server health and service status"
    )
    async def health_check(request: Request):
        database_ok = await DatabaseManager.health_check()
        current = getattr(request.app.state, "services", None)
        gateway = getattr(current, "gateway", None) if current else None
        blockchain = "configured" if gateway is not None and gateway.reward_configured else "unconfigured"

        if not database_ok:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "unhealthy",
                    "services": {"database": "unhealthy", "blockchain": blockchain}
                }
            )

        return HealthCheckResponse(
            status="healthy",
            version=settings.app_version,
            services={"database": "healthy", "blockchain": blockchain}
        )

    @app.get(
        "/",
        response_model=APIResponse,
        tags=["System"],
        summary="API Information"
    )
    async def root():
        return APIResponse(message=f"SKR Vault API v{settings.app_version} - Ready to serve!")

    app.include_router(
        auth.router,
        prefix=f"{settings.api_v1_prefix}/auth",
        tags=["Auth"]
    )

    app.include_router(
        wallet.router,
        prefix=f"{settings.api_v1_prefix}/wallet",
        tags=["Wallets"]
    )

    app.include_router(
        rewards.router,
        prefix=f"{settings.api_v1_prefix}/rewards",
        tags=["Rewards"]
    )

    app.include_router(
        tokens.router,
        prefix=f"{settings.api_v1_prefix}/tokens",
        tags=["Tokens"]
    )

    logger.info("FastAPI application created successfully")
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "skrvault.api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
