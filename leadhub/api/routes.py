"""FastAPI application for the LeadHub API.

This module provides:
- Application factory with lifespan, CORS configuration and error handling
- Health and session endpoints (/health, /api/me, /api/analytics)
- Registration of the leads, catalog, webhook and MCP routers
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from leadhub.api.deps import crm_service, current_actor
from leadhub.auth import Actor
from leadhub.config import settings
from leadhub.crm.service import CRMService
from leadhub.errors import (
    AuthenticationError,
    LeadHubError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from leadhub.logging_config import configure_logging
from leadhub.mcp.server import get_connection_tracker
from leadhub.storage.models import AnalyticsSummary, User
from leadhub.webhooks.dispatcher import get_webhook_dispatcher
from leadhub.webhooks.emitter import get_event_emitter
from leadhub.webhooks.registry import get_webhook_registry

logger = structlog.get_logger(__name__)

API_VERSION = "1.0.0"


# ============================================================================
# Response Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    detail: Any = Field(default=None, description="Detailed error information")


class HealthResponse(BaseModel):
    """Liveness report."""

    status: str
    version: str
    timestamp: str
    webhooks: int = Field(..., description="Registered webhooks")
    active_webhooks: int = Field(..., description="Webhooks receiving deliveries")
    pending_deliveries: int = Field(..., description="Queued events and in-flight deliveries")
    mcp_connections: int = Field(..., description="Live MCP WebSocket connections")


# ============================================================================
# Application Setup
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    """Application lifespan handler."""
    # Startup
    configure_logging(settings.LOG_LEVEL)
    logger.info("application_starting", version=API_VERSION)

    emitter = get_event_emitter()
    emitter.start()

    delivery_log = get_webhook_dispatcher().delivery_log
    if delivery_log is not None:
        await delivery_log.initialize()

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await emitter.shutdown()
    if delivery_log is not None:
        await delivery_log.close()


OPENAPI_TAGS = [
    {"name": "Leads", "description": "Leads and their interactions."},
    {"name": "Products", "description": "AI service product catalog."},
    {"name": "Users", "description": "User administration (admin only)."},
    {
        "name": "Webhooks",
        "description": "Outbound webhook registrations, test deliveries and delivery history.",
    },
    {"name": "Health", "description": "Service status."},
]

API_DESCRIPTION = """
## Overview

LeadHub notifies external systems about CRM activity. Every lead,
interaction, product and user mutation emits an event that is delivered,
optionally HMAC-signed, to each subscribed webhook.

## Authentication

Send the acting user's id in the `X-User-Id` header.

## Webhook signatures

When a webhook has a secret, each delivery carries
`X-Webhook-Signature: <hex HMAC-SHA256 of the raw request body>`.
"""


def _error_response(status_code: int, error: str, detail: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


def create_app(
    title: str = "LeadHub API",
    version: str = API_VERSION,
    description: str | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        title: API title.
        version: API version.
        description: API description (uses default if not provided).
        cors_origins: Allowed CORS origins.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title=title,
        version=version,
        description=description or API_DESCRIPTION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=OPENAPI_TAGS,
    )

    # Configure CORS
    origins = cors_origins or settings.CORS_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add exception handlers
    @app.exception_handler(LeadHubError)
    async def domain_exception_handler(
        request: Request, exc: LeadHubError  # noqa: ARG001
    ) -> JSONResponse:
        if isinstance(exc, ValidationError):
            status_code = 400
        elif isinstance(exc, AuthenticationError):
            status_code = 401
        elif isinstance(exc, PermissionDeniedError):
            status_code = 403
        elif isinstance(exc, NotFoundError):
            status_code = 404
        else:
            logger.error("unmapped_domain_error", **exc.to_dict())
            return _error_response(500, "Internal server error")
        return _error_response(status_code, exc.message, exc.details or None)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError  # noqa: ARG001
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return _error_response(422, "Invalid request", errors)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException  # noqa: ARG001
    ) -> JSONResponse:
        return _error_response(
            exc.status_code,
            exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception  # noqa: ARG001
    ) -> JSONResponse:
        logger.error("unhandled_exception", error=str(exc), exc_info=True)
        return _error_response(
            500,
            "Internal server error",
            str(exc) if app.debug else None,
        )

    # Register routes
    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all routes on the application.

    Args:
        app: FastAPI application.
    """
    from leadhub.api.catalog import products_router, users_router
    from leadhub.api.leads import router as leads_router
    from leadhub.api.webhooks import router as webhooks_router
    from leadhub.mcp.server import router as mcp_router

    app.include_router(leads_router)
    app.include_router(products_router)
    app.include_router(users_router)
    app.include_router(webhooks_router)
    app.include_router(mcp_router)

    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Basic liveness check."""
        webhooks = get_webhook_registry().list_all()
        return HealthResponse(
            status="ok",
            version=app.version,
            timestamp=datetime.now(UTC).isoformat(),
            webhooks=len(webhooks),
            active_webhooks=sum(1 for w in webhooks if w.is_active),
            pending_deliveries=get_event_emitter().pending,
            mcp_connections=get_connection_tracker().count,
        )

    @app.get("/api/me", tags=["Users"], response_model=User)
    async def me(
        actor: Actor = Depends(current_actor),
        service: CRMService = Depends(crm_service),
    ) -> User:
        """The user behind the current request."""
        return await service.get_user(actor.id)

    @app.get("/api/analytics", tags=["Leads"], response_model=AnalyticsSummary)
    async def analytics(
        actor: Actor = Depends(current_actor),  # noqa: ARG001
        service: CRMService = Depends(crm_service),
    ) -> AnalyticsSummary:
        """Pipeline metrics over all leads."""
        return await service.get_analytics()


app = create_app()
