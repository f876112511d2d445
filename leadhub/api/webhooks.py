"""Webhook management API endpoints.

Provides REST API for managing webhook registrations, sending test
deliveries and viewing delivery history. Administrators only.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from leadhub.api.deps import admin_actor
from leadhub.webhooks.dispatcher import get_webhook_dispatcher
from leadhub.webhooks.registry import (
    Webhook,
    WebhookDelivery,
    WebhookDeliveryStatus,
    get_webhook_registry,
)

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/webhooks",
    tags=["Webhooks"],
    dependencies=[Depends(admin_actor)],
)


# ============================================================================
# Request Models
# ============================================================================


class WebhookCreateRequest(BaseModel):
    """Request to create a new webhook.

    Field values are checked by the registry, so bad URLs or unknown events
    come back as 400 rather than 422.
    """

    name: str = Field(..., description="Display label")
    url: str = Field(..., description="Webhook endpoint URL")
    events: list[str] = Field(
        ...,
        description='Event names to subscribe to ("*" for all)',
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Custom headers to include",
    )
    secret: str | None = Field(
        default=None,
        description="HMAC secret; deliveries are unsigned without one",
    )
    is_active: bool = Field(default=True, description="Receive deliveries")
    max_retries: int | None = Field(default=None, description="Retries after the first attempt")
    timeout_seconds: float | None = Field(default=None, description="Request timeout")


class WebhookUpdateRequest(BaseModel):
    """Request to update a webhook. Omitted fields are left unchanged."""

    name: str | None = Field(default=None, description="New label")
    url: str | None = Field(default=None, description="New URL")
    events: list[str] | None = Field(default=None, description="New event subscriptions")
    headers: dict[str, str] | None = Field(default=None, description="New custom headers")
    secret: str | None = Field(
        default=None,
        description="New secret; send null explicitly to stop signing",
    )
    is_active: bool | None = Field(default=None, description="Enable/disable webhook")
    max_retries: int | None = Field(default=None, description="New max retries")
    timeout_seconds: float | None = Field(default=None, description="New timeout")


# ============================================================================
# Response Models
# ============================================================================


class WebhookResponse(BaseModel):
    """Webhook details response. The secret itself is never returned."""

    id: int
    name: str
    url: str
    events: list[str]
    headers: dict[str, str]
    has_secret: bool
    is_active: bool
    max_retries: int
    timeout_seconds: float
    last_triggered: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_webhook(cls, webhook: Webhook) -> "WebhookResponse":
        """Create response from Webhook model."""
        return cls(
            id=webhook.id,
            name=webhook.name,
            url=webhook.url,
            events=webhook.events,
            headers=webhook.headers,
            has_secret=webhook.secret is not None,
            is_active=webhook.is_active,
            max_retries=webhook.max_retries,
            timeout_seconds=webhook.timeout_seconds,
            last_triggered=webhook.last_triggered.isoformat() if webhook.last_triggered else None,
            created_at=webhook.created_at.isoformat(),
            updated_at=webhook.updated_at.isoformat(),
        )


class WebhookDeliveryResponse(BaseModel):
    """Webhook delivery details response."""

    id: str
    webhook_id: int
    event: str
    status: WebhookDeliveryStatus
    url: str
    payload: dict[str, Any]
    attempt_count: int
    last_attempt_at: str | None
    response_status: int | None
    error_message: str | None
    created_at: str
    completed_at: str | None

    @classmethod
    def from_delivery(cls, delivery: WebhookDelivery) -> "WebhookDeliveryResponse":
        """Create response from WebhookDelivery model."""
        return cls(
            id=delivery.id,
            webhook_id=delivery.webhook_id,
            event=delivery.event,
            status=delivery.status,
            url=delivery.url,
            payload=delivery.payload,
            attempt_count=delivery.attempt_count,
            last_attempt_at=delivery.last_attempt_at.isoformat() if delivery.last_attempt_at else None,
            response_status=delivery.response_status,
            error_message=delivery.error_message,
            created_at=delivery.created_at.isoformat(),
            completed_at=delivery.completed_at.isoformat() if delivery.completed_at else None,
        )


class TestWebhookResponse(BaseModel):
    """Response from test webhook endpoint."""

    success: bool
    status_code: int | None
    error: str | None
    delivery_id: str


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=WebhookResponse,
    responses={
        201: {"description": "Webhook created"},
        400: {"description": "Invalid webhook configuration"},
    },
    status_code=201,
)
async def create_webhook(request: WebhookCreateRequest) -> WebhookResponse:
    """Register a new webhook."""
    registry = get_webhook_registry()
    webhook = registry.create(
        name=request.name,
        url=request.url,
        events=request.events,
        headers=request.headers,
        secret=request.secret,
        is_active=request.is_active,
        max_retries=request.max_retries,
        timeout_seconds=request.timeout_seconds,
    )
    return WebhookResponse.from_webhook(webhook)


@router.get(
    "",
    response_model=list[WebhookResponse],
)
async def list_webhooks(active_only: bool = False) -> list[WebhookResponse]:
    """List all registered webhooks."""
    registry = get_webhook_registry()
    return [WebhookResponse.from_webhook(w) for w in registry.list_all(active_only=active_only)]


@router.get(
    "/{webhook_id}",
    response_model=WebhookResponse,
    responses={
        404: {"description": "Webhook not found"},
    },
)
async def get_webhook(webhook_id: int) -> WebhookResponse:
    """Get webhook details by ID."""
    return WebhookResponse.from_webhook(get_webhook_registry().get(webhook_id))


@router.put(
    "/{webhook_id}",
    response_model=WebhookResponse,
    responses={
        400: {"description": "Invalid webhook configuration"},
        404: {"description": "Webhook not found"},
    },
)
async def update_webhook(
    webhook_id: int,
    request: WebhookUpdateRequest,
) -> WebhookResponse:
    """Update a webhook."""
    changes = request.model_dump(exclude_unset=True)
    updated = get_webhook_registry().update(webhook_id, **changes)
    return WebhookResponse.from_webhook(updated)


@router.delete(
    "/{webhook_id}",
    responses={
        204: {"description": "Webhook deleted"},
        404: {"description": "Webhook not found"},
    },
    status_code=204,
)
async def delete_webhook(webhook_id: int) -> None:
    """Delete a webhook."""
    get_webhook_registry().delete(webhook_id)


@router.post(
    "/{webhook_id}/test",
    response_model=TestWebhookResponse,
    responses={
        404: {"description": "Webhook not found"},
    },
)
async def test_webhook(webhook_id: int) -> TestWebhookResponse:
    """Send a test payload to a webhook.

    Delivers ``{"test": true, "event": "test", ...}`` regardless of the
    webhook's subscriptions or active flag, and reports the HTTP outcome.
    """
    delivery = await get_webhook_dispatcher().send_test(webhook_id)

    return TestWebhookResponse(
        success=delivery.status == WebhookDeliveryStatus.SUCCESS,
        status_code=delivery.response_status,
        error=delivery.error_message,
        delivery_id=delivery.id,
    )


@router.get(
    "/{webhook_id}/deliveries",
    response_model=list[WebhookDeliveryResponse],
    responses={
        404: {"description": "Webhook not found"},
    },
)
async def list_webhook_deliveries(
    webhook_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    status: WebhookDeliveryStatus | None = None,
) -> list[WebhookDeliveryResponse]:
    """List delivery attempts for a webhook, newest first.

    Empty when the delivery log is disabled.
    """
    get_webhook_registry().get(webhook_id)

    delivery_log = get_webhook_dispatcher().delivery_log
    if delivery_log is None:
        return []

    deliveries = await delivery_log.list_for_webhook(webhook_id, limit=limit, status=status)
    return [WebhookDeliveryResponse.from_delivery(d) for d in deliveries]
