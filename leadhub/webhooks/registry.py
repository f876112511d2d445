"""Webhook registration and management.

Provides storage and validation of webhook configurations and the record
type for delivery attempts.
"""

from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field, HttpUrl, field_validator
from pydantic import ValidationError as PydanticValidationError

from leadhub.config import settings
from leadhub.errors import NotFoundError, ValidationError
from leadhub.webhooks.events import SUBSCRIBABLE_EVENTS, matches_subscription

logger = structlog.get_logger(__name__)

# RFC 7230 token characters
_HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

# Headers the delivery client owns
RESERVED_HEADERS = frozenset({"content-type", "content-length", "host", "x-webhook-signature"})

_UNSET: Any = object()


class WebhookDeliveryStatus(str, Enum):
    """Status of a webhook delivery attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class WebhookSettings(BaseModel):
    """Write-side validation of a webhook configuration."""

    name: str = Field(..., min_length=1, max_length=200)
    url: HttpUrl
    events: list[str] = Field(..., min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)
    secret: str | None = None
    is_active: bool = True
    max_retries: int = Field(default=0, ge=0, le=10)
    timeout_seconds: float = Field(default=10.0, gt=0, le=60)

    @field_validator("events")
    @classmethod
    def _check_events(cls, events: list[str]) -> list[str]:
        unknown = [event for event in events if event not in SUBSCRIBABLE_EVENTS]
        if unknown:
            raise ValueError(f"unknown event(s): {', '.join(unknown)}")
        # Deduplicate, keep order
        return list(dict.fromkeys(events))

    @field_validator("headers")
    @classmethod
    def _check_headers(cls, headers: dict[str, str]) -> dict[str, str]:
        for name, value in headers.items():
            if not _HEADER_NAME_RE.match(name):
                raise ValueError(f"invalid header name: {name!r}")
            if name.lower() in RESERVED_HEADERS:
                raise ValueError(f"header {name!r} is set by the delivery client")
            if "\r" in value or "\n" in value:
                raise ValueError(f"header {name!r} contains a line break")
        return headers

    @field_validator("secret")
    @classmethod
    def _blank_secret_is_none(cls, secret: str | None) -> str | None:
        if secret is not None and not secret.strip():
            return None
        return secret


class Webhook(BaseModel):
    """A registered webhook endpoint."""

    id: int
    name: str
    url: str
    events: list[str]
    headers: dict[str, str] = Field(default_factory=dict)
    secret: str | None = None
    is_active: bool = True
    max_retries: int = 0
    timeout_seconds: float = 10.0
    last_triggered: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def should_receive_event(self, event_name: str) -> bool:
        """Check if this webhook subscribes to an event.

        Args:
            event_name: Event name to check.

        Returns:
            True if the event is listed or the webhook uses the wildcard.
        """
        return matches_subscription(event_name, self.events)


class WebhookDelivery(BaseModel):
    """Record of a webhook delivery attempt."""

    id: str = Field(
        default_factory=lambda: f"dlv_{uuid.uuid4().hex[:12]}",
        description="Unique delivery identifier",
    )
    webhook_id: int = Field(..., description="Target webhook ID")
    event: str = Field(..., description="Event name that triggered delivery")
    status: WebhookDeliveryStatus = Field(
        default=WebhookDeliveryStatus.PENDING,
        description="Current delivery status",
    )
    url: str = Field(..., description="Target URL")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Payload that was sent",
    )
    signature: str | None = Field(
        default=None,
        description="Value of the signature header, if signed",
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Request headers that were sent",
    )

    # Attempt tracking
    attempt_count: int = Field(default=0, description="Number of delivery attempts")
    last_attempt_at: datetime | None = Field(default=None, description="Last attempt timestamp")

    # Response tracking
    response_status: int | None = Field(default=None, description="HTTP response status code")
    response_body: str | None = Field(default=None, description="Response body (truncated)")
    error_message: str | None = Field(default=None, description="Error message if failed")

    # Timestamps
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = Field(default=None)

    @property
    def reached_network(self) -> bool:
        """Whether at least one HTTP request was attempted."""
        return self.attempt_count > 0

    def mark_success(self, response_status: int, response_body: str | None = None) -> None:
        """Mark delivery as successful.

        Args:
            response_status: HTTP status code.
            response_body: Optional response body.
        """
        self.status = WebhookDeliveryStatus.SUCCESS
        self.response_status = response_status
        self.response_body = response_body[:1000] if response_body else None
        self.error_message = None
        self.completed_at = datetime.now(UTC)

    def mark_failed(self, error_message: str, response_status: int | None = None) -> None:
        """Mark delivery as permanently failed.

        Args:
            error_message: Error description.
            response_status: Optional HTTP status code.
        """
        self.status = WebhookDeliveryStatus.FAILED
        self.error_message = error_message
        self.response_status = response_status
        self.completed_at = datetime.now(UTC)


class WebhookRegistry:
    """Stores webhook endpoint configurations.

    Provides CRUD operations with write-time validation and the
    event-matching query used by the emitter. Returned webhooks are copies;
    changes go through ``update``.
    """

    def __init__(
        self,
        *,
        default_max_retries: int | None = None,
        default_timeout_seconds: float | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            default_max_retries: Retries for webhooks created without one.
            default_timeout_seconds: Timeout for webhooks created without one.
        """
        self._webhooks: dict[int, Webhook] = {}
        self._next_id = 1
        self._default_max_retries = (
            settings.WEBHOOK_MAX_RETRIES if default_max_retries is None else default_max_retries
        )
        self._default_timeout = (
            settings.WEBHOOK_TIMEOUT_SECONDS
            if default_timeout_seconds is None
            else default_timeout_seconds
        )
        self._logger = logger.bind(component="webhook_registry")

    @staticmethod
    def _validate(values: dict[str, Any]) -> WebhookSettings:
        try:
            return WebhookSettings.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, prefix="Invalid webhook") from e

    def create(
        self,
        name: str,
        url: str,
        events: list[str],
        *,
        headers: dict[str, str] | None = None,
        secret: str | None = None,
        is_active: bool = True,
        max_retries: int | None = None,
        timeout_seconds: float | None = None,
    ) -> Webhook:
        """Register a new webhook.

        Args:
            name: Display label.
            url: Absolute destination URL.
            events: Event names to subscribe to (``"*"`` for all).
            headers: Extra headers sent with every delivery.
            secret: Optional HMAC secret.
            is_active: Whether the webhook receives deliveries.
            max_retries: Retries after the first attempt.
            timeout_seconds: Per-attempt HTTP timeout.

        Returns:
            Created webhook.

        Raises:
            ValidationError: If the URL, events or headers are invalid.
        """
        validated = self._validate(
            {
                "name": name,
                "url": url,
                "events": events,
                "headers": headers or {},
                "secret": secret,
                "is_active": is_active,
                "max_retries": self._default_max_retries if max_retries is None else max_retries,
                "timeout_seconds": self._default_timeout
                if timeout_seconds is None
                else timeout_seconds,
            }
        )

        webhook = Webhook(
            id=self._next_id,
            **validated.model_dump(exclude={"url"}),
            url=str(validated.url),
        )
        self._webhooks[webhook.id] = webhook
        self._next_id += 1

        self._logger.info(
            "webhook_registered",
            webhook_id=webhook.id,
            url=webhook.url,
            event_count=len(webhook.events),
            signed=webhook.secret is not None,
        )

        return webhook.model_copy(deep=True)

    def get(self, webhook_id: int) -> Webhook:
        """Get a webhook by ID.

        Raises:
            NotFoundError: If the webhook does not exist.
        """
        webhook = self._webhooks.get(webhook_id)
        if webhook is None:
            raise NotFoundError("Webhook", webhook_id)
        return webhook.model_copy(deep=True)

    def list_all(self, *, active_only: bool = False) -> list[Webhook]:
        """List registered webhooks.

        Args:
            active_only: Only return active webhooks.

        Returns:
            Webhooks in creation order.
        """
        return [
            w.model_copy(deep=True)
            for w in self._webhooks.values()
            if w.is_active or not active_only
        ]

    def update(
        self,
        webhook_id: int,
        *,
        name: str | None = None,
        url: str | None = None,
        events: list[str] | None = None,
        headers: dict[str, str] | None = None,
        secret: str | None = _UNSET,
        is_active: bool | None = None,
        max_retries: int | None = None,
        timeout_seconds: float | None = None,
    ) -> Webhook:
        """Update a webhook.

        Only supplied fields change. Pass ``secret=None`` to remove the
        secret and stop signing deliveries.

        Returns:
            Updated webhook.

        Raises:
            NotFoundError: If the webhook does not exist.
            ValidationError: If the merged configuration is invalid.
        """
        current = self._webhooks.get(webhook_id)
        if current is None:
            raise NotFoundError("Webhook", webhook_id)

        changes: dict[str, Any] = {
            key: value
            for key, value in {
                "name": name,
                "url": url,
                "events": events,
                "headers": headers,
                "is_active": is_active,
                "max_retries": max_retries,
                "timeout_seconds": timeout_seconds,
            }.items()
            if value is not None
        }
        if secret is not _UNSET:
            changes["secret"] = secret

        merged = current.model_dump(
            include={
                "name",
                "url",
                "events",
                "headers",
                "secret",
                "is_active",
                "max_retries",
                "timeout_seconds",
            }
        )
        merged.update(changes)
        validated = self._validate(merged)

        updated = current.model_copy(
            update={
                **validated.model_dump(exclude={"url"}),
                "url": str(validated.url),
                "updated_at": datetime.now(UTC),
            }
        )
        self._webhooks[webhook_id] = updated

        self._logger.info(
            "webhook_updated",
            webhook_id=webhook_id,
            fields=sorted(changes),
        )

        return updated.model_copy(deep=True)

    def delete(self, webhook_id: int) -> None:
        """Delete a webhook.

        Raises:
            NotFoundError: If the webhook does not exist.
        """
        if webhook_id not in self._webhooks:
            raise NotFoundError("Webhook", webhook_id)
        del self._webhooks[webhook_id]
        self._logger.info("webhook_deleted", webhook_id=webhook_id)

    def get_webhooks_for_event(self, event_name: str) -> list[Webhook]:
        """Get all webhooks that should receive an event.

        Args:
            event_name: Event name.

        Returns:
            Active webhooks subscribed to the event or to ``"*"``.
        """
        return [
            webhook.model_copy(deep=True)
            for webhook in self._webhooks.values()
            if webhook.is_active and webhook.should_receive_event(event_name)
        ]

    def mark_triggered(self, webhook_id: int, timestamp: datetime | None = None) -> None:
        """Record that a delivery attempt reached the network.

        Best-effort: a missing webhook (e.g. deleted mid-delivery) is logged
        and ignored, never raised to the delivery flow.

        Args:
            webhook_id: Webhook identifier.
            timestamp: Attempt time (defaults to now).
        """
        try:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None:
                self._logger.warning("mark_triggered_webhook_missing", webhook_id=webhook_id)
                return
            webhook.last_triggered = timestamp or datetime.now(UTC)
        except Exception as e:
            self._logger.warning(
                "mark_triggered_failed",
                webhook_id=webhook_id,
                error=str(e),
            )


# Global webhook registry instance
_webhook_registry: WebhookRegistry | None = None


def get_webhook_registry() -> WebhookRegistry:
    """Get the global webhook registry instance.

    Returns:
        Singleton WebhookRegistry.
    """
    global _webhook_registry
    if _webhook_registry is None:
        _webhook_registry = WebhookRegistry()
    return _webhook_registry


def set_webhook_registry(registry: WebhookRegistry | None) -> None:
    """Set the global webhook registry instance.

    Useful for testing.

    Args:
        registry: WebhookRegistry instance.
    """
    global _webhook_registry
    _webhook_registry = registry
