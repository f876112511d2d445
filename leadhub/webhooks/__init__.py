"""Webhook notification system for external integrations.

This module provides:
- WebhookEventType: Enumeration of all webhook event types
- WebhookRegistry: Registration and management of webhooks
- PayloadBuilder: Canonical payloads per event family
- WebhookDispatcher: Signed delivery with retry logic
- EventEmitter: Fire-and-forget fan-out of domain events
- HMAC signature generation and verification
"""

from leadhub.webhooks.delivery_log import DeliveryLog, get_delivery_log, set_delivery_log
from leadhub.webhooks.dispatcher import (
    WebhookDispatcher,
    get_webhook_dispatcher,
    set_webhook_dispatcher,
)
from leadhub.webhooks.emitter import EventEmitter, get_event_emitter, set_event_emitter
from leadhub.webhooks.events import (
    SUBSCRIBABLE_EVENTS,
    TEST_EVENT,
    WILDCARD,
    DomainEvent,
    WebhookEventType,
)
from leadhub.webhooks.payloads import PayloadBuilder
from leadhub.webhooks.registry import (
    Webhook,
    WebhookDelivery,
    WebhookDeliveryStatus,
    WebhookRegistry,
    get_webhook_registry,
    set_webhook_registry,
)
from leadhub.webhooks.security import (
    SIGNATURE_HEADER,
    generate_signature,
    serialize_payload,
    verify_signature,
)

__all__ = [
    # Events
    "WebhookEventType",
    "DomainEvent",
    "SUBSCRIBABLE_EVENTS",
    "TEST_EVENT",
    "WILDCARD",
    # Registry
    "Webhook",
    "WebhookDelivery",
    "WebhookDeliveryStatus",
    "WebhookRegistry",
    "get_webhook_registry",
    "set_webhook_registry",
    # Payloads
    "PayloadBuilder",
    # Delivery
    "WebhookDispatcher",
    "get_webhook_dispatcher",
    "set_webhook_dispatcher",
    "DeliveryLog",
    "get_delivery_log",
    "set_delivery_log",
    # Emitter
    "EventEmitter",
    "get_event_emitter",
    "set_event_emitter",
    # Security
    "SIGNATURE_HEADER",
    "generate_signature",
    "serialize_payload",
    "verify_signature",
]
