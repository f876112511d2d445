"""Webhook event types and the domain event record.

This module defines the fixed vocabulary of events that CRM mutations emit
and that external systems can subscribe to.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel

from leadhub.auth import Actor

# Subscription value matching every event
WILDCARD = "*"

# Event name used by manual test deliveries; never matched against subscriptions
TEST_EVENT = "test"


class WebhookEventType(str, Enum):
    """Supported webhook event types.

    Events are organized by entity:
    - lead.*: Lead lifecycle and assignment
    - interaction.*: Logged contacts with a lead
    - product.*: Product catalog changes
    - user.*: User account changes
    """

    # Lead events
    LEAD_CREATED = "lead.created"
    LEAD_UPDATED = "lead.updated"
    LEAD_DELETED = "lead.deleted"
    LEAD_ASSIGNED = "lead.assigned"

    # Interaction events
    INTERACTION_CREATED = "interaction.created"
    INTERACTION_UPDATED = "interaction.updated"
    INTERACTION_DELETED = "interaction.deleted"

    # Product events
    PRODUCT_CREATED = "product.created"
    PRODUCT_UPDATED = "product.updated"
    PRODUCT_DELETED = "product.deleted"

    # User events
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"

    @property
    def entity_type(self) -> str:
        """Entity family prefix (``lead``, ``interaction``, ...)."""
        return self.value.split(".", 1)[0]


SUBSCRIBABLE_EVENTS: frozenset[str] = frozenset(
    [event.value for event in WebhookEventType] + [WILDCARD]
)


def matches_subscription(event_name: str, subscribed: list[str]) -> bool:
    """Check whether an event matches a webhook's subscription list.

    Args:
        event_name: Event being dispatched.
        subscribed: Event names the webhook subscribed to.

    Returns:
        True if the event is listed or the wildcard is present.
    """
    return WILDCARD in subscribed or event_name in subscribed


@dataclass(frozen=True)
class DomainEvent:
    """An event emitted when a CRM mutation completes.

    Not persisted; it carries the post-mutation snapshot of the entity and
    the actor who triggered it (None for system-initiated mutations).
    """

    name: WebhookEventType
    entity: BaseModel
    actor: Actor | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))
