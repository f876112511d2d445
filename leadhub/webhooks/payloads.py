"""Webhook payload construction.

Turns a DomainEvent into the JSON body delivered to receivers, enriching
the raw entity snapshot with human-readable joins (assignee, product names,
lead summary). Builders only read from the record store.
"""

from datetime import UTC, datetime
from typing import Any

import structlog

from leadhub.auth import actor_payload
from leadhub.storage.models import Interaction, Lead, Product, User
from leadhub.storage.store import RecordStore, get_record_store
from leadhub.webhooks.events import TEST_EVENT, DomainEvent

logger = structlog.get_logger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class PayloadBuilder:
    """Builds canonical webhook payloads per event family.

    Shapes:
    - lead.*: ``{event, timestamp, lead, actor}``
    - interaction.*: ``{event, timestamp, interaction, lead, actor}``
    - product.* / user.*: ``{event, timestamp, product|user, actor}``
    """

    def __init__(self, store: RecordStore | None = None) -> None:
        """Initialize the builder.

        Args:
            store: Record store used for joins (uses global if not provided).
        """
        self._store = store or get_record_store()

    def build(self, event: DomainEvent) -> dict[str, Any]:
        """Build the payload for a domain event.

        Args:
            event: Event to describe.

        Returns:
            JSON-ready payload. ``timestamp`` is the build time.

        Raises:
            TypeError: If the entity does not match the event family.
        """
        entity = event.entity
        payload: dict[str, Any] = {
            "event": event.name.value,
            "timestamp": _now_iso(),
        }

        if isinstance(entity, Lead):
            payload["lead"] = self.lead_snapshot(entity)
        elif isinstance(entity, Interaction):
            payload["interaction"] = {
                "id": entity.id,
                "type": entity.type.value,
                "text": entity.text,
                "createdAt": _iso(entity.created_at),
            }
            lead = self._store.leads.get(entity.lead_id)
            payload["lead"] = self.lead_summary(lead) if lead else None
        elif isinstance(entity, Product):
            payload["product"] = self.product_snapshot(entity)
        elif isinstance(entity, User):
            payload["user"] = self.user_snapshot(entity)
        else:
            raise TypeError(f"Unsupported entity for {event.name.value}: {type(entity).__name__}")

        expected = event.name.entity_type
        if expected not in payload:
            raise TypeError(
                f"Event {event.name.value} carries a {type(entity).__name__} snapshot"
            )

        payload["actor"] = actor_payload(event.actor)
        return payload

    @staticmethod
    def build_test(webhook_id: int) -> dict[str, Any]:
        """Build the synthetic payload used by manual webhook tests."""
        return {"test": True, "event": TEST_EVENT, "timestamp": _now_iso(), "webhookId": webhook_id}

    # ------------------------------------------------------------------
    # Entity snapshots
    # ------------------------------------------------------------------

    def lead_snapshot(self, lead: Lead) -> dict[str, Any]:
        """Full lead representation used by lead.* events."""
        return {
            "id": lead.id,
            "name": lead.name,
            "email": lead.email,
            "phone": lead.phone,
            "company": lead.company,
            "status": lead.status.value,
            "priority": lead.priority.value,
            "value": lead.value,
            "dealValue": lead.value,
            "source": lead.source,
            "followUpDate": _iso(lead.follow_up_date),
            "notes": lead.notes,
            "interestedProductNames": self._product_names(lead.product_ids),
            "assignee": self._user_ref(lead.assigned_to),
            "engineer": self._user_ref(lead.assigned_engineer),
        }

    @staticmethod
    def lead_summary(lead: Lead) -> dict[str, Any]:
        """Short lead representation embedded in interaction events."""
        return {
            "id": lead.id,
            "name": lead.name,
            "email": lead.email,
            "company": lead.company,
            "status": lead.status.value,
            "value": lead.value,
        }

    @staticmethod
    def product_snapshot(product: Product) -> dict[str, Any]:
        return {
            "id": product.id,
            "name": product.name,
            "price": product.price,
            "pitch": product.pitch,
            "talkingPoints": product.talking_points,
            "agentNotes": product.agent_notes,
            "priority": product.priority.value,
            "profitLevel": product.profit_level.value,
            "tags": list(product.tags),
            "displayOrder": product.display_order,
            "isActive": product.is_active,
            "createdAt": _iso(product.created_at),
        }

    @staticmethod
    def user_snapshot(user: User) -> dict[str, Any]:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "username": user.username,
            "phone": user.phone,
            "role": user.role.value,
            "isActive": user.is_active,
            "createdAt": _iso(user.created_at),
            "updatedAt": _iso(user.updated_at),
        }

    def _product_names(self, product_ids: list[int]) -> list[str]:
        names: list[str] = []
        for product_id in product_ids:
            product = self._store.products.get(product_id)
            if product is None:
                # Deleted since the lead referenced it
                logger.debug("payload_product_missing", product_id=product_id)
                continue
            names.append(product.name)
        return names

    def _user_ref(self, user_id: int | None) -> dict[str, Any] | None:
        if user_id is None:
            return None
        user = self._store.users.get(user_id)
        if user is None:
            return None
        return {"id": user.id, "name": user.name, "email": user.email, "role": user.role.value}
