"""CRM domain service.

Every mutation of leads, interactions, products and users goes through
``CRMService``: it validates input, writes to the record store and, once the
write has succeeded, emits exactly one domain event per mutated record. The
REST handlers and the MCP command handler both call these methods, so both
surfaces produce the same events.
"""

from collections import Counter, defaultdict
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from leadhub.auth import Actor
from leadhub.errors import NotFoundError, ValidationError
from leadhub.storage.models import (
    AnalyticsSummary,
    Interaction,
    InteractionCreate,
    InteractionUpdate,
    Lead,
    LeadCreate,
    LeadFilters,
    LeadStatus,
    LeadUpdate,
    MonthlyRevenue,
    Product,
    ProductCreate,
    ProductUpdate,
    StatusCount,
    User,
    UserCreate,
    UserUpdate,
)
from leadhub.storage.store import RecordStore, get_record_store
from leadhub.webhooks.emitter import EventEmitter, get_event_emitter
from leadhub.webhooks.events import WebhookEventType

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# Lead fields whose change turns an update into an assignment
ASSIGNMENT_FIELDS = ("assigned_to", "assigned_engineer")

# Statuses that close a lead
CLOSED_STATUSES = (LeadStatus.WON, LeadStatus.LOST)


def _parse(model: type[M], data: M | dict[str, Any]) -> M:
    """Validate raw input into an input model."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


class CRMService:
    """Domain operations on the CRM records.

    Events are emitted after the store write, never before, and emission
    never fails the mutation.
    """

    def __init__(
        self,
        store: RecordStore | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Record store (uses global if not provided).
            emitter: Event emitter (uses global if not provided).
        """
        self._store = store or get_record_store()
        self._emitter = emitter or get_event_emitter()
        self._logger = logger.bind(component="crm_service")

    @property
    def store(self) -> RecordStore:
        return self._store

    # ========================================================================
    # Reference checks
    # ========================================================================

    def _check_user_ref(self, field: str, user_id: int | None) -> None:
        if user_id is not None and not self._store.users.exists(user_id):
            raise ValidationError(
                f"Invalid {field}: user {user_id} does not exist",
                details={"field": field, "user_id": user_id},
            )

    def _check_product_refs(self, product_ids: list[int]) -> None:
        missing = [pid for pid in product_ids if not self._store.products.exists(pid)]
        if missing:
            raise ValidationError(
                f"Invalid product_ids: unknown product(s) {missing}",
                details={"field": "product_ids", "missing": missing},
            )

    def _check_unique_email(self, email: str, *, exclude_id: int | None = None) -> None:
        lowered = email.lower()
        clash = self._store.users.list(
            lambda u: u.email.lower() == lowered and u.id != exclude_id
        )
        if clash:
            raise ValidationError(
                f"A user with email {email} already exists",
                details={"field": "email"},
            )

    # ========================================================================
    # Leads
    # ========================================================================

    async def list_leads(
        self,
        filters: LeadFilters | dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Lead]:
        """List leads, newest first.

        Args:
            filters: Exact-match filters plus a case-insensitive ``search``
                over name, email and company.
            limit: Maximum number of leads to return.

        Returns:
            Matching leads.
        """
        criteria = _parse(LeadFilters, filters or {})
        needle = criteria.search.lower() if criteria.search else None

        def matches(lead: Lead) -> bool:
            if criteria.status and lead.status != criteria.status:
                return False
            if criteria.assigned_to is not None and lead.assigned_to != criteria.assigned_to:
                return False
            if criteria.source and lead.source != criteria.source:
                return False
            if criteria.priority and lead.priority != criteria.priority:
                return False
            if needle:
                haystack = (lead.name, lead.email or "", lead.company or "")
                return any(needle in value.lower() for value in haystack)
            return True

        leads = sorted(
            self._store.leads.list(matches),
            key=lambda lead: (lead.created_at, lead.id),
            reverse=True,
        )
        return leads[:limit] if limit is not None else leads

    async def get_lead(self, lead_id: int) -> Lead:
        """Get a lead.

        Raises:
            NotFoundError: If the lead does not exist.
        """
        return self._store.leads.require(lead_id)

    async def create_lead(
        self, data: LeadCreate | dict[str, Any], actor: Actor | None = None
    ) -> Lead:
        """Create a lead and emit ``lead.created``.

        Args:
            data: Lead fields.
            actor: User performing the change (None for system).

        Returns:
            The stored lead.

        Raises:
            ValidationError: If fields are invalid or reference unknown
                users or products.
        """
        values = _parse(LeadCreate, data)
        self._check_user_ref("assigned_to", values.assigned_to)
        self._check_user_ref("assigned_engineer", values.assigned_engineer)
        self._check_product_refs(values.product_ids)

        lead = self._store.leads.insert(values.model_dump())
        self._logger.info("lead_created", lead_id=lead.id, actor_id=actor.id if actor else None)

        self._emitter.emit(WebhookEventType.LEAD_CREATED, lead, actor)
        return lead

    async def update_lead(
        self,
        lead_id: int,
        data: LeadUpdate | dict[str, Any],
        actor: Actor | None = None,
    ) -> Lead:
        """Apply a partial update to a lead.

        Emits ``lead.assigned`` when the sales assignee or the engineer
        changed, ``lead.updated`` otherwise. Only one event is emitted.

        Raises:
            NotFoundError: If the lead does not exist.
            ValidationError: If fields are invalid.
        """
        changes = _parse(LeadUpdate, data).model_dump(exclude_unset=True)
        current = self._store.leads.require(lead_id)

        for field in ASSIGNMENT_FIELDS:
            if field in changes:
                self._check_user_ref(field, changes[field])
        if changes.get("product_ids") is not None:
            self._check_product_refs(changes["product_ids"])

        lead = self._store.leads.update(lead_id, changes)

        reassigned = any(
            getattr(current, field) != getattr(lead, field) for field in ASSIGNMENT_FIELDS
        )
        event = WebhookEventType.LEAD_ASSIGNED if reassigned else WebhookEventType.LEAD_UPDATED

        self._logger.info(
            "lead_updated",
            lead_id=lead_id,
            fields=sorted(changes),
            event_name=event.value,
        )

        self._emitter.emit(event, lead, actor)
        return lead

    async def delete_lead(self, lead_id: int, actor: Actor | None = None) -> Lead:
        """Delete a lead and its interactions.

        Emits one ``lead.deleted`` carrying the removed row; the cascaded
        interaction deletes emit nothing.

        Raises:
            NotFoundError: If the lead does not exist.
        """
        lead = self._store.leads.delete(lead_id)

        orphans = self._store.interactions.list(lambda i: i.lead_id == lead_id)
        for interaction in orphans:
            self._store.interactions.delete(interaction.id)

        self._logger.info("lead_deleted", lead_id=lead_id, interactions_removed=len(orphans))

        self._emitter.emit(WebhookEventType.LEAD_DELETED, lead, actor)
        return lead

    # ========================================================================
    # Interactions
    # ========================================================================

    async def list_interactions(self, lead_id: int) -> list[Interaction]:
        """List a lead's interactions, newest first.

        Raises:
            NotFoundError: If the lead does not exist.
        """
        self._store.leads.require(lead_id)
        return sorted(
            self._store.interactions.list(lambda i: i.lead_id == lead_id),
            key=lambda i: (i.created_at, i.id),
            reverse=True,
        )

    async def add_interaction(
        self,
        lead_id: int,
        data: InteractionCreate | dict[str, Any],
        actor: Actor | None = None,
    ) -> Interaction:
        """Log an interaction with a lead and emit ``interaction.created``.

        Raises:
            NotFoundError: If the lead does not exist.
            ValidationError: If fields are invalid.
        """
        values = _parse(InteractionCreate, data)
        self._store.leads.require(lead_id)

        interaction = self._store.interactions.insert(
            {
                **values.model_dump(),
                "lead_id": lead_id,
                "user_id": actor.id if actor else None,
            }
        )
        self._logger.info(
            "interaction_created",
            interaction_id=interaction.id,
            lead_id=lead_id,
            type=interaction.type.value,
        )

        self._emitter.emit(WebhookEventType.INTERACTION_CREATED, interaction, actor)
        return interaction

    async def update_interaction(
        self,
        interaction_id: int,
        data: InteractionUpdate | dict[str, Any],
        actor: Actor | None = None,
    ) -> Interaction:
        """Edit an interaction and emit ``interaction.updated``.

        Raises:
            NotFoundError: If the interaction does not exist.
        """
        changes = _parse(InteractionUpdate, data).model_dump(exclude_unset=True)
        interaction = self._store.interactions.update(interaction_id, changes)

        self._logger.info("interaction_updated", interaction_id=interaction_id)
        self._emitter.emit(WebhookEventType.INTERACTION_UPDATED, interaction, actor)
        return interaction

    async def delete_interaction(
        self, interaction_id: int, actor: Actor | None = None
    ) -> Interaction:
        """Delete an interaction and emit ``interaction.deleted``.

        Raises:
            NotFoundError: If the interaction does not exist.
        """
        interaction = self._store.interactions.delete(interaction_id)

        self._logger.info("interaction_deleted", interaction_id=interaction_id)
        self._emitter.emit(WebhookEventType.INTERACTION_DELETED, interaction, actor)
        return interaction

    # ========================================================================
    # Products
    # ========================================================================

    async def list_products(self, *, active_only: bool = False) -> list[Product]:
        """List products by display order, then name."""
        products = self._store.products.list(
            (lambda p: p.is_active) if active_only else None
        )
        return sorted(products, key=lambda p: (p.display_order, p.name))

    async def get_product(self, product_id: int) -> Product:
        """Get a product.

        Raises:
            NotFoundError: If the product does not exist.
        """
        return self._store.products.require(product_id)

    async def create_product(
        self, data: ProductCreate | dict[str, Any], actor: Actor | None = None
    ) -> Product:
        """Add a product to the catalog and emit ``product.created``."""
        values = _parse(ProductCreate, data)
        product = self._store.products.insert(values.model_dump())

        self._logger.info("product_created", product_id=product.id)
        self._emitter.emit(WebhookEventType.PRODUCT_CREATED, product, actor)
        return product

    async def update_product(
        self,
        product_id: int,
        data: ProductUpdate | dict[str, Any],
        actor: Actor | None = None,
    ) -> Product:
        """Edit a product and emit ``product.updated``.

        Raises:
            NotFoundError: If the product does not exist.
        """
        changes = _parse(ProductUpdate, data).model_dump(exclude_unset=True)
        product = self._store.products.update(product_id, changes)

        self._logger.info("product_updated", product_id=product_id, fields=sorted(changes))
        self._emitter.emit(WebhookEventType.PRODUCT_UPDATED, product, actor)
        return product

    async def delete_product(self, product_id: int, actor: Actor | None = None) -> Product:
        """Remove a product and emit ``product.deleted``.

        Leads interested in the product lose the association silently.

        Raises:
            NotFoundError: If the product does not exist.
        """
        product = self._store.products.delete(product_id)

        for lead in self._store.leads.list(lambda lead: product_id in lead.product_ids):
            self._store.leads.update(
                lead.id,
                {"product_ids": [pid for pid in lead.product_ids if pid != product_id]},
            )

        self._logger.info("product_deleted", product_id=product_id)
        self._emitter.emit(WebhookEventType.PRODUCT_DELETED, product, actor)
        return product

    async def reorder_products(
        self, product_ids: list[int], actor: Actor | None = None
    ) -> list[Product]:
        """Set each product's display order to its position in ``product_ids``.

        Emits ``product.updated`` for every product whose order changed.

        Returns:
            The full catalog in its new order.

        Raises:
            NotFoundError: If any id is unknown (nothing is changed).
            ValidationError: If an id appears twice.
        """
        if len(set(product_ids)) != len(product_ids):
            raise ValidationError("Duplicate product ids in reorder request")
        for product_id in product_ids:
            self._store.products.require(product_id)

        changed: list[Product] = []
        for position, product_id in enumerate(product_ids):
            current = self._store.products.require(product_id)
            if current.display_order == position:
                continue
            changed.append(self._store.products.update(product_id, {"display_order": position}))

        self._logger.info(
            "products_reordered",
            product_count=len(product_ids),
            changed_count=len(changed),
        )

        for product in changed:
            self._emitter.emit(WebhookEventType.PRODUCT_UPDATED, product, actor)
        return await self.list_products()

    # ========================================================================
    # Users
    # ========================================================================

    async def list_users(self) -> list[User]:
        """List users ordered by name."""
        return sorted(self._store.users.list(), key=lambda u: u.name.lower())

    async def get_user(self, user_id: int) -> User:
        """Get a user.

        Raises:
            NotFoundError: If the user does not exist.
        """
        return self._store.users.require(user_id)

    async def create_user(
        self, data: UserCreate | dict[str, Any], actor: Actor | None = None
    ) -> User:
        """Create a user account and emit ``user.created``.

        Raises:
            ValidationError: If fields are invalid or the email is taken.
        """
        values = _parse(UserCreate, data)
        self._check_unique_email(values.email)

        user = self._store.users.insert(values.model_dump())

        self._logger.info("user_created", user_id=user.id, role=user.role.value)
        self._emitter.emit(WebhookEventType.USER_CREATED, user, actor)
        return user

    async def update_user(
        self,
        user_id: int,
        data: UserUpdate | dict[str, Any],
        actor: Actor | None = None,
    ) -> User:
        """Edit a user account and emit ``user.updated``.

        Raises:
            NotFoundError: If the user does not exist.
            ValidationError: If fields are invalid or the email is taken.
        """
        changes = _parse(UserUpdate, data).model_dump(exclude_unset=True)
        self._store.users.require(user_id)
        if changes.get("email"):
            self._check_unique_email(changes["email"], exclude_id=user_id)

        user = self._store.users.update(user_id, changes)

        self._logger.info("user_updated", user_id=user_id, fields=sorted(changes))
        self._emitter.emit(WebhookEventType.USER_UPDATED, user, actor)
        return user

    # ========================================================================
    # Analytics
    # ========================================================================

    async def get_analytics(self) -> AnalyticsSummary:
        """Aggregate pipeline metrics over all leads."""
        leads = self._store.leads.list()
        total = len(leads)
        won = [lead for lead in leads if lead.status == LeadStatus.WON]

        conversion_rate = round(len(won) / total * 100, 2) if total else 0.0
        pipeline_value = sum(
            lead.value or 0.0 for lead in leads if lead.status not in CLOSED_STATUSES
        )

        status_counts = Counter(lead.status for lead in leads)
        leads_by_status = [
            StatusCount(status=status, count=status_counts[status])
            for status in LeadStatus
            if status_counts[status]
        ]

        revenue: defaultdict[str, float] = defaultdict(float)
        for lead in won:
            revenue[lead.created_at.strftime("%Y-%m")] += lead.value or 0.0

        return AnalyticsSummary(
            total_leads=total,
            conversion_rate=conversion_rate,
            pipeline_value=pipeline_value,
            active_projects=len(won),
            leads_by_status=leads_by_status,
            revenue_by_month=[
                MonthlyRevenue(month=month, revenue=amount)
                for month, amount in sorted(revenue.items())
            ],
        )


# Global service instance
_crm_service: CRMService | None = None


def get_crm_service() -> CRMService:
    """Get the global CRM service.

    Returns:
        Singleton CRMService.
    """
    global _crm_service
    if _crm_service is None:
        _crm_service = CRMService()
    return _crm_service


def set_crm_service(service: CRMService | None) -> None:
    """Set the global CRM service.

    Useful for testing.

    Args:
        service: CRMService instance.
    """
    global _crm_service
    _crm_service = service
