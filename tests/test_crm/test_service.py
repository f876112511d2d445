"""Tests for the CRM domain service."""

import httpx
import pytest
from structlog.testing import capture_logs

from leadhub.auth import Actor
from leadhub.crm.service import CRMService, get_crm_service, set_crm_service
from leadhub.errors import NotFoundError, ValidationError
from leadhub.storage.models import LeadCreate, LeadStatus, LeadUpdate
from leadhub.storage.store import RecordStore
from leadhub.webhooks.dispatcher import WebhookDispatcher
from leadhub.webhooks.emitter import EventEmitter
from leadhub.webhooks.events import WebhookEventType
from leadhub.webhooks.payloads import PayloadBuilder
from leadhub.webhooks.registry import WebhookRegistry

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def store():
    store = RecordStore()
    store.users.insert({"name": "Ada Admin", "email": "ada@example.com", "role": "admin"})
    store.users.insert({"name": "Sam Sales", "email": "sam@example.com", "role": "agent"})
    store.users.insert({"name": "Eli Engineer", "email": "eli@example.com", "role": "engineer"})
    store.products.insert({"name": "AI Chatbot", "price": "$5,000", "display_order": 0})
    store.products.insert({"name": "Voice Agent", "price": "$9,000", "display_order": 1})
    store.products.insert({"name": "Data Pipeline", "price": "$7,000", "display_order": 2})
    return store


@pytest.fixture
def registry():
    return WebhookRegistry(default_max_retries=0, default_timeout_seconds=5)


@pytest.fixture
def requests_seen():
    return []


@pytest.fixture
def emitter(store, registry, requests_seen):
    def handler(request):
        requests_seen.append(request)
        return httpx.Response(200)

    dispatcher = WebhookDispatcher(
        registry,
        transport=httpx.MockTransport(handler),
        retry_backoff_seconds=0,
    )
    return EventEmitter(registry, PayloadBuilder(store), dispatcher)


@pytest.fixture
def events(emitter):
    """Names of emitted events, in order."""
    seen = []
    emitter.add_listener(lambda event: seen.append(event.name))
    return seen


@pytest.fixture
def service(store, emitter):
    return CRMService(store, emitter)


@pytest.fixture
def admin(store):
    return Actor.from_user(store.users.require(1))


# ============================================================================
# Lead Tests
# ============================================================================


class TestLeads:
    """Tests for lead mutations and the events they emit."""

    @pytest.mark.asyncio
    async def test_create_lead(self, service, emitter, events, admin):
        lead = await service.create_lead(
            {"name": "Jane", "email": "jane@acme.test", "product_ids": [1, 2]}, admin
        )
        await emitter.drain()

        assert lead.id == 1
        assert lead.status == LeadStatus.NEW
        assert events == [WebhookEventType.LEAD_CREATED]

    @pytest.mark.asyncio
    async def test_create_lead_invalid(self, service, emitter, events):
        with pytest.raises(ValidationError):
            await service.create_lead({"name": ""})
        await emitter.drain()

        assert events == []

    @pytest.mark.asyncio
    async def test_create_lead_unknown_assignee(self, service):
        with pytest.raises(ValidationError, match="assigned_to"):
            await service.create_lead(LeadCreate(name="Jane", assigned_to=99))

    @pytest.mark.asyncio
    async def test_create_lead_unknown_product(self, service):
        with pytest.raises(ValidationError, match="product_ids"):
            await service.create_lead(LeadCreate(name="Jane", product_ids=[42]))

    @pytest.mark.asyncio
    async def test_update_emits_updated(self, service, emitter, events, admin):
        lead = await service.create_lead({"name": "Jane"}, admin)

        updated = await service.update_lead(lead.id, LeadUpdate(status=LeadStatus.CONTACTED), admin)
        await emitter.drain()

        assert updated.status == LeadStatus.CONTACTED
        assert events == [WebhookEventType.LEAD_CREATED, WebhookEventType.LEAD_UPDATED]

    @pytest.mark.asyncio
    async def test_assignment_emits_assigned_only(self, service, emitter, events, admin):
        lead = await service.create_lead({"name": "Jane"}, admin)

        await service.update_lead(lead.id, {"assigned_to": 2, "notes": "hot"}, admin)
        await service.update_lead(lead.id, {"assigned_engineer": 3}, admin)
        await emitter.drain()

        assert events == [
            WebhookEventType.LEAD_CREATED,
            WebhookEventType.LEAD_ASSIGNED,
            WebhookEventType.LEAD_ASSIGNED,
        ]

    @pytest.mark.asyncio
    async def test_update_logged_then_delivered(
        self, store, emitter, events, registry, requests_seen, admin
    ):
        registry.create(name="all", url="https://all.example.com", events=["*"])
        lead = store.leads.insert({"name": "Jane"})

        with capture_logs() as logs:
            service = CRMService(store, emitter)
            updated = await service.update_lead(lead.id, {"notes": "hi"}, admin)
        await emitter.drain()

        assert updated.notes == "hi"
        assert events == [WebhookEventType.LEAD_UPDATED]
        assert [entry["event_name"] for entry in logs if entry["event"] == "lead_updated"] == [
            "lead.updated"
        ]
        assert len(requests_seen) == 1

    @pytest.mark.asyncio
    async def test_non_finite_value_rejected(self, service, store, events):
        with pytest.raises(ValidationError):
            await service.create_lead({"name": "Jane", "value": float("inf")})

        lead = await service.create_lead({"name": "Jane", "value": 10})
        with pytest.raises(ValidationError):
            await service.update_lead(lead.id, {"value": float("nan")})

        assert store.leads.require(lead.id).value == 10
        assert events == [WebhookEventType.LEAD_CREATED]

    @pytest.mark.asyncio
    async def test_same_assignee_is_plain_update(self, service, emitter, events):
        lead = await service.create_lead({"name": "Jane", "assigned_to": 2})

        await service.update_lead(lead.id, {"assigned_to": 2})
        await emitter.drain()

        assert events[-1] == WebhookEventType.LEAD_UPDATED

    @pytest.mark.asyncio
    async def test_unassign(self, service, emitter, events):
        lead = await service.create_lead({"name": "Jane", "assigned_to": 2})

        updated = await service.update_lead(lead.id, {"assigned_to": None})
        await emitter.drain()

        assert updated.assigned_to is None
        assert events[-1] == WebhookEventType.LEAD_ASSIGNED

    @pytest.mark.asyncio
    async def test_update_missing(self, service):
        with pytest.raises(NotFoundError, match="Lead 9 not found"):
            await service.update_lead(9, {"name": "x"})

    @pytest.mark.asyncio
    async def test_delete_cascades_without_extra_events(
        self, service, store, emitter, events, admin
    ):
        lead = await service.create_lead({"name": "Jane"}, admin)
        await service.add_interaction(lead.id, {"type": "call", "text": "hi"}, admin)
        await emitter.drain()
        events.clear()

        deleted = await service.delete_lead(lead.id, admin)
        await emitter.drain()

        assert deleted.name == "Jane"
        assert store.interactions.count() == 0
        assert events == [WebhookEventType.LEAD_DELETED]

    @pytest.mark.asyncio
    async def test_list_filters(self, service):
        await service.create_lead({"name": "Jane", "company": "Acme", "source": "web"})
        await service.create_lead({"name": "Bob", "company": "Globex", "status": "won"})
        await service.create_lead({"name": "Carla", "email": "carla@acme.test"})

        by_search = await service.list_leads({"search": "ACME"})
        by_status = await service.list_leads({"status": "won"})
        limited = await service.list_leads(None, limit=1)

        assert {lead.name for lead in by_search} == {"Jane", "Carla"}
        assert [lead.name for lead in by_status] == ["Bob"]
        assert len(limited) == 1

    @pytest.mark.asyncio
    async def test_reads_emit_nothing(self, service, emitter, events):
        await service.list_leads()
        await service.get_analytics()
        await service.list_products()
        await emitter.drain()

        assert events == []


# ============================================================================
# Interaction Tests
# ============================================================================


class TestInteractions:
    """Tests for interaction mutations."""

    @pytest.mark.asyncio
    async def test_interaction_lifecycle(self, service, emitter, events, admin):
        lead = await service.create_lead({"name": "Jane"}, admin)
        interaction = await service.add_interaction(
            lead.id, {"type": "email", "text": "Sent proposal"}, admin
        )
        await service.update_interaction(interaction.id, {"text": "Sent v2"}, admin)
        await service.delete_interaction(interaction.id, admin)
        await emitter.drain()

        assert interaction.user_id == admin.id
        assert events[1:] == [
            WebhookEventType.INTERACTION_CREATED,
            WebhookEventType.INTERACTION_UPDATED,
            WebhookEventType.INTERACTION_DELETED,
        ]

    @pytest.mark.asyncio
    async def test_interaction_unknown_lead(self, service):
        with pytest.raises(NotFoundError):
            await service.add_interaction(77, {"text": "hello"})

    @pytest.mark.asyncio
    async def test_list_interactions(self, service):
        lead = await service.create_lead({"name": "Jane"})
        first = await service.add_interaction(lead.id, {"text": "one"})
        second = await service.add_interaction(lead.id, {"text": "two"})

        listed = await service.list_interactions(lead.id)

        assert {i.id for i in listed} == {first.id, second.id}


# ============================================================================
# Product and user Tests
# ============================================================================


class TestProducts:
    """Tests for catalog mutations."""

    @pytest.mark.asyncio
    async def test_product_crud_events(self, service, emitter, events, admin):
        product = await service.create_product({"name": "Vision", "price": "$3,000"}, admin)
        await service.update_product(product.id, {"price": "$3,500"}, admin)
        await service.delete_product(product.id, admin)
        await emitter.drain()

        assert events == [
            WebhookEventType.PRODUCT_CREATED,
            WebhookEventType.PRODUCT_UPDATED,
            WebhookEventType.PRODUCT_DELETED,
        ]

    @pytest.mark.asyncio
    async def test_delete_product_detaches_from_leads(self, service, store):
        lead = await service.create_lead({"name": "Jane", "product_ids": [1, 2]})

        await service.delete_product(1)

        assert store.leads.require(lead.id).product_ids == [2]

    @pytest.mark.asyncio
    async def test_reorder_emits_per_moved_product(self, service, emitter, events, admin):
        ordered = await service.reorder_products([1, 3, 2], admin)
        await emitter.drain()

        assert [p.id for p in ordered] == [1, 3, 2]
        # Product 1 kept position 0
        assert events == [WebhookEventType.PRODUCT_UPDATED, WebhookEventType.PRODUCT_UPDATED]

    @pytest.mark.asyncio
    async def test_reorder_unknown_product(self, service, store):
        with pytest.raises(NotFoundError):
            await service.reorder_products([3, 99])

        assert store.products.require(3).display_order == 2

    @pytest.mark.asyncio
    async def test_reorder_duplicates(self, service):
        with pytest.raises(ValidationError):
            await service.reorder_products([1, 1])


class TestUsers:
    """Tests for user mutations."""

    @pytest.mark.asyncio
    async def test_user_events(self, service, emitter, events, admin):
        user = await service.create_user({"name": "New", "email": "new@example.com"}, admin)
        await service.update_user(user.id, {"role": "engineer"}, admin)
        await emitter.drain()

        assert events == [WebhookEventType.USER_CREATED, WebhookEventType.USER_UPDATED]

    @pytest.mark.asyncio
    async def test_duplicate_email(self, service):
        with pytest.raises(ValidationError, match="already exists"):
            await service.create_user({"name": "Dup", "email": "ADA@example.com"})

    @pytest.mark.asyncio
    async def test_list_users_by_name(self, service):
        users = await service.list_users()

        assert [u.name for u in users] == ["Ada Admin", "Eli Engineer", "Sam Sales"]


# ============================================================================
# Analytics and resilience Tests
# ============================================================================


class TestAnalytics:
    """Tests for get_analytics."""

    @pytest.mark.asyncio
    async def test_empty(self, service):
        summary = await service.get_analytics()

        assert summary.total_leads == 0
        assert summary.conversion_rate == 0.0
        assert summary.leads_by_status == []

    @pytest.mark.asyncio
    async def test_aggregates(self, service):
        await service.create_lead({"name": "A", "status": "won", "value": 1000})
        await service.create_lead({"name": "B", "status": "lost", "value": 500})
        await service.create_lead({"name": "C", "status": "qualified", "value": 200})
        await service.create_lead({"name": "D", "value": 300})

        summary = await service.get_analytics()

        assert summary.total_leads == 4
        assert summary.conversion_rate == 25.0
        assert summary.pipeline_value == 500.0
        assert summary.active_projects == 1
        assert {s.status.value: s.count for s in summary.leads_by_status} == {
            "won": 1,
            "lost": 1,
            "qualified": 1,
            "new": 1,
        }
        assert len(summary.revenue_by_month) == 1
        assert summary.revenue_by_month[0].revenue == 1000.0


class TestDeliveryIndependence:
    """Tests that mutations never depend on webhook delivery."""

    @pytest.mark.asyncio
    async def test_unreachable_webhooks(self, store, registry, admin):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        registry.create(name="a", url="https://a.test/hook", events=["*"])
        registry.create(name="b", url="https://b.test/hook", events=["*"])
        dispatcher = WebhookDispatcher(
            registry, transport=httpx.MockTransport(refuse), retry_backoff_seconds=0
        )
        emitter = EventEmitter(registry, PayloadBuilder(store), dispatcher)
        service = CRMService(store, emitter)

        lead = await service.create_lead({"name": "Jane"}, admin)
        await emitter.drain()

        assert store.leads.require(lead.id).name == "Jane"

    @pytest.mark.asyncio
    async def test_webhook_receives_lead_payload(
        self, service, registry, emitter, requests_seen, admin
    ):
        registry.create(name="a", url="https://a.test/hook", events=["lead.assigned"])
        lead = await service.create_lead({"name": "Jane", "product_ids": [2]}, admin)

        await service.update_lead(lead.id, {"assigned_to": 2}, admin)
        await emitter.drain()

        assert len(requests_seen) == 1
        body = requests_seen[0].read()
        assert b'"event":"lead.assigned"' in body
        assert b'"interestedProductNames":["Voice Agent"]' in body


class TestGlobalService:
    def test_set_service(self, service):
        set_crm_service(service)

        assert get_crm_service() is service
