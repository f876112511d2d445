"""Tests for webhook delivery client."""

import asyncio
import hashlib
import hmac
import json

import httpx
import pytest
from structlog.testing import capture_logs

from leadhub.errors import NotFoundError
from leadhub.webhooks.delivery_log import DeliveryLog
from leadhub.webhooks.dispatcher import (
    WebhookDispatcher,
    get_webhook_dispatcher,
    set_webhook_dispatcher,
)
from leadhub.webhooks.registry import WebhookDeliveryStatus, WebhookRegistry
from leadhub.webhooks.security import SIGNATURE_HEADER, serialize_payload

# ============================================================================
# Fixtures
# ============================================================================


class RecordingTransport(httpx.AsyncBaseTransport):
    """Transport that records requests and replies from a handler."""

    def __init__(self, handler):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        return self.handler(request)


def respond(status_code):
    return lambda request: httpx.Response(status_code, text="ok" if status_code < 400 else "err")


@pytest.fixture
def registry():
    return WebhookRegistry(default_max_retries=0, default_timeout_seconds=5)


@pytest.fixture
def signed_webhook(registry):
    return registry.create(
        name="signed",
        url="https://receiver.example.com/hook",
        events=["*"],
        secret="topsecret",
        headers={"X-Api-Key": "abc123", "X-Team": "sales"},
    )


@pytest.fixture
def unsigned_webhook(registry):
    return registry.create(name="plain", url="https://plain.example.com/hook", events=["*"])


@pytest.fixture
def payload():
    return {"event": "lead.created", "timestamp": "2024-01-01T00:00:00+00:00", "lead": {"id": 1}}


def make_dispatcher(registry, transport, **kwargs):
    return WebhookDispatcher(
        registry,
        transport=transport,
        retry_backoff_seconds=0,
        **kwargs,
    )


# ============================================================================
# Signing and request shape
# ============================================================================


class TestRequestShape:
    """Tests for the HTTP request the dispatcher sends."""

    @pytest.mark.asyncio
    async def test_signature_over_raw_body(self, registry, signed_webhook, payload):
        """Test the header equals HMAC-SHA256(secret, exact bytes sent)."""
        transport = RecordingTransport(respond(200))
        dispatcher = make_dispatcher(registry, transport)

        await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        request = transport.requests[0]
        expected = hmac.new(b"topsecret", request.content, hashlib.sha256).hexdigest()
        assert request.headers[SIGNATURE_HEADER] == expected
        assert request.content == serialize_payload(payload)

    @pytest.mark.asyncio
    async def test_no_signature_without_secret(self, registry, unsigned_webhook, payload):
        transport = RecordingTransport(respond(200))
        dispatcher = make_dispatcher(registry, transport)

        delivery = await dispatcher.deliver(unsigned_webhook, payload, event="lead.created")

        assert SIGNATURE_HEADER not in transport.requests[0].headers
        assert delivery.signature is None

    @pytest.mark.asyncio
    async def test_content_type_and_custom_headers(self, registry, signed_webhook, payload):
        transport = RecordingTransport(respond(200))
        dispatcher = make_dispatcher(registry, transport, user_agent="TestAgent/1.0")

        await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        request = transport.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://receiver.example.com/hook"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == "TestAgent/1.0"
        assert request.headers["X-Api-Key"] == "abc123"
        assert request.headers["X-Team"] == "sales"
        assert json.loads(request.content) == payload

    @pytest.mark.asyncio
    async def test_sensitive_headers_redacted_in_record(self, registry, signed_webhook, payload):
        dispatcher = make_dispatcher(registry, RecordingTransport(respond(200)))

        delivery = await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        assert delivery.headers["X-Api-Key"] == "***"
        assert delivery.headers["X-Team"] == "sales"


# ============================================================================
# Outcomes
# ============================================================================


class TestOutcomes:
    """Tests for success and failure handling."""

    @pytest.mark.asyncio
    async def test_success(self, registry, signed_webhook, payload):
        dispatcher = make_dispatcher(registry, RecordingTransport(respond(204)))

        delivery = await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        assert delivery.status == WebhookDeliveryStatus.SUCCESS
        assert delivery.response_status == 204
        assert delivery.attempt_count == 1

    @pytest.mark.asyncio
    async def test_success_recorded_and_logged(self, registry, signed_webhook, payload):
        log = DeliveryLog(":memory:")

        try:
            with capture_logs() as logs:
                dispatcher = make_dispatcher(
                    registry, RecordingTransport(respond(200)), delivery_log=log
                )
                delivery = await dispatcher.deliver(
                    signed_webhook, payload, event="lead.created"
                )
            stored = await log.get(delivery.id)
        finally:
            await log.close()

        assert delivery.status == WebhookDeliveryStatus.SUCCESS
        assert stored is not None
        assert stored.status == WebhookDeliveryStatus.SUCCESS
        assert registry.get(signed_webhook.id).last_triggered is not None
        success = [entry for entry in logs if entry["event"] == "delivery_success"]
        assert success[0]["event_name"] == "lead.created"

    @pytest.mark.asyncio
    async def test_failure_logged(self, registry, signed_webhook, payload):
        with capture_logs() as logs:
            dispatcher = make_dispatcher(registry, RecordingTransport(respond(404)))
            delivery = await dispatcher.deliver(signed_webhook, payload, event="lead.updated")

        assert delivery.status == WebhookDeliveryStatus.FAILED
        failed = [entry for entry in logs if entry["event"] == "delivery_failed"]
        assert failed[0]["event_name"] == "lead.updated"
        assert failed[0]["status_code"] == 404

    @pytest.mark.asyncio
    async def test_slow_receiver_bounded_by_timeout(self, registry, payload):
        """Test the whole exchange is bounded, not just each phase."""

        class StallingTransport(httpx.AsyncBaseTransport):
            async def handle_async_request(self, request):
                await asyncio.sleep(5)
                return httpx.Response(200)

        webhook = registry.create(
            name="slow", url="https://slow.example.com", events=["*"], timeout_seconds=0.05
        )
        dispatcher = make_dispatcher(registry, StallingTransport())

        delivery = await asyncio.wait_for(
            dispatcher.deliver(webhook, payload, event="lead.created"), timeout=2
        )

        assert delivery.status == WebhookDeliveryStatus.FAILED
        assert delivery.error_message == "Request timeout"

    @pytest.mark.asyncio
    async def test_server_error_not_raised(self, registry, signed_webhook, payload):
        dispatcher = make_dispatcher(registry, RecordingTransport(respond(500)))

        delivery = await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        assert delivery.status == WebhookDeliveryStatus.FAILED
        assert delivery.error_message == "HTTP 500"
        assert delivery.response_status == 500

    @pytest.mark.asyncio
    async def test_timeout(self, registry, signed_webhook, payload):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        dispatcher = make_dispatcher(registry, RecordingTransport(handler))

        delivery = await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        assert delivery.status == WebhookDeliveryStatus.FAILED
        assert delivery.error_message == "Request timeout"

    @pytest.mark.asyncio
    async def test_connection_error(self, registry, signed_webhook, payload):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher = make_dispatcher(registry, RecordingTransport(handler))

        delivery = await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        assert delivery.status == WebhookDeliveryStatus.FAILED
        assert delivery.error_message.startswith("Connection error")

    @pytest.mark.asyncio
    async def test_last_triggered_set_even_on_failure(self, registry, signed_webhook, payload):
        dispatcher = make_dispatcher(registry, RecordingTransport(respond(503)))

        await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        assert registry.get(signed_webhook.id).last_triggered is not None

    @pytest.mark.asyncio
    async def test_webhook_deleted_mid_delivery(self, registry, signed_webhook, payload):
        """Test the delivery completes when its webhook is gone."""

        def handler(request):
            registry.delete(signed_webhook.id)
            return httpx.Response(200)

        dispatcher = make_dispatcher(registry, RecordingTransport(handler))

        delivery = await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        assert delivery.status == WebhookDeliveryStatus.SUCCESS


# ============================================================================
# Retry
# ============================================================================


class TestRetry:
    """Tests for retry behavior."""

    @pytest.mark.asyncio
    async def test_no_retry_by_default(self, registry, signed_webhook, payload):
        transport = RecordingTransport(respond(503))
        dispatcher = make_dispatcher(registry, transport)

        await dispatcher.deliver(signed_webhook, payload, event="lead.created")

        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, registry, payload):
        webhook = registry.create(
            name="retry", url="https://r.example.com", events=["*"], max_retries=2
        )
        statuses = iter([503, 502, 200])
        transport = RecordingTransport(lambda request: httpx.Response(next(statuses)))
        dispatcher = make_dispatcher(registry, transport)

        delivery = await dispatcher.deliver(webhook, payload, event="lead.created")

        assert len(transport.requests) == 3
        assert delivery.status == WebhookDeliveryStatus.SUCCESS
        assert delivery.attempt_count == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, registry, payload):
        webhook = registry.create(
            name="retry", url="https://r.example.com", events=["*"], max_retries=3
        )
        transport = RecordingTransport(respond(404))
        dispatcher = make_dispatcher(registry, transport)

        delivery = await dispatcher.deliver(webhook, payload, event="lead.created")

        assert len(transport.requests) == 1
        assert delivery.status == WebhookDeliveryStatus.FAILED

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, registry, payload):
        webhook = registry.create(
            name="retry", url="https://r.example.com", events=["*"], max_retries=2
        )
        transport = RecordingTransport(respond(500))
        dispatcher = make_dispatcher(registry, transport)

        delivery = await dispatcher.deliver(webhook, payload, event="lead.created")

        assert len(transport.requests) == 3
        assert delivery.status == WebhookDeliveryStatus.FAILED

    @pytest.mark.asyncio
    async def test_same_signature_on_every_attempt(self, registry, payload):
        webhook = registry.create(
            name="retry",
            url="https://r.example.com",
            events=["*"],
            secret="k",
            max_retries=1,
        )
        statuses = iter([500, 200])
        transport = RecordingTransport(lambda request: httpx.Response(next(statuses)))
        dispatcher = make_dispatcher(registry, transport)

        await dispatcher.deliver(webhook, payload, event="lead.created")

        signatures = {r.headers[SIGNATURE_HEADER] for r in transport.requests}
        assert len(signatures) == 1


# ============================================================================
# send_test and delivery log
# ============================================================================


class TestSendTest:
    """Tests for send_test."""

    @pytest.mark.asyncio
    async def test_send_test_payload(self, registry, signed_webhook):
        transport = RecordingTransport(respond(200))
        dispatcher = make_dispatcher(registry, transport)

        delivery = await dispatcher.send_test(signed_webhook.id)

        body = json.loads(transport.requests[0].content)
        assert body["test"] is True
        assert body["event"] == "test"
        assert body["webhookId"] == signed_webhook.id
        assert delivery.event == "test"
        assert delivery.status == WebhookDeliveryStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_send_test_ignores_active_flag(self, registry, signed_webhook):
        registry.update(signed_webhook.id, is_active=False)
        transport = RecordingTransport(respond(200))
        dispatcher = make_dispatcher(registry, transport)

        await dispatcher.send_test(signed_webhook.id)

        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_send_test_unknown_webhook(self, registry):
        dispatcher = make_dispatcher(registry, RecordingTransport(respond(200)))

        with pytest.raises(NotFoundError):
            await dispatcher.send_test(404)

    @pytest.mark.asyncio
    async def test_send_test_never_retries(self, registry, payload):
        webhook = registry.create(
            name="retry", url="https://r.example.com", events=["*"], max_retries=3
        )
        transport = RecordingTransport(respond(500))
        dispatcher = make_dispatcher(registry, transport)

        await dispatcher.send_test(webhook.id)

        assert len(transport.requests) == 1


class TestDeliveryLogging:
    """Tests for recording deliveries."""

    @pytest.mark.asyncio
    async def test_delivery_recorded(self, registry, signed_webhook, payload):
        log = DeliveryLog(":memory:")
        dispatcher = make_dispatcher(
            registry, RecordingTransport(respond(500)), delivery_log=log
        )

        try:
            delivery = await dispatcher.deliver(signed_webhook, payload, event="lead.created")
            stored = await log.get(delivery.id)
        finally:
            await log.close()

        assert stored is not None
        assert stored.status == WebhookDeliveryStatus.FAILED
        assert stored.payload == payload


class TestGlobalDispatcher:
    """Tests for the global dispatcher accessors."""

    def test_set_dispatcher(self, registry):
        dispatcher = WebhookDispatcher(registry)
        set_webhook_dispatcher(dispatcher)

        assert get_webhook_dispatcher() is dispatcher
