"""Webhook delivery client.

Signs and POSTs payloads to webhook endpoints with a bounded timeout,
optional exponential-backoff retry, and delivery tracking. Delivery never
raises: every outcome is captured in the returned WebhookDelivery.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from leadhub.config import settings
from leadhub.errors import DeliveryError
from leadhub.webhooks.delivery_log import DeliveryLog, get_delivery_log
from leadhub.webhooks.events import TEST_EVENT
from leadhub.webhooks.payloads import PayloadBuilder
from leadhub.webhooks.registry import (
    Webhook,
    WebhookDelivery,
    WebhookRegistry,
    get_webhook_registry,
)
from leadhub.webhooks.security import (
    SIGNATURE_HEADER,
    create_signature_headers,
    serialize_payload,
)

logger = structlog.get_logger(__name__)

# Substrings marking custom header values that are not written to the log
_SENSITIVE_HEADER_MARKERS = ("authorization", "token", "secret", "key", "cookie")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, DeliveryError) and exc.retryable


def _redact_headers(headers: dict[str, str]) -> dict[str, str]:
    return {
        name: "***"
        if any(marker in name.lower() for marker in _SENSITIVE_HEADER_MARKERS)
        else value
        for name, value in headers.items()
    }


class WebhookDispatcher:
    """Delivers payloads to webhook endpoints.

    Features:
    - Async HTTP delivery with a per-webhook timeout
    - HMAC signature over the exact bytes sent
    - Exponential backoff retry for timeouts, connection errors and 5xx
    - Concurrency limit across all outstanding deliveries
    - lastTriggered bookkeeping and an optional persisted delivery log
    """

    def __init__(
        self,
        registry: WebhookRegistry | None = None,
        *,
        delivery_log: DeliveryLog | None = None,
        max_concurrent_deliveries: int | None = None,
        retry_backoff_seconds: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            registry: Webhook registry (uses global if not provided).
            delivery_log: Optional log that records every delivery.
            max_concurrent_deliveries: Max concurrent HTTP requests.
            retry_backoff_seconds: Base delay of the exponential backoff.
            user_agent: User-Agent header value.
            transport: Optional httpx transport (e.g. MockTransport in tests).
        """
        self._registry = registry or get_webhook_registry()
        self._delivery_log = delivery_log
        self._max_concurrent = (
            max_concurrent_deliveries or settings.WEBHOOK_MAX_CONCURRENT_DELIVERIES
        )
        self._semaphore = asyncio.Semaphore(self._max_concurrent)
        self._backoff = (
            settings.WEBHOOK_RETRY_BACKOFF_SECONDS
            if retry_backoff_seconds is None
            else retry_backoff_seconds
        )
        self._user_agent = user_agent or settings.WEBHOOK_USER_AGENT
        self._transport = transport
        self._logger = logger.bind(component="webhook_dispatcher")

    @property
    def delivery_log(self) -> DeliveryLog | None:
        return self._delivery_log

    def _build_headers(self, webhook: Webhook, body: bytes) -> dict[str, str]:
        headers = {
            "User-Agent": self._user_agent,
            **webhook.headers,
            "Content-Type": "application/json",
        }
        headers.update(create_signature_headers(body, webhook.secret))
        return headers

    async def deliver(
        self,
        webhook: Webhook,
        payload: dict[str, Any],
        *,
        event: str,
        max_retries: int | None = None,
    ) -> WebhookDelivery:
        """Deliver a payload to one webhook.

        Args:
            webhook: Target webhook.
            payload: JSON-ready payload.
            event: Event name (for logging and the delivery record).
            max_retries: Override of the webhook's retry count.

        Returns:
            Delivery record with the final outcome.
        """
        body = serialize_payload(payload)
        headers = self._build_headers(webhook, body)

        delivery = WebhookDelivery(
            webhook_id=webhook.id,
            event=event,
            url=webhook.url,
            payload=payload,
            signature=headers.get(SIGNATURE_HEADER),
            headers=_redact_headers(headers),
        )
        retries = webhook.max_retries if max_retries is None else max_retries

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(retries + 1),
                wait=wait_exponential(multiplier=self._backoff, max=60),
                retry=retry_if_exception(_is_retryable),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    await self._attempt_delivery(webhook, delivery, body, headers)

        except DeliveryError as e:
            delivery.mark_failed(e.reason, response_status=e.status_code)
            self._logger.error(
                "delivery_failed",
                delivery_id=delivery.id,
                webhook_id=webhook.id,
                event_name=event,
                reason=e.reason,
                status_code=e.status_code,
                attempts=delivery.attempt_count,
            )

        except Exception as e:
            delivery.mark_failed(f"Unexpected error: {e}")
            self._logger.error(
                "delivery_unexpected_error",
                delivery_id=delivery.id,
                webhook_id=webhook.id,
                event_name=event,
                error=str(e),
                exc_info=True,
            )

        if delivery.reached_network:
            self._registry.mark_triggered(webhook.id, delivery.last_attempt_at)

        if self._delivery_log is not None:
            await self._delivery_log.record(delivery)

        return delivery

    async def _attempt_delivery(
        self,
        webhook: Webhook,
        delivery: WebhookDelivery,
        body: bytes,
        headers: dict[str, str],
    ) -> None:
        """Make a single delivery attempt.

        Raises:
            DeliveryError: On timeout, connection failure or non-2xx status.
        """
        async with self._semaphore:
            delivery.attempt_count += 1
            delivery.last_attempt_at = datetime.now(UTC)

            self._logger.debug(
                "attempting_delivery",
                delivery_id=delivery.id,
                attempt=delivery.attempt_count,
                url=webhook.url,
            )

            try:
                async with httpx.AsyncClient(
                    timeout=webhook.timeout_seconds,
                    transport=self._transport,
                ) as client:
                    # httpx timeouts are per phase; bound the whole exchange too
                    response = await asyncio.wait_for(
                        client.post(webhook.url, content=body, headers=headers),
                        timeout=webhook.timeout_seconds,
                    )

            except (httpx.TimeoutException, TimeoutError) as e:
                raise DeliveryError(
                    "Request timeout",
                    webhook_id=webhook.id,
                    event=delivery.event,
                ) from e

            except httpx.ConnectError as e:
                raise DeliveryError(
                    f"Connection error: {e}",
                    webhook_id=webhook.id,
                    event=delivery.event,
                ) from e

            except httpx.HTTPError as e:
                raise DeliveryError(
                    f"HTTP error: {e}",
                    webhook_id=webhook.id,
                    event=delivery.event,
                ) from e

        if response.is_success:
            delivery.mark_success(
                response_status=response.status_code,
                response_body=response.text,
            )
            self._logger.info(
                "delivery_success",
                delivery_id=delivery.id,
                webhook_id=webhook.id,
                event_name=delivery.event,
                status_code=response.status_code,
            )
            return

        # Only server errors and throttling are worth retrying
        status_code = response.status_code
        raise DeliveryError(
            f"HTTP {status_code}",
            webhook_id=webhook.id,
            event=delivery.event,
            status_code=status_code,
            retryable=status_code >= 500 or status_code == 429,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self._logger.warning(
            "delivery_retry_scheduled",
            attempt=retry_state.attempt_number,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc) if exc else None,
            webhook_id=exc.webhook_id if isinstance(exc, DeliveryError) else None,
        )

    async def send_test(self, webhook_id: int) -> WebhookDelivery:
        """Send the synthetic test payload to one webhook.

        Bypasses event matching and the active flag, and never retries.

        Args:
            webhook_id: Webhook to test.

        Returns:
            Delivery record with the HTTP outcome.

        Raises:
            NotFoundError: If the webhook does not exist.
        """
        webhook = self._registry.get(webhook_id)
        payload = PayloadBuilder.build_test(webhook.id)

        delivery = await self.deliver(webhook, payload, event=TEST_EVENT, max_retries=0)

        self._logger.info(
            "webhook_tested",
            webhook_id=webhook_id,
            delivery_id=delivery.id,
            status=delivery.status.value,
        )
        return delivery


# Global dispatcher instance
_dispatcher: WebhookDispatcher | None = None


def get_webhook_dispatcher() -> WebhookDispatcher:
    """Get the global webhook dispatcher.

    Returns:
        Singleton WebhookDispatcher.
    """
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher(delivery_log=get_delivery_log())
    return _dispatcher


def set_webhook_dispatcher(dispatcher: WebhookDispatcher | None) -> None:
    """Set the global webhook dispatcher.

    Useful for testing.

    Args:
        dispatcher: WebhookDispatcher instance.
    """
    global _dispatcher
    _dispatcher = dispatcher
