"""Fire-and-forget event emission.

Domain mutations call ``emit()`` after their write has committed. Events are
queued and processed by a background worker that notifies local listeners,
builds the payload once and fans it out to every subscribed webhook
concurrently. Nothing here ever raises back into the mutation.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel

from leadhub.auth import Actor
from leadhub.webhooks.dispatcher import WebhookDispatcher, get_webhook_dispatcher
from leadhub.webhooks.events import DomainEvent, WebhookEventType
from leadhub.webhooks.payloads import PayloadBuilder
from leadhub.webhooks.registry import Webhook, WebhookRegistry, get_webhook_registry

logger = structlog.get_logger(__name__)

# Type for event listeners
EventListener = Callable[[DomainEvent], Awaitable[None] | None]


class EventEmitter:
    """Queues domain events and delivers them to subscribed webhooks.

    The worker task starts on the first ``emit()`` from inside a running
    event loop, or explicitly with ``start()``. ``drain()`` waits until every
    queued event has been fanned out and every delivery has finished.
    """

    def __init__(
        self,
        registry: WebhookRegistry | None = None,
        builder: PayloadBuilder | None = None,
        dispatcher: WebhookDispatcher | None = None,
    ) -> None:
        """Initialize the emitter.

        Args:
            registry: Webhook registry (uses global if not provided).
            builder: Payload builder (uses a default one if not provided).
            dispatcher: Delivery client (uses global if not provided).
        """
        self._registry = registry or get_webhook_registry()
        self._builder = builder or PayloadBuilder()
        self._dispatcher = dispatcher or get_webhook_dispatcher()
        self._listeners: list[EventListener] = []
        self._queue: asyncio.Queue[DomainEvent] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._delivery_tasks: set[asyncio.Task[None]] = set()
        self._logger = logger.bind(component="event_emitter")

    @property
    def pending(self) -> int:
        """Queued events plus in-flight deliveries."""
        queued = self._queue.qsize() if self._queue is not None else 0
        return queued + len(self._delivery_tasks)

    def add_listener(self, listener: EventListener) -> None:
        """Add a local event listener.

        Listeners run on the worker for every event, before webhook fan-out.

        Args:
            listener: Async or sync function to call with events.
        """
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        """Remove a local event listener.

        Args:
            listener: Listener to remove.
        """
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(
        self,
        event_name: WebhookEventType,
        entity: BaseModel,
        actor: Actor | None = None,
    ) -> DomainEvent | None:
        """Queue an event for delivery.

        Returns immediately. Must be called from inside the event loop
        thread; events emitted without a running loop are logged and dropped.

        Args:
            event_name: Event to emit.
            entity: Post-mutation snapshot of the affected record.
            actor: User who triggered the mutation (None for system).

        Returns:
            The queued event, or None if it could not be queued.
        """
        name = getattr(event_name, "value", event_name)
        try:
            event = DomainEvent(name=event_name, entity=entity, actor=actor)
            queue = self._ensure_worker()
            queue.put_nowait(event)
        except RuntimeError:
            self._logger.warning("event_dropped_no_loop", event_name=name)
            return None
        except Exception as e:
            self._logger.error("event_emit_failed", event_name=name, error=str(e))
            return None

        self._logger.debug("event_queued", event_name=event.name.value)
        return event

    def start(self) -> None:
        """Start the background worker on the running loop."""
        self._ensure_worker()

    def _ensure_worker(self) -> asyncio.Queue[DomainEvent]:
        loop = asyncio.get_running_loop()
        if (
            self._queue is None
            or self._worker is None
            or self._worker.done()
            or self._loop is not loop
        ):
            # Queues are bound to the loop they are first used on
            self._queue = asyncio.Queue()
            self._delivery_tasks = set()
            self._loop = loop
            self._worker = loop.create_task(self._run())
            self._logger.debug("emitter_worker_started")
        return self._queue

    async def _run(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            event = await queue.get()
            try:
                await self._process(event)
            except Exception as e:
                self._logger.error(
                    "event_processing_failed",
                    event_name=event.name.value,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                queue.task_done()

    async def _process(self, event: DomainEvent) -> None:
        await self._notify_listeners(event)

        webhooks = self._registry.get_webhooks_for_event(event.name.value)
        if not webhooks:
            self._logger.debug("no_webhooks_subscribed", event_name=event.name.value)
            return

        # One payload per event, shared by every receiver
        payload = self._builder.build(event)

        for webhook in webhooks:
            task = asyncio.create_task(
                self._deliver(webhook, payload, event.name.value)
            )
            self._delivery_tasks.add(task)
            task.add_done_callback(self._delivery_tasks.discard)

        self._logger.info(
            "event_dispatched",
            event_name=event.name.value,
            webhook_count=len(webhooks),
        )

    async def _deliver(
        self, webhook: Webhook, payload: dict[str, Any], event_name: str
    ) -> None:
        try:
            await self._dispatcher.deliver(webhook, payload, event=event_name)
        except Exception as e:
            self._logger.error(
                "delivery_task_failed",
                webhook_id=webhook.id,
                event_name=event_name,
                error=str(e),
            )

    async def _notify_listeners(self, event: DomainEvent) -> None:
        for listener in self._listeners:
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self._logger.warning(
                    "listener_error",
                    event_name=event.name.value,
                    error=str(e),
                )

    async def drain(self) -> None:
        """Wait for queued events and in-flight deliveries to finish."""
        if self._queue is None or self._loop is not asyncio.get_running_loop():
            return
        await self._queue.join()
        while self._delivery_tasks:
            await asyncio.gather(*list(self._delivery_tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Drain outstanding work and stop the worker."""
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        self._queue = None
        self._loop = None
        self._logger.info("emitter_shutdown")


# Global emitter instance
_emitter: EventEmitter | None = None


def get_event_emitter() -> EventEmitter:
    """Get the global event emitter.

    Returns:
        Singleton EventEmitter.
    """
    global _emitter
    if _emitter is None:
        _emitter = EventEmitter()
    return _emitter


def set_event_emitter(emitter: EventEmitter | None) -> None:
    """Set the global event emitter.

    Useful for testing.

    Args:
        emitter: EventEmitter instance.
    """
    global _emitter
    _emitter = emitter
