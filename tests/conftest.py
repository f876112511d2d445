"""Shared fixtures: every test starts from fresh global singletons."""

import pytest

from leadhub.config import settings
from leadhub.crm.service import set_crm_service
from leadhub.mcp.server import set_connection_tracker
from leadhub.storage.store import set_record_store
from leadhub.webhooks.delivery_log import set_delivery_log
from leadhub.webhooks.dispatcher import set_webhook_dispatcher
from leadhub.webhooks.emitter import set_event_emitter
from leadhub.webhooks.registry import set_webhook_registry


def _reset_globals() -> None:
    set_crm_service(None)
    set_event_emitter(None)
    set_webhook_dispatcher(None)
    set_webhook_registry(None)
    set_delivery_log(None)
    set_record_store(None)
    set_connection_tracker(None)


@pytest.fixture(autouse=True)
def isolated_globals(monkeypatch):
    """Reset singletons and keep the default delivery log off disk."""
    monkeypatch.setattr(settings, "DELIVERY_LOG_ENABLED", False)
    _reset_globals()
    yield
    _reset_globals()
