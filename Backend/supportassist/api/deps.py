"""
FastAPI dependencies wiring the core services to shared clients.

Tests swap any of these through ``app.dependency_overrides``.
"""
from typing import Optional

from fastapi import Depends

from supportassist.core.config import settings
from supportassist.db import get_redis_client
from supportassist.services.job_store import JobStore
from supportassist.services.notifications import EventPublisher
from supportassist.services.provider import ProviderClient
from supportassist.services.webhook_dispatcher import WebhookDispatcher

_provider: Optional[ProviderClient] = None


def get_job_store() -> JobStore:
    return JobStore(get_redis_client())


def get_publisher() -> EventPublisher:
    return EventPublisher(get_redis_client())


def get_provider() -> ProviderClient:
    global _provider
    if _provider is None:
        _provider = ProviderClient()
    return _provider


def get_webhook_secret() -> Optional[str]:
    return settings.OPENAI_WEBHOOK_SECRET


def get_dispatcher(
    store: JobStore = Depends(get_job_store),
    provider: ProviderClient = Depends(get_provider),
    publisher: EventPublisher = Depends(get_publisher),
) -> WebhookDispatcher:
    return WebhookDispatcher(store, provider, publisher)
