import fnmatch
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Settings are read at import time; keep tests off real infrastructure.
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")

from supportassist.services.job_store import JobStore
from supportassist.services.notifications import EventPublisher
from supportassist.services.provider import ProviderClient


class InMemoryRedis:
    """Async stand-in for the subset of redis.asyncio the core uses."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.fail_delete_for: set[str] = set()
        self.fail_publish = False
        self._scan_snapshot: list[str] = []

    async def get(self, key):
        return self._store.get(key)

    async def set(self, key, value):
        self._store[key] = value
        return True

    async def mget(self, keys):
        return [self._store.get(k) for k in keys]

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.fail_delete_for:
                raise ConnectionError(f"simulated delete failure for {key}")
            if self._store.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan(self, cursor=0, match=None, count=None):
        # Pages walk the keys present when the scan started, so deleting
        # during iteration never skips a key, as with real SCAN.
        start = int(cursor)
        if start == 0:
            self._scan_snapshot = sorted(k for k in self._store if match is None or fnmatch.fnmatchcase(k, match))
        keys = self._scan_snapshot
        page = keys[start:start + (count or 10)]
        next_cursor = start + len(page)
        return (0 if next_cursor >= len(keys) else next_cursor), page

    async def publish(self, channel, message):
        if self.fail_publish:
            raise ConnectionError("simulated publish failure")
        self.published.append((channel, message))
        return 1

    async def ping(self):
        return True

    async def aclose(self):
        return None

    def keys_snapshot(self) -> dict[str, str]:
        return dict(self._store)


class MutableClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def redis_client() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def store(redis_client, clock) -> JobStore:
    return JobStore(redis_client, clock=clock, scan_page_size=2)


@pytest.fixture
def publisher(redis_client) -> EventPublisher:
    return EventPublisher(redis_client)


@pytest.fixture
def provider() -> MagicMock:
    mock = MagicMock(spec=ProviderClient)
    mock.retrieve = AsyncMock()
    mock.cancel = AsyncMock(return_value={"id": "resp", "status": "cancelled"})
    return mock
