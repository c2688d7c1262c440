"""
Shared test fixtures.

The ORM runs on in-memory SQLite, outbound HTTP goes through
httpx.MockTransport and Redis is replaced by FakeRedis below.
"""
import fnmatch
import time

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from playgram.models import contact, gallery, manychat, social, webhook  # noqa: F401
from playgram.models.base import Base
from playgram.services.signature_service import SecretCipher


class FakeRedis:
    """The subset of redis.asyncio used by the cache and the job runner."""

    def __init__(self):
        self.values: dict[str, object] = {}
        self.expiry: dict[str, float] = {}
        self.sets: dict[str, set] = {}
        self.lists: dict[str, list] = {}
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis unavailable")

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.values.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.values

    async def get(self, key):
        self._check()
        return self.values.get(key) if self._alive(key) else None

    async def set(self, key, value, ex=None):
        self._check()
        self.values[key] = value
        if ex:
            self.expiry[key] = time.monotonic() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def setex(self, key, ttl, value):
        return await self.set(key, value, ex=ttl)

    async def ttl(self, key):
        self._check()
        if not self._alive(key):
            return -2
        deadline = self.expiry.get(key)
        if deadline is None:
            return -1
        return int(deadline - time.monotonic())

    async def exists(self, key):
        self._check()
        return int(self._alive(key))

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            for store in (self.values, self.sets, self.lists):
                if store.pop(key, None) is not None:
                    removed += 1
            self.expiry.pop(key, None)
        return removed

    async def scan_iter(self, match="*", count=None):
        self._check()
        for key in list(self.values):
            if self._alive(key) and fnmatch.fnmatchcase(key, match):
                yield key

    async def sadd(self, key, *members):
        self._check()
        self.sets.setdefault(key, set()).update(str(m) for m in members)

    async def srem(self, key, *members):
        self._check()
        self.sets.get(key, set()).difference_update(str(m) for m in members)

    async def sismember(self, key, member):
        self._check()
        return str(member) in self.sets.get(key, set())

    async def scard(self, key):
        return len(self.sets.get(key, set()))

    async def lpush(self, key, *values):
        self._check()
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def ltrim(self, key, start, end):
        items = self.lists.get(key, [])
        self.lists[key] = items[start:end + 1]

    async def llen(self, key):
        return len(self.lists.get(key, []))

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def cipher():
    return SecretCipher("test-app-secret")


class RecordingTransport:
    """
    httpx.MockTransport handler that records every request.

    responder(request) returns an httpx.Response or raises.
    """

    def __init__(self, responder=None):
        self.requests: list[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, text="ok"))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
async def http_client(transport):
    async with httpx.AsyncClient(transport=httpx.MockTransport(transport)) as client:
        yield client
