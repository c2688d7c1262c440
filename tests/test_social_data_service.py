"""
Layered social data lookup tests: memory/redis cache, database row, Apify.
"""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from playgram.models.social import ApifyDataSource, SocialMediaCache
from playgram.services.apify_client import ApifyClient
from playgram.services.cache_service import CacheService, social_cache_key
from playgram.services.errors import ExternalServiceError, UnsupportedSourceError
from playgram.services.social_data_service import SocialDataService, as_utc
from tests.factories import add

INSTAGRAM_ITEMS = [
    {"id": "p1", "shortCode": "abc", "caption": "hello", "likesCount": 10, "commentsCount": 2,
     "displayUrl": "https://cdn.example.com/p1.jpg"},
    {"id": "p2", "shortCode": "def", "likesCount": 5, "commentsCount": 0},
]


@pytest.fixture
def apify(http_client, transport):
    transport.responder = lambda request: httpx.Response(200, json=INSTAGRAM_ITEMS)
    return ApifyClient(http_client, token="apify-token", base_url="https://apify.test/v2")


@pytest.fixture
def service(apify, session_factory):
    return SocialDataService(CacheService(), apify, session_factory)


async def cache_rows(session_factory) -> list[SocialMediaCache]:
    async with session_factory() as db:
        return list((await db.execute(select(SocialMediaCache))).scalars().all())


async def test_first_fetch_goes_to_apify(service, transport, session_factory):
    result = await service.fetch_data("instagram", "posts", "playgram", limit=5)

    assert result["metadata"]["cached"] is False
    assert result["metadata"]["total"] == 2
    assert result["data"][0]["engagement"] == 12
    assert result["data"][0]["mediaUrl"] == "https://cdn.example.com/p1.jpg"

    request = transport.requests[0]
    assert request.url.path == "/v2/acts/apify~instagram-scraper/run-sync-get-dataset-items"
    assert json.loads(request.content)["resultsLimit"] == 5

    [row] = await cache_rows(session_factory)
    assert row.identifier == "playgram"
    assert as_utc(row.expires_at) - as_utc(row.last_fetched) == timedelta(hours=24)


async def test_second_fetch_is_served_from_cache(service, transport):
    await service.fetch_data("instagram", "posts", "playgram")
    result = await service.fetch_data("instagram", "posts", "playgram")

    assert result["metadata"]["cached"] is True
    assert result["metadata"]["cache_age"] >= 0
    assert len(transport.requests) == 1

    # the cached entry itself is not marked with the caller's age
    cached = await service.cache.get(social_cache_key("instagram", "posts", "playgram"))
    assert "cache_age" not in cached["metadata"]


async def test_database_row_is_promoted_to_cache(service, apify, transport, session_factory):
    await service.fetch_data("instagram", "posts", "playgram")
    fresh = SocialDataService(CacheService(), apify, session_factory)

    result = await fresh.fetch_data("instagram", "posts", "playgram")

    assert result["metadata"]["cached"] is True
    assert len(transport.requests) == 1
    assert await fresh.cache.exists(social_cache_key("instagram", "posts", "playgram"))


async def test_expired_row_is_refetched(service, transport, session_factory):
    past = datetime.now(timezone.utc) - timedelta(days=2)
    await add(session_factory, SocialMediaCache(
        platform="instagram", identifier="playgram", data_type="posts",
        cached_data=[], last_fetched=past, expires_at=past + timedelta(hours=24),
    ))

    result = await service.fetch_data("instagram", "posts", "playgram")

    assert result["metadata"]["cached"] is False
    assert len(transport.requests) == 1
    [row] = await cache_rows(session_factory)
    assert len(row.cached_data) == 2


async def test_force_refresh_skips_every_cache(service, transport):
    await service.fetch_data("instagram", "posts", "playgram")
    result = await service.fetch_data("instagram", "posts", "playgram", force_refresh=True)

    assert result["metadata"]["cached"] is False
    assert len(transport.requests) == 2


async def test_data_source_overrides_actor_and_ttl(service, transport, session_factory):
    await add(session_factory, ApifyDataSource(
        platform="instagram", actor_id="acme/ig", default_input={"resultsType": "posts"}, cache_duration_hours=2,
    ))

    await service.fetch_data("instagram", "posts", "playgram")

    request = transport.requests[0]
    assert request.url.path == "/v2/acts/acme~ig/run-sync-get-dataset-items"
    assert json.loads(request.content)["resultsType"] == "posts"
    [row] = await cache_rows(session_factory)
    assert as_utc(row.expires_at) - as_utc(row.last_fetched) == timedelta(hours=2)


async def test_apify_failure_is_not_cached(service, transport, session_factory):
    transport.responder = lambda request: httpx.Response(500, text="actor crashed")

    with pytest.raises(ExternalServiceError):
        await service.fetch_data("instagram", "posts", "playgram")
    assert await cache_rows(session_factory) == []


@pytest.mark.parametrize("platform,data_type", [("instagram", "reviews"), ("facebook", "posts")])
async def test_unsupported_source(service, platform, data_type):
    with pytest.raises(UnsupportedSourceError):
        await service.fetch_data(platform, data_type, "playgram")


async def test_invalidate_one_data_type(service, session_factory):
    await service.fetch_data("instagram", "posts", "playgram")
    await service.fetch_data("instagram", "posts", "other")

    await service.invalidate_cache("instagram", "playgram", "posts")

    assert not await service.cache.exists(social_cache_key("instagram", "posts", "playgram"))
    assert await service.cache.exists(social_cache_key("instagram", "posts", "other"))
    assert [row.identifier for row in await cache_rows(session_factory)] == ["other"]


async def test_invalidate_every_data_type(service, session_factory):
    await service.fetch_data("instagram", "posts", "playgram")

    await service.invalidate_cache("instagram", "playgram")

    assert not await service.cache.exists(social_cache_key("instagram", "posts", "playgram"))
    assert await cache_rows(session_factory) == []


async def test_cache_stats(service, session_factory):
    past = datetime.now(timezone.utc) - timedelta(days=2)
    await add(session_factory, SocialMediaCache(
        platform="tiktok", identifier="old", data_type="videos",
        cached_data=[], last_fetched=past, expires_at=past,
    ))
    await service.fetch_data("instagram", "posts", "playgram")

    stats = await service.get_cache_stats()

    assert stats == {"total": 2, "expired": 1, "active": 1, "by_platform": {"instagram": 1, "tiktok": 1}}
