"""
Social Data Service

Layered lookup for social media data: in-process and redis cache, then the
database cache table, then Apify as the source of truth.
"""
import time
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from playgram.database import AsyncSessionLocal
from playgram.models.social import ApifyDataSource, SocialMediaCache
from playgram.services.apify_client import ApifyClient
from playgram.services.cache_service import CacheService, social_cache_key
from playgram.services.errors import UnsupportedSourceError

logger = structlog.get_logger()

# platform -> supported data type
SUPPORTED_SOURCES = {
    "instagram": "posts",
    "tiktok": "videos",
    "google": "reviews",
}

DEFAULT_CACHE_HOURS = 24
DB_PROMOTION_TTL_SECONDS = 3600


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they were stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _age_seconds(timestamp: datetime, now: datetime) -> int:
    return max(0, int((now - as_utc(timestamp)).total_seconds()))


def check_source(platform: str, data_type: str) -> None:
    if platform not in SUPPORTED_SOURCES:
        raise UnsupportedSourceError(f"Unsupported platform: {platform}")
    if SUPPORTED_SOURCES[platform] != data_type:
        raise UnsupportedSourceError(f"Unsupported data type: {data_type} for platform: {platform}")


class SocialDataService:

    def __init__(
        self,
        cache: CacheService,
        apify: ApifyClient,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    ):
        self.cache = cache
        self.apify = apify
        self.session_factory = session_factory

    async def fetch_data(
        self,
        platform: str,
        data_type: str,
        identifier: str,
        limit: int = 12,
        force_refresh: bool = False,
    ) -> dict:
        """
        Return social data for one identifier.

        force_refresh skips both cache tiers and the database row and goes
        straight to Apify.
        """
        check_source(platform, data_type)
        key = social_cache_key(platform, data_type, identifier)
        start = time.perf_counter()
        now = datetime.now(timezone.utc)

        if not force_refresh:
            cached = await self.cache.get(key)
            if cached:
                timestamp = datetime.fromisoformat(cached["metadata"]["timestamp"])
                return {
                    **cached,
                    "metadata": {
                        **cached["metadata"],
                        "cached": True,
                        "cache_age": _age_seconds(timestamp, now),
                    },
                }

            async with self.session_factory() as db:
                row = await self._cache_row(db, platform, identifier, data_type)

            if row is not None and as_utc(row.expires_at) > now:
                response = self._response(
                    platform, data_type, identifier, row.cached_data,
                    cached=True,
                    fetch_duration=row.fetch_duration,
                    timestamp=as_utc(row.last_fetched),
                )
                response["metadata"]["cache_age"] = _age_seconds(row.last_fetched, now)
                await self.cache.set(key, response, DB_PROMOTION_TTL_SECONDS)
                logger.info("social_cache_db_hit", platform=platform, data_type=data_type, identifier=identifier)
                return response

        source = await self._data_source(platform)
        data = await self._fetch_from_source(platform, identifier, limit, source)
        fetch_duration = int((time.perf_counter() - start) * 1000)
        fetched_at = datetime.now(timezone.utc)

        ttl_seconds = (source.cache_duration_hours if source else DEFAULT_CACHE_HOURS) * 3600
        await self.cache.set(
            key,
            self._response(platform, data_type, identifier, data, cached=True,
                           fetch_duration=fetch_duration, timestamp=fetched_at),
            ttl_seconds,
        )
        await self._store_row(platform, identifier, data_type, data, fetched_at, ttl_seconds, fetch_duration)

        logger.info("social_data_fetched", platform=platform, data_type=data_type, identifier=identifier,
                    items=len(data), fetch_duration_ms=fetch_duration)
        return self._response(platform, data_type, identifier, data, cached=False,
                              fetch_duration=fetch_duration, timestamp=fetched_at)

    @staticmethod
    def _response(platform, data_type, identifier, data, cached, fetch_duration, timestamp: datetime) -> dict:
        return {
            "platform": platform,
            "data_type": data_type,
            "identifier": identifier,
            "data": data,
            "metadata": {
                "total": len(data),
                "fetched": len(data),
                "cached": cached,
                "fetch_duration": fetch_duration,
                "timestamp": timestamp.isoformat(),
            },
        }

    @staticmethod
    async def _cache_row(db: AsyncSession, platform: str, identifier: str, data_type: str) -> SocialMediaCache | None:
        stmt = select(SocialMediaCache).where(
            SocialMediaCache.platform == platform,
            SocialMediaCache.identifier == identifier,
            SocialMediaCache.data_type == data_type,
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    async def _data_source(self, platform: str) -> ApifyDataSource | None:
        async with self.session_factory() as db:
            stmt = select(ApifyDataSource).where(
                ApifyDataSource.platform == platform,
                ApifyDataSource.is_active.is_(True),
            )
            return (await db.execute(stmt)).scalar_one_or_none()

    async def _fetch_from_source(self, platform: str, identifier: str, limit: int,
                                 source: ApifyDataSource | None) -> list[dict]:
        actor_id = source.actor_id if source else None
        default_input = source.default_input if source else None
        if platform == "instagram":
            return await self.apify.fetch_instagram_posts(identifier, limit, actor_id, default_input)
        if platform == "tiktok":
            return await self.apify.fetch_tiktok_videos(identifier, limit, actor_id, default_input)
        return await self.apify.fetch_google_reviews(identifier, limit, actor_id, default_input)

    async def _store_row(self, platform, identifier, data_type, data, fetched_at, ttl_seconds, fetch_duration):
        async with self.session_factory() as db:
            row = await self._cache_row(db, platform, identifier, data_type)
            if row is None:
                row = SocialMediaCache(platform=platform, identifier=identifier, data_type=data_type)
                db.add(row)
            row.cached_data = data
            row.last_fetched = fetched_at
            row.expires_at = fetched_at + timedelta(seconds=ttl_seconds)
            row.fetch_duration = fetch_duration
            await db.commit()

    async def invalidate_cache(self, platform: str, identifier: str, data_type: str | None = None) -> None:
        """Drop cached data for an identifier, for one data type or all of them."""
        if data_type:
            await self.cache.delete(social_cache_key(platform, data_type, identifier))
            stmt = delete(SocialMediaCache).where(
                SocialMediaCache.platform == platform,
                SocialMediaCache.identifier == identifier,
                SocialMediaCache.data_type == data_type,
            )
        else:
            await self.cache.delete_pattern(f"social:{platform}:*:{identifier}")
            stmt = delete(SocialMediaCache).where(
                SocialMediaCache.platform == platform,
                SocialMediaCache.identifier == identifier,
            )

        async with self.session_factory() as db:
            await db.execute(stmt)
            await db.commit()

        logger.info("social_cache_invalidated", platform=platform, identifier=identifier, data_type=data_type)

    async def get_cache_stats(self) -> dict:
        now = datetime.now(timezone.utc)
        async with self.session_factory() as db:
            total = (await db.execute(select(func.count(SocialMediaCache.id)))).scalar_one()
            expired = (await db.execute(
                select(func.count(SocialMediaCache.id)).where(SocialMediaCache.expires_at < now)
            )).scalar_one()
            by_platform = (await db.execute(
                select(SocialMediaCache.platform, func.count(SocialMediaCache.id))
                .group_by(SocialMediaCache.platform)
            )).all()

        return {
            "total": total,
            "expired": expired,
            "active": total - expired,
            "by_platform": {platform: count for platform, count in by_platform},
        }
