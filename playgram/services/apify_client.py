"""
Apify client.

Runs scraper actors synchronously and normalises their dataset items into the
shapes the social-data API returns.
"""
import time
from datetime import datetime, timezone

import httpx
import structlog

from playgram.config import settings
from playgram.services.errors import ExternalServiceError

logger = structlog.get_logger()

DEFAULT_ACTORS = {
    "instagram": "apify/instagram-scraper",
    "tiktok": "apify/tiktok-scraper",
    "google": "apify/google-maps-scraper",
}


def normalize_instagram_post(item: dict) -> dict:
    likes = item.get("likesCount") or 0
    comments = item.get("commentsCount") or 0
    return {
        "id": item.get("id") or item.get("shortCode"),
        "type": item.get("type") or "image",
        "caption": item.get("caption"),
        "mediaUrl": item.get("displayUrl") or item.get("url"),
        "thumbnailUrl": item.get("thumbnailUrl"),
        "permalink": item.get("url") or f"https://www.instagram.com/p/{item.get('shortCode')}/",
        "timestamp": item.get("timestamp"),
        "likes": item.get("likesCount"),
        "comments": item.get("commentsCount"),
        "engagement": likes + comments,
        "hashtags": item.get("hashtags"),
        "mentions": item.get("mentions"),
        "location": item.get("locationName"),
    }


def normalize_tiktok_video(item: dict, username: str) -> dict:
    stats = item.get("stats") or {}
    likes = item.get("diggCount") or stats.get("diggCount")
    comments = item.get("commentCount") or stats.get("commentCount")
    shares = item.get("shareCount") or stats.get("shareCount")
    created = item.get("createTime")
    music = item.get("music")
    return {
        "id": item.get("id"),
        "description": item.get("text") or item.get("description"),
        "videoUrl": item.get("videoUrl") or (item.get("video") or {}).get("downloadAddr"),
        "thumbnailUrl": (item.get("covers") or [None])[0] or item.get("thumbnail"),
        "permalink": item.get("webVideoUrl") or f"https://www.tiktok.com/@{username}/video/{item.get('id')}",
        "timestamp": (
            datetime.fromtimestamp(created, timezone.utc).isoformat() if created
            else datetime.now(timezone.utc).isoformat()
        ),
        "likes": likes,
        "comments": comments,
        "shares": shares,
        "views": item.get("playCount") or stats.get("playCount"),
        "engagement": (likes or 0) + (comments or 0) + (shares or 0),
        "hashtags": item.get("hashtags"),
        "music": {"title": music.get("title"), "author": music.get("authorName")} if music else None,
    }


def normalize_google_review(review: dict) -> dict:
    reply = None
    if review.get("reviewReplyText"):
        reply = {"text": review["reviewReplyText"], "timestamp": review.get("reviewReplyDate")}
    return {
        "id": review.get("reviewId"),
        "author": review.get("name"),
        "authorPhotoUrl": review.get("profilePhotoUrl"),
        "rating": review.get("stars"),
        "text": review.get("text"),
        "timestamp": review.get("publishedAtDate"),
        "likes": review.get("likesCount"),
        "reply": reply,
    }


class ApifyClient:
    """Client for Apify's run-sync-get-dataset-items endpoint."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token: str | None = settings.APIFY_API_TOKEN,
        base_url: str = settings.APIFY_API_URL,
        timeout_seconds: float = settings.APIFY_TIMEOUT_SECONDS,
    ):
        self.http_client = http_client
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.token)

    async def run_actor(self, actor_id: str, run_input: dict) -> list[dict]:
        """Run an actor to completion and return its dataset items."""
        if not self.is_configured:
            raise ExternalServiceError("Apify", "APIFY_API_TOKEN is not set")

        url = f"{self.base_url}/acts/{actor_id.replace('/', '~')}/run-sync-get-dataset-items"
        start = time.perf_counter()
        try:
            response = await self.http_client.post(
                url,
                params={"token": self.token, "timeout": int(self.timeout_seconds)},
                json=run_input,
                timeout=self.timeout_seconds + 10,
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError("Apify", str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            raise ExternalServiceError("Apify", f"{response.status_code} - {response.text[:500]}", response.status_code)

        items = response.json()
        logger.info(
            "apify_actor_run",
            actor_id=actor_id,
            items=len(items),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        return items

    async def fetch_instagram_posts(self, username: str, limit: int = 12,
                                    actor_id: str | None = None, default_input: dict | None = None) -> list[dict]:
        run_input = {
            "directUrls": [f"https://www.instagram.com/{username}/"],
            "resultsLimit": limit,
            **(default_input or {}),
        }
        items = await self.run_actor(actor_id or DEFAULT_ACTORS["instagram"], run_input)
        return [normalize_instagram_post(item) for item in items]

    async def fetch_tiktok_videos(self, username: str, limit: int = 12,
                                  actor_id: str | None = None, default_input: dict | None = None) -> list[dict]:
        run_input = {
            "profiles": [username],
            "resultsPerPage": limit,
            **(default_input or {}),
        }
        items = await self.run_actor(actor_id or DEFAULT_ACTORS["tiktok"], run_input)
        return [normalize_tiktok_video(item, username) for item in items]

    async def fetch_google_reviews(self, place_id: str, limit: int = 20,
                                   actor_id: str | None = None, default_input: dict | None = None) -> list[dict]:
        run_input = {
            "searchStringsArray": [place_id],
            "maxReviews": limit,
            **(default_input or {}),
        }
        items = await self.run_actor(actor_id or DEFAULT_ACTORS["google"], run_input)
        reviews = [review for item in items for review in item.get("reviews") or []]
        return [normalize_google_review(review) for review in reviews[:limit]]
