"""
Admin API routes.

Cache statistics and invalidation, and job queue health.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from playgram.dependencies.auth import TokenPayload, get_current_owner
from playgram.dependencies.services import get_cache, get_queues, get_social_service
from playgram.queue.queues import Queues
from playgram.services.cache_service import CacheService, social_cache_key
from playgram.services.social_data_service import SUPPORTED_SOURCES, SocialDataService

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


class InvalidateCacheRequest(BaseModel):
    """
    Either a raw key pattern, or a platform + identifier (optionally
    narrowed to one data type).
    """
    pattern: str | None = None
    platform: str | None = None
    identifier: str | None = None
    data_type: str | None = None


@router.get("/cache/stats", response_model=dict)
async def cache_stats(
    owner: TokenPayload = Depends(get_current_owner),
    cache: CacheService = Depends(get_cache),
    social: SocialDataService = Depends(get_social_service),
):
    return {
        "cache": await cache.get_stats(),
        "social": await social.get_cache_stats(),
    }


@router.post("/cache/invalidate", response_model=dict)
async def invalidate_cache(
    request: InvalidateCacheRequest,
    owner: TokenPayload = Depends(get_current_owner),
    cache: CacheService = Depends(get_cache),
    social: SocialDataService = Depends(get_social_service),
):
    if request.pattern:
        deleted = await cache.delete_pattern(request.pattern)
        return {"invalidated": request.pattern, "deleted": deleted}

    if not (request.platform and request.identifier):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide a pattern, or a platform and identifier"
        )
    if request.platform not in SUPPORTED_SOURCES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported platform: {request.platform}"
        )

    await social.invalidate_cache(request.platform, request.identifier, request.data_type)
    invalidated = (
        social_cache_key(request.platform, request.data_type, request.identifier) if request.data_type
        else f"social:{request.platform}:*:{request.identifier}"
    )
    return {"invalidated": invalidated}


@router.get("/queues/health", response_model=dict)
async def queues_health(
    owner: TokenPayload = Depends(get_current_owner),
    queues: Queues = Depends(get_queues),
):
    health = await queues.get_health()
    return {
        "healthy": all(queue.healthy for queue in health),
        "queues": [queue.model_dump() for queue in health],
    }
