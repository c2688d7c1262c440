"""
Social data API routes.

Serves cached social media data (Instagram posts, TikTok videos, Google
reviews) by platform.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status

from playgram.dependencies.auth import TokenPayload, get_current_owner
from playgram.dependencies.services import get_social_service
from playgram.services.errors import ExternalServiceError, UnsupportedSourceError
from playgram.services.social_data_service import SUPPORTED_SOURCES, SocialDataService

router = APIRouter(prefix="/api/v1/social", tags=["social"])


@router.get("/{platform}", response_model=dict)
async def get_social_data(
    platform: str,
    identifier: str = Query(min_length=1),
    data_type: str | None = Query(default=None, alias="type"),
    limit: int = Query(default=12, ge=1, le=100),
    force_refresh: bool = False,
    owner: TokenPayload = Depends(get_current_owner),
    social: SocialDataService = Depends(get_social_service),
):
    """
    Fetch data for a username, handle or place id.

    type defaults to the platform's only data type.
    """
    try:
        result = await social.fetch_data(
            platform,
            data_type or SUPPORTED_SOURCES.get(platform, ""),
            identifier,
            limit=limit,
            force_refresh=force_refresh,
        )
    except UnsupportedSourceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ExternalServiceError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return {
        "platform": platform,
        "identifier": identifier,
        "data": result["data"],
        "metadata": {
            "total": result["metadata"]["total"],
            "cached": result["metadata"]["cached"],
            "cache_age": result["metadata"].get("cache_age"),
            "timestamp": result["metadata"]["timestamp"],
        },
    }
