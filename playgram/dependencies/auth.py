"""
Authentication dependencies for FastAPI.

SECURITY: All queries MUST filter on the caller's owner_id.
Failure to do so will result in data leakage between tenants.
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from playgram.services.jwt_service import JWTService

# Security scheme
security = HTTPBearer()


class TokenPayload(BaseModel):
    """JWT token payload model."""
    sub: str  # owner id
    email: str | None = None
    role: str | None = None


async def get_current_owner(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> TokenPayload:
    """
    Dependency that requires a valid JWT token.

    Returns the token payload if valid, raises 401 otherwise.

    Usage:
        @router.get("/protected")
        async def protected_route(owner: TokenPayload = Depends(get_current_owner)):
            ...
    """
    payload = JWTService().verify_token(credentials.credentials)

    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    owner = TokenPayload(**payload)
    # Picked up by LoggingMiddleware
    request.state.owner_id = owner.sub
    return owner
