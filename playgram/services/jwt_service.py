"""
JWT verification for admin API routes.

Tokens are issued elsewhere; this service only checks them. The `sub` claim
is the owner id every query is scoped to.
"""
from jose import JWTError, jwt

from playgram.config import settings


class JWTService:
    """Verifies bearer tokens signed with the shared secret."""

    def __init__(self, secret_key: str = settings.JWT_SECRET_KEY, algorithm: str = settings.JWT_ALGORITHM):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a JWT token.

        Args:
            token: JWT token string

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            return None
