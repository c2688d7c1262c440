"""
Social data models.

Database tier of the social-data cache and the per-platform Apify actor
configuration.
"""
from datetime import datetime
from sqlalchemy import JSON, Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from playgram.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class SocialMediaCache(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Last fetched payload for one (platform, identifier, data type)."""
    __tablename__ = "social_media_cache"
    __table_args__ = (
        UniqueConstraint("platform", "identifier", "data_type", name="uq_social_media_cache_key"),
    )

    platform: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    data_type: Mapped[str] = mapped_column(String(20), nullable=False)
    cached_data: Mapped[list] = mapped_column(JSON, nullable=False)
    last_fetched: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    fetch_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ApifyDataSource(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Apify actor settings for one platform."""
    __tablename__ = "apify_data_sources"

    platform: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    default_input: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    cache_duration_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
