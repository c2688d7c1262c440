"""
Dynamic gallery models.

A gallery config owns versioned card snapshots, the HMAC secrets used to
authenticate inbound card pushes, and one sync log row per ManyChat sync run.
"""
from datetime import datetime
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from playgram.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, new_id


class GalleryConfig(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Per-tenant dynamic gallery configuration."""
    __tablename__ = "gallery_configs"

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="Default Gallery")
    auto_sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_webhook_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    snapshots = relationship("GallerySnapshot", back_populates="config", cascade="all, delete-orphan")
    secrets = relationship("GallerySecret", back_populates="config", cascade="all, delete-orphan")
    sync_logs = relationship("GallerySyncLog", back_populates="config", cascade="all, delete-orphan")


class GallerySnapshot(Base):
    """A versioned, content-hashed copy of a card list."""
    __tablename__ = "gallery_snapshots"
    __table_args__ = (UniqueConstraint("config_id", "version", name="uq_gallery_snapshot_version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    config_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("gallery_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    card_count: Mapped[int] = mapped_column(Integer, nullable=False)
    cards: Mapped[list] = mapped_column(JSON, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    config = relationship("GalleryConfig", back_populates="snapshots")


class GallerySecret(Base):
    """Signing secret for inbound card pushes. Several may be live at once."""
    __tablename__ = "gallery_secrets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    config_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("gallery_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    config = relationship("GalleryConfig", back_populates="secrets")


class GallerySyncLog(Base):
    """One row per ManyChat sync run."""
    __tablename__ = "gallery_sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    config_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("gallery_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # manual, webhook or schedule
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    card_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    contacts_impacted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    config = relationship("GalleryConfig", back_populates="sync_logs")
