"""
ManyChat connection model.

One connection per tenant; the API token is stored encrypted.
"""
from datetime import datetime
from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from playgram.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ManychatConnection(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """ManyChat account connected by a tenant."""
    __tablename__ = "manychat_connections"

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    encrypted_api_token: Mapped[str] = mapped_column(Text, nullable=False)
    page_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    page_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<ManychatConnection(owner_id={self.owner_id}, connected={self.is_connected})>"
