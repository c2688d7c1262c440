"""
Webhook models.

Subscriptions registered by a tenant and the per-attempt delivery audit log.
"""
import enum
from datetime import datetime
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from playgram.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, new_id


class DeliveryStatus(str, enum.Enum):
    """Delivery attempt status."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class WebhookSubscription(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    A tenant-registered target URL plus the events it wants delivered.

    The signing secret is stored encrypted and only decrypted when a
    delivery is signed.
    """
    __tablename__ = "webhook_subscriptions"

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)
    # Event names, may contain the "*" wildcard
    events: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    custom_headers: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    deliveries = relationship(
        "WebhookDelivery",
        back_populates="subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def listens_to(self, event: str) -> bool:
        return event in self.events or "*" in self.events

    def __repr__(self):
        return f"<WebhookSubscription(id={self.id}, url={self.url}, active={self.is_active})>"


class WebhookDelivery(Base):
    """Webhook delivery tracking, one row per attempt."""
    __tablename__ = "webhook_deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    subscription_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # Stable across retries of the same emitted event
    event_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DeliveryStatus.PENDING.value)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    subscription = relationship("WebhookSubscription", back_populates="deliveries")

    def __repr__(self):
        return f"<WebhookDelivery(id={self.id}, event={self.event}, status={self.status})>"
