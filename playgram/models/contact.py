"""
Contact models.

ManyChat/Instagram contacts owned by a tenant, with their tags, custom field
values, and the tools (booking pages, QR campaigns) that bookings and QR codes
hang off.
"""
from datetime import datetime
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from playgram.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


contact_tags = Table(
    "contact_tags",
    Base.metadata,
    Column("contact_id", String(36), ForeignKey("contacts.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Contact(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A ManyChat subscriber synced into Playgram."""
    __tablename__ = "contacts"

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    manychat_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    ig_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    profile_pic_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    follower_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_subscribed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_interaction: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tags = relationship("Tag", secondary=contact_tags, lazy="selectin")
    field_values = relationship(
        "ContactFieldValue",
        back_populates="contact",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def __repr__(self):
        return f"<Contact(id={self.id}, manychat_id={self.manychat_id})>"


class Tag(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Contact tag, mirrored from ManyChat when manychat_id is set."""
    __tablename__ = "tags"

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    manychat_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class CustomField(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Custom field definition."""
    __tablename__ = "custom_fields"

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    field_type: Mapped[str] = mapped_column(String(20), nullable=False, default="text")


class ContactFieldValue(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Value of one custom field for one contact."""
    __tablename__ = "contact_field_values"

    contact_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    field_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("custom_fields.id", ondelete="CASCADE"),
        nullable=False
    )
    value: Mapped[str | None] = mapped_column(Text, nullable=True)

    contact = relationship("Contact", back_populates="field_values")
    field = relationship("CustomField", lazy="joined")


class Tool(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A booking page or QR campaign."""
    __tablename__ = "tools"

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tool_type: Mapped[str] = mapped_column(String(50), nullable=False)


class Booking(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A booking made by a contact through a tool."""
    __tablename__ = "bookings"

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    contact_id: Mapped[str] = mapped_column(String(36), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    tool_id: Mapped[str] = mapped_column(String(36), ForeignKey("tools.id", ondelete="CASCADE"), nullable=False)
    booking_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    helper_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    contact = relationship("Contact", lazy="joined")
    tool = relationship("Tool", lazy="joined")


class QRCode(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A generated QR code, optionally assigned to a contact."""
    __tablename__ = "qr_codes"

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    tool_id: Mapped[str] = mapped_column(String(36), ForeignKey("tools.id", ondelete="CASCADE"), nullable=False)
    contact_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    qr_type: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    scan_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    validation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    contact = relationship("Contact", lazy="joined")
    tool = relationship("Tool", lazy="joined")
