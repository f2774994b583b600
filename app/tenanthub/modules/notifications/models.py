from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.tenanthub.db import JSONType
from app.tenanthub.models import Base
from app.tenanthub.utils import utcnow


class Notification(Base):
    """In-app notification row (channel "in_app")."""

    __tablename__ = "notifications"
    __table_args__ = (
        CheckConstraint("priority IN ('low', 'normal', 'high', 'critical')", name="ck_notifications_priority"),
        Index("idx_notifications_recipient_created", "tenant_id", "recipient_id", "created_at"),
        Index("idx_notifications_recipient_unread", "tenant_id", "recipient_id", "is_read", "is_dismissed"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    recipient_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    sender_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="in_app")
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "messaging"
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    is_dismissed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deliver_after: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)  # quiet-hours deferral

    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by_service: Mapped[str | None] = mapped_column(String(64), nullable=True)


class NotificationTemplate(Base):
    __tablename__ = "notification_templates"
    __table_args__ = (
        UniqueConstraint("tenant_id", "template_key", "channel", "locale", "version", name="uq_notification_templates_version"),
        Index("idx_notification_templates_lookup", "template_key", "channel", "locale", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int | None] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)  # null = system
    template_key: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "message.received"
    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="in_app")
    locale: Mapped[str] = mapped_column(String(16), nullable=False, default="en")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")  # active | draft | retired

    subject: Mapped[str | None] = mapped_column(String(500), nullable=True)
    body_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "event_code", "channel", name="uq_notification_preferences_event_channel"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    event_code: Mapped[str] = mapped_column(String(128), nullable=False)
    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="in_app")
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    quiet_hours_start: Mapped[str | None] = mapped_column(String(5), nullable=True)  # "HH:MM"
    quiet_hours_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)  # IANA name

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
