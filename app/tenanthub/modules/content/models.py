from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.tenanthub.models import Base
from app.tenanthub.utils import utcnow


class Attachment(Base):
    """
    A file attached to any tenant entity (entity_type + entity_id string).
    Rows are created when an upload is initiated; completed_at is set once the
    object exists in storage. deleted_at is a soft delete.

    Completed uploads are deduplicated per tenant by sha256, so several rows may
    share one storage_key; the object is removed when the last live row goes.
    """

    __tablename__ = "attachments"
    __table_args__ = (
        Index("idx_attachments_entity", "tenant_id", "entity_type", "entity_id"),
        Index("idx_attachments_sha256", "tenant_id", "sha256"),
        Index("idx_attachments_storage_key", "storage_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)

    uploaded_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
