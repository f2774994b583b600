from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.tenanthub.db import JSONType
from app.tenanthub.models import Base
from app.tenanthub.utils import utcnow


class Dashboard(Base):
    """
    A dashboard definition. System dashboards (tenant_id NULL) come from module contributions;
    tenant and user dashboards are created or forked through the API.

    owner_id / created_by hold principal keys (str(user.id), or "system" for seeded rows).
    """

    __tablename__ = "dashboards"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", "workbench", name="uq_dashboards_tenant_code_workbench"),
        CheckConstraint("visibility IN ('system', 'tenant', 'user')", name="ck_dashboards_visibility"),
        Index("idx_dashboards_workbench", "workbench", "module_code", "sort_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int | None] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)
    code: Mapped[str] = mapped_column(String(128), nullable=False)
    title_key: Mapped[str] = mapped_column(String(255), nullable=False)
    description_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    module_code: Mapped[str] = mapped_column(String(64), nullable=False)
    workbench: Mapped[str] = mapped_column(String(32), nullable=False)
    visibility: Mapped[str] = mapped_column(String(16), nullable=False, default="tenant")
    icon: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    forked_from_id: Mapped[int | None] = mapped_column(ForeignKey("dashboards.id", ondelete="SET NULL"), nullable=True)
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    versions: Mapped[list["DashboardVersion"]] = relationship(
        back_populates="dashboard", order_by="DashboardVersion.version_no", passive_deletes=True
    )
    acl: Mapped[list["DashboardAcl"]] = relationship(
        back_populates="dashboard", order_by="DashboardAcl.id", passive_deletes=True
    )


class DashboardVersion(Base):
    __tablename__ = "dashboard_versions"
    __table_args__ = (
        UniqueConstraint("dashboard_id", "version_no", name="uq_dashboard_versions_no"),
        CheckConstraint("status IN ('draft', 'published', 'archived')", name="ck_dashboard_versions_status"),
        Index("idx_dashboard_versions_status", "dashboard_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int | None] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)
    dashboard_id: Mapped[int] = mapped_column(ForeignKey("dashboards.id", ondelete="CASCADE"), nullable=False)
    version_no: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # draft | published | archived
    layout: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    published_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    dashboard: Mapped[Dashboard] = relationship(back_populates="versions")


class DashboardAcl(Base):
    __tablename__ = "dashboard_acl"
    __table_args__ = (
        CheckConstraint(
            "principal_type IN ('role', 'group', 'user', 'persona')", name="ck_dashboard_acl_principal_type"
        ),
        CheckConstraint("permission IN ('view', 'edit')", name="ck_dashboard_acl_permission"),
        Index("idx_dashboard_acl_principal", "principal_type", "principal_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int | None] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)
    dashboard_id: Mapped[int] = mapped_column(ForeignKey("dashboards.id", ondelete="CASCADE"), nullable=False)
    principal_type: Mapped[str] = mapped_column(String(16), nullable=False)
    principal_key: Mapped[str] = mapped_column(String(255), nullable=False)
    permission: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    dashboard: Mapped[Dashboard] = relationship(back_populates="acl")
