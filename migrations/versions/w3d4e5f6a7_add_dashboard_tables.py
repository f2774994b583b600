"""Add dashboards, dashboard versions and dashboard ACL.

Revision ID: w3d4e5f6a7
Revises: v2c3d4e5f6
Create Date: 2026-03-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "w3d4e5f6a7"
down_revision: Union[str, Sequence[str], None] = "v2c3d4e5f6"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "dashboards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), nullable=True),
        sa.Column("code", sa.String(128), nullable=False),
        sa.Column("title_key", sa.String(255), nullable=False),
        sa.Column("description_key", sa.String(255), nullable=True),
        sa.Column("module_code", sa.String(64), nullable=False),
        sa.Column("workbench", sa.String(32), nullable=False),
        sa.Column("visibility", sa.String(16), nullable=False, server_default="tenant"),
        sa.Column("icon", sa.String(64), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("is_hidden", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("forked_from_id", sa.Integer(), nullable=True),
        sa.Column("owner_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("updated_by", sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["forked_from_id"], ["dashboards.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "code", "workbench", name="uq_dashboards_tenant_code_workbench"),
        sa.CheckConstraint("visibility IN ('system', 'tenant', 'user')", name="ck_dashboards_visibility"),
    )
    op.create_index("idx_dashboards_workbench", "dashboards", ["workbench", "module_code", "sort_order"])

    op.create_table(
        "dashboard_versions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), nullable=True),
        sa.Column("dashboard_id", sa.Integer(), nullable=False),
        sa.Column("version_no", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("layout", JSON_TYPE, nullable=False),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("published_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["dashboard_id"], ["dashboards.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("dashboard_id", "version_no", name="uq_dashboard_versions_no"),
        sa.CheckConstraint("status IN ('draft', 'published', 'archived')", name="ck_dashboard_versions_status"),
    )
    op.create_index("idx_dashboard_versions_status", "dashboard_versions", ["dashboard_id", "status"])

    op.create_table(
        "dashboard_acl",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), nullable=True),
        sa.Column("dashboard_id", sa.Integer(), nullable=False),
        sa.Column("principal_type", sa.String(16), nullable=False),
        sa.Column("principal_key", sa.String(255), nullable=False),
        sa.Column("permission", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["dashboard_id"], ["dashboards.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "principal_type IN ('role', 'group', 'user', 'persona')", name="ck_dashboard_acl_principal_type"
        ),
        sa.CheckConstraint("permission IN ('view', 'edit')", name="ck_dashboard_acl_permission"),
    )
    op.create_index("idx_dashboard_acl_principal", "dashboard_acl", ["principal_type", "principal_key"])

    # At most one published and one draft version per dashboard (Postgres only; SQLite relies on the service).
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.create_index(
            "uq_dashboard_versions_one_published",
            "dashboard_versions",
            ["dashboard_id"],
            unique=True,
            postgresql_where=sa.text("status = 'published'"),
        )
        op.create_index(
            "uq_dashboard_versions_one_draft",
            "dashboard_versions",
            ["dashboard_id"],
            unique=True,
            postgresql_where=sa.text("status = 'draft'"),
        )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.drop_index("uq_dashboard_versions_one_draft", table_name="dashboard_versions")
        op.drop_index("uq_dashboard_versions_one_published", table_name="dashboard_versions")
    op.drop_index("idx_dashboard_acl_principal", table_name="dashboard_acl")
    op.drop_table("dashboard_acl")
    op.drop_index("idx_dashboard_versions_status", table_name="dashboard_versions")
    op.drop_table("dashboard_versions")
    op.drop_index("idx_dashboards_workbench", table_name="dashboards")
    op.drop_table("dashboards")
